import pytest

from rosterd.codec import decode, encode
from rosterd.constants import T_MSG
from rosterd.envelope import make_envelope, validate_envelope


def test_codec_round_trip() -> None:
    env = make_envelope(T_MSG, src=b"peer", body="hello", to="all")
    decoded = decode(encode(env))
    assert decoded == env
    validate_envelope(decoded)


def test_decode_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        decode(b"\x62a")
