from __future__ import annotations

import cbor2


def encode(obj) -> bytes:
    return cbor2.dumps(obj)


def decode(b: bytes | bytearray):
    try:
        return cbor2.loads(bytes(b))
    except cbor2.CBORDecodeError as e:
        raise ValueError(f"undecodable CBOR: {e}") from e
