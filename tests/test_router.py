import pytest
from conftest import connect, say

from rosterd.constants import K_BODY, K_T, T_ERROR
from rosterd.router import Delivery


@pytest.fixture
def trio(hub, wire):
    links = {uid: connect(hub, uid) for uid in (3, 5, 7)}
    wire.clear()
    return links


def test_all_reaches_everyone_including_sender(hub, wire, trio) -> None:
    say(hub, trio[3], "hi", "all")
    for uid in (3, 5, 7):
        assert wire.texts(trio[uid]) == ["User #3 said: hi"]
    assert hub.stats_manager.get("msgs_broadcast") == 1


def test_own_id_echoes_to_sender_only(hub, wire, trio) -> None:
    say(hub, trio[5], "ok", 5)
    assert wire.texts(trio[5]) == ["You said: ok"]
    assert wire.to(trio[3]) == []
    assert wire.to(trio[7]) == []


def test_own_id_as_string_directive(hub, wire, trio) -> None:
    say(hub, trio[5], "ok", "5")
    assert wire.texts(trio[5]) == ["You said: ok"]


def test_private_message_reaches_target_only(hub, wire, trio) -> None:
    say(hub, trio[3], "ok", 7)
    assert wire.texts(trio[7]) == ["From user #3: ok"]
    assert wire.to(trio[3]) == []
    assert wire.to(trio[5]) == []


@pytest.mark.parametrize("directive", [9, "9", 42, "nobody", "ALL", ""])
def test_unknown_target_is_dropped_silently(hub, wire, trio, directive) -> None:
    say(hub, trio[3], "ok", directive)
    assert wire.frames == []
    assert hub.stats_manager.get("msgs_dropped") == 1


def test_departed_target_is_dropped_silently(hub, wire, trio) -> None:
    hub._on_close(trio[7])
    wire.clear()

    say(hub, trio[3], "ok", 7)
    assert wire.frames == []


def test_missing_directive_is_dropped(hub, wire, trio) -> None:
    from rosterd.codec import encode
    from rosterd.constants import T_MSG
    from rosterd.envelope import make_envelope

    hub._on_packet(trio[3], encode(make_envelope(T_MSG, src=b"c", body="nowhere")))
    assert wire.frames == []


def test_non_text_body_is_an_error(hub, wire, trio) -> None:
    say(hub, trio[3], b"\x00\x01", "all")
    frames = wire.to(trio[3])
    assert [env[K_T] for env in frames] == [T_ERROR]
    assert frames[0][K_BODY] == "message body must be text"
    assert wire.to(trio[5]) == []


def test_route_message_reports_delivery_mode(hub, trio) -> None:
    sm = hub.session_manager
    sender = sm.get_session(trio[3])
    out: list = []
    assert hub.router.route_message(sender, "x", "all", out) is Delivery.BROADCAST
    assert len(out) == 3
    out.clear()
    assert hub.router.route_message(sender, "x", 3, out) is Delivery.SELF
    assert [link for link, _ in out] == [trio[3]]
    out.clear()
    assert hub.router.route_message(sender, "x", " 5 ", out) is Delivery.PRIVATE
    assert [link for link, _ in out] == [trio[5]]
    out.clear()
    assert hub.router.route_message(sender, "x", None, out) is Delivery.DROPPED
    assert out == []


def test_per_sender_order_is_preserved(hub, wire, trio) -> None:
    for i in range(5):
        say(hub, trio[3], f"m{i}", 5)
    assert wire.texts(trio[5]) == [f"From user #3: m{i}" for i in range(5)]


def test_long_broadcast_is_chunked_not_dropped(hub, wire, trio) -> None:
    text = "y" * 400
    say(hub, trio[3], text, "all")
    for uid in (3, 5, 7):
        chunks = wire.texts(trio[uid])
        assert len(chunks) > 1
        assert "".join(chunks) == f"User #3 said: {text}"


def test_long_private_message_is_chunked(hub, wire, trio) -> None:
    text = "z" * 600
    say(hub, trio[3], text, 5)
    assert "".join(wire.texts(trio[5])) == f"From user #3: {text}"
    assert wire.to(trio[7]) == []
