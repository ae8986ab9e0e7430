import logging

import pytest
import RNS
from conftest import FakeLink, connect, disconnect, say

from rosterd.codec import encode
from rosterd.constants import (
    B_ROSTER_USER_IDS,
    B_WELCOME_TEXT,
    B_WELCOME_USER_ID,
    K_BODY,
    K_T,
    T_ERROR,
    T_HELLO,
    T_MSG,
    T_ROSTER,
    T_WELCOME,
)
from rosterd.envelope import make_envelope
from rosterd.session import SessionState


def _kinds(frames):
    return [env[K_T] for env in frames]


def test_first_user_gets_welcome_then_roster(hub, wire) -> None:
    link = connect(hub, 3)

    frames = wire.to(link)
    assert _kinds(frames) == [T_WELCOME, T_ROSTER]
    assert frames[0][K_BODY][B_WELCOME_USER_ID] == 3
    assert frames[0][K_BODY][B_WELCOME_TEXT] == "Welcome user #3 ~"
    assert frames[1][K_BODY] == {B_ROSTER_USER_IDS: [3]}
    assert hub.session_manager.get_session(link).state is SessionState.ACTIVE


def test_join_broadcast_ordering(hub, wire) -> None:
    a = connect(hub, 2)
    b = connect(hub, 4)
    wire.clear()

    c = connect(hub, 9)

    for other in (a, b):
        frames = wire.to(other)
        assert _kinds(frames) == [T_MSG, T_ROSTER]
        assert frames[0][K_BODY] == "User #9 joined."
        assert frames[1][K_BODY][B_ROSTER_USER_IDS] == [2, 4, 9]

    own = wire.to(c)
    assert _kinds(own) == [T_WELCOME, T_ROSTER]
    assert own[1][K_BODY][B_ROSTER_USER_IDS] == [2, 4, 9]
    assert "User #9 joined." not in wire.texts(c)


def test_departure_cleanup(hub, wire) -> None:
    a = connect(hub, 2)
    b = connect(hub, 4)
    c = connect(hub, 9)
    wire.clear()

    disconnect(hub, c)

    for other in (a, b):
        frames = wire.to(other)
        assert _kinds(frames) == [T_MSG, T_ROSTER]
        assert frames[0][K_BODY] == "User #9 has left."
        assert frames[1][K_BODY][B_ROSTER_USER_IDS] == [2, 4]
    assert wire.to(c) == []
    assert hub.roster.snapshot() == [2, 4]
    assert hub.session_manager.get_session(c) is None


def test_identity_is_free_again_after_disconnect(hub, wire) -> None:
    first = connect(hub, 5)
    disconnect(hub, first)

    again = connect(hub, 5)
    assert _kinds(wire.to(again)) == [T_WELCOME, T_ROSTER]
    assert hub.roster.snapshot() == [5]


def test_duplicate_is_refused_and_torn_down(hub, wire) -> None:
    a = connect(hub, 6)
    wire.clear()

    dup = connect(hub, 6)

    frames = wire.to(dup)
    assert _kinds(frames) == [T_ERROR]
    assert frames[0][K_BODY] == "Unknown user. (User ID 重覆.)"
    assert dup.torn_down
    assert wire.to(a) == []
    assert hub.roster.snapshot() == [6]
    assert hub.session_manager.get_session(dup) is None


def test_refused_link_never_sees_broadcasts(hub, wire) -> None:
    bad = connect(hub, 11)
    assert wire.texts(bad) == []
    assert _kinds(wire.to(bad)) == [T_ERROR]
    assert wire.to(bad)[0][K_BODY] == "Unknown user. (user_id < 1 || user_id > 10.)"

    # The transport closes the refused link afterwards.
    disconnect(hub, bad)
    wire.clear()

    a = connect(hub, 1)
    say(hub, a, "hi", "all")
    assert wire.to(bad) == []
    assert hub.roster.snapshot() == [1]


def test_missing_claim_refusal(hub, wire) -> None:
    link = connect(hub)
    assert wire.to(link)[0][K_BODY] == "Unknown user. (No user_id.)"
    assert link.torn_down


def test_pending_session_must_hello_first(hub, wire) -> None:
    link = FakeLink()
    hub._on_link(link)
    hub._on_packet(link, encode(make_envelope(T_MSG, src=b"c", body="early")))

    frames = wire.to(link)
    assert _kinds(frames) == [T_ERROR]
    assert frames[0][K_BODY] == "send HELLO first"
    assert hub.session_manager.get_session(link).state is SessionState.PENDING
    assert not link.torn_down


def test_second_hello_is_rejected(hub, wire) -> None:
    link = connect(hub, 3)
    wire.clear()
    hub._on_packet(link, encode(make_envelope(T_HELLO, src=b"c", body={"user_id": "4"})))

    assert _kinds(wire.to(link)) == [T_ERROR]
    assert hub.roster.snapshot() == [3]


def test_pending_disconnect_is_silent(hub, wire) -> None:
    a = connect(hub, 1)
    wire.clear()

    pending = FakeLink()
    hub._on_link(pending)
    disconnect(hub, pending)

    assert wire.frames == []
    assert hub.roster.snapshot() == [1]
    assert a is not pending


def test_closing_phase(hub, wire) -> None:
    link = connect(hub, 8)
    sess = hub.session_manager.on_link_closing(link)
    assert sess.state is SessionState.CLOSING
    assert hub.session_manager.get_link_by_user_id(8) is None
    assert hub.session_manager.active_links() == []

    outgoing = []
    closed = hub.session_manager.on_link_closed(link, outgoing)
    assert closed.state is SessionState.CLOSED
    assert hub.roster.snapshot() == []


def test_bad_packet_reports_error(hub, wire) -> None:
    link = connect(hub, 2)
    wire.clear()
    hub._on_packet(link, b"\xa2\x01")

    frames = wire.to(link)
    assert _kinds(frames) == [T_ERROR]
    assert frames[0][K_BODY].startswith("bad message: ")
    assert hub.stats_manager.get("pkts_bad") == 1


@pytest.mark.parametrize("error", [OSError("link closed"), RuntimeError("boom")])
def test_failed_send_does_not_stop_fan_out(hub, wire, monkeypatch, error) -> None:
    a = connect(hub, 1)
    b = connect(hub, 2)
    c = connect(hub, 3)
    wire.clear()

    class FlakyPacket:
        def __init__(self, link, payload) -> None:
            self.link = link
            self.payload = payload

        def send(self):
            if self.link is b:
                raise error
            wire.transmit(self.link, self.payload)

    # Send through the real HubService._transmit.
    monkeypatch.delattr(hub, "_transmit")
    monkeypatch.setattr(RNS, "Packet", FlakyPacket)
    say(hub, a, "hello", "all")

    assert wire.texts(a) == ["User #1 said: hello"]
    assert wire.texts(b) == []
    assert wire.texts(c) == ["User #1 said: hello"]
    assert hub.stats_manager.get("send_failures") == 1


def test_lifecycle_is_logged(hub, caplog) -> None:
    caplog.set_level(logging.INFO, logger="rosterd")

    link = connect(hub, 3)
    assert "Connected user #3" in caplog.text

    link.teardown_reason = RNS.Link.INITIATOR_CLOSED
    disconnect(hub, link)

    messages = [r.getMessage() for r in caplog.records if r.name == "rosterd.session"]
    connected = next(i for i, m in enumerate(messages) if m.startswith("Connected user #3"))
    closing = messages.index("Disconnecting user #3 (reason: client closed)")
    closed = next(i for i, m in enumerate(messages) if m.startswith("Disconnected user #3"))
    assert connected < closing < closed
    assert all(r.created > 0 for r in caplog.records)


def test_stop_clears_everything(hub) -> None:
    a = connect(hub, 1)
    b = connect(hub, 2)
    hub.stop()
    assert a.torn_down and b.torn_down
    assert hub.roster.snapshot() == []
    assert hub.session_manager.get_stats() == {"total": 0, "pending": 0, "active": 0}
