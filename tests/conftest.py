from __future__ import annotations

import os

import pytest

from rosterd.codec import decode, encode
from rosterd.config import HubRuntimeConfig
from rosterd.constants import K_BODY, K_T, K_TO, T_HELLO, T_MSG
from rosterd.envelope import make_envelope
from rosterd.service import HubService


class FakeLink:
    """Stands in for RNS.Link: records teardown and callbacks."""

    MDU = 431

    def __init__(self) -> None:
        self.link_id = os.urandom(16)
        self.teardown_reason = None
        self.torn_down = False
        self.packet_callback = None
        self.closed_callback = None

    def set_packet_callback(self, cb) -> None:
        self.packet_callback = cb

    def set_link_closed_callback(self, cb) -> None:
        self.closed_callback = cb

    def teardown(self) -> None:
        self.torn_down = True


class Wire:
    """Records every frame the hub transmits, decoded, per link."""

    def __init__(self) -> None:
        self.frames: list[tuple[FakeLink, dict]] = []

    def transmit(self, link, payload: bytes) -> bool:
        self.frames.append((link, decode(payload)))
        return True

    def to(self, link) -> list[dict]:
        return [env for dst, env in self.frames if dst is link]

    def texts(self, link) -> list[str]:
        return [env[K_BODY] for env in self.to(link) if env[K_T] == T_MSG]

    def clear(self) -> None:
        self.frames.clear()


@pytest.fixture
def wire() -> Wire:
    return Wire()


@pytest.fixture
def hub(monkeypatch, wire) -> HubService:
    svc = HubService(HubRuntimeConfig(notify_enabled=False))
    monkeypatch.setattr(svc, "_transmit", wire.transmit)
    return svc


def connect(hub: HubService, user_id=None, *, query=None) -> FakeLink:
    link = FakeLink()
    hub._on_link(link)
    if query is None:
        query = {} if user_id is None else {"user_id": str(user_id)}
    hub._on_packet(link, encode(make_envelope(T_HELLO, src=b"client", body=query)))
    return link


def say(hub: HubService, link: FakeLink, text, to) -> None:
    env = make_envelope(T_MSG, src=b"client", body=text)
    env[K_TO] = to
    hub._on_packet(link, encode(env))


def disconnect(hub: HubService, link: FakeLink) -> None:
    hub._on_close(link)
