"""Frame construction, queueing and transmission for the hub."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import RNS

from .codec import encode
from .constants import (
    B_ROSTER_USER_IDS,
    B_WELCOME_HUB,
    B_WELCOME_TEXT,
    B_WELCOME_USER_ID,
    B_WELCOME_VER,
    K_T,
    T_ERROR,
    T_MSG,
    T_ROSTER,
    T_WELCOME,
)
from .envelope import make_envelope
from .util import fmt_link_id

if TYPE_CHECKING:
    from .service import HubService


Outgoing = list[tuple[RNS.Link, bytes]]


class MessageHelper:
    """
    Helper methods for building and queueing hub frames.

    Handlers collect ``(link, payload)`` pairs into an outgoing list while
    the state lock is held; ``transmit`` sends them after it is released.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("rosterd.hub")

    def packet_would_fit(self, link: RNS.Link, payload: bytes) -> bool:
        """Check if payload fits within link MDU without creating/packing packets."""
        try:
            if hasattr(link, "MDU") and link.MDU is not None:
                return len(payload) <= link.MDU
            pkt = RNS.Packet(link, payload)
            pkt.pack()
            return True
        except Exception:
            return False

    def queue_payload(self, outgoing: Outgoing, link: RNS.Link, payload: bytes) -> None:
        outgoing.append((link, payload))

    def queue_env(self, outgoing: Outgoing, link: RNS.Link, env: dict) -> bool:
        """Encode and queue an envelope. Returns False if it was dropped."""
        payload = encode(env)
        if not self.packet_would_fit(link, payload):
            self.log.warning(
                "Frame would not fit MTU; dropping t=%s bytes=%s link_id=%s",
                env.get(K_T),
                len(payload),
                fmt_link_id(link),
            )
            return False
        self.queue_payload(outgoing, link, payload)
        return True

    def text_payloads(self, link: RNS.Link, text: str) -> list[bytes]:
        """
        Encode text as one or more MSG frames that each fit the link MDU.

        Text that fits goes out as a single frame. Longer text is split by
        characters, halving the chunk size until a frame fits.
        """
        src = self.hub.src_hash
        if not text:
            return [encode(make_envelope(T_MSG, src=src, body=text))]

        payloads: list[bytes] = []
        remaining = text
        max_chars = len(remaining)
        while remaining:
            take = min(len(remaining), max_chars)
            payload = encode(make_envelope(T_MSG, src=src, body=remaining[:take]))
            if self.packet_would_fit(link, payload):
                payloads.append(payload)
                remaining = remaining[take:]
                continue

            if max_chars <= 1:
                # Nothing we can do; avoid an infinite loop.
                self.log.warning(
                    "MSG chunk would not fit MTU; dropping remainder (%s chars) link_id=%s",
                    len(remaining),
                    fmt_link_id(link),
                )
                break

            max_chars = max(1, max_chars // 2)

        return payloads

    def queue_text(self, outgoing: Outgoing, link: RNS.Link, text: str) -> bool:
        """Queue text to one link, in chunks if needed. False if nothing was queued."""
        payloads = self.text_payloads(link, text)
        for payload in payloads:
            self.queue_payload(outgoing, link, payload)
        return bool(payloads)

    def queue_text_many(
        self, outgoing: Outgoing, links: list[RNS.Link], text: str
    ) -> int:
        """Queue the same text to several links; returns how many were queued."""
        # Links with the same MDU share one chunking.
        by_mdu: dict[int, list[bytes]] = {}
        queued = 0
        for link in links:
            mdu = getattr(link, "MDU", None)
            if isinstance(mdu, int) and mdu in by_mdu:
                payloads = by_mdu[mdu]
            else:
                payloads = self.text_payloads(link, text)
                if isinstance(mdu, int):
                    by_mdu[mdu] = payloads
            for payload in payloads:
                self.queue_payload(outgoing, link, payload)
            if payloads:
                queued += 1
        return queued

    def queue_welcome(self, outgoing: Outgoing, link: RNS.Link, *, user_id: int) -> None:
        """Queue the private WELCOME for a newly admitted user."""
        from . import __version__

        body_w: dict[int, Any] = {
            B_WELCOME_HUB: self.hub.config.hub_name,
            B_WELCOME_VER: str(__version__),
            B_WELCOME_USER_ID: int(user_id),
            B_WELCOME_TEXT: f"Welcome user #{user_id} ~",
        }
        welcome = make_envelope(T_WELCOME, src=self.hub.src_hash, body=body_w)
        if self.queue_env(outgoing, link, welcome):
            self.log.debug(
                "Queued WELCOME user=%s link_id=%s", user_id, fmt_link_id(link)
            )

    def queue_roster(
        self, outgoing: Outgoing, links: list[RNS.Link], user_ids: list[int]
    ) -> None:
        """Queue one ROSTER snapshot to each link."""
        env = make_envelope(
            T_ROSTER, src=self.hub.src_hash, body={B_ROSTER_USER_IDS: list(user_ids)}
        )
        payload = encode(env)
        for link in links:
            self.queue_payload(outgoing, link, payload)

    def queue_error(self, outgoing: Outgoing, link: RNS.Link, text: str) -> None:
        self.hub.stats_manager.inc("errors_sent")
        env = make_envelope(T_ERROR, src=self.hub.src_hash, body=text)
        self.queue_env(outgoing, link, env)

    def transmit(self, outgoing: Outgoing) -> None:
        """
        Send queued frames in order.

        Each frame is independent: a failure for one recipient is logged and
        the remaining frames are still sent. Must be called without the
        state lock held.
        """
        if self.log.isEnabledFor(logging.DEBUG) and outgoing:
            self.log.debug("Sending %d frame(s)", len(outgoing))

        for out_link, payload in outgoing:
            self.hub._transmit(out_link, payload)
