from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import RNS

from .admission import AdmissionError, admit
from .util import fmt_link_id

if TYPE_CHECKING:
    from .messages import Outgoing
    from .service import HubService


class SessionState(enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Session:
    """Per-link state. ``user_id`` is set once, on admission."""

    link: RNS.Link
    state: SessionState = SessionState.PENDING
    user_id: int | None = None
    created_at: float = field(default_factory=time.monotonic)


class SessionManager:
    """
    Manages session lifecycle for hub links.

    This class is responsible for:
    - Session creation when a link is established
    - Admission of the HELLO identity claim and the join broadcasts
    - The user id -> link registry used for fan-out
    - Two-phase teardown (closing, then closed) and the leave broadcasts

    Every method that touches shared state must be called with the hub's
    state lock held. Frames are only queued here; the hub transmits them
    after releasing the lock.
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("rosterd.session")
        self.sessions: dict[RNS.Link, Session] = {}
        self._index_by_user_id: dict[int, RNS.Link] = {}

    def on_link_established(self, link: RNS.Link) -> Session:
        """
        Create a pending session for a new link.

        Must be called with state lock held.
        """
        sess = Session(link=link)
        self.sessions[link] = sess
        self.log.debug("Session created link_id=%s", fmt_link_id(link))
        return sess

    def on_hello(
        self, link: RNS.Link, query: Any, outgoing: Outgoing
    ) -> AdmissionError | None:
        """
        Admit a pending session from its HELLO query.

        On refusal the reason is queued to this link only and the error is
        returned; the caller is expected to tear the link down. On success
        the session becomes active and, in order: the WELCOME goes to the
        new user, a joined notice to every other active user, and the
        roster snapshot to everyone including the new user.

        Must be called with state lock held.
        """
        sess = self.sessions.get(link)
        if sess is None or sess.state is not SessionState.PENDING:
            return None

        try:
            user_id = admit(
                query,
                self.hub.roster,
                min_user_id=self.hub.config.min_user_id,
                max_user_id=self.hub.config.max_user_id,
            )
        except AdmissionError as e:
            self.hub.stats_manager.inc("refusals")
            self.log.warning(
                "Refused link_id=%s reason=%r", fmt_link_id(link), e.refusal
            )
            self.hub.message_helper.queue_error(outgoing, link, e.refusal)
            self.sessions.pop(link, None)
            return e

        sess.user_id = user_id
        sess.state = SessionState.ACTIVE
        self._index_by_user_id[user_id] = link
        self.hub.stats_manager.inc("admissions")

        self.log.info("Connected user #%s link_id=%s", user_id, fmt_link_id(link))

        helper = self.hub.message_helper
        helper.queue_welcome(outgoing, link, user_id=user_id)
        helper.queue_text_many(
            outgoing, self.active_links(exclude=link), f"User #{user_id} joined."
        )
        helper.queue_roster(outgoing, self.active_links(), self.hub.roster.snapshot())
        return None

    def on_link_closing(self, link: RNS.Link) -> Session | None:
        """
        Mark an active session as closing.

        The link is already going away; anything sent to it from here on may
        be lost. Must be called with state lock held.
        """
        sess = self.sessions.get(link)
        if sess is None:
            return None

        if sess.state is SessionState.ACTIVE:
            sess.state = SessionState.CLOSING
            self.log.info(
                "Disconnecting user #%s (reason: %s)",
                sess.user_id,
                _teardown_reason(link),
            )
        return sess

    def on_link_closed(self, link: RNS.Link, outgoing: Outgoing) -> Session | None:
        """
        Drop the session and announce the departure to everyone left.

        The departed link is removed from the registry before any frame is
        queued, so it receives neither the left notice nor the roster.
        Must be called with state lock held.
        """
        sess = self.sessions.pop(link, None)
        if sess is None:
            return None

        was_admitted = sess.state in (SessionState.ACTIVE, SessionState.CLOSING)
        sess.state = SessionState.CLOSED

        if not was_admitted or sess.user_id is None:
            return sess

        user_id = sess.user_id
        if self._index_by_user_id.get(user_id) is link:
            self._index_by_user_id.pop(user_id, None)
        self.hub.roster.remove(user_id)
        self.hub.stats_manager.inc("departures")

        self.log.info("Disconnected user #%s link_id=%s", user_id, fmt_link_id(link))

        remaining = self.active_links()
        helper = self.hub.message_helper
        helper.queue_text_many(outgoing, remaining, f"User #{user_id} has left.")
        helper.queue_roster(outgoing, remaining, self.hub.roster.snapshot())
        return sess

    def active_links(self, exclude: RNS.Link | None = None) -> list[RNS.Link]:
        """Links of active sessions in admission order, optionally minus one."""
        return [
            link
            for link in self._index_by_user_id.values()
            if link is not exclude
            and self.sessions.get(link) is not None
            and self.sessions[link].state is SessionState.ACTIVE
        ]

    def get_session(self, link: RNS.Link) -> Session | None:
        return self.sessions.get(link)

    def get_link_by_user_id(self, user_id: int) -> RNS.Link | None:
        """Look up the active link holding a user id (O(1))."""
        link = self._index_by_user_id.get(user_id)
        if link is None:
            return None
        sess = self.sessions.get(link)
        if sess is None or sess.state is not SessionState.ACTIVE:
            return None
        return link

    def clear_all(self) -> list[RNS.Link]:
        """
        Clear all sessions and return their links for teardown.

        Must be called with state lock held.
        """
        links = list(self.sessions.keys())
        for sess in self.sessions.values():
            sess.state = SessionState.CLOSED
        self.sessions.clear()
        self._index_by_user_id.clear()
        return links

    def get_stats(self) -> dict[str, int]:
        total = len(self.sessions)
        pending = sum(1 for s in self.sessions.values() if s.state is SessionState.PENDING)
        active = sum(1 for s in self.sessions.values() if s.state is SessionState.ACTIVE)
        return {"total": total, "pending": pending, "active": active}


def _teardown_reason(link: RNS.Link) -> str:
    reason = getattr(link, "teardown_reason", None)
    names = {
        getattr(RNS.Link, "TIMEOUT", None): "timeout",
        getattr(RNS.Link, "INITIATOR_CLOSED", None): "client closed",
        getattr(RNS.Link, "DESTINATION_CLOSED", None): "server closed",
    }
    if reason in names and reason is not None:
        return names[reason]
    return "unknown" if reason is None else str(reason)
