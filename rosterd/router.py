from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Any

import RNS

from .codec import decode
from .constants import K_BODY, K_T, K_TO, T_HELLO, T_MSG, TO_ALL
from .envelope import validate_envelope
from .session import Session, SessionState
from .util import fmt_link_id, parse_user_id

if TYPE_CHECKING:
    from .messages import Outgoing
    from .service import HubService


class Delivery(enum.Enum):
    BROADCAST = "broadcast"
    SELF = "self"
    PRIVATE = "private"
    DROPPED = "dropped"


class MessageRouter:
    """
    Handles packet decoding and message routing for the hub.

    This class is responsible for:
    - Decoding and validating incoming packets
    - Handing HELLO from pending sessions to admission
    - Routing chat messages from active sessions to everyone, back to the
      sender, or to one other user
    """

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("rosterd.router")

    def route_packet(
        self,
        link: RNS.Link,
        data: bytes,
        outgoing: Outgoing,
    ) -> None:
        """
        Main entry point for routing an incoming packet.

        This method should be called with the state lock held.
        """
        sess = self.hub.session_manager.get_session(link)
        if sess is None:
            return

        self.hub.stats_manager.inc("pkts_in")
        self.hub.stats_manager.inc("bytes_in", len(data))

        try:
            env = decode(data)
            validate_envelope(env)
        except (TypeError, ValueError) as e:
            self.hub.stats_manager.inc("pkts_bad")
            self.log.debug(
                "Bad packet link_id=%s bytes=%s err=%s",
                fmt_link_id(link),
                len(data),
                e,
            )
            self.hub.message_helper.queue_error(outgoing, link, f"bad message: {e}")
            return

        t = env.get(K_T)

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX user=%s link_id=%s t=%s bytes=%s",
                sess.user_id,
                fmt_link_id(link),
                t,
                len(data),
            )

        if sess.state is SessionState.PENDING:
            self._handle_pending(link, env, outgoing)
        elif sess.state is not SessionState.ACTIVE:
            return
        elif t == T_MSG:
            self._handle_message(sess, env, outgoing)
        elif t == T_HELLO:
            self.hub.message_helper.queue_error(outgoing, link, "already admitted")

    def _handle_pending(self, link: RNS.Link, env: dict, outgoing: Outgoing) -> None:
        """Only HELLO is accepted before admission."""
        if env.get(K_T) != T_HELLO:
            self.hub.message_helper.queue_error(outgoing, link, "send HELLO first")
            return

        err = self.hub.session_manager.on_hello(link, env.get(K_BODY), outgoing)
        if err is not None:
            self.hub._schedule_teardown(link)

    def _handle_message(self, sess: Session, env: dict, outgoing: Outgoing) -> None:
        text = env.get(K_BODY)
        if not isinstance(text, str):
            self.hub.message_helper.queue_error(
                outgoing, sess.link, "message body must be text"
            )
            return

        self.route_message(sess, text, env.get(K_TO), outgoing)

    def route_message(
        self, sender: Session, text: str, directive: Any, outgoing: Outgoing
    ) -> Delivery:
        """
        Deliver one chat message from an active session.

        Directives are checked in order: ``"all"`` reaches every active
        session including the sender; the sender's own id echoes back to
        the sender only; any other active id reaches that one session.
        Anything else is dropped without an error.
        """
        helper = self.hub.message_helper
        sm = self.hub.session_manager
        user_id = sender.user_id

        if directive == TO_ALL:
            helper.queue_text_many(
                outgoing, sm.active_links(), f"User #{user_id} said: {text}"
            )
            self.hub.stats_manager.inc("msgs_broadcast")
            return Delivery.BROADCAST

        target_id = parse_user_id(directive)

        if target_id is not None and target_id == user_id:
            helper.queue_text(outgoing, sender.link, f"You said: {text}")
            self.hub.stats_manager.inc("msgs_self")
            return Delivery.SELF

        target = sm.get_link_by_user_id(target_id) if target_id is not None else None
        if target is None:
            self.hub.stats_manager.inc("msgs_dropped")
            self.log.debug(
                "Dropped message from user #%s to=%r (no such active user)",
                user_id,
                directive,
            )
            return Delivery.DROPPED

        helper.queue_text(outgoing, target, f"From user #{user_id}: {text}")
        self.hub.stats_manager.inc("msgs_private")
        return Delivery.PRIVATE
