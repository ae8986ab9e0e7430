from __future__ import annotations

import logging
import os
import signal
import threading
import time

import RNS

from .codec import encode
from .config import HubRuntimeConfig
from .messages import MessageHelper, Outgoing
from .notifier import Notifier, NotifyHTTPServer
from .roster import Roster
from .router import MessageRouter
from .session import SessionManager
from .stats import StatsManager
from .util import expand_path, fmt_link_id


class HubService:
    def __init__(self, config: HubRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("rosterd.hub")

        # Sessions and the roster are touched from Reticulum callbacks, the
        # notify HTTP threads and the announce thread. Guard them with a
        # single re-entrant lock.
        self._state_lock = threading.RLock()

        self._shutdown = threading.Event()

        self.roster = Roster(self._state_lock)
        self.stats_manager = StatsManager(self._state_lock)
        self.message_helper = MessageHelper(self)
        self.session_manager = SessionManager(self)
        self.router = MessageRouter(self)
        self.notifier = Notifier(self)

        self.identity: RNS.Identity | None = None
        self.destination: RNS.Destination | None = None

        self._notify_server: NotifyHTTPServer | None = None
        self._announce_thread: threading.Thread | None = None

        # Links refused during admission; torn down once their ERROR is sent.
        self._teardown_queue: list[RNS.Link] = []

    @property
    def src_hash(self) -> bytes:
        if self.identity is None:
            return b""
        return bytes(self.identity.hash)

    def start(self) -> None:
        self.log.info("Starting Reticulum")
        self.stats_manager.set_start_time()
        RNS.Reticulum(configdir=self.config.configdir, require_shared_instance=False)

        if not self.config.identity_path:
            raise RuntimeError("identity_path is not set")
        self.identity = self._load_identity(self.config.identity_path)

        parts = [p for p in str(self.config.dest_name).split(".") if p]
        if not parts:
            raise ValueError("dest_name must not be empty")
        app_name, aspects = parts[0], parts[1:]

        self.destination = RNS.Destination(
            self.identity,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            app_name,
            *aspects,
        )
        self.destination.set_link_established_callback(self._on_link)

        if self.config.announce_on_start:
            self._announce_once()

        if self.config.announce_period_s and self.config.announce_period_s > 0:
            self._announce_thread = threading.Thread(
                target=self._announce_loop,
                name="rosterd-announce",
                daemon=True,
            )
            self._announce_thread.start()

        self.log.info(
            "Hub running dest_name=%s dest_hash=%s",
            self.config.dest_name,
            self.destination.hash.hex() if self.destination else "-",
        )
        self.log.info(
            "Policy user_id range=[%s, %s]",
            self.config.min_user_id,
            self.config.max_user_id,
        )

        if self.config.notify_enabled:
            self._notify_server = NotifyHTTPServer(
                self, self.config.notify_host, self.config.notify_port
            )
            self._notify_server.start()

    def _announce_once(self) -> None:
        if self.destination is None:
            return
        try:
            self.destination.announce(
                app_data=encode({"proto": "rosterd", "v": 1, "hub": self.config.hub_name})
            )
            self.stats_manager.inc("announces")
        except Exception:
            self.log.exception("Announce failed")

    def _announce_loop(self) -> None:
        while not self._shutdown.is_set():
            period = float(self.config.announce_period_s)
            if self._shutdown.wait(period if period > 0 else 1.0):
                break
            if period > 0:
                self._announce_once()

    def run_forever(self) -> None:
        if self.destination is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()

        if self._notify_server is not None:
            self._notify_server.stop()
            self._notify_server = None

        with self._state_lock:
            links = self.session_manager.clear_all()
            self.roster.clear()
            self._teardown_queue.clear()

        for link in links:
            try:
                link.teardown()
            except Exception:
                self.log.debug("Teardown failed link_id=%s", fmt_link_id(link), exc_info=True)

        self.log.info("Hub stopped\n%s", self.format_stats())

    def _load_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if not os.path.exists(p):
            raise RuntimeError(f"Identity not found at {p}")
        ident = RNS.Identity.from_file(p)
        if ident is None:
            raise RuntimeError(f"Failed to load identity from {p}")
        return ident

    def format_stats(self) -> str:
        with self._state_lock:
            sessions = self.session_manager.get_stats()
            roster = self.roster.snapshot()
        return self.stats_manager.format_stats(sessions=sessions, roster=roster)

    def _on_link(self, link: RNS.Link) -> None:
        with self._state_lock:
            self.session_manager.on_link_established(link)

        link.set_packet_callback(lambda data, pkt: self._on_packet(link, data))
        link.set_link_closed_callback(lambda closed_link: self._on_close(closed_link))

        self.log.info("Link established link_id=%s", fmt_link_id(link))

    def _on_packet(self, link: RNS.Link, data: bytes) -> None:
        # Packet callbacks can occur concurrently with other link callbacks and
        # the notify threads. Keep state mutations under the shared lock, but
        # avoid holding the lock while sending packets via RNS.
        outgoing: Outgoing = []
        with self._state_lock:
            self.router.route_packet(link, data, outgoing)
            to_teardown = self._teardown_queue
            self._teardown_queue = []

        self.message_helper.transmit(outgoing)

        for dead in to_teardown:
            try:
                dead.teardown()
            except Exception:
                self.log.debug("Teardown failed link_id=%s", fmt_link_id(dead), exc_info=True)

    def _schedule_teardown(self, link: RNS.Link) -> None:
        """Queue a link to be torn down after the current frames are sent.

        Must be called with state lock held.
        """
        self._teardown_queue.append(link)

    def _on_close(self, link: RNS.Link) -> None:
        # Both phases under one lock hold, so no admission can snapshot the
        # roster while the departing id is still in it.
        outgoing: Outgoing = []
        with self._state_lock:
            self.session_manager.on_link_closing(link)
            sess = self.session_manager.on_link_closed(link, outgoing)

        if sess is None:
            self.log.debug("Link closed link_id=%s (no session)", fmt_link_id(link))
        self.message_helper.transmit(outgoing)

    def _transmit(self, link: RNS.Link, payload: bytes) -> bool:
        """Send one frame. Failures are logged and reported, never raised."""
        try:
            RNS.Packet(link, payload).send()
        except OSError as e:
            # Common failure mode on low-MTU links: packet too large.
            self.stats_manager.inc("send_failures")
            self.log.warning(
                "Send failed link_id=%s bytes=%s err=%s",
                fmt_link_id(link),
                len(payload),
                e,
            )
            return False
        except Exception:
            self.stats_manager.inc("send_failures")
            self.log.debug(
                "Send failed link_id=%s bytes=%s",
                fmt_link_id(link),
                len(payload),
                exc_info=True,
            )
            return False
        self.stats_manager.inc("bytes_out", len(payload))
        return True
