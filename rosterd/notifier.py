"""System notifications injected from outside any session."""

from __future__ import annotations

import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlparse

if TYPE_CHECKING:
    from .messages import Outgoing
    from .service import HubService


class Notifier:
    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("rosterd.notify")

    def notify(self, text: str | None) -> int:
        """
        Broadcast ``From system: <text>`` to every active session.

        There is no sender; the message does not pass through the router.
        Returns the number of recipients the frame was queued for.
        """
        if not text:
            return 0

        outgoing: Outgoing = []
        with self.hub._state_lock:
            links = self.hub.session_manager.active_links()
            count = self.hub.message_helper.queue_text_many(
                outgoing, links, f"From system: {text}"
            )

        self.hub.stats_manager.inc("notifications")
        self.log.info("System notification recipients=%s chars=%s", count, len(text))
        self.hub.message_helper.transmit(outgoing)
        return count


class NotifyRequestHandler(BaseHTTPRequestHandler):
    server_version = "rosterd-notify/1.0"

    # Set on the server instance by NotifyHTTPServer.
    server: _HubHTTPServer

    def _send(self, code: int, body: str = "") -> None:
        data = body.encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        if data:
            self.wfile.write(data)
        self.wfile.flush()

    def do_GET(self):
        hub = self.server.hub
        try:
            u = urlparse(self.path)
            if u.path == "/notify":
                qs = parse_qs(u.query)
                msg = (qs.get("msg") or [""])[0]
                # Acknowledge before fan-out; the caller never waits on delivery.
                self._send(200)
                if msg:
                    hub.notifier.notify(msg)
                return
            if u.path == "/":
                self._send(200, f"{hub.config.hub_name} index")
                return
            if u.path == "/stats":
                self._send(200, hub.format_stats())
                return
            self._send(404, "not found")
        except Exception:
            logging.getLogger("rosterd.notify").exception("HTTP GET error")
            try:
                self._send(500, "server error")
            except OSError:
                pass

    def log_message(self, format, *args):
        logging.getLogger("rosterd.notify").debug(
            "%s - %s", self.address_string(), format % args
        )


class _HubHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, addr: tuple[str, int], hub: HubService) -> None:
        self.hub = hub
        super().__init__(addr, NotifyRequestHandler)


class NotifyHTTPServer:
    """The out-of-band HTTP trigger, served from a daemon thread."""

    def __init__(self, hub: HubService, host: str, port: int) -> None:
        self.hub = hub
        self.log = logging.getLogger("rosterd.notify")
        self._httpd = _HubHTTPServer((host, int(port)), hub)
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[str, int]:
        host, port = self._httpd.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._httpd.serve_forever, name="rosterd-notify", daemon=True
        )
        self._thread.start()
        host, port = self.address
        self.log.info("Notify endpoint listening on http://%s:%s", host, port)

    def stop(self) -> None:
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
