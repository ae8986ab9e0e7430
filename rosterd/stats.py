"""Statistics tracking and reporting for the hub."""

from __future__ import annotations

import threading
import time


class StatsManager:
    """
    Thread-safe lifetime counters for the hub.

    Tracks:
    - Bytes and packets in/out
    - Admissions, refusals and departures
    - Chat deliveries by routing mode
    - System notifications
    - Announces
    """

    def __init__(self, lock: threading.RLock | None = None) -> None:
        self._lock = lock if lock is not None else threading.RLock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "bytes_in": 0,
            "bytes_out": 0,
            "pkts_in": 0,
            "pkts_bad": 0,
            "send_failures": 0,
            "errors_sent": 0,
            "admissions": 0,
            "refusals": 0,
            "departures": 0,
            "msgs_broadcast": 0,
            "msgs_self": 0,
            "msgs_private": 0,
            "msgs_dropped": 0,
            "notifications": 0,
            "announces": 0,
        }

    def set_start_time(self) -> None:
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self, *, sessions: dict[str, int], roster: list[int]) -> str:
        """Format current statistics as a human-readable multi-line string."""
        from . import __version__

        started_mono = self.started_monotonic
        uptime_s = (time.monotonic() - started_mono) if started_mono is not None else 0.0
        c = self.snapshot()

        lines: list[str] = []
        lines.append(f"rosterd {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(
            f"sessions_total={sessions.get('total', 0)} "
            f"sessions_pending={sessions.get('pending', 0)} "
            f"sessions_active={sessions.get('active', 0)}"
        )
        lines.append("roster=" + ",".join(str(u) for u in roster))
        lines.append(
            "io: pkts_in={} pkts_bad={} bytes_in={} bytes_out={} send_failures={}".format(
                c.get("pkts_in", 0),
                c.get("pkts_bad", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
                c.get("send_failures", 0),
            )
        )
        lines.append(
            "presence: admissions={} refusals={} departures={}".format(
                c.get("admissions", 0),
                c.get("refusals", 0),
                c.get("departures", 0),
            )
        )
        lines.append(
            "messages: broadcast={} self={} private={} dropped={} system={} errors_sent={}".format(
                c.get("msgs_broadcast", 0),
                c.get("msgs_self", 0),
                c.get("msgs_private", 0),
                c.get("msgs_dropped", 0),
                c.get("notifications", 0),
                c.get("errors_sent", 0),
            )
        )
        lines.append(f"announces={c.get('announces', 0)}")

        return "\n".join(lines)
