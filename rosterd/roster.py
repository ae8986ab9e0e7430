"""The live roster of admitted user ids."""

from __future__ import annotations

import threading


class Roster:
    """
    Ordered set of currently admitted user ids.

    Membership is kept in admission order. Every read and write takes
    ``lock``; callers that need a check-then-act sequence (admission's
    duplicate check plus insert) hold ``lock`` across both steps. The lock
    is re-entrant so the hub can pass in its shared state lock.
    """

    def __init__(self, lock: threading.RLock | None = None) -> None:
        self.lock = lock if lock is not None else threading.RLock()
        self._user_ids: list[int] = []

    def insert(self, user_id: int) -> None:
        """Append a user id. Uniqueness is checked by the caller under ``lock``."""
        with self.lock:
            self._user_ids.append(int(user_id))

    def remove(self, user_id: int) -> bool:
        """Remove the first matching entry. Returns False if it was absent."""
        with self.lock:
            try:
                self._user_ids.remove(int(user_id))
            except ValueError:
                return False
            return True

    def snapshot(self) -> list[int]:
        with self.lock:
            return list(self._user_ids)

    def clear(self) -> None:
        with self.lock:
            self._user_ids.clear()

    def __contains__(self, user_id: object) -> bool:
        with self.lock:
            return user_id in self._user_ids

    def __len__(self) -> int:
        with self.lock:
            return len(self._user_ids)
