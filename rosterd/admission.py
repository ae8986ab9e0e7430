"""Identity admission: validate and reserve a user id for a new link."""

from __future__ import annotations

from typing import Any

from .constants import DEFAULT_MAX_USER_ID, DEFAULT_MIN_USER_ID, Q_USER_ID
from .roster import Roster
from .util import parse_user_id


class AdmissionError(Exception):
    """A connection attempt was refused before a session became active."""

    @property
    def refusal(self) -> str:
        return f"Unknown user. ({self})"


class MissingClaim(AdmissionError):
    def __init__(self) -> None:
        super().__init__("No user_id.")


class InvalidClaim(AdmissionError):
    def __init__(self, min_user_id: int, max_user_id: int) -> None:
        super().__init__(f"user_id < {min_user_id} || user_id > {max_user_id}.")


class DuplicateClaim(AdmissionError):
    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        super().__init__("User ID 重覆.")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, bytearray)):
        return not value.strip()
    return False


def admit(
    query: Any,
    roster: Roster,
    *,
    min_user_id: int = DEFAULT_MIN_USER_ID,
    max_user_id: int = DEFAULT_MAX_USER_ID,
) -> int:
    """
    Validate the ``user_id`` claim in a handshake query and reserve it.

    On success the user id has been inserted into ``roster`` and is
    returned. The duplicate check and the insert happen under the roster
    lock, so two concurrent handshakes for the same id cannot both pass.
    Broadcasting the new roster is left to the caller.

    Raises:
        MissingClaim: no ``user_id`` in the query.
        InvalidClaim: not an integer, or outside the inclusive bounds.
        DuplicateClaim: the id is already in the roster.
    """
    if not isinstance(query, dict) or _is_blank(query.get(Q_USER_ID)):
        raise MissingClaim()

    user_id = parse_user_id(query[Q_USER_ID])
    if user_id is None or user_id < min_user_id or user_id > max_user_id:
        raise InvalidClaim(min_user_id, max_user_id)

    with roster.lock:
        if user_id in roster:
            raise DuplicateClaim(user_id)
        roster.insert(user_id)

    return user_id
