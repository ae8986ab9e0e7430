from __future__ import annotations

import os


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def parse_user_id(value) -> int | None:
    """Parse a user id from a handshake query value or a routing directive.

    Accepts ints (not bools) and base-10 integer strings with surrounding
    whitespace. Returns None for anything else.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray)):
        try:
            value = bytes(value).decode("utf-8", "strict")
        except UnicodeError:
            return None
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None
    # int() also takes "1_0" and non-ASCII digits; only plain decimal is a claim.
    if s[0] in "+-":
        sign, digits = s[0], s[1:]
    else:
        sign, digits = "", s
    if not digits.isascii() or not digits.isdigit():
        return None
    return int(sign + digits)


def fmt_link_id(link) -> str:
    lid = getattr(link, "link_id", None)
    if isinstance(lid, (bytes, bytearray)):
        return bytes(lid).hex()
    h = getattr(link, "hash", None)
    if isinstance(h, (bytes, bytearray)):
        return bytes(h).hex()
    return "-"
