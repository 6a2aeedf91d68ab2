from __future__ import annotations

import os

from .constants import IDENTITY_MAX_CHARS


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def _clean_name(value, max_chars: int) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_chars > 0 and len(s) > int(max_chars):
        return None

    # Embedded newlines or NUL break client rendering and log lines.
    if "\n" in s or "\r" in s or "\x00" in s:
        return None

    try:
        s.encode("utf-8", "strict")
    except UnicodeError:
        return None

    return s


def normalize_identity(value, *, max_chars: int = IDENTITY_MAX_CHARS) -> str | None:
    return _clean_name(value, max_chars)


def normalize_room(value, *, max_len: int = 0) -> str | None:
    """Validate a room name.

    Room names are case-sensitive keys, so surrounding whitespace is the only
    thing rejected here; the name itself is returned unchanged.
    """
    s = _clean_name(value, max_len)
    if s is None or s != value:
        return None
    return s


def identity_key(identity: str) -> str:
    return identity.strip().lower()
