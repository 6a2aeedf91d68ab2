from __future__ import annotations

import logging

from .connection import ConnectionState
from .util import identity_key


class TypingRegistry:
    """
    Tracks which members of each room are currently typing.

    Entries are keyed by connection and remember the identity they were
    recorded under, so a connection's entries can always be cleared even if
    its identity changed in the meantime. A room's typing set exists only
    while it has at least one entry.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("roomrelay.typing")
        self._typing: dict[str, dict[ConnectionState, str]] = {}

    def __contains__(self, room: str) -> bool:
        return room in self._typing

    def clear_all(self) -> None:
        self._typing.clear()

    def set_typing(self, room: str, state: ConnectionState, identity: str) -> None:
        self._typing.setdefault(room, {})[state] = identity

    def clear_typing(self, room: str, state: ConnectionState) -> bool:
        """Remove a connection's entry. Returns True if one was removed."""
        entries = self._typing.get(room)
        if entries is None or state not in entries:
            return False
        entries.pop(state, None)
        if not entries:
            self._typing.pop(room, None)
        return True

    def rename(self, state: ConnectionState, identity: str) -> None:
        for entries in self._typing.values():
            if state in entries:
                entries[state] = identity

    def typing_users(self, room: str) -> list[str]:
        entries = self._typing.get(room, {})
        return sorted(set(entries.values()), key=lambda s: (identity_key(s), s))

    def rooms_for(self, state: ConnectionState) -> list[str]:
        return [room for room, entries in self._typing.items() if state in entries]
