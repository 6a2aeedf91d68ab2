"""Room membership registry.

Rooms exist only while they have members: a room is created by the first
join and dropped as soon as its last member leaves.
"""

from __future__ import annotations

import logging
from typing import Any

from .connection import ConnectionState
from .util import identity_key


class RoomRegistry:
    """Maps room names to the set of member connections."""

    def __init__(self) -> None:
        self.log = logging.getLogger("roomrelay.rooms")
        self.rooms: dict[str, set[ConnectionState]] = {}

    def __contains__(self, room: str) -> bool:
        return room in self.rooms

    def __len__(self) -> int:
        return len(self.rooms)

    def clear_all(self) -> None:
        """Clear all rooms. Called during relay shutdown."""
        self.rooms.clear()

    def get_room_members(self, room: str) -> set[ConnectionState]:
        """Get a snapshot of the connections currently in a room."""
        return set(self.rooms.get(room, ()))

    def is_member(self, room: str, state: ConnectionState) -> bool:
        return state in self.rooms.get(room, ())

    def add_member(self, room: str, state: ConnectionState) -> bool:
        """Add a connection to a room, creating the room if needed.

        Returns False if the connection was already a member.
        """
        members = self.rooms.get(room)
        if members is None:
            members = set()
            self.rooms[room] = members
            self.log.debug("Room created room=%r", room)
        if state in members:
            return False
        members.add(state)
        return True

    def remove_member(self, room: str, state: ConnectionState) -> bool:
        """Remove a connection from a room, dropping the room once empty.

        Returns False if the connection was not a member.
        """
        members = self.rooms.get(room)
        if members is None or state not in members:
            return False
        members.discard(state)
        if not members:
            self.rooms.pop(room, None)
            self.log.debug("Room deleted room=%r", room)
        return True

    def find_identity(self, room: str, identity: str) -> ConnectionState | None:
        """Return the member using `identity` (case-insensitive), if any."""
        key = identity_key(identity)
        for member in self.rooms.get(room, ()):
            if member.identity is not None and identity_key(member.identity) == key:
                return member
        return None

    def member_identities(self, room: str) -> list[str]:
        """Identities present in a room.

        Connections that have no identity yet are filtered out: unidentified
        connections never appear in presence lists.
        """
        identities = [
            m.identity for m in self.rooms.get(room, ()) if m.identity is not None
        ]
        return sorted(identities, key=lambda s: (identity_key(s), s))

    def get_member_rooms(self, state: ConnectionState) -> list[str]:
        """Get list of rooms a connection is currently in."""
        return [room for room, members in self.rooms.items() if state in members]

    def get_stats(self) -> dict[str, Any]:
        """Get room statistics for relay stats."""
        rooms_total = len(self.rooms)
        memberships = sum(len(v) for v in self.rooms.values())
        top_rooms = sorted(
            ((room, len(members)) for room, members in self.rooms.items()),
            key=lambda x: (-x[1], x[0]),
        )[:5]
        return {
            "rooms_total": rooms_total,
            "memberships": memberships,
            "top_rooms": top_rooms,
        }
