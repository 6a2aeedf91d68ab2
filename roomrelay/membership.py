"""Room membership for the relay.

All join/leave/typing mutations of the room and typing registries go through
:class:`MembershipManager`, which also emits the notifications each change
implies. Every method must be called with the relay state lock held.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .broadcast import BroadcastEngine
from .connection import ConnectionState
from .constants import (
    F_ROOM,
    F_SENDER,
    REASON_DUPLICATE_LOGIN,
    SYS_JOINED,
    SYS_LEFT,
    T_USER_JOINED,
    T_USER_LEFT,
)
from .envelope import make_event
from .messages import Outbox
from .rooms import RoomRegistry
from .typing_registry import TypingRegistry
from .util import identity_key

if TYPE_CHECKING:
    from .service import RelayService


class MembershipManager:
    def __init__(
        self,
        relay: RelayService,
        rooms: RoomRegistry,
        typing: TypingRegistry,
        broadcaster: BroadcastEngine,
    ) -> None:
        self.relay = relay
        self.rooms = rooms
        self.typing = typing
        self.broadcaster = broadcaster
        self.log = logging.getLogger("roomrelay.membership")

    def join(
        self, outbox: Outbox, state: ConnectionState, room: str, identity: str
    ) -> bool:
        """
        Join `state` to `room` as `identity`.

        A join whose identity is already present in the room (the requester
        itself included) is rejected with a duplicate_login error and the
        requester is closed. So is a join under a new identity that is
        already taken in another room the requester belongs to. Joining a
        room the connection is already in only repeats the acknowledgement.

        Returns True if the connection is a member afterwards.
        """
        holder = self.rooms.find_identity(room, identity)
        if holder is None and not self.rooms.is_member(room, state):
            holder = self._holder_elsewhere(state, identity)
        if holder is not None:
            self._reject_duplicate(outbox, state, room, identity, holder)
            return False

        helper = self.relay.message_helper

        if self.rooms.is_member(room, state):
            self.log.debug(
                "Redundant JOIN conn=%s room=%r identity=%r",
                state.describe(),
                room,
                identity,
            )
            helper.emit_system(outbox, state, SYS_JOINED.format(room=room))
            return True

        renamed = state.identity is not None and state.identity != identity
        if renamed:
            self.typing.rename(state, identity)
        state.identity = identity
        if renamed:
            self._announce_rename(outbox, state)
        self.rooms.add_member(room, state)
        state.joined_rooms.add(room)
        self.relay.stats_manager.inc("joins")

        self.log.info(
            "JOIN conn=%s identity=%r room=%r members=%s",
            state.conn_id,
            identity,
            room,
            len(self.rooms.get_room_members(room)),
        )

        helper.emit_system(outbox, state, SYS_JOINED.format(room=room))
        self.broadcaster.broadcast(
            outbox,
            room,
            make_event(T_USER_JOINED, **{F_ROOM: room, F_SENDER: identity}),
            exclude=state,
        )
        self.broadcaster.send_presence(outbox, room)
        return True

    def _announce_rename(self, outbox: Outbox, state: ConnectionState) -> None:
        # Rooms the connection already belongs to show the new identity.
        typing_rooms = set(self.typing.rooms_for(state))
        for other in sorted(state.joined_rooms):
            if other in typing_rooms:
                self.broadcaster.send_typing(outbox, other)
            self.broadcaster.send_presence(outbox, other)

    def _holder_elsewhere(
        self, state: ConnectionState, identity: str
    ) -> ConnectionState | None:
        # A new identity also shows up in every room the connection is already in.
        if state.identity is None:
            return None
        if identity_key(state.identity) == identity_key(identity):
            return None
        for other in state.joined_rooms:
            holder = self.rooms.find_identity(other, identity)
            if holder is not None:
                return holder
        return None

    def _reject_duplicate(
        self,
        outbox: Outbox,
        state: ConnectionState,
        room: str,
        identity: str,
        holder: ConnectionState,
    ) -> None:
        self.relay.stats_manager.inc("duplicate_logins")
        self.log.info(
            "Rejecting duplicate identity conn=%s identity=%r room=%r held_by=%s",
            state.conn_id,
            identity,
            room,
            holder.conn_id,
        )
        self.relay.message_helper.emit_error(
            outbox,
            state,
            text=f"Identity {identity!r} is already in use in room {room!r}",
            reason=REASON_DUPLICATE_LOGIN,
        )
        state.closed = True
        self.force_leave_all(outbox, state)
        self.relay.forget(state)
        outbox.close_after_send(state)

    def leave(
        self,
        outbox: Outbox,
        state: ConnectionState,
        room: str,
        *,
        send_ack: bool = False,
    ) -> bool:
        """
        Remove `state` from `room` and notify the remaining members.

        Leaving a room the connection is not in does nothing at all.
        Returns True if the connection was a member.
        """
        if not self.rooms.remove_member(room, state):
            state.joined_rooms.discard(room)
            return False

        state.joined_rooms.discard(room)
        self.relay.stats_manager.inc("leaves")

        if self.typing.clear_typing(room, state) and room in self.typing:
            self.broadcaster.send_typing(outbox, room)

        if room in self.rooms:
            self.broadcaster.broadcast(
                outbox,
                room,
                make_event(T_USER_LEFT, **{F_ROOM: room, F_SENDER: state.identity}),
            )
            self.broadcaster.send_presence(outbox, room)

        self.log.info(
            "LEAVE conn=%s identity=%r room=%r remaining=%s",
            state.conn_id,
            state.identity,
            room,
            len(self.rooms.get_room_members(room)),
        )

        if send_ack and not state.closed:
            self.relay.message_helper.emit_system(outbox, state, SYS_LEFT.format(room=room))
        return True

    def force_leave_all(self, outbox: Outbox, state: ConnectionState) -> int:
        """
        Leave every room `state` belongs to and clear its identity.

        A failure while leaving one room is logged and the remaining rooms
        are still processed. Returns the number of rooms left.
        """
        left = 0
        for room in list(state.joined_rooms):
            try:
                if self.leave(outbox, state, room):
                    left += 1
            except Exception:
                self.log.exception(
                    "Cleanup failed conn=%s room=%r", state.describe(), room
                )

        for room in self.rooms.get_member_rooms(state):
            self.rooms.remove_member(room, state)
        for room in self.typing.rooms_for(state):
            self.typing.clear_typing(room, state)

        state.joined_rooms.clear()
        state.identity = None
        return left

    def set_typing(
        self, outbox: Outbox, state: ConnectionState, room: str, is_typing: bool
    ) -> bool:
        """Update the typing set of `room`; ignored for non-members."""
        if not self.rooms.is_member(room, state) or state.identity is None:
            return False

        if is_typing:
            self.typing.set_typing(room, state, state.identity)
        else:
            self.typing.clear_typing(room, state)

        self.relay.stats_manager.inc("typing_updates")
        self.broadcaster.send_typing(outbox, room)
        return True
