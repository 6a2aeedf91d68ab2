from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .connection import ConnectionState
from .constants import (
    F_CONTENT,
    F_EMOJI,
    F_REPLY,
    F_ROOM,
    F_SENDER,
    F_TARGET,
    F_TIMESTAMP,
    F_TYPING_USERS,
    F_USERS,
    T_MESSAGE,
    T_PRESENCE,
    T_REACTION,
    T_TYPING,
)
from .envelope import make_event, now_ms
from .messages import Outbox
from .rooms import RoomRegistry
from .typing_registry import TypingRegistry

if TYPE_CHECKING:
    from .service import RelayService


class BroadcastEngine:
    """
    Delivers events to the members of a room.

    Every broadcast takes one snapshot of the member set and encodes the
    event once. Members that are closed or whose transport is not open are
    skipped. Must be called with the state lock held; frames are only queued
    here and sent when the outbox is flushed.
    """

    def __init__(
        self, relay: RelayService, rooms: RoomRegistry, typing: TypingRegistry
    ) -> None:
        self.relay = relay
        self.rooms = rooms
        self.typing = typing
        self.log = logging.getLogger("roomrelay.broadcast")

    def broadcast(
        self,
        outbox: Outbox,
        room: str,
        event: dict,
        *,
        exclude: ConnectionState | None = None,
    ) -> int:
        """Queue `event` for every deliverable member of `room` but `exclude`.

        A missing room is not an error. Returns the number of recipients.
        """
        if room not in self.rooms:
            return 0

        members = self.rooms.get_room_members(room)
        payload = None
        recipients = 0
        for member in members:
            if member is exclude:
                continue
            if not member.is_deliverable():
                self.relay.stats_manager.inc("sends_skipped")
                continue
            if payload is None:
                payload = self.relay.message_helper.encode_event(event)
            outbox.queue(member, payload)
            recipients += 1

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Broadcast t=%s room=%r recipients=%s members=%s",
                event.get("type"),
                room,
                recipients,
                len(members),
            )
        return recipients

    def relay_message(
        self,
        outbox: Outbox,
        sender: ConnectionState,
        room: str,
        content: str,
        *,
        timestamp: int | float | None = None,
        reply: str | None = None,
    ) -> bool:
        if not self.rooms.is_member(room, sender) or sender.identity is None:
            return False

        event = make_event(
            T_MESSAGE,
            **{
                F_ROOM: room,
                F_SENDER: sender.identity,
                F_CONTENT: content,
                F_TIMESTAMP: timestamp if timestamp is not None else now_ms(),
                F_REPLY: reply,
            },
        )
        self.broadcast(outbox, room, event, exclude=sender)
        self.relay.stats_manager.inc("messages_relayed")
        return True

    def relay_reaction(
        self,
        outbox: Outbox,
        sender: ConnectionState,
        room: str,
        target: str,
        emoji: str,
        *,
        timestamp: int | float | None = None,
    ) -> bool:
        if not self.rooms.is_member(room, sender) or sender.identity is None:
            return False

        event = make_event(
            T_REACTION,
            **{
                F_ROOM: room,
                F_SENDER: sender.identity,
                F_TARGET: target,
                F_EMOJI: emoji,
                F_TIMESTAMP: timestamp if timestamp is not None else now_ms(),
            },
        )
        self.broadcast(outbox, room, event, exclude=sender)
        self.relay.stats_manager.inc("reactions_relayed")
        return True

    def presence_snapshot(self, room: str) -> list[str]:
        """Identities of the connections currently joined to `room`."""
        return self.rooms.member_identities(room)

    def send_presence(
        self, outbox: Outbox, room: str, *, to: ConnectionState | None = None
    ) -> None:
        """Send the room's presence list to one connection, or to all members."""
        event = make_event(
            T_PRESENCE, **{F_ROOM: room, F_USERS: self.presence_snapshot(room)}
        )
        if to is None:
            self.broadcast(outbox, room, event)
        elif to.is_deliverable():
            self.relay.message_helper.queue_event(outbox, to, event)

    def send_typing(self, outbox: Outbox, room: str) -> None:
        event = make_event(
            T_TYPING,
            **{F_ROOM: room, F_TYPING_USERS: self.typing.typing_users(room)},
        )
        self.broadcast(outbox, room, event)
