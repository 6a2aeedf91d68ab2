from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .codec import DecodeError, codec_label, decode
from .connection import ConnectionState, Phase
from .constants import (
    ERR_INVALID_FORMAT,
    ERR_UNKNOWN_TYPE,
    F_CONTENT,
    F_EMOJI,
    F_REPLY,
    F_ROOM,
    F_SENDER,
    F_TARGET,
    F_TIMESTAMP,
    F_TYPING,
    T_JOIN,
    T_LEAVE,
    T_MESSAGE,
    T_PRESENCE_REQUEST,
    T_REACTION,
    T_TYPING,
)
from .envelope import (
    bool_field,
    envelope_type,
    number_field,
    str_field,
    validate_envelope,
)
from .messages import Outbox
from .util import normalize_identity, normalize_room

if TYPE_CHECKING:
    from .service import RelayService


class MessageRouter:
    """
    Handles inbound frame routing for the relay.

    This class is responsible for:
    - Decoding and validating incoming frames
    - Dispatching requests by type (join, leave, message, reaction, typing,
      presence_request)
    - Enforcing the per-connection state machine: requests that need room
      membership are dropped for non-members
    - Replying with protocol errors for undecodable frames and unknown types

    Requests with missing or malformed fields are dropped without a reply.
    """

    def __init__(self, relay: RelayService) -> None:
        self.relay = relay
        self.log = logging.getLogger("roomrelay.router")
        self._handlers = {
            T_JOIN: self._handle_join,
            T_LEAVE: self._handle_leave,
            T_MESSAGE: self._handle_message,
            T_REACTION: self._handle_reaction,
            T_TYPING: self._handle_typing,
            T_PRESENCE_REQUEST: self._handle_presence_request,
        }

    def route_frame(self, state: ConnectionState, data: bytes, outbox: Outbox) -> None:
        """
        Main entry point for routing an inbound frame.

        This method should be called with the state lock held.
        """
        if state.phase is Phase.CLOSED:
            return

        stats = self.relay.stats_manager
        stats.inc("frames_in")
        stats.inc("bytes_in", len(data))

        try:
            env = decode(data, self.relay.config.codec)
            validate_envelope(env)
        except (DecodeError, TypeError, ValueError) as e:
            stats.inc("frames_bad")
            self.log.debug(
                "Bad frame conn=%s bytes=%s err=%s", state.describe(), len(data), e
            )
            label = codec_label(self.relay.config.codec)
            self.relay.message_helper.emit_error(
                outbox, state, text=ERR_INVALID_FORMAT.format(label=label)
            )
            return

        t = envelope_type(env)
        if t is None:
            self._drop(state, env, "missing type")
            return

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX conn=%s phase=%s t=%s room=%r bytes=%s",
                state.describe(),
                state.phase.value,
                t,
                env.get(F_ROOM),
                len(data),
            )

        handler = self._handlers.get(t)
        if handler is None:
            self.relay.message_helper.emit_error(outbox, state, text=ERR_UNKNOWN_TYPE)
            return

        handler(state, env, outbox)

    def _drop(self, state: ConnectionState, env: dict, why: str) -> None:
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Dropped conn=%s t=%r room=%r: %s",
                state.describe(),
                env.get("type"),
                env.get(F_ROOM),
                why,
            )

    def _room(self, state: ConnectionState, env: dict) -> str | None:
        room = normalize_room(
            env.get(F_ROOM), max_len=int(self.relay.config.max_room_name_len)
        )
        if room is None:
            self._drop(state, env, "invalid room")
        return room

    def _member_room(self, state: ConnectionState, env: dict) -> str | None:
        room = self._room(state, env)
        if room is None:
            return None
        if room not in state.joined_rooms:
            self._drop(state, env, "not a member")
            return None
        return room

    def _handle_join(self, state: ConnectionState, env: dict, outbox: Outbox) -> None:
        room = self._room(state, env)
        if room is None:
            return

        identity = normalize_identity(
            env.get(F_SENDER), max_chars=int(self.relay.config.identity_max_chars)
        )
        if identity is None:
            self._drop(state, env, "invalid sender")
            return

        max_rooms = int(self.relay.config.max_rooms_per_connection)
        if (
            max_rooms > 0
            and room not in state.joined_rooms
            and len(state.joined_rooms) >= max_rooms
        ):
            self._drop(state, env, "too many rooms")
            return

        self.relay.membership.join(outbox, state, room, identity)

    def _handle_leave(self, state: ConnectionState, env: dict, outbox: Outbox) -> None:
        room = self._room(state, env)
        if room is None:
            return
        self.relay.membership.leave(outbox, state, room, send_ack=True)

    def _handle_message(self, state: ConnectionState, env: dict, outbox: Outbox) -> None:
        room = self._member_room(state, env)
        if room is None:
            return

        content = str_field(env, F_CONTENT)
        if not content:
            self._drop(state, env, "missing content")
            return

        reply = env.get(F_REPLY)
        if reply is not None and not isinstance(reply, str):
            self._drop(state, env, "invalid reply")
            return

        timestamp = None
        if env.get(F_TIMESTAMP) is not None:
            timestamp = number_field(env, F_TIMESTAMP)
            if timestamp is None:
                self._drop(state, env, "invalid timestamp")
                return

        self.relay.broadcaster.relay_message(
            outbox, state, room, content, timestamp=timestamp, reply=reply
        )

    def _handle_reaction(self, state: ConnectionState, env: dict, outbox: Outbox) -> None:
        room = self._member_room(state, env)
        if room is None:
            return

        target = str_field(env, F_TARGET)
        emoji = str_field(env, F_EMOJI)
        if target is None or emoji is None:
            self._drop(state, env, "missing target or emoji")
            return

        timestamp = None
        if env.get(F_TIMESTAMP) is not None:
            timestamp = number_field(env, F_TIMESTAMP)
            if timestamp is None:
                self._drop(state, env, "invalid timestamp")
                return

        self.relay.broadcaster.relay_reaction(
            outbox, state, room, target, emoji, timestamp=timestamp
        )

    def _handle_typing(self, state: ConnectionState, env: dict, outbox: Outbox) -> None:
        room = self._member_room(state, env)
        if room is None:
            return

        is_typing = bool_field(env, F_TYPING)
        if is_typing is None:
            self._drop(state, env, "invalid typing flag")
            return

        self.relay.membership.set_typing(outbox, state, room, is_typing)

    def _handle_presence_request(
        self, state: ConnectionState, env: dict, outbox: Outbox
    ) -> None:
        room = self._member_room(state, env)
        if room is None:
            return
        self.relay.broadcaster.send_presence(outbox, room, to=state)
