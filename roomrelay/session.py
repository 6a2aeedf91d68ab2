from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .connection import Connection, ConnectionState
from .messages import Outbox

if TYPE_CHECKING:
    from .service import RelayService


class SessionManager:
    """
    Manages the connection lifecycle for the relay.

    This class is responsible for:
    - Creating connection state when a transport connects
    - Looking up connection state by id
    - Forcing a closed connection out of every room it joined
    - Clearing all sessions on shutdown
    """

    def __init__(self, relay: RelayService) -> None:
        self.relay = relay
        self.log = logging.getLogger("roomrelay.session")
        self.sessions: dict[str, ConnectionState] = {}

    def on_connect(self, transport: Connection) -> ConnectionState:
        """
        Register a newly connected transport.

        Must be called with state lock held.
        """
        state = ConnectionState(transport=transport)
        conn_id = getattr(transport, "conn_id", None)
        if isinstance(conn_id, str) and conn_id and conn_id not in self.sessions:
            state.conn_id = conn_id
        self.sessions[state.conn_id] = state
        self.log.info("Session created conn=%s", state.conn_id)
        return state

    def on_close(
        self, state: ConnectionState, outbox: Outbox
    ) -> tuple[str | None, int]:
        """
        Handle transport closure and cleanup.

        Returns:
            (identity, rooms_left) for logging
        Must be called with state lock held.
        """
        self.sessions.pop(state.conn_id, None)
        identity = state.identity
        state.closed = True
        rooms_left = self.relay.membership.force_leave_all(outbox, state)
        return identity, rooms_left

    def forget(self, state: ConnectionState) -> None:
        if self.sessions.get(state.conn_id) is state:
            del self.sessions[state.conn_id]

    def get_session(self, conn_id: str) -> ConnectionState | None:
        return self.sessions.get(conn_id)

    def clear_all(self) -> list[ConnectionState]:
        """
        Clear all sessions and return them for teardown.

        Must be called with state lock held.
        """
        states = list(self.sessions.values())
        self.sessions.clear()
        for state in states:
            state.closed = True
            state.joined_rooms.clear()
        return states

    def get_stats(self) -> dict[str, Any]:
        """Get session statistics for monitoring."""
        total = len(self.sessions)
        identified = sum(1 for s in self.sessions.values() if s.identity is not None)
        return {
            "total": total,
            "identified": identified,
        }
