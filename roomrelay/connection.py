"""Per-connection state for the relay.

The core never touches a transport object directly. Each live client session
is represented by a :class:`ConnectionState` that holds the relay-side state
(identity, joined rooms) and a :class:`Connection` capability used to talk to
the client.
"""

from __future__ import annotations

import enum
import itertools
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

_ids = itertools.count(1)


@runtime_checkable
class Connection(Protocol):
    """Transport capability consumed by the relay core."""

    def send(self, payload: bytes) -> None: ...

    def is_open(self) -> bool: ...

    def close(self) -> None: ...


class Phase(str, enum.Enum):
    UNIDENTIFIED = "unidentified"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(eq=False)
class ConnectionState:
    """
    Relay-side record of one client session.

    Must only be read or mutated with the relay state lock held.
    Instances hash by identity so they can be stored in member sets.
    """

    transport: Connection
    conn_id: str = field(default_factory=lambda: f"c{next(_ids)}")
    identity: str | None = None
    joined_rooms: set[str] = field(default_factory=set)
    closed: bool = False

    @property
    def phase(self) -> Phase:
        if self.closed:
            return Phase.CLOSED
        if self.identity is None:
            return Phase.UNIDENTIFIED
        return Phase.ACTIVE

    def is_deliverable(self) -> bool:
        if self.closed:
            return False
        try:
            return bool(self.transport.is_open())
        except Exception:
            return False

    def describe(self) -> str:
        return f"{self.conn_id}({self.identity or '-'})"
