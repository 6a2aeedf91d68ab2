from __future__ import annotations

import json

import pytest

from roomrelay.config import RelayRuntimeConfig
from roomrelay.service import RelayService


class FakeConnection:
    """In-memory stand-in for a transport connection."""

    def __init__(self, *, open_: bool = True, fail_sends: bool = False) -> None:
        self.open = open_
        self.fail_sends = fail_sends
        self.sent: list[bytes] = []
        self.close_calls = 0

    def send(self, payload: bytes) -> None:
        if self.fail_sends:
            raise OSError("link down")
        self.sent.append(payload)

    def is_open(self) -> bool:
        return self.open

    def close(self) -> None:
        self.close_calls += 1
        self.open = False

    def events(self, event_type: str | None = None) -> list[dict]:
        out = [json.loads(p) for p in self.sent]
        if event_type is None:
            return out
        return [e for e in out if e.get("type") == event_type]

    def clear(self) -> None:
        self.sent.clear()


class Client:
    """A connected fake client bound to a relay."""

    def __init__(self, relay: RelayService, **kwargs) -> None:
        self.relay = relay
        self.conn = FakeConnection(**kwargs)
        self.state = relay.connect(self.conn)

    def send(self, obj) -> None:
        data = obj if isinstance(obj, bytes) else json.dumps(obj).encode("utf-8")
        self.relay.receive(self.state, data)

    def join(self, room: str, sender: str) -> None:
        self.send({"type": "join", "room": room, "sender": sender})

    def disconnect(self) -> None:
        self.conn.open = False
        self.relay.disconnect(self.state)

    def events(self, event_type: str | None = None) -> list[dict]:
        return self.conn.events(event_type)


@pytest.fixture
def relay() -> RelayService:
    return RelayService(RelayRuntimeConfig())


@pytest.fixture
def client(relay):
    def factory(**kwargs) -> Client:
        return Client(relay, **kwargs)

    return factory
