"""Message queueing and delivery utilities for the relay."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .codec import encode
from .connection import ConnectionState
from .constants import F_CONTENT, F_MESSAGE, F_REASON, T_ERROR, T_SYSTEM
from .envelope import make_event

if TYPE_CHECKING:
    from .service import RelayService


@dataclass
class Outbox:
    """
    Frames and closes produced while handling one event.

    Filled with the state lock held and flushed after it is released, so a
    slow transport never holds up event handling.
    """

    frames: list[tuple[ConnectionState, bytes]] = field(default_factory=list)
    closes: list[ConnectionState] = field(default_factory=list)

    def queue(self, state: ConnectionState, payload: bytes) -> None:
        self.frames.append((state, payload))

    def close_after_send(self, state: ConnectionState) -> None:
        if state not in self.closes:
            self.closes.append(state)


class MessageHelper:
    """
    Helper methods for building, queueing and sending events.

    Handles:
    - Event encoding with the configured codec
    - System acknowledgements and error emission
    - Best-effort delivery of a flushed outbox
    """

    def __init__(self, relay: RelayService) -> None:
        self.relay = relay
        self.log = logging.getLogger("roomrelay.messages")

    def encode_event(self, event: dict) -> bytes:
        return encode(event, self.relay.config.codec)

    def queue_event(self, outbox: Outbox, state: ConnectionState, event: dict) -> None:
        """Encode and queue an event for a single connection."""
        outbox.queue(state, self.encode_event(event))

    def emit_system(self, outbox: Outbox, state: ConnectionState, text: str) -> None:
        self.queue_event(outbox, state, make_event(T_SYSTEM, **{F_CONTENT: text}))

    def emit_error(
        self,
        outbox: Outbox,
        state: ConnectionState,
        *,
        text: str,
        reason: str | None = None,
    ) -> None:
        """Queue an error event."""
        self.relay.stats_manager.inc("errors_sent")
        fields: dict[str, object] = {F_MESSAGE: text}
        if reason is not None:
            fields[F_REASON] = reason
        self.queue_event(outbox, state, make_event(T_ERROR, **fields))

    def flush(self, outbox: Outbox) -> None:
        """
        Deliver queued frames, then run deferred closes.

        Must be called without the state lock held. Every send is
        independent: a failure is logged and counted, never raised.
        """
        for state, payload in outbox.frames:
            self.send(state, payload)

        for state in outbox.closes:
            try:
                state.transport.close()
            except Exception:
                self.log.debug("Close failed conn=%s", state.describe(), exc_info=True)

    def send(self, state: ConnectionState, payload: bytes) -> bool:
        try:
            open_ = bool(state.transport.is_open())
        except Exception:
            open_ = False
        if not open_:
            self.relay.stats_manager.inc("sends_skipped")
            return False

        try:
            state.transport.send(payload)
        except Exception:
            self.relay.stats_manager.inc("sends_failed")
            self.log.debug(
                "Send failed conn=%s bytes=%s",
                state.describe(),
                len(payload),
                exc_info=True,
            )
            return False

        self.relay.stats_manager.inc("bytes_out", len(payload))
        return True
