"""Statistics tracking and reporting for the relay."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import RelayService


class StatsManager:
    """
    Manages relay statistics collection and reporting.

    Tracks counters for:
    - Frames and bytes in/out
    - Joins, leaves and duplicate-login rejections
    - Messages, reactions and typing updates relayed
    - Errors sent and failed or skipped deliveries
    """

    def __init__(self, relay: RelayService) -> None:
        self.relay = relay

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "frames_in": 0,
            "frames_bad": 0,
            "bytes_in": 0,
            "bytes_out": 0,
            "joins": 0,
            "leaves": 0,
            "duplicate_logins": 0,
            "messages_relayed": 0,
            "reactions_relayed": 0,
            "typing_updates": 0,
            "errors_sent": 0,
            "sends_failed": 0,
            "sends_skipped": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        """Increment a counter by the given delta."""
        with self.relay._state_lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self.relay._state_lock:
            return int(self._counters.get(key, 0))

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        started_mono = self.started_monotonic
        uptime_s = (time.monotonic() - started_mono) if started_mono is not None else 0.0

        with self.relay._state_lock:
            session_stats = self.relay.session_manager.get_stats()
            room_stats = self.relay.room_registry.get_stats()
            c = dict(self._counters)

        lines: list[str] = []
        lines.append(f"roomrelay {__version__} stats")
        lines.append(f"uptime_s={uptime_s:.1f}")
        lines.append(
            f"connections_total={session_stats['total']} "
            f"connections_identified={session_stats['identified']}"
        )
        lines.append(
            f"rooms={room_stats['rooms_total']} memberships={room_stats['memberships']}"
        )

        top_rooms = room_stats["top_rooms"]
        if top_rooms:
            lines.append("top_rooms=" + ", ".join(f"{r}:{n}" for r, n in top_rooms))

        lines.append(
            "io: frames_in={} frames_bad={} bytes_in={} bytes_out={}".format(
                c.get("frames_in", 0),
                c.get("frames_bad", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
            )
        )
        lines.append(
            "events: joins={} leaves={} duplicate_logins={} messages={} reactions={} typing={}".format(
                c.get("joins", 0),
                c.get("leaves", 0),
                c.get("duplicate_logins", 0),
                c.get("messages_relayed", 0),
                c.get("reactions_relayed", 0),
                c.get("typing_updates", 0),
            )
        )
        lines.append(
            "delivery: errors_sent={} sends_failed={} sends_skipped={}".format(
                c.get("errors_sent", 0),
                c.get("sends_failed", 0),
                c.get("sends_skipped", 0),
            )
        )

        return "\n".join(lines)
