from __future__ import annotations

import logging
import os
import signal
import threading
import time

import RNS

from .broadcast import BroadcastEngine
from .codec import check_codec, encode
from .config import RelayRuntimeConfig
from .connection import Connection, ConnectionState
from .membership import MembershipManager
from .messages import MessageHelper, Outbox
from .rooms import RoomRegistry
from .router import MessageRouter
from .session import SessionManager
from .stats import StatsManager
from .transport import LinkConnection, fmt_link_id
from .typing_registry import TypingRegistry
from .util import expand_path


class RelayService:
    """
    Room relay: owns the registries and wires them to a transport.

    ``connect``/``receive``/``disconnect`` are the transport-facing entry
    points. ``start`` hosts them on a Reticulum destination, one connection
    per established link.
    """

    def __init__(self, config: RelayRuntimeConfig) -> None:
        check_codec(config.codec)
        self.config = config
        self.log = logging.getLogger("roomrelay.relay")

        # Shared mutable state (sessions, rooms, typing sets) is accessed from
        # Reticulum callbacks and background worker threads. Guard it with a
        # single re-entrant lock.
        self._state_lock = threading.RLock()

        self._shutdown = threading.Event()

        self.stats_manager = StatsManager(self)
        self.message_helper = MessageHelper(self)

        self.room_registry = RoomRegistry()
        self.typing_registry = TypingRegistry()
        self.broadcaster = BroadcastEngine(self, self.room_registry, self.typing_registry)
        self.membership = MembershipManager(
            self, self.room_registry, self.typing_registry, self.broadcaster
        )

        self.session_manager = SessionManager(self)
        self.router = MessageRouter(self)

        self.identity: RNS.Identity | None = None
        self.destination: RNS.Destination | None = None
        self._link_states: dict[RNS.Link, ConnectionState] = {}

        self._announce_thread: threading.Thread | None = None
        self._stats_thread: threading.Thread | None = None

    # Transport-facing entry points

    def connect(self, transport: Connection) -> ConnectionState:
        with self._state_lock:
            return self.session_manager.on_connect(transport)

    def receive(self, state: ConnectionState, data: bytes) -> None:
        # Keep state mutations under the shared lock, but avoid holding the
        # lock while sending.
        outbox = Outbox()
        with self._state_lock:
            try:
                self.router.route_frame(state, data, outbox)
            except Exception:
                self.log.exception(
                    "Failed to handle frame conn=%s bytes=%s",
                    state.describe(),
                    len(data),
                )

        if self.log.isEnabledFor(logging.DEBUG) and outbox.frames:
            self.log.debug(
                "Sending %d frame(s) for conn=%s", len(outbox.frames), state.conn_id
            )
        self.message_helper.flush(outbox)

    def disconnect(self, state: ConnectionState) -> None:
        outbox = Outbox()
        with self._state_lock:
            identity, rooms_left = self.session_manager.on_close(state, outbox)

        self.log.info(
            "Connection closed conn=%s identity=%r rooms=%s",
            state.conn_id,
            identity,
            rooms_left,
        )
        self.message_helper.flush(outbox)

    def forget(self, state: ConnectionState) -> None:
        """
        Drop every reference the relay keeps to a rejected connection.

        Must be called with state lock held.
        """
        self.session_manager.forget(state)
        for link in [lk for lk, s in self._link_states.items() if s is state]:
            del self._link_states[link]

    # Reticulum hosting

    def start(self) -> None:
        self.log.info("Starting Reticulum")
        self.stats_manager.set_start_time()
        RNS.Reticulum(configdir=self.config.configdir, require_shared_instance=False)

        if not self.config.identity_path:
            raise RuntimeError("identity_path is not set")
        self.identity = self._load_identity(self.config.identity_path)

        parts = [p for p in str(self.config.dest_name).split(".") if p]
        if not parts:
            raise ValueError("dest_name must not be empty")
        app_name, aspects = parts[0], parts[1:]

        self.destination = RNS.Destination(
            self.identity,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            app_name,
            *aspects,
        )
        self.destination.set_link_established_callback(self._on_link)

        if self.config.announce_on_start:
            self._announce_once()

        if self.config.announce_period_s and self.config.announce_period_s > 0:
            self._announce_thread = threading.Thread(
                target=self._announce_loop,
                name="roomrelay-announce",
                daemon=True,
            )
            self._announce_thread.start()

        if self.config.stats_log_interval_s and self.config.stats_log_interval_s > 0:
            self._stats_thread = threading.Thread(
                target=self._stats_loop,
                name="roomrelay-stats",
                daemon=True,
            )
            self._stats_thread.start()

        self.log.info(
            "Relay running dest_name=%s dest_hash=%s codec=%s",
            self.config.dest_name,
            self.destination.hash.hex() if self.destination else "-",
            self.config.codec,
        )
        self.log.info(
            "Policy identity_max_chars=%s max_rooms=%s max_room_name_len=%s",
            self.config.identity_max_chars,
            self.config.max_rooms_per_connection,
            self.config.max_room_name_len,
        )

    def _announce_once(self) -> None:
        if self.destination is None:
            return
        app_data = {
            "proto": "roomrelay",
            "codec": self.config.codec,
            "relay": self.config.relay_name,
        }
        try:
            self.destination.announce(app_data=encode(app_data, self.config.codec))
        except Exception:
            self.log.exception("Announce failed")

    def _announce_loop(self) -> None:
        period = float(self.config.announce_period_s)
        while not self._shutdown.wait(period):
            self._announce_once()

    def _stats_loop(self) -> None:
        interval = float(self.config.stats_log_interval_s)
        while not self._shutdown.wait(interval):
            self.log.info("%s", self.stats_manager.format_stats())

    def run_forever(self) -> None:
        if self.destination is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()

        self.log.info("%s", self.stats_manager.format_stats())

        with self._state_lock:
            states = self.session_manager.clear_all()
            self.room_registry.clear_all()
            self.typing_registry.clear_all()
            self._link_states.clear()

        for state in states:
            try:
                state.transport.close()
            except Exception:
                self.log.debug("Close failed conn=%s", state.conn_id, exc_info=True)

    def _load_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if not os.path.exists(p):
            raise RuntimeError(f"Identity not found at {p}")
        ident = RNS.Identity.from_file(p)
        if ident is None:
            raise RuntimeError(f"Failed to load identity from {p}")
        return ident

    def _on_link(self, link: RNS.Link) -> None:
        conn = LinkConnection(
            link,
            enable_resource_transfer=self.config.enable_resource_transfer,
            max_resource_bytes=self.config.max_resource_bytes,
        )
        state = self.connect(conn)
        with self._state_lock:
            self._link_states[link] = state

        link.set_resource_strategy(RNS.Link.ACCEPT_NONE)
        link.set_packet_callback(lambda data, pkt: self.receive(state, data))
        link.set_link_closed_callback(lambda closed_link: self._on_close(closed_link))

        self.log.info("Link established link_id=%s conn=%s", fmt_link_id(link), state.conn_id)

    def _on_close(self, link: RNS.Link) -> None:
        with self._state_lock:
            state = self._link_states.pop(link, None)
        if state is not None:
            self.disconnect(state)
