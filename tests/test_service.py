import threading

import cbor2
import RNS

from roomrelay import transport as transport_mod
from roomrelay.config import RelayRuntimeConfig
from roomrelay.service import RelayService


def test_closed_members_are_skipped(relay, client) -> None:
    a, b, c = client(), client(), client()
    a.join("lobby", "alice")
    b.join("lobby", "bob")
    c.join("lobby", "carol")
    b.conn.clear()
    c.conn.clear()
    b.conn.open = False

    a.send({"type": "message", "room": "lobby", "content": "hi"})

    assert b.conn.sent == []
    assert [m["content"] for m in c.events("message")] == ["hi"]
    assert relay.stats_manager.get("sends_skipped") >= 1


def test_failed_send_does_not_abort_broadcast(relay, client) -> None:
    a, b, c = client(), client(), client()
    a.join("lobby", "alice")
    b.join("lobby", "bob")
    c.join("lobby", "carol")
    c.conn.clear()
    b.conn.fail_sends = True

    a.send({"type": "message", "room": "lobby", "content": "hi"})

    assert [m["content"] for m in c.events("message")] == ["hi"]
    assert relay.stats_manager.get("sends_failed") == 1
    assert a.events("error") == []


def test_duplicate_login_error_sent_before_close(client) -> None:
    a, b = client(), client()
    a.join("lobby", "alice")

    closed_with: list[int] = []
    real_close = b.conn.close

    def close() -> None:
        closed_with.append(len(b.conn.sent))
        real_close()

    b.conn.close = close
    b.join("lobby", "alice")

    assert closed_with == [1]
    assert b.events()[0]["reason"] == "duplicate_login"


def test_rejected_connection_is_forgotten_even_if_close_fails(relay, client) -> None:
    a, b = client(), client()
    a.join("lobby", "alice")

    def close() -> None:
        raise OSError("already gone")

    b.conn.close = close
    b.join("lobby", "alice")

    assert b.events()[0]["reason"] == "duplicate_login"
    assert relay.session_manager.get_session(b.state.conn_id) is None
    assert relay.session_manager.get_session(a.state.conn_id) is a.state
    assert relay.session_manager.get_stats()["total"] == 1


def test_relays_are_independent() -> None:
    r1 = RelayService(RelayRuntimeConfig())
    r2 = RelayService(RelayRuntimeConfig())

    class Conn:
        def send(self, payload: bytes) -> None:
            pass

        def is_open(self) -> bool:
            return True

        def close(self) -> None:
            pass

    s1 = r1.connect(Conn())
    r1.receive(s1, b'{"type": "join", "room": "lobby", "sender": "alice"}')
    s2 = r2.connect(Conn())
    r2.receive(s2, b'{"type": "join", "room": "lobby", "sender": "alice"}')

    assert r1.room_registry.get_room_members("lobby") == {s1}
    assert r2.room_registry.get_room_members("lobby") == {s2}


def test_cbor_codec() -> None:
    relay = RelayService(RelayRuntimeConfig(codec="cbor"))

    class Conn:
        def __init__(self) -> None:
            self.sent: list[bytes] = []

        def send(self, payload: bytes) -> None:
            self.sent.append(payload)

        def is_open(self) -> bool:
            return True

        def close(self) -> None:
            pass

    ca, cb = Conn(), Conn()
    a, b = relay.connect(ca), relay.connect(cb)
    relay.receive(a, cbor2.dumps({"type": "join", "room": "lobby", "sender": "alice"}))
    relay.receive(b, cbor2.dumps({"type": "join", "room": "lobby", "sender": "bob"}))
    relay.receive(a, cbor2.dumps({"type": "message", "room": "lobby", "content": "hi"}))

    events = [cbor2.loads(p) for p in cb.sent]
    assert events[-1]["type"] == "message"
    assert events[-1]["content"] == "hi"

    relay.receive(a, b"\xff\xff")
    assert cbor2.loads(ca.sent[-1]) == {"type": "error", "message": "Invalid CBOR"}


def test_concurrent_joins_keep_identities_unique(relay, client) -> None:
    clients = [client() for _ in range(16)]
    names = ["alice", "ALICE", "bob", "Bob"] * 4
    barrier = threading.Barrier(len(clients))

    def run(c, name) -> None:
        barrier.wait()
        c.join("lobby", name)

    threads = [threading.Thread(target=run, args=(c, n)) for c, n in zip(clients, names)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(relay.room_registry.member_identities("lobby"), key=str.lower) in (
        ["alice", "bob"],
        ["alice", "Bob"],
        ["ALICE", "bob"],
        ["ALICE", "Bob"],
    )
    rejected = [c for c in clients if c.conn.close_calls]
    assert len(rejected) == 14


def test_stop_closes_everything(relay, client) -> None:
    a, b = client(), client()
    a.join("lobby", "alice")
    b.join("dev", "bob")
    a.send({"type": "typing", "room": "lobby", "typing": True})

    relay.stop()

    assert a.conn.close_calls == 1
    assert b.conn.close_calls == 1
    assert len(relay.room_registry) == 0
    assert "lobby" not in relay.typing_registry
    assert relay.session_manager.get_stats()["total"] == 0


def test_format_stats(relay, client) -> None:
    a = client()
    a.join("lobby", "alice")
    a.send({"type": "message", "room": "lobby", "content": "hi"})

    text = relay.stats_manager.format_stats()
    assert "rooms=1 memberships=1" in text
    assert "joins=1" in text
    assert "messages=1" in text
    assert "connections_total=1" in text


class _FakeLink:
    def __init__(self, link_id: bytes, mdu: int = 400) -> None:
        self.link_id = link_id
        self.MDU = mdu
        self.status = RNS.Link.ACTIVE
        self.packet_callback = None
        self.closed_callback = None
        self.resource_strategy = None
        self.teardowns = 0

    def set_resource_strategy(self, strategy) -> None:
        self.resource_strategy = strategy

    def set_packet_callback(self, cb) -> None:
        self.packet_callback = cb

    def set_link_closed_callback(self, cb) -> None:
        self.closed_callback = cb

    def teardown(self) -> None:
        self.teardowns += 1
        self.status = RNS.Link.CLOSED
        if self.closed_callback is not None:
            self.closed_callback(self)


class _Recorder:
    def __init__(self) -> None:
        self.packets: list[tuple[object, bytes]] = []
        self.resources: list[tuple[object, bytes]] = []

    def packet(self, link, payload):
        recorder = self

        class _Packet:
            def send(self):
                recorder.packets.append((link, payload))

        return _Packet()

    def resource(self, payload, link, **kwargs):
        self.resources.append((link, payload))


def test_reticulum_links_are_wired(relay, monkeypatch) -> None:
    rec = _Recorder()
    monkeypatch.setattr(transport_mod.RNS, "Packet", rec.packet)
    monkeypatch.setattr(transport_mod.RNS, "Resource", rec.resource)

    la, lb = _FakeLink(b"\x01" * 16), _FakeLink(b"\x02" * 16, mdu=20)
    relay._on_link(la)
    relay._on_link(lb)
    assert la.resource_strategy == RNS.Link.ACCEPT_NONE
    assert relay.session_manager.get_session(("01" * 16)) is not None

    la.packet_callback(b'{"type": "join", "room": "lobby", "sender": "alice"}', None)
    lb.packet_callback(b'{"type": "join", "room": "lobby", "sender": "bob"}', None)

    assert any(link is la for link, _ in rec.packets)
    # Frames larger than the link MDU go out as resources.
    assert rec.resources and all(link is lb for link, _ in rec.resources)

    lb.teardown()
    assert relay.room_registry.member_identities("lobby") == ["alice"]

    la.packet_callback(b'{"type": "join", "room": "lobby", "sender": "ALICE"}', None)
    assert la.teardowns == 1
    assert len(relay.room_registry) == 0


def test_rejected_link_is_dropped_without_close_callback(relay, monkeypatch) -> None:
    rec = _Recorder()
    monkeypatch.setattr(transport_mod.RNS, "Packet", rec.packet)

    la, lb = _FakeLink(b"\x03" * 16), _FakeLink(b"\x04" * 16)
    relay._on_link(la)
    relay._on_link(lb)

    def teardown() -> None:
        raise OSError("link gone")

    lb.teardown = teardown
    la.packet_callback(b'{"type": "join", "room": "lobby", "sender": "alice"}', None)
    lb.packet_callback(b'{"type": "join", "room": "lobby", "sender": "alice"}', None)

    assert lb not in relay._link_states
    assert la in relay._link_states
    assert relay.session_manager.get_session("04" * 16) is None
