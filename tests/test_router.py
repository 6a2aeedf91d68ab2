import pytest


def test_invalid_json_keeps_connection_open(relay, client) -> None:
    a = client()
    a.send(b"{not json")

    assert a.events() == [{"type": "error", "message": "Invalid JSON"}]
    assert a.conn.close_calls == 0
    assert relay.stats_manager.get("frames_bad") == 1

    a.join("lobby", "alice")
    assert a.events("system") == [{"type": "system", "content": "Joined room: lobby"}]


@pytest.mark.parametrize("frame", [b"[1, 2]", b'"join"', b"42", b"null"])
def test_non_mapping_frames_are_invalid(client, frame) -> None:
    a = client()
    a.send(frame)
    assert a.events() == [{"type": "error", "message": "Invalid JSON"}]


@pytest.mark.parametrize("msg_type", ["shout", "JOIN", 7])
def test_unknown_type(client, msg_type) -> None:
    a = client()
    a.send({"type": msg_type, "room": "lobby"})
    assert a.events() == [{"type": "error", "message": "Unknown message type"}]


def test_missing_type_is_dropped(client) -> None:
    a = client()
    a.send({"room": "lobby"})
    a.send({"type": "", "room": "lobby"})
    a.send({"type": False, "room": "lobby"})
    a.send({"type": 0, "room": "lobby"})
    assert a.events() == []


@pytest.mark.parametrize(
    "frame",
    [
        {"type": "join", "room": "lobby"},
        {"type": "join", "sender": "alice"},
        {"type": "join", "room": 5, "sender": "alice"},
        {"type": "join", "room": "lobby", "sender": ["alice"]},
        {"type": "join", "room": "", "sender": "alice"},
        {"type": "join", "room": "lobby", "sender": "   "},
        {"type": "join", "room": " lobby", "sender": "alice"},
        {"type": "join", "room": "lobby", "sender": "al\nice"},
        {"type": "join", "room": "x" * 65, "sender": "alice"},
        {"type": "join", "room": "lobby", "sender": "a" * 33},
        {"type": "leave"},
        {"type": "leave", "room": None},
    ],
)
def test_malformed_requests_are_dropped_silently(relay, client, frame) -> None:
    a = client()
    a.send(frame)
    assert a.events() == []
    assert len(relay.room_registry) == 0


def test_identity_is_stripped(relay, client) -> None:
    a = client()
    a.join("lobby", "  alice ")
    assert a.state.identity == "alice"


def test_room_requests_require_membership(relay, client) -> None:
    a, b = client(), client()
    a.join("lobby", "alice")
    a.conn.clear()

    # b is unidentified and not in the room.
    b.send({"type": "message", "room": "lobby", "content": "hi"})
    b.send({"type": "reaction", "room": "lobby", "target": "m1", "emoji": "+1"})
    b.send({"type": "typing", "room": "lobby", "typing": True})
    b.send({"type": "presence_request", "room": "lobby"})

    assert a.events() == []
    assert b.events() == []
    assert "lobby" not in relay.typing_registry


@pytest.mark.parametrize(
    "frame",
    [
        {"type": "message", "room": "lobby"},
        {"type": "message", "room": "lobby", "content": 3},
        {"type": "message", "room": "lobby", "content": ""},
        {"type": "message", "room": "lobby", "content": "hi", "reply": 9},
        {"type": "message", "room": "lobby", "content": "hi", "timestamp": "now"},
        {"type": "message", "room": "lobby", "content": "hi", "timestamp": True},
        {"type": "reaction", "room": "lobby", "target": "m1"},
        {"type": "reaction", "room": "lobby", "emoji": "+1"},
        {"type": "typing", "room": "lobby"},
        {"type": "typing", "room": "lobby", "typing": 1},
        {"type": "presence_request"},
    ],
)
def test_malformed_member_requests_are_dropped(relay, client, frame) -> None:
    a, b = client(), client()
    a.join("lobby", "alice")
    b.join("lobby", "bob")
    a.conn.clear()
    b.conn.clear()

    a.send(frame)

    assert a.events() == []
    assert b.events() == []


def test_message_relay_with_reply_and_default_timestamp(client) -> None:
    a, b = client(), client()
    a.join("lobby", "alice")
    b.join("lobby", "bob")

    a.send({"type": "message", "room": "lobby", "content": "yes", "reply": "m1"})

    [msg] = b.events("message")
    assert msg["sender"] == "alice"
    assert msg["reply"] == "m1"
    assert isinstance(msg["timestamp"], int) and msg["timestamp"] > 0


def test_sender_field_on_message_is_ignored(client) -> None:
    a, b = client(), client()
    a.join("lobby", "alice")
    b.join("lobby", "bob")

    a.send({"type": "message", "room": "lobby", "content": "hi", "sender": "mallory"})

    assert b.events("message")[0]["sender"] == "alice"


def test_reaction_relay(relay, client) -> None:
    a, b = client(), client()
    a.join("lobby", "alice")
    b.join("lobby", "bob")

    b.send({"type": "reaction", "room": "lobby", "target": "m1", "emoji": "🎉", "timestamp": 99})

    assert a.events("reaction") == [
        {
            "type": "reaction",
            "room": "lobby",
            "sender": "bob",
            "target": "m1",
            "emoji": "🎉",
            "timestamp": 99,
        }
    ]
    assert b.events("reaction") == []
    assert relay.stats_manager.get("reactions_relayed") == 1


def test_presence_request_answers_requester_only(client) -> None:
    a, b, c = client(), client(), client()
    a.join("lobby", "alice")
    b.join("lobby", "Bob")
    a.conn.clear()
    b.conn.clear()

    a.send({"type": "presence_request", "room": "lobby"})

    assert a.events() == [{"type": "presence", "room": "lobby", "users": ["alice", "Bob"]}]
    assert b.events() == []
    assert c.events() == []


def test_too_many_rooms_is_dropped(relay, client) -> None:
    from dataclasses import replace

    relay.config = replace(relay.config, max_rooms_per_connection=2)
    a = client()
    a.join("r1", "alice")
    a.join("r2", "alice")
    a.conn.clear()

    a.join("r3", "alice")

    assert a.events() == []
    assert "r3" not in relay.room_registry
    assert a.state.joined_rooms == {"r1", "r2"}


def test_router_failure_is_contained(relay, client, monkeypatch) -> None:
    a = client()

    def boom(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(relay.membership, "join", boom)
    a.join("lobby", "alice")

    assert a.conn.close_calls == 0
    assert a.events() == []
