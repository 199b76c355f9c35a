import asyncio

import pytest
import redis

from errors import StoreError
from schemas.events import ChangeType


def test_insert_assigns_id_and_creation_time(backend):
    record = backend.insert("rooms", {"name": "General", "created_by": "u1", "members": ["u1"]})
    assert record["id"]
    assert record["created_at"]
    stored = backend.get("rooms", record["id"])
    assert stored["name"] == "General"
    assert stored["members"] == ["u1"]


def test_values_keep_their_types(backend):
    record = backend.insert("profiles", {"id": "u1", "username": "123", "is_online": True})
    stored = backend.get("profiles", record["id"])
    assert stored["username"] == "123"
    assert stored["is_online"] is True


def test_get_missing_row_returns_none(backend):
    assert backend.get("games", "nope") is None


def test_update_merges_and_clears_columns(backend):
    room = backend.insert("rooms", {"name": "General", "created_by": "u1", "game_active_id": "g1"})
    updated = backend.update("rooms", room["id"], {"name": "Lobby", "game_active_id": None})
    assert updated["name"] == "Lobby"
    assert "game_active_id" not in updated
    stored = backend.get("rooms", room["id"])
    assert stored["name"] == "Lobby"
    assert stored["created_by"] == "u1"
    assert stored.get("game_active_id") is None


def test_update_missing_row_returns_none(backend):
    assert backend.update("rooms", "nope", {"name": "x"}) is None


def test_select_orders_by_creation_time(backend):
    for i, minute in enumerate([30, 10, 20]):
        backend.insert("messages", {
            "id": f"m{i}", "room_id": "r1", "user_id": "u1", "content": str(i),
            "created_at": f"2024-05-01T10:{minute:02d}:00+00:00",
        })
    assert [m["id"] for m in backend.select("messages", {"room_id": "r1"})] == ["m1", "m2", "m0"]
    assert [m["id"] for m in backend.select("messages", {"room_id": "r1"}, descending=True)] == ["m0", "m2", "m1"]


def test_select_filters_by_equality(backend):
    backend.insert("messages", {"id": "a", "room_id": "r1", "user_id": "u1", "content": "x"})
    backend.insert("messages", {"id": "b", "room_id": "r2", "user_id": "u1", "content": "y"})
    backend.insert("messages", {"id": "c", "room_id": "r1", "user_id": "u2", "content": "z"})
    assert [m["id"] for m in backend.select("messages", {"room_id": "r1"})] == ["a", "c"]
    assert [m["id"] for m in backend.select("messages", {"room_id": "r1", "user_id": "u2"})] == ["c"]
    assert len(backend.select("messages")) == 3


def test_unknown_table_is_rejected(backend):
    with pytest.raises(ValueError):
        backend.get("nothing", "x")


def test_redis_failure_becomes_store_error(backend, monkeypatch):
    def fail(*args, **kwargs):
        raise redis.ConnectionError("down")

    monkeypatch.setattr(backend.redis_client, "hgetall", fail)
    with pytest.raises(StoreError):
        backend.get("rooms", "r1")


async def test_subscription_delivers_matching_events(backend, make_backend, eventually):
    received = []
    subscription = backend.subscribe("messages", received.append, filters={"room_id": "r1"})
    try:
        writer = make_backend()
        writer.insert("messages", {"id": "other", "room_id": "r2", "user_id": "u1", "content": "no"})
        writer.insert("messages", {"id": "mine", "room_id": "r1", "user_id": "u1", "content": "yes"})
        await eventually(lambda: len(received) == 1)
        await asyncio.sleep(0.1)
        assert len(received) == 1
        event = received[0]
        assert event.type == ChangeType.INSERT
        assert event.table == "messages"
        assert event.new["id"] == "mine"
    finally:
        await subscription.close()


async def test_update_event_carries_old_and_new(backend, eventually):
    game = backend.insert("games", {"id": "g1", "kind": "tic-tac-toe", "name": "Tic-Tac-Toe",
                                    "min_players": 2, "max_players": 2, "players": ["u1"], "status": "waiting"})
    received = []
    subscription = backend.subscribe("games", received.append, filters={"id": game["id"]})
    try:
        backend.update("games", "g1", {"players": ["u1", "u2"], "status": "active"})
        await eventually(lambda: received)
        event = received[0]
        assert event.type == ChangeType.UPDATE
        assert event.old["status"] == "waiting"
        assert event.new["status"] == "active"
        assert event.new["players"] == ["u1", "u2"]
    finally:
        await subscription.close()


async def test_cancelled_subscription_stops_delivery(backend, eventually):
    received = []
    subscription = backend.subscribe("rooms", received.append)
    await subscription.close()
    assert not subscription.active
    backend.insert("rooms", {"name": "Quiet", "created_by": "u1"})
    await asyncio.sleep(0.2)
    assert received == []


async def test_failing_callback_keeps_listener_alive(backend, eventually):
    received = []

    def callback(event):
        received.append(event)
        if len(received) == 1:
            raise RuntimeError("boom")

    subscription = backend.subscribe("rooms", callback)
    try:
        backend.insert("rooms", {"name": "One", "created_by": "u1"})
        backend.insert("rooms", {"name": "Two", "created_by": "u1"})
        await eventually(lambda: len(received) == 2)
        assert subscription.active
    finally:
        await subscription.close()
