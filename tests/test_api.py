import fakeredis
import pytest
from fastapi.testclient import TestClient

from app import create_app
from backend import RedisBackend

POLL_TIMEOUT = 0.05


@pytest.fixture()
def api(redis_server):
    def backend_factory():
        client = fakeredis.FakeRedis(server=redis_server, decode_responses=True)
        return RedisBackend(redis_client=client, poll_timeout=POLL_TIMEOUT)

    with TestClient(create_app(backend_factory=backend_factory)) as client:
        yield client


@pytest.fixture()
def signed_in(api):
    response = api.post("/session/login", json={"username": "alice"})
    assert response.status_code == 200
    return api


def test_health(api):
    response = api.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_requires_login(api):
    assert api.get("/rooms/").status_code == 401
    assert api.post("/rooms/", json={"name": "General"}).status_code == 401


def test_login_rejects_blank_username(api):
    assert api.post("/session/login", json={"username": "  "}).status_code == 400


def test_login_returns_profile(api):
    body = api.post("/session/login", json={"username": "alice"}).json()
    assert body["username"] == "alice"
    assert body["is_online"] is True
    assert api.get("/session/state").json()["current_user"]["id"] == body["id"]


def test_catalog(api):
    body = api.get("/games/catalog").json()
    assert body == [{
        "kind": "tic-tac-toe",
        "name": "Tic-Tac-Toe",
        "description": "Classic 3x3 grid game",
        "min_players": 2,
        "max_players": 2,
    }]


def test_room_and_messages(signed_in):
    room = signed_in.post("/rooms/", json={"name": "General", "description": "Talk"}).json()
    assert room["members"] == room["moderators"] == [room["created_by"]]

    rooms = signed_in.get("/rooms/").json()
    assert rooms == [{
        "id": room["id"],
        "name": "General",
        "description": "Talk",
        "is_private": False,
        "member_count": 1,
        "has_active_game": False,
        "is_current": True,
    }]

    sent = signed_in.post(f"/rooms/{room['id']}/messages", json={"content": "hello"})
    assert sent.status_code == 201
    assert signed_in.post(f"/rooms/{room['id']}/messages", json={"content": " "}).status_code == 400

    views = signed_in.get(f"/rooms/{room['id']}/messages").json()
    assert [v["content"] for v in views] == ["alice created this room", "hello"]
    assert views[1]["author"] == "alice"
    assert views[1]["is_own"] is True


def test_unknown_room(signed_in):
    assert signed_in.post("/rooms/missing/select").status_code == 404


def test_game_lifecycle(signed_in):
    room = signed_in.post("/rooms/", json={"name": "Arcade"}).json()
    assert signed_in.get(f"/rooms/{room['id']}/game").status_code == 404
    assert signed_in.post(f"/rooms/{room['id']}/game", json={"kind": "chess"}).status_code == 400

    started = signed_in.post(f"/rooms/{room['id']}/game", json={"kind": "tic-tac-toe"})
    assert started.status_code == 201
    game = started.json()
    assert game["status"] == "waiting"
    assert game["player_names"] == ["alice"]
    assert game["can_play"] is False
    assert signed_in.post(f"/rooms/{room['id']}/game", json={"kind": "tic-tac-toe"}).status_code == 400

    move = signed_in.post(f"/rooms/{room['id']}/game/moves", json={"row": 0, "col": 0})
    assert move.status_code == 409
    assert signed_in.post(f"/rooms/{room['id']}/game/moves", json={"row": 3, "col": 0}).status_code == 422

    ended = signed_in.post(f"/rooms/{room['id']}/game/end").json()
    assert ended["status"] == "finished"
    assert signed_in.get("/rooms/").json()[0]["has_active_game"] is False


def test_logout(signed_in):
    assert signed_in.post("/session/logout").status_code == 200
    assert signed_in.get("/session/state").json()["current_user"] is None
    assert signed_in.get("/rooms/").status_code == 401


def test_state_stream_sends_snapshot(signed_in):
    with signed_in.websocket_connect("/ws") as websocket:
        message = websocket.receive_json()
    assert message["type"] == "state"
    assert message["action"] is None
    assert message["state"]["current_user"]["username"] == "alice"
