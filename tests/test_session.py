import asyncio

from auth import user_id_for
from schemas.games import GameStatus
from state import AppState
from views import message_views


async def test_sign_in_loads_profile_and_rooms(backend, make_client):
    backend.insert("rooms", {"name": "Existing", "created_by": "someone", "members": ["someone"]})
    alice = await make_client("alice")

    assert alice.user.username == "alice"
    assert alice.user.id == user_id_for("alice")
    assert alice.user.is_online is True
    assert backend.get("profiles", alice.user.id)["is_online"] is True
    assert [r.name for r in alice.state.rooms.values()] == ["Existing"]


async def test_presence_and_rooms_sync_between_clients(make_client, eventually):
    alice = await make_client("alice")
    bob = await make_client("bob")
    await eventually(lambda: bob.user.id in alice.state.users)

    room = alice.rooms.create_room("General")
    await eventually(lambda: room.id in bob.state.rooms)

    bob.rooms.join_room(room.id)
    await eventually(lambda: alice.state.rooms[room.id].members == [alice.user.id, bob.user.id])


async def test_messages_flow_to_the_current_room(make_client, eventually):
    alice = await make_client("alice")
    bob = await make_client("bob")
    room = alice.rooms.create_room("General")
    await eventually(lambda: room.id in bob.state.rooms)
    bob.rooms.join_room(room.id)

    await alice.select_room(room.id)
    await bob.select_room(room.id)
    assert [m.content for m in bob.state.messages[room.id]] == ["alice created this room", "bob joined the room"]

    sent = bob.messages.send(room.id, "hi alice")
    await eventually(lambda: any(m.id == sent.id for m in alice.state.messages[room.id]))
    assert [m.id for m in bob.state.messages[room.id]].count(sent.id) == 1

    views = message_views(alice.state, room.id)
    assert views[-1].author == "bob"
    assert views[-1].is_own is False
    assert views[0].author is None


async def test_switching_rooms_releases_the_old_feed(make_client, eventually):
    alice = await make_client("alice")
    bob = await make_client("bob")
    first = alice.rooms.create_room("First")
    second = alice.rooms.create_room("Second")

    await alice.select_room(first.id)
    old_feed = alice._message_subscription
    await alice.select_room(second.id)
    assert not old_feed.active
    assert alice.state.current_room.id == second.id

    await eventually(lambda: first.id in bob.state.rooms)
    bob.rooms.join_room(first.id)
    await bob.select_room(first.id)
    late = bob.messages.send(first.id, "anyone here?")
    await asyncio.sleep(0.3)
    assert all(m.id != late.id for m in alice.state.messages.get(first.id, []))


async def test_game_updates_reach_both_players(make_client, eventually):
    alice = await make_client("alice")
    bob = await make_client("bob")
    room = alice.rooms.create_room("Arcade")
    await eventually(lambda: room.id in bob.state.rooms)
    bob.rooms.join_room(room.id)
    await alice.select_room(room.id)
    await bob.select_room(room.id)

    game = alice.games.create_game(room.id, "tic-tac-toe")
    await eventually(lambda: game.id in bob.state.games)
    assert bob.state.current_room.game_active_id == game.id

    bob.games.join_game(room.id)
    await eventually(lambda: alice.state.games[game.id].status == GameStatus.ACTIVE)

    alice.games.play_move(room.id, 1, 1)
    await eventually(lambda: bob.state.games[game.id].board[4] == "X")


async def test_sign_out_resets_state(backend, make_client):
    alice = await make_client("alice")
    user_id = alice.user.id
    room = alice.rooms.create_room("General")
    await alice.select_room(room.id)

    alice.identity.sign_out()
    await alice.settle()
    assert alice.state == AppState()
    assert backend.get("profiles", user_id)["is_online"] is False
    assert alice._message_subscription is None


async def test_signing_in_again_reuses_profile(backend, make_client):
    alice = await make_client("alice")
    user_id = alice.user.id
    alice.identity.sign_out()
    await alice.settle()

    alice.identity.sign_in("alice")
    await alice.settle()
    assert alice.user.id == user_id
    assert len(backend.select("profiles")) == 1


async def test_ended_game_feed_is_closed(make_client, eventually):
    alice = await make_client("alice")
    room = alice.rooms.create_room("Arcade")
    await alice.select_room(room.id)
    alice.games.create_game(room.id, "tic-tac-toe")
    feed = alice._game_subscription
    assert feed is not None and feed.active

    alice.games.end_game(room.id)
    assert alice._game_subscription is None
    await eventually(lambda: not feed.active)


async def test_presence_changes_dispatch_online_status(make_client, eventually):
    alice = await make_client("alice")
    bob = await make_client("bob")
    await eventually(lambda: bob.user.id in alice.state.users)
    bob_id = bob.user.id
    seen = []
    alice.store.subscribe(lambda state, action: seen.append(action.type))

    bob.identity.sign_out()
    await bob.settle()
    await eventually(lambda: not alice.state.users[bob_id].is_online)
    assert "SET_USER_ONLINE_STATUS" in seen
    assert alice.state.users[bob_id].username == "bob"
