"""One connected client: its state store, its services and its live subscriptions.

Subscriptions are scoped. `rooms` and `profiles` feeds live as long as the user
is signed in; the message feed and the game feed follow the current room and
are swapped whenever the selection, or the room's active game, changes.
"""
import asyncio
from typing import Optional

from auth import SIGNED_IN, AuthSession, LocalIdentityProvider
from backend import RedisBackend, Subscription
from errors import StoreError
from games.service import GameService
from logging_config import get_logger
from messaging import MessagePipeline
from room_manager import RoomManager
from schemas.events import ChangeEvent, ChangeType
from schemas.games import Game
from schemas.profiles import Profile
from schemas.rooms import Room
from state import (
    Action,
    AddGame,
    AddRoom,
    AppState,
    Logout,
    SetCurrentRoom,
    SetCurrentUser,
    SetUserOnlineStatus,
    Store,
    UpdateGame,
    UpdateRoom,
    UpsertUser,
)

logger = get_logger(__name__)


class ClientSession:
    def __init__(self, backend: RedisBackend, identity: LocalIdentityProvider, store: Optional[Store] = None):
        self.backend = backend
        self.identity = identity
        self.store = store or Store()
        self.messages = MessagePipeline(backend, self.store)
        self.rooms = RoomManager(backend, self.store, self.messages)
        self.games = GameService(backend, self.store, self.messages)

        self._global_subscriptions: list[Subscription] = []
        self._message_subscription: Optional[Subscription] = None
        self._game_subscription: Optional[Subscription] = None
        self._watched_game_id: Optional[str] = None
        self._auth_task: Optional[asyncio.Task] = None

        self._unsubscribe_auth = identity.on_auth_state_change(self._on_auth_state_change)
        self._unsubscribe_store = self.store.subscribe(self._on_state_change)

    @property
    def state(self) -> AppState:
        return self.store.state

    @property
    def user(self) -> Optional[Profile]:
        return self.store.state.current_user

    async def start(self) -> Optional[Profile]:
        """Load everything the signed-in user sees and open the global feeds."""
        session = self.identity.get_session()
        if session is None:
            logger.info("No session, waiting for sign-in")
            return None
        current = self.store.state.current_user
        if current is not None:
            if current.id == session.user_id:
                return current
            await self.stop()

        self._global_subscriptions = [
            self.backend.subscribe("rooms", self._on_room_change),
            self.backend.subscribe("profiles", self._on_profile_change),
        ]
        profile = self._bring_profile_online(session)
        self.store.dispatch(UpsertUser(user=profile))
        self.store.dispatch(SetCurrentUser(user=profile))
        for row in self.backend.select("profiles"):
            self.store.dispatch(UpsertUser(user=Profile.model_validate(row)))
        self.rooms.load_rooms()
        logger.info(f"Client session started for {profile.username}")
        return profile

    def _bring_profile_online(self, session: AuthSession) -> Profile:
        record = self.backend.get("profiles", session.user_id)
        if record is None:
            record = self.backend.insert("profiles", {
                "id": session.user_id,
                "username": session.username,
                "avatar": session.avatar,
                "is_online": True,
            })
            logger.info(f"Created profile for {session.username}")
        else:
            record = self.backend.update("profiles", session.user_id, {"is_online": True})
        return Profile.model_validate(record)

    async def select_room(self, room_id: str) -> Room:
        room = self.rooms.get_room(room_id)
        await self._release_room_feeds()
        self.store.dispatch(UpdateRoom(room=room))
        self.store.dispatch(SetCurrentRoom(room=room))
        # Subscribe before the history read so nothing slips in between
        self._message_subscription = self.messages.subscribe(room.id)
        self.messages.load_history(room.id)
        logger.info(f"Selected room {room.id} ({room.name})")
        return room

    async def _release_room_feeds(self):
        if self._message_subscription is not None:
            await self._message_subscription.close()
            self._message_subscription = None
        if self._game_subscription is not None:
            await self._game_subscription.close()
            self._game_subscription = None
        self._watched_game_id = None

    async def stop(self):
        """Close every feed, mark the user offline and clear the state."""
        await self._release_room_feeds()
        for subscription in self._global_subscriptions:
            await subscription.close()
        self._global_subscriptions = []

        user = self.store.state.current_user
        if user is not None:
            try:
                self.backend.update("profiles", user.id, {"is_online": False})
            except StoreError as e:
                logger.error(f"Could not mark {user.id} offline: {e}")
        self.store.dispatch(Logout())
        logger.info("Client session stopped")

    async def close(self):
        await self.stop()
        self._unsubscribe_auth()
        self._unsubscribe_store()

    async def settle(self):
        """Wait for the work started by the latest sign-in or sign-out."""
        if self._auth_task is not None:
            await self._auth_task

    def _on_auth_state_change(self, event: str, session: Optional[AuthSession]):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"Auth event {event} outside the event loop ignored")
            return
        self._auth_task = loop.create_task(self.start() if event == SIGNED_IN else self.stop())

    def _on_room_change(self, event: ChangeEvent):
        if event.new is None:
            return
        room = Room.model_validate(event.new)
        if event.type == ChangeType.INSERT:
            self.store.dispatch(AddRoom(room=room))
        elif event.type == ChangeType.UPDATE:
            self.store.dispatch(UpdateRoom(room=room))

    def _on_profile_change(self, event: ChangeEvent):
        if event.new is None:
            return
        profile = Profile.model_validate(event.new)
        if event.type == ChangeType.UPDATE and profile.id in self.store.state.users and event.old is not None:
            changed = {k for k in {*event.old, *event.new} if event.old.get(k) != event.new.get(k)}
            if changed == {"is_online"}:
                self.store.dispatch(SetUserOnlineStatus(user_id=profile.id, is_online=profile.is_online))
                return
        self.store.dispatch(UpsertUser(user=profile))

    def _on_game_change(self, event: ChangeEvent):
        if event.new is not None:
            self.store.dispatch(UpdateGame(game=Game.model_validate(event.new)))

    def _on_state_change(self, state: AppState, action: Action):
        room = state.current_room
        wanted = room.game_active_id if room else None
        if wanted != self._watched_game_id:
            self._watch_game(wanted)

    def _watch_game(self, game_id: Optional[str]):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Game feed change outside the event loop ignored")
            return
        if self._game_subscription is not None:
            # close() awaits the listener task, so it runs on a later turn
            loop.create_task(self._game_subscription.close())
            self._game_subscription = None
        self._watched_game_id = game_id
        if game_id is None:
            return
        logger.info(f"Watching game {game_id}")
        self._game_subscription = self.backend.subscribe("games", self._on_game_change, filters={"id": game_id})
        # Deferred so the read and its dispatch run after the current transition finishes
        loop.call_soon(self._load_game, game_id)

    def _load_game(self, game_id: str):
        try:
            record = self.backend.get("games", game_id)
        except StoreError as e:
            logger.error(f"Could not load game {game_id}: {e}")
            return
        if record is not None and self._watched_game_id == game_id:
            self.store.dispatch(AddGame(game=Game.model_validate(record)))
