from typing import Optional

from backend import RedisBackend
from errors import NotFound, ValidationFailed
from logging_config import get_logger
from messaging import MessagePipeline
from schemas.profiles import Profile
from schemas.rooms import Room
from state import AddRoom, JoinRoom, LeaveRoom, Store, UpdateRoom
from views import visible_rooms

logger = get_logger(__name__)


class RoomManager:
    def __init__(self, backend: RedisBackend, store: Store, messages: MessagePipeline):
        self.backend = backend
        self.store = store
        self.messages = messages

    def _require_user(self) -> Profile:
        user = self.store.state.current_user
        if user is None:
            raise ValidationFailed("Sign in first")
        return user

    def get_room(self, room_id: str) -> Room:
        """Latest copy of a room, read from the store so membership checks are current."""
        record = self.backend.get("rooms", room_id)
        if record is None:
            raise NotFound(f"Room {room_id} not found")
        return Room.model_validate(record)

    def load_rooms(self) -> list[Room]:
        rooms = [Room.model_validate(row) for row in self.backend.select("rooms")]
        for room in rooms:
            self.store.dispatch(AddRoom(room=room))
        logger.info(f"Loaded {len(rooms)} rooms")
        return rooms

    def visible_rooms(self) -> list[Room]:
        user = self.store.state.current_user
        return visible_rooms(self.store.state, user.id if user else None)

    def create_room(self, name: str, description: Optional[str] = None, is_private: bool = False) -> Room:
        user = self._require_user()
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Room name is required")

        logger.info(f"Creating room '{name}' for {user.username}, private={is_private}")
        record = self.backend.insert("rooms", {
            "name": name,
            "description": (description or "").strip() or None,
            "created_by": user.id,
            "members": [user.id],
            "moderators": [user.id],
            "is_private": is_private,
            "game_active_id": None,
        })
        room = Room.model_validate(record)
        self.store.dispatch(AddRoom(room=room))
        self.messages.post_system_message(room.id, f"{user.username} created this room")
        logger.info(f"Room {room.id} created successfully: name={name}")
        return room

    def join_room(self, room_id: str) -> Room:
        user = self._require_user()
        room = self.get_room(room_id)
        if user.id in room.members:
            logger.debug(f"{user.id} already a member of room {room_id}")
            self.store.dispatch(UpdateRoom(room=room))
            return room

        record = self.backend.update("rooms", room_id, {"members": [*room.members, user.id]})
        if record is None:
            raise NotFound(f"Room {room_id} not found")
        room = Room.model_validate(record)
        self.store.dispatch(UpdateRoom(room=room))
        self.store.dispatch(JoinRoom(room_id=room_id, user_id=user.id))
        self.messages.post_system_message(room_id, f"{user.username} joined the room")
        logger.info(f"User {user.id} joined room {room_id}")
        return room

    def leave_room(self, room_id: str) -> Room:
        user = self._require_user()
        room = self.get_room(room_id)
        if user.id not in room.members:
            logger.debug(f"{user.id} is not a member of room {room_id}")
            return room

        record = self.backend.update("rooms", room_id, {
            "members": [m for m in room.members if m != user.id],
            "moderators": [m for m in room.moderators if m != user.id],
        })
        if record is None:
            raise NotFound(f"Room {room_id} not found")
        room = Room.model_validate(record)
        self.store.dispatch(UpdateRoom(room=room))
        self.store.dispatch(LeaveRoom(room_id=room_id, user_id=user.id))
        self.messages.post_system_message(room_id, f"{user.username} left the room")
        logger.info(f"User {user.id} left room {room_id}")
        return room
