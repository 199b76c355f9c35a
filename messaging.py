from typing import Optional

from backend import RedisBackend, Subscription
from errors import ValidationFailed
from logging_config import get_logger
from schemas.events import ChangeEvent, ChangeType
from schemas.messages import Message
from state import AddMessage, SetMessages, Store

logger = get_logger(__name__)


class MessagePipeline:
    """Per-room message log: bulk history load, live feed, and writes."""

    def __init__(self, backend: RedisBackend, store: Store):
        self.backend = backend
        self.store = store

    def load_history(self, room_id: str) -> list[Message]:
        rows = self.backend.select("messages", {"room_id": room_id})
        messages = [Message.model_validate(row) for row in rows]
        self.store.dispatch(SetMessages(room_id=room_id, messages=messages))
        logger.debug(f"Loaded {len(messages)} messages for room {room_id}")
        return messages

    def _on_change(self, event: ChangeEvent):
        if event.type == ChangeType.INSERT and event.new:
            self.store.dispatch(AddMessage(message=Message.model_validate(event.new)))

    def subscribe(self, room_id: str) -> Subscription:
        logger.info(f"Opening message feed for room {room_id}")
        return self.backend.subscribe("messages", self._on_change, filters={"room_id": room_id})

    def send(self, room_id: str, content: str) -> Message:
        user = self.store.state.current_user
        if user is None:
            raise ValidationFailed("Sign in to send messages")
        content = (content or "").strip()
        if not content:
            raise ValidationFailed("Message is empty")

        record = self.backend.insert("messages", {
            "room_id": room_id,
            "user_id": user.id,
            "content": content,
            "is_system_message": False,
        })
        message = Message.model_validate(record)
        # The subscription echo carries the same id and is dropped on arrival
        self.store.dispatch(AddMessage(message=message))
        return message

    def post_system_message(self, room_id: str, content: str, message_id: Optional[str] = None) -> Message:
        """Write an automated notice. With `message_id` set, repeating the call writes nothing new."""
        if message_id:
            existing = self.backend.get("messages", message_id)
            if existing is not None:
                logger.debug(f"System message {message_id} already written")
                return Message.model_validate(existing)

        user = self.store.state.current_user
        record = {
            "room_id": room_id,
            "user_id": user.id if user else "system",
            "content": content,
            "is_system_message": True,
        }
        if message_id:
            record["id"] = message_id
        message = Message.model_validate(self.backend.insert("messages", record))
        self.store.dispatch(AddMessage(message=message))
        logger.info(f"System message in room {room_id}: {content}")
        return message
