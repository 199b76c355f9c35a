from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class Message(BaseModel):
    id: str
    room_id: str
    user_id: str
    content: str
    created_at: Optional[datetime] = None
    is_system_message: bool = False


class SendMessageRequest(BaseModel):
    content: str


class MessageView(BaseModel):
    """A message with its author resolved for display."""
    id: str
    content: str
    author: Optional[str]
    created_at: Optional[datetime]
    is_system_message: bool
    is_own: bool
