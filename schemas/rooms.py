from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class Room(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: str
    members: list[str] = Field(default_factory=list)
    moderators: list[str] = Field(default_factory=list)
    is_private: bool = False
    game_active_id: Optional[str] = None


class CreateRoomRequest(BaseModel):
    name: str
    description: Optional[str] = None
    is_private: bool = False


class RoomSummary(BaseModel):
    id: str
    name: str
    description: str
    is_private: bool
    member_count: int
    has_active_game: bool
    is_current: bool
