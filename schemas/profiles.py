from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class Profile(BaseModel):
    id: str
    username: str
    avatar: Optional[str] = None
    is_online: bool = False
    joined_at: Optional[datetime] = None


class LoginRequest(BaseModel):
    username: str
    avatar: Optional[str] = None
