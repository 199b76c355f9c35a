from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class GameStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    FINISHED = "finished"


class Game(BaseModel):
    id: str
    kind: str
    name: str
    description: str = ""
    min_players: int
    max_players: int
    # Order matters: position decides symbol and turn
    players: list[str] = Field(default_factory=list)
    status: GameStatus = GameStatus.WAITING
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    winner: Optional[str] = None
    # Row-major cells, None for empty
    board: list[Optional[str]] = Field(default_factory=lambda: [None] * 9)


class StartGameRequest(BaseModel):
    kind: str


class MoveRequest(BaseModel):
    row: int = Field(ge=0, le=2)
    col: int = Field(ge=0, le=2)


class GameTypeInfo(BaseModel):
    kind: str
    name: str
    description: str
    min_players: int
    max_players: int


class GameView(BaseModel):
    id: str
    kind: str
    name: str
    description: str
    status: GameStatus
    players: list[str]
    player_names: list[str]
    winner: Optional[str]
    can_join: bool
    board: Optional[list[list[Optional[str]]]] = None
    current_symbol: Optional[str] = None
    is_draw: bool = False
    can_play: bool = False
