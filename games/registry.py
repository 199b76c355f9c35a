from dataclasses import dataclass
from enum import Enum
from typing import Union

from errors import ValidationFailed
from games.tictactoe import TicTacToe
from schemas.games import Game, GameTypeInfo


class GameKind(str, Enum):
    TIC_TAC_TOE = "tic-tac-toe"


@dataclass(frozen=True)
class GameDefinition:
    kind: GameKind
    name: str
    description: str
    min_players: int
    max_players: int
    engine: type

    def info(self) -> GameTypeInfo:
        return GameTypeInfo(
            kind=self.kind.value,
            name=self.name,
            description=self.description,
            min_players=self.min_players,
            max_players=self.max_players,
        )


GAME_REGISTRY: dict[GameKind, GameDefinition] = {
    GameKind.TIC_TAC_TOE: GameDefinition(
        kind=GameKind.TIC_TAC_TOE,
        name="Tic-Tac-Toe",
        description="Classic 3x3 grid game",
        min_players=2,
        max_players=2,
        engine=TicTacToe,
    ),
}


def get_definition(kind: Union[str, GameKind]) -> GameDefinition:
    try:
        return GAME_REGISTRY[GameKind(kind)]
    except (ValueError, KeyError):
        raise ValidationFailed(f"Unknown game type: {kind}")


def engine_for(game: Game):
    return get_definition(game.kind).engine.from_game(game)


def catalog() -> list[GameTypeInfo]:
    return [definition.info() for definition in GAME_REGISTRY.values()]
