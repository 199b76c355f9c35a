from dataclasses import dataclass
from typing import Optional

from errors import IllegalMove
from schemas.games import Game, GameStatus

SYMBOLS = ("X", "O")
SIZE = 3

Grid = list[list[Optional[str]]]


def empty_board() -> list[Optional[str]]:
    return [None] * (SIZE * SIZE)


def to_grid(cells: list[Optional[str]]) -> Grid:
    cells = list(cells or empty_board())
    if len(cells) != SIZE * SIZE:
        raise IllegalMove(f"Stored board has {len(cells)} cells, expected {SIZE * SIZE}")
    return [cells[r * SIZE:(r + 1) * SIZE] for r in range(SIZE)]


def to_cells(grid: Grid) -> list[Optional[str]]:
    return [cell for row in grid for cell in row]


def check_winner(grid: Grid) -> Optional[str]:
    """Symbol completing a line, checking rows, then columns, then diagonals."""
    for i in range(SIZE):
        if grid[i][0] and grid[i][0] == grid[i][1] == grid[i][2]:
            return grid[i][0]
    for i in range(SIZE):
        if grid[0][i] and grid[0][i] == grid[1][i] == grid[2][i]:
            return grid[0][i]
    if grid[0][0] and grid[0][0] == grid[1][1] == grid[2][2]:
        return grid[0][0]
    if grid[0][2] and grid[0][2] == grid[1][1] == grid[2][0]:
        return grid[0][2]
    return None


def is_full(grid: Grid) -> bool:
    return all(cell is not None for row in grid for cell in row)


@dataclass
class MoveResult:
    board: list[Optional[str]]
    symbol: str
    winner_symbol: Optional[str] = None
    winner_id: Optional[str] = None
    is_draw: bool = False

    @property
    def is_over(self) -> bool:
        return self.winner_symbol is not None or self.is_draw


class TicTacToe:
    """Tic-tac-toe rules applied to the board stored on a Game record.

    players[0] plays X and players[1] plays O. X moves whenever both symbols
    have been played equally often, so the turn follows from the board alone.
    """

    def __init__(self, game: Game):
        self.game = game
        self.grid = to_grid(game.board)

    @classmethod
    def from_game(cls, game: Game) -> "TicTacToe":
        return cls(game)

    @staticmethod
    def initial_board() -> list[Optional[str]]:
        return empty_board()

    @property
    def current_symbol(self) -> str:
        cells = to_cells(self.grid)
        return "X" if cells.count("X") == cells.count("O") else "O"

    def player_for(self, symbol: Optional[str]) -> Optional[str]:
        if symbol not in SYMBOLS:
            return None
        index = SYMBOLS.index(symbol)
        players = self.game.players
        return players[index] if index < len(players) else None

    def symbol_for(self, user_id: str) -> Optional[str]:
        for symbol in SYMBOLS:
            if self.player_for(symbol) == user_id:
                return symbol
        return None

    @property
    def winner_symbol(self) -> Optional[str]:
        return check_winner(self.grid)

    @property
    def is_draw(self) -> bool:
        return self.winner_symbol is None and is_full(self.grid)

    @property
    def is_over(self) -> bool:
        return self.game.winner is not None or self.winner_symbol is not None or is_full(self.grid)

    def _reject_reason(self, user_id: str) -> Optional[str]:
        if self.game.status != GameStatus.ACTIVE:
            return "Game is not active"
        if len(self.game.players) < len(SYMBOLS):
            return "Waiting for another player"
        if self.is_over:
            return "Game is already over"
        if self.player_for(self.current_symbol) != user_id:
            return "Not your turn"
        return None

    def can_play(self, user_id: Optional[str]) -> bool:
        return user_id is not None and self._reject_reason(user_id) is None

    def claim(self, user_id: str, row: int, col: int) -> MoveResult:
        """Place the current symbol at (row, col) for `user_id`.

        Raises IllegalMove, leaving the board untouched, when the move is not allowed.
        """
        reason = self._reject_reason(user_id)
        if reason:
            raise IllegalMove(reason)
        if not (0 <= row < SIZE and 0 <= col < SIZE):
            raise IllegalMove(f"Cell ({row}, {col}) is off the board")
        if self.grid[row][col] is not None:
            raise IllegalMove(f"Cell ({row}, {col}) is already taken")

        symbol = self.current_symbol
        grid = [list(r) for r in self.grid]
        grid[row][col] = symbol
        self.grid = grid

        winner = check_winner(grid)
        return MoveResult(
            board=to_cells(grid),
            symbol=symbol,
            winner_symbol=winner,
            winner_id=self.player_for(winner),
            is_draw=winner is None and is_full(grid),
        )

    def snapshot(self, user_id: Optional[str]) -> dict:
        return {
            "board": [list(r) for r in self.grid],
            "current_symbol": None if self.is_over else self.current_symbol,
            "is_draw": self.is_draw,
            "can_play": self.can_play(user_id),
        }
