import uuid
from typing import Optional, Union

from backend import RedisBackend, utc_now_iso
from errors import (
    GameCreationFailed,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    StoreError,
    ValidationFailed,
)
from games.registry import GameDefinition, GameKind, engine_for, get_definition
from logging_config import get_logger
from messaging import MessagePipeline
from schemas.games import Game, GameStatus
from schemas.profiles import Profile
from schemas.rooms import Room
from state import AddGame, Store, UpdateGame, UpdateRoom

logger = get_logger(__name__)

# finished -> active is only reachable through play_again
ALLOWED_TRANSITIONS = {
    (GameStatus.WAITING, GameStatus.ACTIVE),
    (GameStatus.ACTIVE, GameStatus.FINISHED),
    (GameStatus.WAITING, GameStatus.FINISHED),
    (GameStatus.FINISHED, GameStatus.ACTIVE),
}


def check_transition(current: GameStatus, new: GameStatus, replay: bool = False):
    if current == new:
        return
    if (current, new) not in ALLOWED_TRANSITIONS:
        raise InvalidTransition(f"Cannot move a game from {current.value} to {new.value}")
    if current == GameStatus.FINISHED and not replay:
        raise InvalidTransition("A finished game only restarts through play again")


class GameCreation:
    """The three writes that start a game, tracked so an interrupted run can resume.

    Steps run in order: insert the game record, point the room at it, announce it.
    Ids are fixed up front, which makes every step safe to repeat.
    """

    STEPS = ("insert_game", "link_room", "announce")

    def __init__(self, room_id: str, user: Profile, definition: GameDefinition):
        self.room_id = room_id
        self.user = user
        self.definition = definition
        self.game_id = uuid.uuid4().hex
        self.completed: list[str] = []
        self.game: Optional[Game] = None

    @property
    def announcement_id(self) -> str:
        return f"{self.game_id}-started"

    @property
    def pending(self) -> list[str]:
        return [step for step in self.STEPS if step not in self.completed]

    @property
    def done(self) -> bool:
        return not self.pending


class GameService:
    def __init__(self, backend: RedisBackend, store: Store, messages: MessagePipeline):
        self.backend = backend
        self.store = store
        self.messages = messages

    def _require_user(self) -> Profile:
        user = self.store.state.current_user
        if user is None:
            raise ValidationFailed("Sign in first")
        return user

    def _room(self, room_id: str) -> Room:
        record = self.backend.get("rooms", room_id)
        if record is None:
            raise NotFound(f"Room {room_id} not found")
        return Room.model_validate(record)

    def _active_game(self, room: Room) -> Game:
        if not room.game_active_id:
            raise NotFound(f"Room {room.id} has no active game")
        record = self.backend.get("games", room.game_active_id)
        if record is None:
            raise NotFound(f"Game {room.game_active_id} not found")
        return Game.model_validate(record)

    def _write_game(self, game: Game, changes: dict) -> Game:
        record = self.backend.update("games", game.id, changes)
        if record is None:
            raise NotFound(f"Game {game.id} not found")
        updated = Game.model_validate(record)
        self.store.dispatch(UpdateGame(game=updated))
        return updated

    def create_game(self, room_id: str, kind: Union[str, GameKind]) -> Game:
        user = self._require_user()
        definition = get_definition(kind)
        room = self._room(room_id)
        if user.id not in room.members:
            raise PermissionDenied("Only room members can start a game")
        if room.game_active_id:
            raise ValidationFailed("This room already has an active game")

        saga = GameCreation(room_id, user, definition)
        return self.resume(saga)

    def resume(self, saga: GameCreation) -> Game:
        """Run the remaining steps of a game creation."""
        for step in saga.pending:
            try:
                getattr(self, f"_step_{step}")(saga)
            except StoreError as e:
                logger.error(f"Game creation {saga.game_id} stopped at {step}: {e}", exc_info=True)
                raise GameCreationFailed(f"Could not start the game ({step} failed)", saga) from e
            saga.completed.append(step)
            logger.debug(f"Game creation {saga.game_id}: {step} done")
        logger.info(f"Game {saga.game_id} ({saga.definition.name}) started in room {saga.room_id}")
        return saga.game

    def _step_insert_game(self, saga: GameCreation):
        record = self.backend.get("games", saga.game_id)
        if record is None:
            definition = saga.definition
            record = self.backend.insert("games", {
                "id": saga.game_id,
                "kind": definition.kind.value,
                "name": definition.name,
                "description": definition.description,
                "min_players": definition.min_players,
                "max_players": definition.max_players,
                "players": [saga.user.id],
                "status": GameStatus.WAITING.value,
                "started_at": utc_now_iso(),
                "board": definition.engine.initial_board(),
            })
        saga.game = Game.model_validate(record)
        self.store.dispatch(AddGame(game=saga.game))

    def _step_link_room(self, saga: GameCreation):
        room = self._room(saga.room_id)
        if room.game_active_id == saga.game_id:
            self.store.dispatch(UpdateRoom(room=room))
            return
        if room.game_active_id:
            # Another client got there first; retire ours so it never shows as waiting
            self._write_game(saga.game, {"status": GameStatus.FINISHED.value, "ended_at": utc_now_iso()})
            raise ValidationFailed("This room already has an active game")
        record = self.backend.update("rooms", saga.room_id, {"game_active_id": saga.game_id})
        if record is None:
            raise NotFound(f"Room {saga.room_id} not found")
        self.store.dispatch(UpdateRoom(room=Room.model_validate(record)))

    def _step_announce(self, saga: GameCreation):
        self.messages.post_system_message(
            saga.room_id,
            f"{saga.user.username} started a game of {saga.definition.name}",
            message_id=saga.announcement_id,
        )

    def join_game(self, room_id: str) -> Game:
        user = self._require_user()
        room = self._room(room_id)
        game = self._active_game(room)
        if user.id in game.players:
            logger.debug(f"{user.id} already plays in game {game.id}")
            return game
        if user.id not in room.members:
            raise PermissionDenied("Only room members can join the game")
        if game.status == GameStatus.FINISHED:
            raise InvalidTransition("This game has already finished")
        if len(game.players) >= game.max_players:
            raise ValidationFailed("This game is full")

        players = [*game.players, user.id]
        status = GameStatus.ACTIVE if len(players) >= game.min_players else game.status
        check_transition(game.status, status)
        game = self._write_game(game, {"players": players, "status": status.value})
        self.messages.post_system_message(room_id, f"{user.username} joined the game")
        logger.info(f"User {user.id} joined game {game.id}, status={game.status.value}")
        return game

    def end_game(self, room_id: str) -> Game:
        """Finish the room's active game and detach it from the room.

        Allowed for the room's moderators and for the player who started the game.
        """
        user = self._require_user()
        room = self._room(room_id)
        game = self._active_game(room)
        creator = game.players[0] if game.players else None
        if user.id not in room.moderators and user.id != creator:
            raise PermissionDenied("Only a moderator or the game's creator can end it")

        check_transition(game.status, GameStatus.FINISHED)
        if game.status != GameStatus.FINISHED:
            game = self._write_game(game, {"status": GameStatus.FINISHED.value, "ended_at": utc_now_iso()})
        record = self.backend.update("rooms", room_id, {"game_active_id": None})
        if record is None:
            raise NotFound(f"Room {room_id} not found")
        self.store.dispatch(UpdateRoom(room=Room.model_validate(record)))
        self.messages.post_system_message(room_id, "The game has ended")
        logger.info(f"Game {game.id} ended by {user.id}")
        return game

    def play_move(self, room_id: str, row: int, col: int) -> Game:
        user = self._require_user()
        room = self._room(room_id)
        game = self._active_game(room)
        engine = engine_for(game)
        result = engine.claim(user.id, row, col)

        changes = {"board": result.board}
        if result.is_over:
            check_transition(game.status, GameStatus.FINISHED)
            changes.update({
                "status": GameStatus.FINISHED.value,
                "winner": result.winner_id,
                "ended_at": utc_now_iso(),
            })
        game = self._write_game(game, changes)
        logger.debug(f"{user.id} played {result.symbol} at ({row}, {col}) in game {game.id}")

        if result.winner_symbol:
            winner = self.store.state.users.get(result.winner_id)
            name = winner.username if winner else "Unknown"
            self.messages.post_system_message(room_id, f"{name} won the {game.name} game!")
        elif result.is_draw:
            self.messages.post_system_message(room_id, f"The {game.name} game ended in a draw!")
        return game

    def play_again(self, room_id: str) -> Game:
        user = self._require_user()
        room = self._room(room_id)
        game = self._active_game(room)
        if user.id not in game.players:
            raise PermissionDenied("Only players can restart the game")
        if game.status != GameStatus.FINISHED:
            raise InvalidTransition("The game is still running")

        check_transition(game.status, GameStatus.ACTIVE, replay=True)
        engine = engine_for(game)
        game = self._write_game(game, {
            "board": engine.initial_board(),
            "status": GameStatus.ACTIVE.value,
            "started_at": utc_now_iso(),
            "winner": None,
            "ended_at": None,
        })
        logger.info(f"Game {game.id} restarted by {user.id}")
        return game
