from typing import Optional

from errors import IllegalMove, ValidationFailed
from games.registry import engine_for
from logging_config import get_logger
from schemas.games import Game, GameStatus, GameView
from schemas.messages import Message, MessageView
from schemas.rooms import Room, RoomSummary
from state import AppState

logger = get_logger(__name__)

UNKNOWN_USER = "Unknown User"


def display_name(state: AppState, user_id: Optional[str], placeholder: str = UNKNOWN_USER) -> str:
    user = state.users.get(user_id) if user_id else None
    return user.username if user else placeholder


def room_description(room: Optional[Room]) -> str:
    return room.description if room and room.description else ""


def visible_rooms(state: AppState, user_id: Optional[str]) -> list[Room]:
    """Rooms listed to `user_id`: every public room plus the private ones they belong to."""
    rooms = [r for r in state.rooms.values() if not r.is_private or (user_id and user_id in r.members)]
    return sorted(rooms, key=lambda r: (r.created_at is None, r.created_at, r.name))


def room_summaries(state: AppState) -> list[RoomSummary]:
    user_id = state.current_user.id if state.current_user else None
    current_id = state.current_room.id if state.current_room else None
    return [
        RoomSummary(
            id=room.id,
            name=room.name,
            description=room_description(room),
            is_private=room.is_private,
            member_count=len(room.members),
            has_active_game=room.game_active_id is not None,
            is_current=room.id == current_id,
        )
        for room in visible_rooms(state, user_id)
    ]


def active_game(state: AppState, room: Optional[Room]) -> Optional[Game]:
    if room is None or not room.game_active_id:
        return None
    return state.games.get(room.game_active_id)


def room_messages(state: AppState, room_id: str) -> list[Message]:
    return state.messages.get(room_id, [])


def message_views(state: AppState, room_id: str) -> list[MessageView]:
    own_id = state.current_user.id if state.current_user else None
    views = []
    for message in room_messages(state, room_id):
        views.append(MessageView(
            id=message.id,
            content=message.content,
            # System notices are shown unattributed
            author=None if message.is_system_message else display_name(state, message.user_id),
            created_at=message.created_at,
            is_system_message=message.is_system_message,
            is_own=message.user_id == own_id and not message.is_system_message,
        ))
    return views


def game_view(state: AppState, game: Game) -> GameView:
    user_id = state.current_user.id if state.current_user else None
    room = next((r for r in state.rooms.values() if r.game_active_id == game.id), None)
    view = GameView(
        id=game.id,
        kind=game.kind,
        name=game.name,
        description=game.description or "",
        status=game.status,
        players=list(game.players),
        player_names=[display_name(state, p, placeholder="Unknown") for p in game.players],
        winner=game.winner,
        can_join=(
            user_id is not None
            and room is not None
            and user_id in room.members
            and game.status != GameStatus.FINISHED
            and user_id not in game.players
            and len(game.players) < game.max_players
        ),
    )
    try:
        engine = engine_for(game)
    except ValidationFailed:
        # Kinds without a rule engine render without a board
        return view
    except IllegalMove as e:
        logger.warning(f"Game {game.id} rendered without its board: {e}")
        return view
    return view.model_copy(update=engine.snapshot(user_id))
