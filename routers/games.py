from fastapi import APIRouter, Depends, HTTPException

from errors import ChatError
from games.registry import catalog
from logging_config import get_logger
from routers.common import get_client, require_user, to_http_exception
from schemas.games import GameTypeInfo, GameView, MoveRequest, StartGameRequest
from session import ClientSession
from views import active_game, game_view

logger = get_logger(__name__)

games_router = APIRouter(tags=["games"])


def _view(client: ClientSession, game) -> GameView:
    return game_view(client.state, game)


@games_router.get("/games/catalog", response_model=list[GameTypeInfo])
async def get_catalog():
    return catalog()


@games_router.get("/rooms/{room_id}/game", response_model=GameView)
async def get_game(room_id: str, client: ClientSession = Depends(get_client)):
    require_user(client)
    game = active_game(client.state, client.state.rooms.get(room_id))
    if game is None:
        raise HTTPException(status_code=404, detail="No active game in this room")
    return _view(client, game)


@games_router.post("/rooms/{room_id}/game", response_model=GameView, status_code=201)
async def start_game(room_id: str, start_request: StartGameRequest, client: ClientSession = Depends(get_client)):
    require_user(client)
    logger.info(f"Start game request in room {room_id}, kind: {start_request.kind}")
    try:
        return _view(client, client.games.create_game(room_id, start_request.kind))
    except ChatError as e:
        logger.error(f"Error starting game in room {room_id}: {e}")
        raise to_http_exception(e)


@games_router.post("/rooms/{room_id}/game/join", response_model=GameView)
async def join_game(room_id: str, client: ClientSession = Depends(get_client)):
    require_user(client)
    try:
        return _view(client, client.games.join_game(room_id))
    except ChatError as e:
        logger.warning(f"Join game in room {room_id} failed: {e}")
        raise to_http_exception(e)


@games_router.post("/rooms/{room_id}/game/end", response_model=GameView)
async def end_game(room_id: str, client: ClientSession = Depends(get_client)):
    require_user(client)
    try:
        return _view(client, client.games.end_game(room_id))
    except ChatError as e:
        logger.warning(f"End game in room {room_id} failed: {e}")
        raise to_http_exception(e)


@games_router.post("/rooms/{room_id}/game/moves", response_model=GameView)
async def play_move(room_id: str, move: MoveRequest, client: ClientSession = Depends(get_client)):
    require_user(client)
    try:
        return _view(client, client.games.play_move(room_id, move.row, move.col))
    except ChatError as e:
        logger.info(f"Move ({move.row}, {move.col}) in room {room_id} rejected: {e}")
        raise to_http_exception(e)


@games_router.post("/rooms/{room_id}/game/play-again", response_model=GameView)
async def play_again(room_id: str, client: ClientSession = Depends(get_client)):
    require_user(client)
    try:
        return _view(client, client.games.play_again(room_id))
    except ChatError as e:
        logger.warning(f"Play again in room {room_id} failed: {e}")
        raise to_http_exception(e)
