from fastapi import APIRouter, Depends

from errors import ChatError
from logging_config import get_logger
from routers.common import get_client, require_user, to_http_exception
from schemas.messages import Message, MessageView, SendMessageRequest
from schemas.rooms import CreateRoomRequest, Room, RoomSummary
from session import ClientSession
from views import message_views, room_summaries

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("/", response_model=list[RoomSummary])
async def list_rooms(client: ClientSession = Depends(get_client)):
    require_user(client)
    return room_summaries(client.state)


@rooms_router.post("/", response_model=Room, status_code=201)
async def create_room(room: CreateRoomRequest, client: ClientSession = Depends(get_client)):
    require_user(client)
    logger.info(f"Room creation request, name: {room.name}, private: {room.is_private}")
    try:
        created = client.rooms.create_room(room.name, description=room.description, is_private=room.is_private)
        # A new room becomes the current one
        return await client.select_room(created.id)
    except ChatError as e:
        logger.error(f"Error creating room: {e}", exc_info=True)
        raise to_http_exception(e)


@rooms_router.post("/{room_id}/select", response_model=Room)
async def select_room(room_id: str, client: ClientSession = Depends(get_client)):
    require_user(client)
    try:
        return await client.select_room(room_id)
    except ChatError as e:
        logger.warning(f"Select room {room_id} failed: {e}")
        raise to_http_exception(e)


@rooms_router.post("/{room_id}/join", response_model=Room)
async def join_room(room_id: str, client: ClientSession = Depends(get_client)):
    require_user(client)
    try:
        return client.rooms.join_room(room_id)
    except ChatError as e:
        logger.warning(f"Join room {room_id} failed: {e}")
        raise to_http_exception(e)


@rooms_router.post("/{room_id}/leave", response_model=Room)
async def leave_room(room_id: str, client: ClientSession = Depends(get_client)):
    require_user(client)
    try:
        return client.rooms.leave_room(room_id)
    except ChatError as e:
        logger.warning(f"Leave room {room_id} failed: {e}")
        raise to_http_exception(e)


@rooms_router.get("/{room_id}/messages", response_model=list[MessageView])
async def get_messages(room_id: str, client: ClientSession = Depends(get_client)):
    require_user(client)
    return message_views(client.state, room_id)


@rooms_router.post("/{room_id}/messages", response_model=Message, status_code=201)
async def send_message(room_id: str, message: SendMessageRequest, client: ClientSession = Depends(get_client)):
    require_user(client)
    try:
        return client.messages.send(room_id, message.content)
    except ChatError as e:
        logger.warning(f"Send message to room {room_id} failed: {e}")
        raise to_http_exception(e)
