"""Client-side state tree and its transitions.

Everything a connected client shows lives in one `AppState`. The only way to
change it is `reduce(state, action)`, a pure function returning a new state;
`Store` holds the current value, applies actions one at a time and tells its
listeners. Transitions never raise: unknown room or user ids leave the state
as it was.
"""
from typing import Callable, Literal, Optional, Union

from pydantic import BaseModel, Field

from logging_config import get_logger
from schemas.games import Game
from schemas.messages import Message
from schemas.profiles import Profile
from schemas.rooms import Room

logger = get_logger(__name__)


class AppState(BaseModel):
    current_user: Optional[Profile] = None
    current_room: Optional[Room] = None
    users: dict[str, Profile] = Field(default_factory=dict)
    rooms: dict[str, Room] = Field(default_factory=dict)
    games: dict[str, Game] = Field(default_factory=dict)
    # room id -> messages in arrival order
    messages: dict[str, list[Message]] = Field(default_factory=dict)


class SetCurrentUser(BaseModel):
    type: Literal["SET_CURRENT_USER"] = "SET_CURRENT_USER"
    user: Profile


class SetCurrentRoom(BaseModel):
    type: Literal["SET_CURRENT_ROOM"] = "SET_CURRENT_ROOM"
    room: Room


class AddMessage(BaseModel):
    type: Literal["ADD_MESSAGE"] = "ADD_MESSAGE"
    message: Message


class SetMessages(BaseModel):
    type: Literal["SET_MESSAGES"] = "SET_MESSAGES"
    room_id: str
    messages: list[Message]


class AddRoom(BaseModel):
    type: Literal["ADD_ROOM"] = "ADD_ROOM"
    room: Room


class UpdateRoom(BaseModel):
    type: Literal["UPDATE_ROOM"] = "UPDATE_ROOM"
    room: Room


class JoinRoom(BaseModel):
    type: Literal["JOIN_ROOM"] = "JOIN_ROOM"
    room_id: str
    user_id: str


class LeaveRoom(BaseModel):
    type: Literal["LEAVE_ROOM"] = "LEAVE_ROOM"
    room_id: str
    user_id: str


class AddGame(BaseModel):
    type: Literal["ADD_GAME"] = "ADD_GAME"
    game: Game


class UpdateGame(BaseModel):
    type: Literal["UPDATE_GAME"] = "UPDATE_GAME"
    game: Game


class UpsertUser(BaseModel):
    type: Literal["UPSERT_USER"] = "UPSERT_USER"
    user: Profile


class SetUserOnlineStatus(BaseModel):
    type: Literal["SET_USER_ONLINE_STATUS"] = "SET_USER_ONLINE_STATUS"
    user_id: str
    is_online: bool


class Logout(BaseModel):
    type: Literal["LOGOUT"] = "LOGOUT"


Action = Union[
    SetCurrentUser, SetCurrentRoom, AddMessage, SetMessages, AddRoom, UpdateRoom, JoinRoom,
    LeaveRoom, AddGame, UpdateGame, UpsertUser, SetUserOnlineStatus, Logout,
]


def _set_current_user(state: AppState, action: SetCurrentUser) -> AppState:
    return state.model_copy(update={"current_user": action.user})


def _set_current_room(state: AppState, action: SetCurrentRoom) -> AppState:
    return state.model_copy(update={"current_room": action.room})


def _add_message(state: AppState, action: AddMessage) -> AppState:
    room_id = action.message.room_id
    existing = state.messages.get(room_id, [])
    # A subscription echo of a message already appended locally is dropped
    if any(m.id == action.message.id for m in existing):
        return state
    return state.model_copy(update={"messages": {**state.messages, room_id: [*existing, action.message]}})


def _set_messages(state: AppState, action: SetMessages) -> AppState:
    return state.model_copy(update={"messages": {**state.messages, action.room_id: list(action.messages)}})


def _add_room(state: AppState, action: AddRoom) -> AppState:
    return state.model_copy(update={"rooms": {**state.rooms, action.room.id: action.room}})


def _update_room(state: AppState, action: UpdateRoom) -> AppState:
    current = state.current_room
    if current is not None and current.id == action.room.id:
        current = action.room
    return state.model_copy(update={
        "rooms": {**state.rooms, action.room.id: action.room},
        "current_room": current,
    })


def _with_room(state: AppState, room: Room) -> AppState:
    current = state.current_room
    if current is not None and current.id == room.id:
        current = room
    return state.model_copy(update={"rooms": {**state.rooms, room.id: room}, "current_room": current})


def _join_room(state: AppState, action: JoinRoom) -> AppState:
    room = state.rooms.get(action.room_id)
    if room is None or action.user_id in room.members:
        return state
    return _with_room(state, room.model_copy(update={"members": [*room.members, action.user_id]}))


def _leave_room(state: AppState, action: LeaveRoom) -> AppState:
    room = state.rooms.get(action.room_id)
    if room is None or action.user_id not in room.members:
        return state
    return _with_room(state, room.model_copy(update={
        "members": [m for m in room.members if m != action.user_id],
        "moderators": [m for m in room.moderators if m != action.user_id],
    }))


def _put_game(state: AppState, action: Union[AddGame, UpdateGame]) -> AppState:
    return state.model_copy(update={"games": {**state.games, action.game.id: action.game}})


def _with_user(state: AppState, user: Profile) -> AppState:
    current = state.current_user
    if current is not None and current.id == user.id:
        current = user
    return state.model_copy(update={"users": {**state.users, user.id: user}, "current_user": current})


def _upsert_user(state: AppState, action: UpsertUser) -> AppState:
    return _with_user(state, action.user)


def _set_user_online_status(state: AppState, action: SetUserOnlineStatus) -> AppState:
    user = state.users.get(action.user_id)
    if user is None:
        return state
    return _with_user(state, user.model_copy(update={"is_online": action.is_online}))


def _logout(state: AppState, action: Logout) -> AppState:
    return AppState()


_HANDLERS = {
    SetCurrentUser: _set_current_user,
    SetCurrentRoom: _set_current_room,
    AddMessage: _add_message,
    SetMessages: _set_messages,
    AddRoom: _add_room,
    UpdateRoom: _update_room,
    JoinRoom: _join_room,
    LeaveRoom: _leave_room,
    AddGame: _put_game,
    UpdateGame: _put_game,
    UpsertUser: _upsert_user,
    SetUserOnlineStatus: _set_user_online_status,
    Logout: _logout,
}


def reduce(state: AppState, action: Action) -> AppState:
    handler = _HANDLERS.get(type(action))
    if handler is None:
        logger.warning(f"Ignoring unknown action {action!r}")
        return state
    return handler(state, action)


Listener = Callable[[AppState, Action], None]


class Store:
    """Holds the current AppState and notifies listeners after every dispatch."""

    def __init__(self, initial: Optional[AppState] = None):
        self._state = initial or AppState()
        self._listeners: list[Listener] = []

    @property
    def state(self) -> AppState:
        return self._state

    def dispatch(self, action: Action) -> AppState:
        self._state = reduce(self._state, action)
        logger.debug(f"Dispatched {action.type}")
        for listener in list(self._listeners):
            try:
                listener(self._state, action)
            except Exception as e:
                logger.error(f"State listener failed after {action.type}: {e}", exc_info=True)
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
