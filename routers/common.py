from fastapi import HTTPException, Request

from errors import (
    ChatError,
    GameCreationFailed,
    IllegalMove,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    StoreError,
    ValidationFailed,
)
from session import ClientSession

STATUS_CODES = {
    ValidationFailed: 400,
    NotFound: 404,
    PermissionDenied: 403,
    InvalidTransition: 409,
    IllegalMove: 409,
    StoreError: 502,
    GameCreationFailed: 502,
}


def get_client(request: Request) -> ClientSession:
    return request.app.state.client


def to_http_exception(error: ChatError) -> HTTPException:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


def require_user(client: ClientSession):
    if client.user is None:
        raise HTTPException(status_code=401, detail="Sign in first")
    return client.user
