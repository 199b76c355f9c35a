from fastapi import APIRouter, Depends

from errors import ChatError
from logging_config import get_logger
from routers.common import get_client, to_http_exception
from schemas.profiles import LoginRequest, Profile
from session import ClientSession

logger = get_logger(__name__)

session_router = APIRouter(prefix="/session", tags=["session"])


@session_router.post("/login", response_model=Profile)
async def login(login_request: LoginRequest, client: ClientSession = Depends(get_client)):
    logger.info(f"Login request for {login_request.username}")
    try:
        client.identity.sign_in(login_request.username, avatar=login_request.avatar)
        await client.settle()
    except ChatError as e:
        logger.warning(f"Login failed for {login_request.username}: {e}")
        raise to_http_exception(e)
    return client.user


@session_router.post("/logout")
async def logout(client: ClientSession = Depends(get_client)):
    client.identity.sign_out()
    await client.settle()
    return {"message": "Signed out"}


@session_router.get("/state")
async def get_state(client: ClientSession = Depends(get_client)):
    """Full client state tree, as the UI would render it."""
    return client.state.model_dump(mode="json")
