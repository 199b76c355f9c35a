import secrets
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel, Field

from errors import ValidationFailed
from logging_config import get_logger

logger = get_logger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

AuthCallback = Callable[[str, Optional["AuthSession"]], None]


class AuthSession(BaseModel):
    user_id: str
    username: str
    avatar: Optional[str] = None
    access_token: str = Field(default_factory=lambda: secrets.token_urlsafe(24))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def user_id_for(username: str) -> str:
    """Stable id for a username, so signing in again maps to the same profile."""
    return uuid.uuid5(uuid.NAMESPACE_URL, f"chat-user:{username.strip().lower()}").hex


class LocalIdentityProvider:
    """Session holder for a single local client.

    Mirrors the contract of a hosted identity service: `get_session()` and
    `on_auth_state_change(callback)`, where callbacks receive the event name and
    the new session (None after sign-out).
    """

    def __init__(self):
        self._session: Optional[AuthSession] = None
        self._listeners: list[AuthCallback] = []

    def get_session(self) -> Optional[AuthSession]:
        return self._session

    def sign_in(self, username: str, avatar: Optional[str] = None) -> AuthSession:
        username = (username or "").strip()
        if not username:
            raise ValidationFailed("Username is required")
        self._session = AuthSession(user_id=user_id_for(username), username=username, avatar=avatar)
        logger.info(f"Signed in as {username} ({self._session.user_id})")
        self._notify(SIGNED_IN)
        return self._session

    def sign_out(self):
        if self._session is None:
            return
        logger.info(f"Signed out {self._session.username}")
        self._session = None
        self._notify(SIGNED_OUT)

    def on_auth_state_change(self, callback: AuthCallback) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, event: str):
        for callback in list(self._listeners):
            try:
                callback(event, self._session)
            except Exception as e:
                logger.error(f"Auth state listener failed on {event}: {e}", exc_info=True)
