class ChatError(Exception):
    """Base class for every error raised by the chat client."""


class ValidationFailed(ChatError):
    """Input rejected before any write was attempted."""


class NotFound(ChatError):
    pass


class PermissionDenied(ChatError):
    pass


class InvalidTransition(ChatError):
    """A game status change outside the allowed lifecycle."""


class IllegalMove(ChatError):
    """A board claim that the rules reject. The board is left untouched."""


class StoreError(ChatError):
    """The remote store failed to read or write."""


class GameCreationFailed(ChatError):
    """Game creation stopped part way.

    `saga` holds the steps already committed so the caller can resume it.
    """

    def __init__(self, message: str, saga=None):
        super().__init__(message)
        self.saga = saga
