"""Feed exceptions."""

from fastapi import status


class FeedError(Exception):
    """Base exception for feed errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class InvalidFeedModeError(FeedError):
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationRequiredError(FeedError):
    """Raised when a feed mode needs a signed-in viewer."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Authentication required for this feed"):
        super().__init__(message)
