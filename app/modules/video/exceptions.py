"""Video service exceptions.

Each exception carries the HTTP status routers translate it to.
"""

from fastapi import status


class VideoServiceError(Exception):
    """Base exception for video service errors."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class VideoNotFoundError(VideoServiceError):
    """Raised when a video does not exist or is not visible to the caller."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Video not found"):
        super().__init__(message)


class VideoAccessDeniedError(VideoServiceError):
    """Raised when the caller may not mutate the video."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Not authorized to modify this video"):
        super().__init__(message)


class VideoValidationError(VideoServiceError):
    """Raised when an upload or request fails validation."""

    status_code = status.HTTP_400_BAD_REQUEST


class FileTooLargeError(VideoValidationError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class UnsupportedMediaTypeError(VideoValidationError):
    pass


class MediaProbeError(VideoValidationError):
    """Raised when the prober cannot read the upload (malformed file or missing prober)."""


class MediaConstraintError(VideoValidationError):
    """Raised when probed duration or dimensions fall outside configured bounds."""


class PublishBlockedError(VideoServiceError):
    """Raised when a publish attempt is blocked; the message is the blocking reason."""

    status_code = status.HTTP_400_BAD_REQUEST


class InvalidStateTransitionError(VideoServiceError):
    status_code = status.HTTP_409_CONFLICT


class CommentNotFoundError(VideoServiceError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Comment not found"):
        super().__init__(message)


class CommentValidationError(VideoServiceError):
    status_code = status.HTTP_400_BAD_REQUEST


class StorageError(VideoServiceError):
    """Raised when a critical-path storage operation fails."""

