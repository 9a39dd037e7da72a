"""Moderation exceptions."""


class ModerationError(Exception):
    """Base exception for moderation errors."""


class ContentSafetyUnavailableError(ModerationError):
    """Raised when the content-safety service cannot be reached or fails."""


class TranscriptionError(ModerationError):
    """Raised when audio transcription fails."""


class MediaExtractionError(ModerationError):
    """Raised when frames or audio cannot be extracted from a video."""
