"""Encoding exceptions."""


class EncodingError(Exception):
    """Base exception for encoding errors."""


class EncodingBackendUnavailableError(EncodingError):
    """Raised when no encoding backend is configured or usable."""


class EncodingSubmissionError(EncodingError):
    """Raised when a backend rejects or fails a job submission."""
