"""Encoding backend implementations."""

from .cloud import CloudEncodingBackend
from .local import LocalFFmpegBackend
from .passthrough import PassthroughBackend

__all__ = ["CloudEncodingBackend", "LocalFFmpegBackend", "PassthroughBackend"]
