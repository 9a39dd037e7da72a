"""Typed encoding events.

Both webhook receivers and the local worker translate whatever their backend
reports into an EncodingEvent; one idempotent handler consumes them.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.modules.encoding.interface import EncodingPhase


class EncodingEventKind(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class EncodingEvent:
    video_id: uuid.UUID
    phase: EncodingPhase
    kind: EncodingEventKind
    manifest_url: Optional[str] = None
    mp4_url: Optional[str] = None
    error: Optional[str] = None
    input_blob_ref: Optional[str] = None
    source: str = "unknown"
