"""Webhook payload parsing.

Translates each backend's callback payload into EncodingEvents. Parsing is
pure: malformed or irrelevant payloads yield None and never touch state.
"""

import json
import logging
import re
import uuid
from typing import Any, Callable, Optional

from app.modules.encoding.events import EncodingEvent, EncodingEventKind
from app.modules.encoding.interface import EncodingPhase

logger = logging.getLogger(__name__)

ERROR_MAX_LENGTH = 500

CLOUD_EVENT_KINDS = {
    "job.started": EncodingEventKind.STARTED,
    "job.processing": EncodingEventKind.STARTED,
    "job.completed": EncodingEventKind.COMPLETED,
    "job.failed": EncodingEventKind.FAILED,
}
# Per-output progress, logged only
CLOUD_INFORMATIONAL_EVENTS = ("output.completed", "output.failed")

MEDIA_JOB_STATES = {
    "Processing": (EncodingEventKind.STARTED, None),
    "Finished": (EncodingEventKind.COMPLETED, None),
    "Error": (EncodingEventKind.FAILED, "Encoding job error"),
    "Canceled": (EncodingEventKind.FAILED, "Encoding job canceled"),
}

_JOB_NAME_PATTERN = re.compile(
    r"^job-(?P<video_id>[0-9a-fA-F-]{36})(?P<phase2>-p2)?$"
)


def _parse_uuid(value: Any) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None


def parse_encoding_webhook(
    body: dict,
    manifest_url_fn: Callable[[uuid.UUID], str],
) -> Optional[EncodingEvent]:
    """Parse a cloud encoding notification.

    Args:
        body: Notification JSON
        manifest_url_fn: Maps a video ID to its public master manifest URL

    Returns:
        The event, or None when the notification should be ignored
    """
    if not isinstance(body, dict):
        return None

    event_name = body.get("event")
    if not isinstance(event_name, str):
        return None
    kind = CLOUD_EVENT_KINDS.get(event_name)
    if kind is None:
        if event_name in CLOUD_INFORMATIONAL_EVENTS:
            logger.info("Encoding output event: %s", event_name)
        return None

    metadata = body.get("metadata") or {}
    if not isinstance(metadata, dict):
        return None
    video_id = _parse_uuid(metadata.get("video_id"))
    if video_id is None:
        logger.warning("Encoding webhook without a valid video_id (event=%s)", event_name)
        return None

    phase = EncodingPhase.parse(metadata.get("phase", "1"))
    error = None
    manifest_url = None
    if kind == EncodingEventKind.FAILED:
        error = json.dumps(body.get("data") or body.get("error") or {}, default=str)
        error = error[:ERROR_MAX_LENGTH]
    elif kind == EncodingEventKind.COMPLETED:
        manifest_url = manifest_url_fn(video_id)

    return EncodingEvent(
        video_id=video_id,
        phase=phase,
        kind=kind,
        manifest_url=manifest_url,
        error=error,
        input_blob_ref=metadata.get("input_blob_name"),
        source="cloud",
    )


def parse_job_name(subject: str) -> Optional[tuple[uuid.UUID, EncodingPhase]]:
    """Extract (video_id, phase) from a ``.../jobs/job-{id}[-p2]`` subject."""
    if not subject or "jobs/" not in subject:
        return None
    name = subject.rsplit("jobs/", 1)[1].strip("/").split("/")[0]
    match = _JOB_NAME_PATTERN.match(name)
    if not match:
        return None
    video_id = _parse_uuid(match.group("video_id"))
    if video_id is None:
        return None
    phase = EncodingPhase.PHASE_2 if match.group("phase2") else EncodingPhase.PHASE_1
    return video_id, phase


def parse_media_job_event(
    event: dict,
    manifest_url_fn: Callable[[uuid.UUID], str],
) -> Optional[EncodingEvent]:
    """Parse one event-grid style media job event."""
    if not isinstance(event, dict):
        return None
    if "JobStateChange" not in str(event.get("eventType", "")):
        return None

    parsed = parse_job_name(str(event.get("subject") or ""))
    if parsed is None:
        logger.warning("Media job event with unrecognised subject: %s", event.get("subject"))
        return None
    video_id, phase = parsed

    data = event.get("data")
    state = data.get("state") if isinstance(data, dict) else None
    mapping = MEDIA_JOB_STATES.get(state) if isinstance(state, str) else None
    if mapping is None:
        return None
    kind, error = mapping

    return EncodingEvent(
        video_id=video_id,
        phase=phase,
        kind=kind,
        manifest_url=manifest_url_fn(video_id) if kind == EncodingEventKind.COMPLETED else None,
        error=error,
        source="media_jobs",
    )


def validation_code(headers: dict, body: Any) -> Optional[str]:
    """Return the handshake code of a subscription-validation delivery."""
    if headers.get("aeg-event-type") != "SubscriptionValidation":
        return None
    events = body if isinstance(body, list) else [body]
    for event in events:
        data = event.get("data") if isinstance(event, dict) else None
        if isinstance(data, dict):
            code = data.get("validationCode")
            if code:
                return code
    return None
