"""Encoding webhook receivers.

Both receivers authenticate the caller, answer 200 straight away so the
sender does not retry, and apply the events in a background task with a
session of their own.
"""

import hmac
import logging
from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status

from app.core.config import settings
from app.core.database import async_session_maker
from app.core.logging import log_error
from app.core.metrics import ENCODING_WEBHOOK_EVENTS_TOTAL
from app.modules.encoding.events import EncodingEvent
from app.modules.encoding.handler import EncodingEventHandler
from app.modules.encoding.webhooks import (
    parse_encoding_webhook,
    parse_media_job_event,
    validation_code,
)
from app.modules.video.storage import VideoStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

EventProcessor = Callable[[EncodingEvent], Awaitable[Any]]


async def process_encoding_event(event: EncodingEvent) -> None:
    """Apply one event in a fresh session."""
    async with async_session_maker() as session:
        try:
            await EncodingEventHandler(session).handle(event)
            ENCODING_WEBHOOK_EVENTS_TOTAL.labels(
                receiver=event.source, event=event.kind.value, outcome="processed"
            ).inc()
        except Exception as e:
            await session.rollback()
            ENCODING_WEBHOOK_EVENTS_TOTAL.labels(
                receiver=event.source, event=event.kind.value, outcome="error"
            ).inc()
            log_error(logger, "Encoding event processing failed", e,
                      video_id=str(event.video_id), phase=event.phase.value,
                      kind=event.kind.value)


def get_event_processor() -> EventProcessor:
    return process_encoding_event


def get_manifest_url_fn() -> Callable:
    return VideoStorage().manifest_url


def _secret_matches(provided: Optional[str], expected: str) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


@router.post("/encoding/{secret}")
async def cloud_encoding_webhook(
    secret: str,
    request: Request,
    background_tasks: BackgroundTasks,
    processor: EventProcessor = Depends(get_event_processor),
    manifest_url_fn: Callable = Depends(get_manifest_url_fn),
):
    """Receive cloud encoding job notifications."""
    if not _secret_matches(secret, settings.ENCODING_WEBHOOK_SECRET):
        ENCODING_WEBHOOK_EVENTS_TOTAL.labels(
            receiver="cloud", event="unknown", outcome="forbidden"
        ).inc()
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid webhook secret")

    try:
        body = await request.json()
    except ValueError:
        body = None

    event = parse_encoding_webhook(body, manifest_url_fn)
    if event is None:
        event_name = str(body.get("event", "unknown")) if isinstance(body, dict) else "malformed"
        ENCODING_WEBHOOK_EVENTS_TOTAL.labels(
            receiver="cloud", event=event_name, outcome="ignored"
        ).inc()
    else:
        background_tasks.add_task(processor, event)
    return {"ok": True}


@router.post("/media-jobs")
async def media_jobs_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    code: Optional[str] = Query(None),
    processor: EventProcessor = Depends(get_event_processor),
    manifest_url_fn: Callable = Depends(get_manifest_url_fn),
):
    """Receive event-grid style media job state changes."""
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")

    handshake = validation_code(dict(request.headers), body)
    if handshake is not None:
        return {"validationResponse": handshake}

    expected_key = settings.MEDIA_JOBS_WEBHOOK_KEY
    if expected_key:
        provided = request.headers.get("aeg-sas-key") or code
        if not _secret_matches(provided, expected_key):
            ENCODING_WEBHOOK_EVENTS_TOTAL.labels(
                receiver="media_jobs", event="unknown", outcome="forbidden"
            ).inc()
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid webhook key")

    if not isinstance(body, list):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Expected an array of events")

    for item in body:
        event = parse_media_job_event(item, manifest_url_fn)
        if event is None:
            ENCODING_WEBHOOK_EVENTS_TOTAL.labels(
                receiver="media_jobs", event="unknown", outcome="ignored"
            ).inc()
            continue
        background_tasks.add_task(processor, event)
    return {"success": True}
