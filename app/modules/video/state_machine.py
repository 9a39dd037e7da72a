"""Video state machine.

Every change to a video's encoding, tier, moderation, audio or publication
state is a named Transition: the set of prior states it accepts and the
fields it writes. The same definitions drive two evaluators:

* ``apply`` evaluates a transition against an in-memory VideoState.
* ``VideoStateMachine`` issues a single conditional
  ``UPDATE videos ... WHERE id = :id AND <expected prior state>`` and, when no
  row matched, reloads the row to tell a harmless redelivery (NOOP) from a
  stale or conflicting event (INVALID).

Callbacks arrive at least once and in any order, so transitions never write
unconditionally.
"""

import logging
import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import log_info, log_warning
from app.core.metrics import VIDEO_STATE_TRANSITIONS_TOTAL
from app.modules.video.models import (
    AudioStatus,
    EncodingStatus,
    EncodingTiersStatus,
    ModerationStatus,
    PublishStatus,
    Video,
)

logger = logging.getLogger(__name__)

ENCODING_ERROR_MAX_LENGTH = 500


class Outcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    INVALID = "invalid"
    NOT_FOUND = "not_found"


class _Now:
    """Placeholder resolved to the transition timestamp when written."""

    def __repr__(self) -> str:
        return "NOW"


NOW = _Now()


@dataclass(frozen=True)
class VideoState:
    """The state-bearing fields of a video."""

    encoding_status: str = EncodingStatus.PENDING.value
    encoding_tiers_status: str = EncodingTiersStatus.NONE.value
    moderation_status: str = ModerationStatus.PENDING.value
    audio_status: str = AudioStatus.PENDING.value
    publish_status: str = PublishStatus.DRAFT.value
    is_active: bool = True
    deleted: bool = False
    hls_manifest_url: Optional[str] = None
    mp4_url: Optional[str] = None
    encoding_error: Optional[str] = None
    encoding_started_at: Optional[datetime] = None
    encoding_completed_at: Optional[datetime] = None
    moderation_reason: Optional[str] = None
    moderation_confidence: Optional[float] = None
    moderation_categories: Optional[dict] = None
    scheduled_publish_at: Optional[datetime] = None
    published_at: Optional[datetime] = None

    @classmethod
    def from_video(cls, video: Video) -> "VideoState":
        values = {}
        for f in fields(cls):
            if f.name == "deleted":
                values["deleted"] = video.deleted_at is not None
            else:
                values[f.name] = getattr(video, f.name)
        return cls(**values)

    @property
    def is_watchable(self) -> bool:
        return (
            self.is_active
            and not self.deleted
            and self.encoding_status == EncodingStatus.READY.value
            and bool(self.hls_manifest_url or self.mp4_url)
        )


@dataclass(frozen=True)
class Transition:
    """A named, guarded state change.

    Attributes:
        name: Transition name, used in logs and metrics
        requires: Field name to the set of values the prior state must hold
        sets: Target field values; a state already holding all of them makes
            the transition a NOOP
        extra: Fields written alongside ``sets`` but not compared (timestamps,
            cleared error text)
        redeliverable: Whether a state already holding ``sets`` is a harmless
            repeat. User commands set this to False so that asking again for a
            state the video is already in is INVALID.
    """

    name: str
    requires: dict[str, frozenset] = field(default_factory=dict)
    sets: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)
    redeliverable: bool = True

    def accepts(self, state: VideoState) -> bool:
        return all(getattr(state, name) in allowed for name, allowed in self.requires.items())

    def is_repeat_of(self, state: VideoState) -> bool:
        return self.redeliverable and self.is_reached_by(state)

    def is_reached_by(self, state: VideoState) -> bool:
        return all(getattr(state, name) == value for name, value in self.sets.items())

    def values(self, now: datetime) -> dict[str, Any]:
        merged = {**self.extra, **self.sets}
        return {k: (now if v is NOW else v) for k, v in merged.items()}


@dataclass
class TransitionResult:
    outcome: Outcome
    state: Optional[VideoState] = None

    @property
    def applied(self) -> bool:
        return self.outcome == Outcome.APPLIED


def _one_of(*values: Any) -> frozenset:
    return frozenset(v.value if isinstance(v, Enum) else v for v in values)


def classify(state: VideoState, transition: Transition) -> Outcome:
    """Decide what evaluating ``transition`` against ``state`` would do."""
    if transition.accepts(state):
        return Outcome.APPLIED
    if transition.is_repeat_of(state):
        return Outcome.NOOP
    return Outcome.INVALID


def apply(
    state: VideoState, transition: Transition, now: Optional[datetime] = None
) -> TransitionResult:
    """Evaluate a transition against an in-memory state."""
    outcome = classify(state, transition)
    if outcome != Outcome.APPLIED:
        return TransitionResult(outcome, state)
    now = now or datetime.now(timezone.utc)
    return TransitionResult(outcome, replace(state, **transition.values(now)))


# ============================================
# Encoding transitions
# ============================================

def mark_encoding_started() -> Transition:
    return Transition(
        name="mark_encoding_started",
        requires={"encoding_status": _one_of(EncodingStatus.PENDING)},
        sets={"encoding_status": EncodingStatus.ENCODING.value},
        extra={"encoding_started_at": NOW},
    )


def mark_phase1_ready(manifest_url: Optional[str], mp4_url: Optional[str] = None) -> Transition:
    sets = {
        "encoding_status": EncodingStatus.READY.value,
        "encoding_tiers_status": EncodingTiersStatus.PARTIAL.value,
        "hls_manifest_url": manifest_url,
    }
    if mp4_url is not None:
        sets["mp4_url"] = mp4_url
    return Transition(
        name="mark_phase1_ready",
        requires={
            "encoding_status": _one_of(EncodingStatus.PENDING, EncodingStatus.ENCODING),
        },
        sets=sets,
        extra={"encoding_error": None, "encoding_completed_at": NOW},
    )


def mark_phase1_failed(error: str) -> Transition:
    return Transition(
        name="mark_phase1_failed",
        requires={
            "encoding_status": _one_of(EncodingStatus.PENDING, EncodingStatus.ENCODING),
        },
        sets={
            "encoding_status": EncodingStatus.FAILED.value,
            "encoding_tiers_status": EncodingTiersStatus.NONE.value,
            "encoding_error": (error or "Encoding failed")[:ENCODING_ERROR_MAX_LENGTH],
        },
        extra={"encoding_completed_at": NOW},
    )


def mark_phase2_ready() -> Transition:
    return Transition(
        name="mark_phase2_ready",
        requires={
            "encoding_status": _one_of(EncodingStatus.READY),
            "encoding_tiers_status": _one_of(
                EncodingTiersStatus.PARTIAL, EncodingTiersStatus.PARTIAL_FAILED
            ),
        },
        sets={"encoding_tiers_status": EncodingTiersStatus.ALL.value},
    )


def mark_phase2_failed() -> Transition:
    return Transition(
        name="mark_phase2_failed",
        requires={
            "encoding_status": _one_of(EncodingStatus.READY),
            "encoding_tiers_status": _one_of(EncodingTiersStatus.PARTIAL),
        },
        sets={"encoding_tiers_status": EncodingTiersStatus.PARTIAL_FAILED.value},
    )


def mark_phase2_resubmitted() -> Transition:
    return Transition(
        name="mark_phase2_resubmitted",
        requires={
            "encoding_status": _one_of(EncodingStatus.READY),
            "encoding_tiers_status": _one_of(EncodingTiersStatus.PARTIAL_FAILED),
        },
        sets={"encoding_tiers_status": EncodingTiersStatus.PARTIAL.value},
        redeliverable=False,
    )


def reset_for_reprocess() -> Transition:
    return Transition(
        name="reset_for_reprocess",
        requires={
            "publish_status": _one_of(PublishStatus.DRAFT, PublishStatus.SCHEDULED),
            "deleted": frozenset({False}),
        },
        sets={
            "encoding_status": EncodingStatus.PENDING.value,
            "encoding_tiers_status": EncodingTiersStatus.NONE.value,
            "hls_manifest_url": None,
            "mp4_url": None,
            "encoding_error": None,
        },
        extra={"encoding_started_at": None, "encoding_completed_at": None},
    )


# ============================================
# Moderation transitions
# ============================================

def record_moderation_result(
    moderation_status: ModerationStatus,
    audio_status: AudioStatus,
    reason: Optional[str] = None,
    confidence: Optional[float] = None,
    categories: Optional[dict] = None,
) -> Transition:
    """Automatic moderation outcome.

    Only applies while moderation is still PENDING, so it never overrides an
    admin decision or an earlier rejection.
    """
    sets: dict[str, Any] = {
        "moderation_status": moderation_status.value,
        "audio_status": audio_status.value,
    }
    extra: dict[str, Any] = {
        "moderation_reason": reason,
        "moderation_confidence": confidence,
        "moderation_categories": categories,
    }
    if moderation_status == ModerationStatus.REJECTED:
        sets["is_active"] = False
        sets["publish_status"] = PublishStatus.DRAFT.value
        extra["scheduled_publish_at"] = None
    return Transition(
        name=f"moderation_{moderation_status.value.lower()}",
        requires={"moderation_status": _one_of(ModerationStatus.PENDING)},
        sets=sets,
        extra=extra,
    )


def admin_approve() -> Transition:
    return Transition(
        name="admin_approve",
        requires={
            "moderation_status": _one_of(ModerationStatus.PENDING, ModerationStatus.REJECTED),
            "deleted": frozenset({False}),
        },
        sets={"moderation_status": ModerationStatus.APPROVED.value, "is_active": True},
        extra={"moderation_reason": None},
    )


def admin_reject(reason: str) -> Transition:
    return Transition(
        name="admin_reject",
        requires={
            "moderation_status": _one_of(ModerationStatus.PENDING, ModerationStatus.APPROVED),
        },
        sets={
            "moderation_status": ModerationStatus.REJECTED.value,
            "is_active": False,
            "publish_status": PublishStatus.DRAFT.value,
            "moderation_reason": reason,
        },
        extra={"scheduled_publish_at": None},
    )


# ============================================
# Publication transitions
# ============================================

def publish() -> Transition:
    return Transition(
        name="publish",
        requires={
            "encoding_status": _one_of(EncodingStatus.READY),
            "moderation_status": _one_of(ModerationStatus.APPROVED),
            "is_active": frozenset({True}),
            "deleted": frozenset({False}),
            "publish_status": _one_of(PublishStatus.DRAFT, PublishStatus.SCHEDULED),
        },
        sets={"publish_status": PublishStatus.PUBLISHED.value},
        extra={"published_at": NOW, "scheduled_publish_at": None},
    )


def schedule(publish_at: datetime) -> Transition:
    return Transition(
        name="schedule",
        requires={
            "publish_status": _one_of(PublishStatus.DRAFT, PublishStatus.SCHEDULED),
            "deleted": frozenset({False}),
        },
        sets={
            "publish_status": PublishStatus.SCHEDULED.value,
            "scheduled_publish_at": publish_at,
        },
    )


def unschedule() -> Transition:
    return Transition(
        name="unschedule",
        requires={"publish_status": _one_of(PublishStatus.SCHEDULED)},
        sets={"publish_status": PublishStatus.DRAFT.value},
        extra={"scheduled_publish_at": None},
        redeliverable=False,
    )


def soft_delete() -> Transition:
    return Transition(
        name="soft_delete",
        requires={"deleted": frozenset({False})},
        sets={
            "deleted": True,
            "is_active": False,
            "publish_status": PublishStatus.DRAFT.value,
        },
        extra={"scheduled_publish_at": None},
    )


def publish_blocking_reason(state: VideoState) -> Optional[str]:
    """Explain why a video cannot be published, or None if it can."""
    if state.deleted:
        return "Video has been deleted"
    if state.publish_status == PublishStatus.PUBLISHED.value:
        return "Video is already published"
    if state.encoding_status != EncodingStatus.READY.value:
        return "Video encoding not complete"
    if state.moderation_status == ModerationStatus.REJECTED.value:
        return "Video was rejected by moderation"
    if state.moderation_status != ModerationStatus.APPROVED.value:
        return "Video not approved for publishing"
    if not state.is_active:
        return "Video is not active"
    return None


# ============================================
# Database-backed evaluator
# ============================================

def _column_condition(name: str, allowed: frozenset):
    if name == "deleted":
        if allowed == frozenset({False}):
            return Video.deleted_at.is_(None)
        return Video.deleted_at.isnot(None)
    column = getattr(Video, name)
    if len(allowed) == 1:
        return column == next(iter(allowed))
    return column.in_(sorted(allowed, key=str))


def _column_values(values: dict[str, Any], now: datetime) -> dict[str, Any]:
    columns = dict(values)
    if "deleted" in columns:
        columns["deleted_at"] = now if columns.pop("deleted") else None
    columns["updated_at"] = now
    return columns


def build_update(video_id: uuid.UUID, transition: Transition, now: datetime):
    """Build the conditional UPDATE for a transition."""
    conditions = [_column_condition(n, a) for n, a in transition.requires.items()]
    return (
        update(Video)
        .where(Video.id == video_id, *conditions)
        .values(**_column_values(transition.values(now), now))
        .execution_options(synchronize_session=False)
    )


class VideoStateMachine:
    """Named, guarded transitions for one video at a time.

    The caller owns the transaction; transitions flush but do not commit.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _load_state(self, video_id: uuid.UUID) -> Optional[VideoState]:
        result = await self.session.execute(
            select(Video)
            .where(Video.id == video_id)
            .execution_options(populate_existing=True)
        )
        video = result.scalar_one_or_none()
        return VideoState.from_video(video) if video else None

    async def _apply(self, video_id: uuid.UUID, transition: Transition) -> TransitionResult:
        now = datetime.now(timezone.utc)
        result = await self.session.execute(build_update(video_id, transition, now))
        state = await self._load_state(video_id)

        if state is None:
            return TransitionResult(Outcome.NOT_FOUND)
        if result.rowcount == 1:
            return TransitionResult(Outcome.APPLIED, state)
        return TransitionResult(
            Outcome.NOOP if transition.is_repeat_of(state) else Outcome.INVALID,
            state,
        )

    async def apply(self, video_id: uuid.UUID, transition: Transition) -> TransitionResult:
        """Apply a transition and record its outcome."""
        result = await self._apply(video_id, transition)

        VIDEO_STATE_TRANSITIONS_TOTAL.labels(
            transition=transition.name, outcome=result.outcome.value
        ).inc()
        if result.outcome == Outcome.APPLIED:
            log_info(logger, "Video state transition applied",
                     video_id=str(video_id), transition=transition.name)
        elif result.outcome != Outcome.NOOP:
            log_warning(
                logger,
                "Video state transition rejected",
                video_id=str(video_id),
                transition=transition.name,
                outcome=result.outcome.value,
                encoding_status=result.state.encoding_status if result.state else None,
                tiers_status=result.state.encoding_tiers_status if result.state else None,
            )
        return result

    async def mark_encoding_started(self, video_id: uuid.UUID) -> TransitionResult:
        return await self.apply(video_id, mark_encoding_started())

    async def mark_phase1_ready(
        self, video_id: uuid.UUID, manifest_url: Optional[str], mp4_url: Optional[str] = None
    ) -> TransitionResult:
        return await self.apply(video_id, mark_phase1_ready(manifest_url, mp4_url))

    async def mark_phase1_failed(self, video_id: uuid.UUID, error: str) -> TransitionResult:
        return await self.apply(video_id, mark_phase1_failed(error))

    async def mark_phase2_ready(self, video_id: uuid.UUID) -> TransitionResult:
        return await self.apply(video_id, mark_phase2_ready())

    async def mark_phase2_failed(self, video_id: uuid.UUID) -> TransitionResult:
        return await self.apply(video_id, mark_phase2_failed())

    async def mark_phase2_resubmitted(self, video_id: uuid.UUID) -> TransitionResult:
        return await self.apply(video_id, mark_phase2_resubmitted())

    async def reset_for_reprocess(self, video_id: uuid.UUID) -> TransitionResult:
        return await self.apply(video_id, reset_for_reprocess())

    async def record_moderation_result(
        self,
        video_id: uuid.UUID,
        moderation_status: ModerationStatus,
        audio_status: AudioStatus,
        reason: Optional[str] = None,
        confidence: Optional[float] = None,
        categories: Optional[dict] = None,
    ) -> TransitionResult:
        return await self.apply(
            video_id,
            record_moderation_result(
                moderation_status, audio_status, reason, confidence, categories
            ),
        )

    async def admin_approve(self, video_id: uuid.UUID) -> TransitionResult:
        return await self.apply(video_id, admin_approve())

    async def admin_reject(self, video_id: uuid.UUID, reason: str) -> TransitionResult:
        return await self.apply(video_id, admin_reject(reason))

    async def publish(self, video_id: uuid.UUID) -> TransitionResult:
        return await self.apply(video_id, publish())

    async def schedule(self, video_id: uuid.UUID, publish_at: datetime) -> TransitionResult:
        return await self.apply(video_id, schedule(publish_at))

    async def unschedule(self, video_id: uuid.UUID) -> TransitionResult:
        return await self.apply(video_id, unschedule())

    async def soft_delete(self, video_id: uuid.UUID) -> TransitionResult:
        return await self.apply(video_id, soft_delete())
