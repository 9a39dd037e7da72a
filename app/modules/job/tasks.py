"""Retry policies for background video jobs.

Storage cleanup retries inside the task through ``BaseTaskWithRetry``.
The automatic Phase-2 retry schedules a fresh task per attempt and only
borrows the backoff from ``RETRY_CONFIGS["encoding_phase2"]``.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from celery import Task

from app.core.logging import log_error, log_warning

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """Exponential backoff: initial_delay * multiplier ** (attempt - 1), capped."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 300.0
    backoff_multiplier: float = 2.0

    def calculate_delay(self, attempt: int) -> float:
        """Delay in seconds before ``attempt`` (1-indexed)."""
        if attempt < 1:
            return self.initial_delay

        delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)

    def exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_attempts


RETRY_CONFIGS = {
    # Raw, encoded and thumbnail objects of a deleted video
    "storage_cleanup": RetryConfig(max_attempts=5, initial_delay=5.0, max_delay=300.0),
    # Automatic Phase-2 resubmission after PARTIAL_FAILED
    "encoding_phase2": RetryConfig(max_attempts=3, initial_delay=60.0, max_delay=900.0),
    "default": RetryConfig(max_attempts=3, initial_delay=1.0, max_delay=60.0),
}


class BaseTaskWithRetry(Task):
    """Celery task retrying with the backoff named by ``retry_config_name``."""

    abstract = True
    retry_config_name: str = "default"

    @property
    def retry_config(self) -> RetryConfig:
        return RETRY_CONFIGS.get(self.retry_config_name, RETRY_CONFIGS["default"])

    def on_failure(self, exc: Exception, task_id: str, args: tuple, kwargs: dict, einfo: Any) -> None:
        log_error(logger, "Video job failed", exc, task=self.name, task_id=task_id,
                  video_id=args[0] if args else None)

    def on_retry(self, exc: Exception, task_id: str, args: tuple, kwargs: dict, einfo: Any) -> None:
        log_warning(logger, "Video job retry scheduled", task=self.name, task_id=task_id,
                    video_id=args[0] if args else None, error=str(exc)[:200])

    def retry_with_backoff(self, exc: Exception, attempt: Optional[int] = None) -> None:
        """Retry after the configured backoff.

        ``attempt`` defaults to the current Celery retry count plus one.

        Raises:
            MaxRetriesExceededError: Once the attempt budget is spent
        """
        if attempt is None:
            attempt = self.request.retries + 1
        config = self.retry_config

        if config.exhausted(attempt):
            raise self.MaxRetriesExceededError(
                f"{self.name} gave up after {config.max_attempts} attempts"
            )

        raise self.retry(exc=exc, countdown=config.calculate_delay(attempt))
