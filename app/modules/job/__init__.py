"""Shared Celery retry configuration."""

from app.modules.job.tasks import RETRY_CONFIGS, BaseTaskWithRetry, RetryConfig

__all__ = [
    "RetryConfig",
    "RETRY_CONFIGS",
    "BaseTaskWithRetry",
]
