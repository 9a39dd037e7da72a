"""Core module for configuration and utilities."""

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.database import Base, get_db
from app.core.redis import get_redis, redis_client

__all__ = [
    "celery_app",
    "settings",
    "Base",
    "get_db",
    "get_redis",
    "redis_client",
]
