"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
Upload constraints, encoding, moderation and feed tuning are configuration,
not compiled-in constants.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Short Video API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    # development, staging, production
    ENVIRONMENT: str = "development"

    # Database - REQUIRED
    DATABASE_URL: str

    # Redis - REQUIRED
    REDIS_URL: str

    # Auth boundary - REQUIRED (tokens are issued by the external auth service)
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ADMIN_ROLE: str = "admin"

    # CORS
    CORS_ORIGINS: list[str] = []

    # Storage Configuration
    # STORAGE_BACKEND: local, s3, minio
    STORAGE_BACKEND: str = "local"

    # Local Storage (when STORAGE_BACKEND=local)
    LOCAL_STORAGE_PATH: str = "./storage"

    # S3/MinIO/Compatible Storage (when STORAGE_BACKEND=s3 or minio)
    STORAGE_BUCKET: str = ""
    STORAGE_REGION: str = ""
    STORAGE_ACCESS_KEY: str = ""
    STORAGE_SECRET_KEY: str = ""
    STORAGE_ENDPOINT_URL: Optional[str] = None  # Required for MinIO
    STORAGE_USE_SSL: bool = True

    # CDN Configuration (optional, for any backend)
    CDN_DOMAIN: Optional[str] = None
    CDN_ENABLED: bool = False

    # Upload limits
    VIDEO_MAX_SIZE_BYTES: int = 524_288_000  # 500MB
    VIDEO_MAX_DURATION_SECONDS: float = 180.0
    VIDEO_MIN_DURATION_SECONDS: float = 1.0
    VIDEO_MIN_DIMENSION: int = 144
    VIDEO_MAX_DIMENSION: int = 4096
    VIDEO_ALLOWED_MIME_TYPES: list[str] = [
        "video/mp4",
        "video/webm",
        "video/quicktime",
        "video/x-msvideo",
        "video/x-matroska",
    ]
    VIDEO_ALLOWED_EXTENSIONS: list[str] = [".mp4", ".webm", ".mov", ".avi", ".mkv"]
    VIDEO_CAPTION_MAX_LENGTH: int = 2200
    THUMBNAIL_TIMEOUT_SECONDS: float = 10.0
    THUMBNAIL_OFFSET_SECONDS: float = 1.0

    # Media tools
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    FFMPEG_TIMEOUT_SECONDS: int = 600
    ENCODING_TEMP_DIR: str = "/tmp/encoding"

    # Encoding
    # ENCODING_BACKEND: local (FFmpeg worker), cloud (remote encoding API), none
    ENCODING_BACKEND: str = "local"
    ENCODING_INPUT_URL_TTL_MINUTES: int = 60
    ENCODING_JOB_LOCK_SECONDS: int = 3600
    ENCODING_PHASE2_AUTO_RETRY: bool = False
    ENCODING_PHASE2_MAX_ATTEMPTS: int = 3
    CLOUD_ENCODING_API_URL: str = "https://api.coconut.co/v2/jobs"
    CLOUD_ENCODING_API_KEY: str = ""
    ENCODING_WEBHOOK_SECRET: str = ""
    ENCODING_WEBHOOK_BASE_URL: str = ""
    MEDIA_JOBS_WEBHOOK_KEY: str = ""

    # Moderation
    CONTENT_SAFETY_ENDPOINT: str = ""
    CONTENT_SAFETY_KEY: str = ""
    CONTENT_SAFETY_API_VERSION: str = "2023-10-01"
    MODERATION_FRAME_SAMPLE_COUNT: int = 5
    MODERATION_REJECT_THRESHOLD: float = 0.9
    MODERATION_REVIEW_THRESHOLD: float = 0.5
    MODERATION_BLOCKED_KEYWORDS: list[str] = []
    # AUDIO_POLICY: STRICT, WARN, PERMISSIVE
    AUDIO_POLICY: str = "WARN"
    MODERATION_ANALYSIS_TIMEOUT_SECONDS: float = 30.0

    # OpenAI API (audio transcription)
    OPENAI_API_KEY: str = ""
    OPENAI_TRANSCRIPTION_MODEL: str = "whisper-1"

    # Feed
    FEED_DEFAULT_LIMIT: int = 15
    FEED_MAX_LIMIT: int = 50
    FEED_CANDIDATE_WINDOW_DAYS: int = 30
    FEED_MAX_CANDIDATES: int = 200
    FEED_TRENDING_WINDOW_HOURS: int = 24
    FEED_RECENCY_HALF_LIFE_HOURS: float = 48.0
    FEED_FOLLOWING_HALF_LIFE_HOURS: float = 24.0
    FEED_FOLLOWING_MAX: int = 100
    FEED_LIKED_HISTORY_SIZE: int = 50

    # Celery
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        """Whether the service runs in the production environment."""
        return self.ENVIRONMENT.lower() == "production"


settings = Settings()
