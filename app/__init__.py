"""Short Video Platform Backend Application.

Short-form video ingestion, two-phase encoding, moderation, engagement
scoring and feeds.

Modules:
    - core: Configuration, database, Redis, Celery, logging, metrics and tracing
    - modules.auth: Bearer token verification
    - modules.video: Video model, state machine, ingestion and API
    - modules.encoding: Encoding backends, job queue and webhooks
    - modules.moderation: Caption, visual and audio moderation
    - modules.feed: Engagement scoring and feeds
    - modules.job: Celery retry configuration
"""

__version__ = "0.1.0"
