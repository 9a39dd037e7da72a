"""Application modules.

- auth: bearer token verification
- video: videos, likes, comments, ingestion and the video API
- encoding: two-phase encoding orchestration and webhooks
- moderation: caption, visual and audio moderation
- feed: engagement scoring and feeds
- job: Celery retry configuration
"""
