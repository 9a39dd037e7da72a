"""Smoke tests for the assembled application."""

import pytest
from fastapi.testclient import TestClient

from app.core.config import settings
from app.main import app


@pytest.fixture
def client(monkeypatch) -> TestClient:
    monkeypatch.setattr(settings, "ENCODING_BACKEND", "none")
    return TestClient(app)


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_correlation_id_is_echoed(client) -> None:
    response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})
    assert response.headers.get("X-Correlation-ID") == "abc-123"


def test_video_health_reports_configuration(client) -> None:
    response = client.get(f"{settings.API_V1_PREFIX}/videos/health")
    assert response.status_code == 200
    body = response.json()
    assert body["encoding_backend"] == "none"
    assert body["encoding_available"] is False


def test_upload_requires_authentication(client) -> None:
    response = client.post(
        f"{settings.API_V1_PREFIX}/videos/upload",
        files={"file": ("clip.mp4", b"\x00" * 16, "video/mp4")},
    )
    assert response.status_code == 401


def test_metrics_exposed(client) -> None:
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text
