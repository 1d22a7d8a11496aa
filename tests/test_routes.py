"""HTTP endpoint tests against the application with service dependencies faked."""

import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient

from conftest import make_link
from shortlink.click_pipeline import ClickProcessor
from shortlink.config import Settings, get_settings
from shortlink.exceptions import (
    InvalidURLError,
    LinkCodeExistsError,
    LinkNotFoundError,
    SpamDomainError,
)
from shortlink.main import app
from shortlink.schemas import ClickEvent, ClickStats, DailyClickStats

API_KEY = "s3cret"


@pytest.fixture
def require_keys():
    app.dependency_overrides[get_settings] = lambda: Settings(API_KEYS=f"{API_KEY}:ci")
    yield
    app.dependency_overrides.pop(get_settings, None)


# ============================================================================
# REDIRECT
# ============================================================================


@pytest.mark.asyncio
async def test_redirect_queues_click(
    client: AsyncClient, link_service: MagicMock, click_processor: ClickProcessor
) -> None:
    link_service.get_link.return_value = make_link()

    response = await client.get(
        "/abc123",
        headers={"User-Agent": "pytest-agent", "Referer": "https://ref.example"},
        follow_redirects=False,
    )

    assert response.status_code == 307
    assert response.headers["location"] == "https://www.python.org"
    assert click_processor.stats().queue_occupancy == 1
    event = await click_processor.ingestor.get()
    assert event.short_code == "abc123"
    assert event.ip_address == "127.0.0.1"
    assert event.user_agent == "pytest-agent"
    assert event.referer == "https://ref.example"


@pytest.mark.asyncio
async def test_redirect_unknown_code(client: AsyncClient, link_service: MagicMock, click_processor: ClickProcessor) -> None:
    link_service.get_link.side_effect = LinkNotFoundError("nope")

    response = await client.get("/nope", follow_redirects=False)

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
    assert click_processor.stats().queue_occupancy == 0


@pytest.mark.asyncio
async def test_redirect_survives_closed_pipeline(
    client: AsyncClient, link_service: MagicMock, click_processor: ClickProcessor
) -> None:
    link_service.get_link.return_value = make_link()
    click_processor.ingestor.close()

    response = await client.get("/abc123", follow_redirects=False)

    assert response.status_code == 307


@pytest.mark.asyncio
async def test_redirect_survives_full_queue(
    client: AsyncClient, link_service: MagicMock, click_processor: ClickProcessor
) -> None:
    link_service.get_link.return_value = make_link()
    for _ in range(click_processor.ingestor.capacity):
        click_processor.submit(ClickEvent(short_code="abc123"))

    response = await client.get("/abc123", follow_redirects=False)

    assert response.status_code == 307
    assert click_processor.stats().queue_occupancy == click_processor.ingestor.capacity


# ============================================================================
# LINKS
# ============================================================================


@pytest.mark.asyncio
async def test_create_link(client: AsyncClient, link_service: MagicMock) -> None:
    link_service.create_link.return_value = make_link(short_code="ghub", url="https://www.github.com")

    response = await client.post("/api/v1/links", json={"url": "https://www.github.com", "custom_code": "ghub"})

    assert response.status_code == 201
    data = response.json()
    assert data["short_code"] == "ghub"
    assert data["short_url"] == f"{get_settings().BASE_URL}/ghub"
    assert data["original_url"] == "https://www.github.com"
    assert data["expires_at"] is None


@pytest.mark.parametrize(
    "error,code",
    [(InvalidURLError(), "invalid_url"), (SpamDomainError(), "spam_domain")],
)
@pytest.mark.asyncio
async def test_create_link_validation_error(client: AsyncClient, link_service: MagicMock, error, code: str) -> None:
    link_service.create_link.side_effect = error

    response = await client.post("/api/v1/links", json={"url": "https://malware.com"})

    assert response.status_code == 400
    assert response.json() == {"error": code, "message": str(error)}


@pytest.mark.asyncio
async def test_create_link_code_taken(client: AsyncClient, link_service: MagicMock) -> None:
    link_service.create_link.side_effect = LinkCodeExistsError("ghub")

    response = await client.post("/api/v1/links", json={"url": "https://www.github.com", "custom_code": "ghub"})

    assert response.status_code == 409
    assert response.json()["error"] == "code_exists"


@pytest.mark.asyncio
async def test_delete_link(client: AsyncClient, link_service: MagicMock) -> None:
    response = await client.delete("/api/v1/links/abc123")

    assert response.status_code == 200
    link_service.delete_link.assert_awaited_once_with("abc123")


@pytest.mark.asyncio
async def test_delete_missing_link(client: AsyncClient, link_service: MagicMock) -> None:
    link_service.delete_link.side_effect = LinkNotFoundError("abc123")

    response = await client.delete("/api/v1/links/abc123")

    assert response.status_code == 404


# ============================================================================
# STATS
# ============================================================================


@pytest.mark.asyncio
async def test_link_stats(client: AsyncClient, click_repository: AsyncMock) -> None:
    click_repository.get_stats.return_value = ClickStats(short_code="abc123", total_clicks=5, unique_clicks=2)

    response = await client.get("/api/v1/links/abc123/stats")

    assert response.status_code == 200
    assert response.json() == {"short_code": "abc123", "total_clicks": 5, "unique_clicks": 2}


@pytest.mark.asyncio
async def test_link_stats_missing(client: AsyncClient, click_repository: AsyncMock) -> None:
    click_repository.get_stats.side_effect = LinkNotFoundError("abc123")

    response = await client.get("/api/v1/links/abc123/stats")

    assert response.status_code == 404


@pytest.mark.parametrize(
    "query,expected_days",
    [("", 7), ("?days=30", 30), ("?days=90", 90), ("?days=0", 7), ("?days=91", 7), ("?days=abc", 7)],
)
@pytest.mark.asyncio
async def test_daily_stats_window(
    client: AsyncClient, click_repository: AsyncMock, query: str, expected_days: int
) -> None:
    click_repository.get_daily_stats.return_value = [DailyClickStats(date=datetime.date(2024, 5, 1), clicks=3)]

    response = await client.get(f"/api/v1/links/abc123/stats/daily{query}")

    assert response.status_code == 200
    assert response.json() == [{"date": "2024-05-01", "clicks": 3}]
    click_repository.get_daily_stats.assert_awaited_once_with("abc123", expected_days)


@pytest.mark.asyncio
async def test_pipeline_stats(client: AsyncClient, click_processor: ClickProcessor) -> None:
    click_processor.submit(ClickEvent(short_code="abc123"))

    response = await client.get("/api/v1/pipeline/stats")

    assert response.status_code == 200
    assert response.json() == {"queue_capacity": 10, "queue_occupancy": 1, "worker_count": 1}


# ============================================================================
# HEALTH
# ============================================================================


@pytest.mark.asyncio
async def test_health_check_healthy(client: AsyncClient) -> None:
    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "healthy", "cache": "healthy"}


@pytest.mark.asyncio
async def test_health_check_database_down(client: AsyncClient, database: AsyncMock) -> None:
    database.execute.side_effect = ConnectionError("connection refused")

    response = await client.get("/api/v1/health")

    assert response.json() == {"status": "unhealthy", "database": "unhealthy", "cache": "healthy"}


@pytest.mark.asyncio
async def test_health_check_cache_down(client: AsyncClient, service_manager: SimpleNamespace) -> None:
    service_manager.cache.ping.side_effect = ConnectionError("connection refused")

    response = await client.get("/api/v1/health")

    assert response.json()["cache"] == "unhealthy"


# ============================================================================
# API KEYS
# ============================================================================


@pytest.mark.asyncio
async def test_missing_api_key(client: AsyncClient, require_keys: None) -> None:
    response = await client.post("/api/v1/links", json={"url": "https://www.github.com"})

    assert response.status_code == 401
    assert response.json()["error"] == "missing_api_key"


@pytest.mark.asyncio
async def test_invalid_api_key(client: AsyncClient, require_keys: None) -> None:
    response = await client.get("/api/v1/links/abc123/stats", headers={"X-API-Key": "wrong"})

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_api_key"


@pytest.mark.parametrize(
    "headers,params",
    [
        ({"X-API-Key": API_KEY}, {}),
        ({}, {"api_key": API_KEY}),
        ({"Authorization": f"Bearer {API_KEY}"}, {}),
    ],
)
@pytest.mark.asyncio
async def test_valid_api_key_locations(
    client: AsyncClient, link_service: MagicMock, require_keys: None, headers: dict, params: dict
) -> None:
    response = await client.delete("/api/v1/links/abc123", headers=headers, params=params)

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_redirect_needs_no_api_key(client: AsyncClient, link_service: MagicMock, require_keys: None) -> None:
    link_service.get_link.return_value = make_link()

    response = await client.get("/abc123", follow_redirects=False)

    assert response.status_code == 307
