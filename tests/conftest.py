"""Shared pytest fixtures: an in-memory click store and an HTTP client wired to fakes."""

import os

# Must be set before shortlink reads its settings.
os.environ["API_KEYS"] = ""
os.environ["RATE_LIMIT_BURST"] = "100000"
os.environ["RATE_LIMIT_RPS"] = "100000"

import asyncio
import datetime
import logging
from collections.abc import AsyncGenerator, Callable
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fastapi import Request
from httpx import ASGITransport, AsyncClient

from shortlink.click_pipeline import ClickProcessor
from shortlink.config import get_settings
from shortlink.dependencies import (
    RequestContext,
    get_click_repository,
    get_link_service,
    get_request_context,
)
from shortlink.exceptions import LinkNotFoundError
from shortlink.link_service import LinkService
from shortlink.main import app
from shortlink.repositories import ClickRepository
from shortlink.schemas import ClickRecord

# Captured before any test patches asyncio.sleep.
real_sleep = asyncio.sleep


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await real_sleep(0.005)


class InMemoryClickStore:
    """ClickStore double.

    ``failures`` is how many ``record_click`` calls fail before one succeeds
    (``None`` fails forever). ``release``, when given, holds every
    ``resolve_link_id`` call until the event is set.
    """

    def __init__(
        self,
        links: dict[str, int] | None = None,
        failures: int | None = 0,
        release: asyncio.Event | None = None,
    ) -> None:
        self.links = {"abc123": 1} if links is None else links
        self.failures = failures
        self.release = release
        self.records: list[ClickRecord] = []
        self.resolve_calls = 0
        self.record_attempts = 0

    async def resolve_link_id(self, short_code: str) -> int:
        self.resolve_calls += 1
        if self.release is not None:
            await self.release.wait()
        try:
            return self.links[short_code]
        except KeyError:
            raise LinkNotFoundError(short_code) from None

    async def record_click(self, record: ClickRecord) -> None:
        self.record_attempts += 1
        if self.failures is None:
            raise ConnectionError("database unavailable")
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("database unavailable")
        self.records.append(record)


@pytest.fixture
def click_store() -> InMemoryClickStore:
    return InMemoryClickStore()


@pytest.fixture
def click_processor(click_store: InMemoryClickStore) -> ClickProcessor:
    # Never started: submitted events stay queued for inspection.
    return ClickProcessor(click_store, worker_count=1, queue_capacity=10)


@pytest.fixture
def link_service() -> MagicMock:
    service = MagicMock(spec=LinkService)
    service.create_link = AsyncMock()
    service.get_link = AsyncMock()
    service.delete_link = AsyncMock()
    return service


@pytest.fixture
def click_repository() -> AsyncMock:
    return AsyncMock(spec=ClickRepository)


@pytest.fixture
def service_manager(click_processor: ClickProcessor) -> SimpleNamespace:
    return SimpleNamespace(
        settings=get_settings(),
        logger=logging.getLogger("shortlink.tests"),
        cache=AsyncMock(),
        click_processor=click_processor,
    )


@pytest.fixture
def database() -> AsyncMock:
    return AsyncMock()


@pytest_asyncio.fixture(scope="function")
async def client(
    service_manager: SimpleNamespace,
    database: AsyncMock,
    link_service: MagicMock,
    click_repository: AsyncMock,
) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_request_context(request: Request) -> RequestContext:
        return RequestContext(
            database=database,
            service_manager=service_manager,
            client_ip=request.client.host if request.client else "",
            user_agent=request.headers.get("user-agent", ""),
            referer=request.headers.get("referer", ""),
        )

    app.dependency_overrides[get_request_context] = override_get_request_context
    app.dependency_overrides[get_link_service] = lambda: link_service
    app.dependency_overrides[get_click_repository] = lambda: click_repository

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def make_link(short_code: str = "abc123", url: str = "https://www.python.org", **kwargs) -> SimpleNamespace:
    fields = {
        "id": 1,
        "short_code": short_code,
        "original_url": url,
        "expires_at": None,
        "created_at": datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc),
    }
    fields.update(kwargs)
    return SimpleNamespace(**fields)
