"""Dependency injection with a singleton service manager.

This module provides a centralized way to inject database, cache and click
pipeline dependencies across all API endpoints, using a singleton for shared
resources to minimize per-request overhead.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shortlink.click_pipeline import ClickProcessor
from shortlink.config import Settings, get_settings
from shortlink.database import async_session, get_db
from shortlink.link_service import LinkService
from shortlink.redis import LinkCache, close_redis, get_redis
from shortlink.repositories import ClickRepository, LinkRepository, SQLClickStore

__all__ = [
    "ContextLoggerAdapter",
    "ServiceManager",
    "RequestContext",
    "get_service_manager",
    "get_request_context",
    "get_link_service",
    "get_click_repository",
]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ContextLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that keeps call-site ``extra`` fields alongside the context."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton owner of process-wide resources.

    Holds the logger, the Redis client and the click processor whose worker
    pool runs for the lifetime of the application.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    settings: Settings
    logger: logging.Logger
    cache: redis.Redis
    click_processor: ClickProcessor

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        """Initialize shared resources and start the click workers once at startup."""
        if not self._initialized:
            self.settings = get_settings()
            self.logger = self._setup_logger()
            self.cache = await get_redis()
            self.click_processor = ClickProcessor.from_settings(SQLClickStore(async_session), self.settings)
            self.click_processor.start()
            self._initialized = True

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("shortlink")
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def cleanup(self) -> None:
        """Stop the click workers and release shared resources at shutdown."""
        if hasattr(self, "click_processor"):
            await self.click_processor.stop()
        await close_redis()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request context with client details and shared resource access.

    Attributes:
        database: Async database session (only per-request resource)
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        client_ip: Client IP address
        user_agent: Client user agent string
        referer: Referer header, if any
        start_time: Request start timestamp
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_ip: str = ""
    user_agent: str = ""
    referer: str = ""
    start_time: float = field(default_factory=time.time)

    @property
    def cache(self) -> redis.Redis:
        return self.service_manager.cache

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def click_processor(self) -> ClickProcessor:
        return self.service_manager.click_processor

    @property
    def logger(self) -> ContextLoggerAdapter:
        """Shared logger with request context added to every record."""
        return ContextLoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        database=db,
        service_manager=manager,
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        client_ip=request.client.host if request.client else "",
        user_agent=request.headers.get("user-agent", ""),
        referer=request.headers.get("referer", ""),
    )


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> LinkService:
    return LinkService(
        LinkRepository(ctx.database),
        LinkCache(ctx.cache),
        ctx.settings,
        logger=ctx.logger,
    )


def get_click_repository(ctx: RequestContext = Depends(get_request_context)) -> ClickRepository:
    return ClickRepository(ctx.database)
