"""Link service layer: validation, short-code generation and cache-aside reads.

Flow Diagram — Link Creation
============================
::
    ┌─────────────┐
    │ POST /api/  │
    │ v1/links    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate URL │──invalid──▶ InvalidURLError
    │ & blacklist  │──spam─────▶ SpamDomainError
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Custom code? │──invalid──▶ InvalidCodeError
    │ or nanoid    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ INSERT       │──taken (custom)──▶ LinkCodeExistsError
    │              │──taken (random)──▶ regenerate
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Cache (TTL)  │
    └─────────────┘

Flow Diagram — Lookup
=====================
::
    cache hit ─────────────────────────▶ link
    cache miss ─▶ DB (non-expired) ─▶ cache ─▶ link
                       │
                       └─ missing/expired ─▶ LinkNotFoundError

Key Behaviours
===============
- URLs must be http(s) and pass ``validators.url``.
- Custom codes are 4-12 characters of ``[A-Za-z0-9_-]``.
- ``expires_in`` is in minutes, capped at ``LINK_MAX_TTL_SECONDS``.
- Cached entries live until the link expires, or ``LINK_DEFAULT_TTL_SECONDS``.
- Cached entries that have already expired are treated as misses.
"""

import datetime
import logging
import re

import validators
from nanoid import generate

from shortlink.config import Settings
from shortlink.exceptions import (
    InvalidCodeError,
    InvalidURLError,
    LinkCodeExistsError,
    SpamDomainError,
)
from shortlink.models import Link
from shortlink.redis import LinkCache
from shortlink.repositories import LinkRepository
from shortlink.schemas import CachedLinkPayload, LinkCreate

__all__ = ["LinkService", "ALPHABET", "MAX_CODE_ATTEMPTS"]

ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
MAX_CODE_ATTEMPTS = 5

_URL_PATTERN = re.compile(r"^https?://\S+$")
_CODE_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{4,12}$")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class LinkService:
    def __init__(
        self,
        repository: LinkRepository,
        cache: LinkCache,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._repository = repository
        self._cache = cache
        self._settings = settings
        self._logger = logger or logging.getLogger(__name__)

    def generate_short_code(self) -> str:
        return generate(ALPHABET, self._settings.SHORT_CODE_LENGTH)

    def validate_url(self, url: str) -> None:
        if not _URL_PATTERN.match(url) or validators.url(url) is not True:
            raise InvalidURLError()
        for domain in self._settings.BLACKLISTED_DOMAINS:
            if domain in url:
                raise SpamDomainError()

    @staticmethod
    def validate_custom_code(code: str) -> None:
        if not _CODE_PATTERN.match(code):
            raise InvalidCodeError()

    def _expires_at(self, expires_in: int | None) -> datetime.datetime | None:
        if expires_in is None or expires_in <= 0:
            return None
        ttl_seconds = min(expires_in * 60, self._settings.LINK_MAX_TTL_SECONDS)
        return _utcnow() + datetime.timedelta(seconds=ttl_seconds)

    def _cache_ttl(self, expires_at: datetime.datetime | None) -> int:
        if expires_at is None:
            return self._settings.LINK_DEFAULT_TTL_SECONDS
        return int((expires_at - _utcnow()).total_seconds())

    async def create_link(self, request: LinkCreate) -> Link:
        """Create and cache a link.

        Raises:
            InvalidURLError, SpamDomainError, InvalidCodeError: Bad input.
            LinkCodeExistsError: The custom code is taken, or no free random
                code was found after ``MAX_CODE_ATTEMPTS`` tries.
        """
        self.validate_url(request.url)
        if request.custom_code:
            self.validate_custom_code(request.custom_code)

        expires_at = self._expires_at(request.expires_in)

        link: Link | None = None
        attempts = 1 if request.custom_code else MAX_CODE_ATTEMPTS
        for attempt in range(attempts):
            short_code = request.custom_code or self.generate_short_code()
            try:
                link = await self._repository.create(
                    Link(short_code=short_code, original_url=request.url, expires_at=expires_at)
                )
                break
            except LinkCodeExistsError:
                if request.custom_code or attempt == attempts - 1:
                    raise
                self._logger.debug(f"Short code collision on {short_code}, regenerating")

        self._logger.info(f"Link created: {link.short_code}", extra={"short_code": link.short_code})
        await self._cache.set(CachedLinkPayload.model_validate(link), self._cache_ttl(link.expires_at))
        return link

    async def get_link(self, short_code: str) -> CachedLinkPayload:
        """Resolve a live link, cache first.

        Raises:
            LinkNotFoundError: Missing or expired.
        """
        cached = await self._cache.get(short_code)
        if cached is not None and (cached.expires_at is None or cached.expires_at > _utcnow()):
            return cached

        link = await self._repository.get_by_short_code(short_code)
        payload = CachedLinkPayload.model_validate(link)
        await self._cache.set(payload, self._cache_ttl(payload.expires_at))
        return payload

    async def delete_link(self, short_code: str) -> None:
        await self._cache.delete(short_code)
        await self._repository.delete(short_code)
        self._logger.info(f"Link deleted: {short_code}", extra={"short_code": short_code})
