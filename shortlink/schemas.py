"""Pydantic schemas for request/response validation and pipeline payloads.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ url: str
    ├─ expires_in: int | None (minutes)
    └─ custom_code: str | None

    LinkResponse (Output)
    ├─ short_code, short_url, original_url
    ├─ expires_at: datetime | None
    └─ created_at: datetime

    ClickEvent (Pipeline input, frozen)
    └─ short_code, ip_address, user_agent, referer, country

    ClickRecord (Pipeline output, frozen)
    └─ link_id + ClickEvent fields + clicked_at

    PipelineStats / ClickStats / DailyClickStats / HealthResponse (Output)

Key Behaviours
===============
- Link input is validated by the link service, not here, so that validation
  failures map to 400 with a machine-readable error code.
- ClickEvent carries no timestamp; ClickRecord.clicked_at is stamped by the
  worker at processing time.
- ClickEvent and ClickRecord are immutable once built.
"""

import datetime

from pydantic import BaseModel, ConfigDict, Field

from shortlink.enums import HealthStatus

__all__ = [
    "LinkCreate",
    "LinkResponse",
    "CachedLinkPayload",
    "ClickEvent",
    "ClickRecord",
    "ClickStats",
    "DailyClickStats",
    "PipelineStats",
    "HealthResponse",
    "ErrorResponse",
]


class LinkCreate(BaseModel):
    url: str
    expires_in: int | None = Field(None, description="Lifetime in minutes; capped at 30 days.")
    custom_code: str | None = None


class LinkResponse(BaseModel):
    short_code: str
    short_url: str
    original_url: str
    expires_at: datetime.datetime | None = None
    created_at: datetime.datetime


class CachedLinkPayload(BaseModel):
    """Redis cache payload for a link."""

    id: int
    short_code: str
    original_url: str
    expires_at: datetime.datetime | None = None
    created_at: datetime.datetime

    model_config = ConfigDict(from_attributes=True)


class ClickEvent(BaseModel):
    """A redirect observed by the HTTP layer, queued for asynchronous persistence."""

    short_code: str = Field(..., description="Short code being clicked, e.g. 'abc123'")
    ip_address: str = ""
    user_agent: str = ""
    referer: str = ""
    country: str = ""

    model_config = ConfigDict(frozen=True)


class ClickRecord(BaseModel):
    """Durable click row handed to the click store."""

    link_id: int
    short_code: str
    ip_address: str = ""
    user_agent: str = ""
    referer: str = ""
    country: str = ""
    clicked_at: datetime.datetime

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_event(cls, event: ClickEvent, link_id: int, clicked_at: datetime.datetime) -> "ClickRecord":
        return cls(link_id=link_id, clicked_at=clicked_at, **event.model_dump())


class ClickStats(BaseModel):
    short_code: str
    total_clicks: int
    unique_clicks: int


class DailyClickStats(BaseModel):
    date: datetime.date
    clicks: int


class PipelineStats(BaseModel):
    queue_capacity: int
    queue_occupancy: int
    worker_count: int


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ErrorResponse(BaseModel):
    error: str
    message: str
