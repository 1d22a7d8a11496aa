"""FastAPI route definitions for the shortlink REST API.

API Endpoint Overview
=====================
::
    GET    /api/v1/health
        └─ HealthResponse (200)

    POST   /api/v1/links                      [API key]
        ├─ LinkCreate (request body)
        └─ LinkResponse (201) or 400/409

    DELETE /api/v1/links/:code                [API key]
        └─ 200 or 404

    GET    /api/v1/links/:code/stats          [API key]
        └─ ClickStats (200) or 404

    GET    /api/v1/links/:code/stats/daily    [API key]
        └─ list[DailyClickStats] (200) or 404

    GET    /api/v1/pipeline/stats
        └─ PipelineStats (200)

    GET    /:code
        └─ 307 Redirect or 404

Request Flow — Redirect
=======================
::
    ┌─────────────┐
    │ RateLimit   │──reject──▶ 429
    │ middleware  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ LinkService │──missing──▶ 404
    │ .get_link   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ submit click │  (never blocks; drop or closed is logged only)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ 307 Redirect │
    └─────────────┘

Key Behaviours
===============
- Service errors carry a machine-readable code rendered as
  ``{"error": code, "message": text}``.
- Click analytics are best-effort: the redirect never waits for or fails
  because of the click pipeline.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import RedirectResponse
from sqlalchemy import text

from shortlink.auth import require_api_key
from shortlink.dependencies import (
    RequestContext,
    get_click_repository,
    get_link_service,
    get_request_context,
)
from shortlink.enums import HealthStatus
from shortlink.exceptions import (
    LinkCodeExistsError,
    LinkNotFoundError,
    LinkValidationError,
    PipelineClosedError,
    ShortlinkError,
)
from shortlink.link_service import LinkService
from shortlink.repositories import ClickRepository
from shortlink.schemas import (
    ClickEvent,
    ClickStats,
    DailyClickStats,
    ErrorResponse,
    HealthResponse,
    LinkCreate,
    LinkResponse,
    PipelineStats,
)

__all__ = ["router", "DEFAULT_DAILY_STATS_DAYS", "MAX_DAILY_STATS_DAYS"]

DEFAULT_DAILY_STATS_DAYS = 7
MAX_DAILY_STATS_DAYS = 90

router = APIRouter()
redirects = APIRouter(tags=["redirect"])
api = APIRouter(prefix="/api/v1")
protected = APIRouter(prefix="/links", dependencies=[Depends(require_api_key)], tags=["links"])


def _error(status_code: int, exc: ShortlinkError) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": exc.code, "message": str(exc)})


@api.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ctx.database.execute(text("SELECT 1"))
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await ctx.cache.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status_ = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status_, database=db_status, cache=cache_status)


@api.get("/pipeline/stats", response_model=PipelineStats, tags=["monitoring"])
async def pipeline_stats(ctx: RequestContext = Depends(get_request_context)) -> PipelineStats:
    return ctx.click_processor.stats()


@protected.post(
    "",
    response_model=LinkResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def create_link(
    payload: LinkCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    try:
        link = await service.create_link(payload)
    except LinkValidationError as exc:
        ctx.logger.warning(f"Link creation rejected: {exc}", extra={"error": exc.code})
        raise _error(status.HTTP_400_BAD_REQUEST, exc) from exc
    except LinkCodeExistsError as exc:
        ctx.logger.warning(f"Link creation conflict: {exc}")
        raise _error(status.HTTP_409_CONFLICT, exc) from exc

    return LinkResponse(
        short_code=link.short_code,
        short_url=f"{ctx.settings.BASE_URL}/{link.short_code}",
        original_url=link.original_url,
        expires_at=link.expires_at,
        created_at=link.created_at,
    )


@protected.delete("/{short_code}", responses={404: {"model": ErrorResponse}})
async def delete_link(
    short_code: str,
    service: LinkService = Depends(get_link_service),
) -> dict[str, str]:
    try:
        await service.delete_link(short_code)
    except LinkNotFoundError as exc:
        raise _error(status.HTTP_404_NOT_FOUND, exc) from exc
    return {"message": "Link deleted successfully"}


@protected.get("/{short_code}/stats", response_model=ClickStats, responses={404: {"model": ErrorResponse}})
async def get_stats(
    short_code: str,
    clicks: ClickRepository = Depends(get_click_repository),
) -> ClickStats:
    try:
        return await clicks.get_stats(short_code)
    except LinkNotFoundError as exc:
        raise _error(status.HTTP_404_NOT_FOUND, exc) from exc


@protected.get("/{short_code}/stats/daily", response_model=list[DailyClickStats])
async def get_daily_stats(
    short_code: str,
    days: str | None = None,
    clicks: ClickRepository = Depends(get_click_repository),
) -> list[DailyClickStats]:
    try:
        window = int(days) if days is not None else DEFAULT_DAILY_STATS_DAYS
    except ValueError:
        window = DEFAULT_DAILY_STATS_DAYS
    if not 1 <= window <= MAX_DAILY_STATS_DAYS:
        window = DEFAULT_DAILY_STATS_DAYS

    try:
        return await clicks.get_daily_stats(short_code, window)
    except LinkNotFoundError as exc:
        raise _error(status.HTTP_404_NOT_FOUND, exc) from exc


@redirects.get("/{short_code}", responses={404: {"model": ErrorResponse}})
async def redirect_to_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> RedirectResponse:
    try:
        link = await service.get_link(short_code)
    except LinkNotFoundError as exc:
        ctx.logger.warning(f"Redirect failed - short code not found: {short_code}")
        raise _error(status.HTTP_404_NOT_FOUND, exc) from exc

    event = ClickEvent(
        short_code=short_code,
        ip_address=ctx.client_ip,
        user_agent=ctx.user_agent,
        referer=ctx.referer,
    )
    try:
        ctx.click_processor.submit(event)
    except PipelineClosedError as exc:
        ctx.logger.debug(f"Click not recorded (non-blocking): {exc}")

    ctx.logger.debug(f"Redirect {short_code} resolved in {ctx.get_duration():.2f}ms")
    return RedirectResponse(url=link.original_url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


api.include_router(protected)
router.include_router(api)
router.include_router(redirects)
