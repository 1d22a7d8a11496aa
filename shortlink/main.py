"""FastAPI application entry point for the shortlink service.

Application Lifecycle Diagram
===========================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ startup:    │
    │ init_db()   │
    │ services up │  (redis, click workers)
    │ sweep start │  (rate limiter)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ shutdown:   │
    │ sweep stop  │
    │ workers stop│
    │ close_db()  │
    └─────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortlink.main:app --host 0.0.0.0 --port 8080

**Step 2 — Make API calls**::
    curl -X POST http://localhost:8080/api/v1/links \
         -H "Content-Type: application/json" -H "X-API-Key: secret" \
         -d '{"url": "https://example.com"}'

Key Behaviours
===============
- Every request passes the token-bucket rate limiter first (429 on reject).
- Click workers start with the app and stop before the database is closed.
- Error bodies with a structured detail are rendered as ``{"error", "message"}``.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app", "create_app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse, Response
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException

from shortlink.config import get_settings
from shortlink.database import close_db, init_db
from shortlink.dependencies import _service_manager
from shortlink.middleware import KeyFunc, RateLimitMiddleware
from shortlink.rate_limiter import RateLimiter
from shortlink.routes import router


async def structured_http_exception_handler(request: Request, exc: HTTPException) -> Response:
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
    return await http_exception_handler(request, exc)


def create_app(rate_limiter: RateLimiter | None = None, key_func: KeyFunc | None = None) -> FastAPI:
    settings = get_settings()
    limiter = rate_limiter or RateLimiter.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        await init_db()
        await _service_manager.initialize()
        limiter.start()
        yield
        # Shutdown
        await limiter.stop()
        await _service_manager.cleanup()
        await close_db()

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="URL shortener with asynchronous click analytics",
        lifespan=lifespan,
    )
    app.state.rate_limiter = limiter

    app.add_middleware(RateLimitMiddleware, limiter=limiter, key_func=key_func)
    app.add_exception_handler(HTTPException, structured_http_exception_handler)

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_respect_env_var=False,
    ).instrument(app).expose(app)

    app.include_router(router)
    return app


app = create_app()
