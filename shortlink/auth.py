"""API key authentication for management endpoints.

Keys come from ``Settings.API_KEYS`` ("key1:name1,key2:name2"). When no keys
are configured authentication is disabled. The key is read, in order, from the
``X-API-Key`` header, the ``api_key`` query parameter, and an
``Authorization: Bearer`` header, and compared in constant time.
"""

import hmac
import logging

from fastapi import Depends, HTTPException, Request, status

from shortlink.config import Settings, get_settings

__all__ = ["extract_api_key", "require_api_key"]

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


def extract_api_key(request: Request) -> str:
    api_key = request.headers.get(API_KEY_HEADER) or request.query_params.get("api_key") or ""
    if not api_key:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            api_key = auth_header.removeprefix("Bearer ").strip()
    return api_key


def _match_key(api_key: str, valid_keys: dict[str, str]) -> str | None:
    matched: str | None = None
    for valid_key, name in valid_keys.items():
        if hmac.compare_digest(api_key.encode(), valid_key.encode()):
            matched = name
    return matched


async def require_api_key(request: Request, settings: Settings = Depends(get_settings)) -> str | None:
    """FastAPI dependency guarding management routes.

    Returns:
        str | None: Name of the matched key, or None when auth is disabled.

    Raises:
        HTTPException: 401 when the key is missing or unknown.
    """
    valid_keys = settings.api_keys
    if not valid_keys:
        return None

    api_key = extract_api_key(request)
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "missing_api_key",
                "message": "API key required: send X-API-Key, api_key query parameter or Authorization: Bearer",
            },
        )

    key_name = _match_key(api_key, valid_keys)
    if key_name is None:
        logger.warning("Rejected request with invalid API key", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "invalid_api_key", "message": "Invalid API key"},
        )

    request.state.api_key_name = key_name
    return key_name
