"""Shared-secret check for the tool endpoints.

``/health`` stays open; every route that can reach a server sits behind
:func:`require_api_key`.
"""

from __future__ import annotations

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ssh_gateway.config import settings

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def require_api_key(
    api_key: str | None = Security(_api_key_header),
) -> str:
    """Reject the request unless ``X-API-Key`` equals ``settings.api_key``.

    A gateway started without SSH_GATEWAY_API_KEY accepts every caller, which
    suits a loopback-only deployment.
    """
    if not settings.api_key:
        return "open"
    if api_key != settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or wrong X-API-Key header",
        )
    return api_key
