"""Request-scoped access to the objects built at startup."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from ssh_gateway.services.tools import ToolContext


def get_tool_context(request: Request) -> ToolContext:
    ctx = getattr(request.app.state, "gateway", None)
    if ctx is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Gateway is not initialised",
        )
    return ctx
