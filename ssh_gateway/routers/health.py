"""Health-check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request

from ssh_gateway import __version__
from ssh_gateway.models.responses import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def service_health(request: Request) -> HealthResponse:
    """Liveness probe (no auth required)."""
    ctx = getattr(request.app.state, "gateway", None)
    if ctx is None:
        return HealthResponse(status="starting", version=__version__)
    return HealthResponse(
        status="ok",
        version=__version__,
        active_sessions=ctx.manager.active_sessions,
        active_tunnels=len(ctx.manager.list_port_forwards()),
    )
