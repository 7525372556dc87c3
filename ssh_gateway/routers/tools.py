"""Tool listing and invocation endpoints."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends

from ssh_gateway.auth import require_api_key
from ssh_gateway.dependencies import get_tool_context
from ssh_gateway.models.responses import ToolListResponse, TunnelEntry, TunnelListResponse
from ssh_gateway.services.tools import ToolContext, call_tool, list_tools

router = APIRouter(tags=["tools"], dependencies=[Depends(require_api_key)])


@router.get("/tools", response_model=ToolListResponse)
async def get_tools() -> ToolListResponse:
    tools = list_tools()
    return ToolListResponse(tools=tools, count=len(tools))


@router.post("/tools/{name}")
async def invoke_tool(
    name: str,
    arguments: Optional[dict[str, Any]] = Body(default=None),
    ctx: ToolContext = Depends(get_tool_context),
) -> dict[str, Any]:
    """Run a tool. Failures come back as ``{"success": false, "error": ...}``."""
    return await call_tool(name, arguments, ctx)


@router.get("/tunnels", response_model=TunnelListResponse)
async def get_tunnels(ctx: ToolContext = Depends(get_tool_context)) -> TunnelListResponse:
    tunnels = [
        TunnelEntry(
            ssh_connection=t.ssh_connection,
            local_port=t.local_port,
            remote_host=t.remote_host,
            remote_port=t.remote_port,
            status=t.status.value,
        )
        for t in ctx.manager.list_port_forwards()
    ]
    return TunnelListResponse(tunnels=tunnels, count=len(tunnels))
