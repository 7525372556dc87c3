"""Common API response models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    version: str
    active_sessions: int = 0
    active_tunnels: int = 0


class ToolListResponse(BaseModel):
    tools: list[dict[str, Any]]
    count: int


class TunnelEntry(BaseModel):
    ssh_connection: str
    local_port: int
    remote_host: str
    remote_port: int
    status: str


class TunnelListResponse(BaseModel):
    tunnels: list[TunnelEntry]
    count: int
