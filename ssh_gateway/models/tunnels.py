"""Tunnel (local port forward) models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class TunnelStatus(str, Enum):
    active = "active"
    already_active = "already_active"


class TunnelOpenResult(BaseModel):
    local_port: int
    status: TunnelStatus


class TunnelInfo(BaseModel):
    ssh_host: str
    ssh_port: int
    ssh_username: str
    local_port: int
    remote_host: str
    remote_port: int
    status: TunnelStatus = TunnelStatus.active

    @property
    def ssh_connection(self) -> str:
        return f"{self.ssh_username}@{self.ssh_host}:{self.ssh_port}"

    @property
    def route(self) -> str:
        return f"localhost:{self.local_port} -> {self.remote_host}:{self.remote_port}"
