"""SSH connection manager: one pool, shared by exec, tunnels and SFTP.

Every operation names its target by :class:`ServerIdentity`; sessions are
created on first use and kept until :meth:`SSHConnectionManager.disconnect_all`.
"""

from __future__ import annotations

from typing import Optional

from ssh_gateway.config import Settings, settings
from ssh_gateway.models.commands import CommandResult, ServerIdentity
from ssh_gateway.models.files import FileTransferResult, RemoteFileList
from ssh_gateway.models.tunnels import TunnelInfo, TunnelOpenResult
from ssh_gateway.services.executor import RemoteExecutor
from ssh_gateway.services.file_ops import RemoteFileOps
from ssh_gateway.services.session_pool import DEFAULT_MAX_CONNECTIONS, SessionPool
from ssh_gateway.services.transport import AsyncSSHTransport, Transport
from ssh_gateway.services.tunnels import TunnelEngine
from ssh_gateway.utils.logging import get_logger

log = get_logger(__name__)


class SSHConnectionManager:
    def __init__(
        self,
        cfg: Settings | None = None,
        *,
        transport: Optional[Transport] = None,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
    ) -> None:
        self._cfg = cfg or settings
        if transport is None:
            transport = AsyncSSHTransport(
                known_hosts=self._cfg.known_hosts_path,
                keepalive_interval=self._cfg.keepalive_interval_seconds,
            )
        self.pool = SessionPool(
            transport,
            max_connections=max_connections,
            connect_timeout=self._cfg.connect_timeout_seconds,
        )
        self.executor = RemoteExecutor(self.pool)
        self.tunnels = TunnelEngine(self.pool)
        self.files = RemoteFileOps(self.pool)

    # ── exec ──────────────────────────────────────────────────────────

    async def execute_command(
        self, identity: ServerIdentity, command: str, timeout_ms: Optional[float] = None,
    ) -> CommandResult:
        return await self.executor.execute(identity, command, timeout_ms)

    # ── port forwarding ───────────────────────────────────────────────

    async def setup_port_forward(
        self, identity: ServerIdentity, local_port: int, remote_host: str, remote_port: int,
    ) -> TunnelOpenResult:
        return await self.tunnels.open(identity, local_port, remote_host, remote_port)

    async def close_port_forward(
        self, identity: ServerIdentity, local_port: int, remote_host: str, remote_port: int,
    ) -> None:
        await self.tunnels.close(identity, local_port, remote_host, remote_port)

    def find_port_forward(self, identity: ServerIdentity, local_port: int) -> Optional[TunnelInfo]:
        return self.tunnels.find(identity, local_port)

    def list_port_forwards(self) -> list[TunnelInfo]:
        return self.tunnels.list()

    # ── SFTP ──────────────────────────────────────────────────────────

    async def upload_file(
        self,
        identity: ServerIdentity,
        local_path: str,
        remote_path: str,
        permissions: Optional[str] = None,
    ) -> FileTransferResult:
        return await self.files.upload(identity, local_path, remote_path, permissions)

    async def download_file(
        self, identity: ServerIdentity, remote_path: str, local_path: str,
    ) -> FileTransferResult:
        return await self.files.download(identity, remote_path, local_path)

    async def list_remote_files(
        self, identity: ServerIdentity, remote_path: str, pattern: Optional[str] = None,
    ) -> RemoteFileList:
        return await self.files.list_files(identity, remote_path, pattern)

    async def delete_remote_file(
        self, identity: ServerIdentity, remote_path: str,
    ) -> FileTransferResult:
        return await self.files.delete(identity, remote_path)

    # ── lifecycle ─────────────────────────────────────────────────────

    @property
    def active_sessions(self) -> int:
        return len(self.pool)

    async def disconnect_all(self) -> None:
        """Close every tunnel, then every session."""
        await self.tunnels.close_all()
        await self.pool.close_all()
        log.info("ssh.disconnected_all")
