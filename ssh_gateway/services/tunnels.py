"""Local port forwarding over pooled SSH sessions.

Each tunnel is a loopback listener; every inbound TCP connection gets its
own direct-tcpip channel and a pair of pump tasks splicing the two streams.
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass, field
from typing import Any, Optional

from ssh_gateway.exceptions import TunnelBindError
from ssh_gateway.models.commands import ServerIdentity
from ssh_gateway.models.tunnels import TunnelInfo, TunnelOpenResult, TunnelStatus
from ssh_gateway.services.session_pool import SessionPool
from ssh_gateway.utils.logging import get_logger

log = get_logger(__name__)

LOOPBACK = "127.0.0.1"
_CHUNK = 64 * 1024

TunnelKey = tuple[tuple[str, str, int], int, str, int]


@dataclass
class _Tunnel:
    identity: ServerIdentity
    local_port: int
    remote_host: str
    remote_port: int
    server: Optional[asyncio.AbstractServer] = None
    relays: set[asyncio.Task] = field(default_factory=set)

    @property
    def key(self) -> TunnelKey:
        return (self.identity.key, self.local_port, self.remote_host, self.remote_port)

    def info(self) -> TunnelInfo:
        return TunnelInfo(
            ssh_host=self.identity.host,
            ssh_port=self.identity.port,
            ssh_username=self.identity.username,
            local_port=self.local_port,
            remote_host=self.remote_host,
            remote_port=self.remote_port,
        )


async def _pump(reader: Any, writer: Any) -> None:
    while True:
        data = await reader.read(_CHUNK)
        if not data:
            break
        writer.write(data)
        await writer.drain()
    if writer.can_write_eof():
        writer.write_eof()


def _close_writer(writer: Any) -> None:
    try:
        writer.close()
    except (OSError, RuntimeError) as exc:
        log.debug("tunnel.writer_close_failed", error=str(exc))


class TunnelEngine:
    def __init__(self, pool: SessionPool) -> None:
        self._pool = pool
        self._tunnels: dict[TunnelKey, _Tunnel] = {}
        # fixed-port opens still binding, so a concurrent duplicate waits
        self._opening: dict[TunnelKey, asyncio.Task[int]] = {}

    # ── open / close ──────────────────────────────────────────────────

    async def open(
        self,
        identity: ServerIdentity,
        local_port: int,
        remote_host: str,
        remote_port: int,
    ) -> TunnelOpenResult:
        """Start forwarding ``127.0.0.1:local_port`` to *remote_host:remote_port*.

        ``local_port=0`` asks the OS for a free port and always creates a new
        tunnel. Re-opening an active fixed-port tunnel returns
        ``already_active``.
        """
        tunnel = _Tunnel(identity, local_port, remote_host, remote_port)
        if local_port == 0:
            resolved = await self._start(tunnel)
            return TunnelOpenResult(local_port=resolved, status=TunnelStatus.active)

        key = tunnel.key
        if key in self._tunnels:
            return TunnelOpenResult(local_port=local_port, status=TunnelStatus.already_active)
        pending = self._opening.get(key)
        if pending is not None:
            await asyncio.shield(pending)
            return TunnelOpenResult(local_port=local_port, status=TunnelStatus.already_active)

        pending = asyncio.ensure_future(self._start(tunnel))
        self._opening[key] = pending
        resolved = await asyncio.shield(pending)
        return TunnelOpenResult(local_port=resolved, status=TunnelStatus.active)

    async def _start(self, tunnel: _Tunnel) -> int:
        requested = tunnel.key
        try:
            # The session must exist before we accept traffic for it
            await self._pool.acquire(tunnel.identity)
            try:
                server = await asyncio.start_server(
                    functools.partial(self._on_client, tunnel), LOOPBACK, tunnel.local_port,
                )
            except OSError as exc:
                raise TunnelBindError(
                    f"Failed to bind {LOOPBACK}:{tunnel.local_port} "
                    f"for tunnel via {tunnel.identity}: {exc}",
                    local_port=tunnel.local_port,
                ) from exc
        finally:
            if self._opening.get(requested) is asyncio.current_task():
                del self._opening[requested]

        tunnel.server = server
        tunnel.local_port = server.sockets[0].getsockname()[1]
        self._tunnels[tunnel.key] = tunnel
        log.info(
            "tunnel.opened",
            target=str(tunnel.identity),
            local_port=tunnel.local_port,
            remote=f"{tunnel.remote_host}:{tunnel.remote_port}",
        )
        return tunnel.local_port

    async def _on_client(
        self,
        tunnel: _Tunnel,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        task = asyncio.current_task()
        tunnel.relays.add(task)
        try:
            await self._relay(tunnel, reader, writer)
        finally:
            tunnel.relays.discard(task)
            _close_writer(writer)

    async def close(
        self,
        identity: ServerIdentity,
        local_port: int,
        remote_host: str,
        remote_port: int,
    ) -> None:
        """Stop the listener and its relays. Unknown tunnels are ignored."""
        tunnel = self._tunnels.pop((identity.key, local_port, remote_host, remote_port), None)
        if tunnel is None:
            return
        await self._shutdown(tunnel)
        log.info("tunnel.closed", target=str(identity), local_port=local_port)

    async def close_all(self) -> None:
        opening = list(self._opening.values())
        for task in opening:
            task.cancel()
        await asyncio.gather(*opening, return_exceptions=True)
        tunnels = list(self._tunnels.values())
        self._tunnels.clear()
        await asyncio.gather(*(self._shutdown(t) for t in tunnels), return_exceptions=True)
        if tunnels:
            log.info("tunnel.all_closed", count=len(tunnels))

    async def _shutdown(self, tunnel: _Tunnel) -> None:
        tunnel.server.close()
        relays = list(tunnel.relays)
        for task in relays:
            task.cancel()
        await asyncio.gather(*relays, return_exceptions=True)
        await tunnel.server.wait_closed()

    # ── lookup ────────────────────────────────────────────────────────

    def find(self, identity: ServerIdentity, local_port: int) -> Optional[TunnelInfo]:
        for tunnel in self._tunnels.values():
            if tunnel.identity.key == identity.key and tunnel.local_port == local_port:
                return tunnel.info()
        return None

    def list(self) -> list[TunnelInfo]:
        return [tunnel.info() for tunnel in self._tunnels.values()]

    def __len__(self) -> int:
        return len(self._tunnels)

    # ── per-connection relay ──────────────────────────────────────────

    async def _relay(
        self,
        tunnel: _Tunnel,
        local_reader: asyncio.StreamReader,
        local_writer: asyncio.StreamWriter,
    ) -> None:
        peer = local_writer.get_extra_info("peername")
        try:
            session = await self._pool.acquire(tunnel.identity)
            remote_reader, remote_writer = await session.open_tunnel(
                LOOPBACK, tunnel.local_port, tunnel.remote_host, tunnel.remote_port,
            )
        except Exception as exc:
            # one failed inbound connection must not stop the listener
            log.warning(
                "tunnel.channel_failed",
                target=str(tunnel.identity),
                local_port=tunnel.local_port,
                peer=peer,
                error=str(exc),
            )
            _close_writer(local_writer)
            return

        log.debug("tunnel.relay_started", local_port=tunnel.local_port, peer=peer)
        pumps = [
            asyncio.ensure_future(_pump(local_reader, remote_writer)),
            asyncio.ensure_future(_pump(remote_reader, local_writer)),
        ]
        try:
            done, pending = await asyncio.wait(pumps, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                exc = None if task.cancelled() else task.exception()
                if exc is not None:
                    log.debug("tunnel.relay_error", local_port=tunnel.local_port, error=str(exc))
        finally:
            for task in pumps:
                task.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            _close_writer(remote_writer)
            _close_writer(local_writer)
            log.debug("tunnel.relay_closed", local_port=tunnel.local_port, peer=peer)
