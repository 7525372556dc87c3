"""SSH transport abstraction and its AsyncSSH implementation.

The pool, executor, tunnel engine and file operations only talk to the
:class:`Transport` / :class:`SSHConnection` interfaces below, so tests can
swap in an in-memory transport.
"""

from __future__ import annotations

import abc
import asyncio
from typing import Any, AsyncContextManager, Optional, Protocol

import asyncssh

from ssh_gateway.exceptions import AuthenticationError, ExecutionError, TransportError
from ssh_gateway.models.commands import ServerIdentity
from ssh_gateway.utils.logging import get_logger

log = get_logger(__name__)


class ExecListener(Protocol):
    """Receives the events of one exec channel."""

    def on_stdout(self, data: str) -> None: ...

    def on_stderr(self, data: str) -> None: ...

    def on_close(self, exit_code: Optional[int]) -> None: ...

    def on_error(self, exc: BaseException) -> None: ...


class ExecChannel(Protocol):
    def close(self) -> None: ...


class SSHConnection(abc.ABC):
    """One authenticated transport to one identity."""

    def __init__(self, identity: ServerIdentity) -> None:
        self.identity = identity

    @abc.abstractmethod
    def is_open(self) -> bool:
        """False once the underlying socket is gone."""

    @abc.abstractmethod
    async def exec(self, command: str, listener: ExecListener) -> ExecChannel:
        """Start *command* on a new exec channel, reporting to *listener*."""

    @abc.abstractmethod
    async def open_tunnel(
        self, orig_host: str, orig_port: int, dest_host: str, dest_port: int,
    ) -> tuple[Any, Any]:
        """Open a direct-tcpip channel; returns a (reader, writer) pair."""

    @abc.abstractmethod
    def open_sftp(self) -> AsyncContextManager[Any]:
        """Open an SFTP session for the duration of an ``async with``."""

    @abc.abstractmethod
    def close(self) -> None: ...

    async def wait_closed(self) -> None:
        return None


class Transport(abc.ABC):
    @abc.abstractmethod
    async def connect(
        self, identity: ServerIdentity, private_key: bytes, *, timeout: float,
    ) -> SSHConnection:
        """Connect and authenticate; return once the session is ready."""


# ── AsyncSSH implementation ───────────────────────────────────────────────


class _ConnectionWatcher(asyncssh.SSHClient):
    """Tracks socket liveness for one client connection."""

    def __init__(self, identity: ServerIdentity) -> None:
        self._identity = identity
        self.closed = False

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.closed = True
        if exc is not None:
            log.warning("ssh.connection_lost", target=str(self._identity), error=str(exc))
        else:
            log.info("ssh.connection_closed", target=str(self._identity))


class _ExecSession(asyncssh.SSHClientSession):
    def __init__(self, listener: ExecListener) -> None:
        self._listener = listener
        self._exit_status: Optional[int] = None

    def data_received(self, data: str, datatype: Optional[int]) -> None:
        if datatype == asyncssh.EXTENDED_DATA_STDERR:
            self._listener.on_stderr(data)
        else:
            self._listener.on_stdout(data)

    def exit_status_received(self, status: int) -> None:
        self._exit_status = status

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None:
            self._listener.on_error(exc)
        else:
            self._listener.on_close(self._exit_status)


class AsyncSSHConnection(SSHConnection):
    def __init__(
        self,
        identity: ServerIdentity,
        conn: asyncssh.SSHClientConnection,
        watcher: _ConnectionWatcher,
    ) -> None:
        super().__init__(identity)
        self._conn = conn
        self._watcher = watcher

    def is_open(self) -> bool:
        return not self._watcher.closed

    async def exec(self, command: str, listener: ExecListener) -> ExecChannel:
        try:
            channel, _ = await self._conn.create_session(
                lambda: _ExecSession(listener), command,
            )
        except (asyncssh.Error, OSError) as exc:
            raise ExecutionError(
                f"Failed to open exec channel on {self.identity}: {exc}"
            ) from exc
        return channel

    async def open_tunnel(
        self, orig_host: str, orig_port: int, dest_host: str, dest_port: int,
    ) -> tuple[asyncssh.SSHReader, asyncssh.SSHWriter]:
        try:
            return await self._conn.open_connection(
                dest_host, dest_port, orig_host=orig_host, orig_port=orig_port,
            )
        except (asyncssh.Error, OSError) as exc:
            raise TransportError(
                f"Failed to open channel to {dest_host}:{dest_port} "
                f"via {self.identity}: {exc}",
                target=str(self.identity),
            ) from exc

    def open_sftp(self) -> AsyncContextManager[asyncssh.SFTPClient]:
        return self._conn.start_sftp_client()

    def close(self) -> None:
        self._conn.close()

    async def wait_closed(self) -> None:
        await self._conn.wait_closed()


class AsyncSSHTransport(Transport):
    """Private-key-only SSH client built on asyncssh."""

    def __init__(
        self,
        *,
        known_hosts: Optional[str] = None,
        keepalive_interval: float = 60.0,
    ) -> None:
        self._known_hosts = known_hosts
        self._keepalive_interval = keepalive_interval

    async def connect(
        self, identity: ServerIdentity, private_key: bytes, *, timeout: float,
    ) -> SSHConnection:
        target = str(identity)
        try:
            key = asyncssh.import_private_key(private_key)
        except (asyncssh.KeyImportError, ValueError) as exc:
            raise AuthenticationError(
                f"Invalid private key {identity.private_key_path} for {target}: {exc}",
                target=target,
            ) from exc

        watcher = _ConnectionWatcher(identity)
        log.info("ssh.connecting", target=target)
        try:
            conn = await asyncssh.connect(
                identity.host,
                identity.port,
                username=identity.username,
                client_keys=[key],
                known_hosts=self._known_hosts,
                agent_path=None,
                preferred_auth="publickey",
                config=None,
                connect_timeout=timeout,
                keepalive_interval=self._keepalive_interval,
                client_factory=lambda: watcher,
            )
        except asyncssh.PermissionDenied as exc:
            raise AuthenticationError(
                f"Authentication failed for {target}: {exc.reason}", target=target,
            ) from exc
        except asyncio.TimeoutError as exc:
            raise TransportError(
                f"Timed out connecting to {target} after {timeout:g}s", target=target,
            ) from exc
        except (asyncssh.Error, OSError) as exc:
            raise TransportError(f"Failed to connect to {target}: {exc}", target=target) from exc

        log.info("ssh.connected", target=target)
        return AsyncSSHConnection(identity, conn, watcher)
