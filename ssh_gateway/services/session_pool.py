"""SSH session pool: one authenticated transport per identity.

Sessions are created lazily on first use, reused while their socket stays
open, and only torn down by :meth:`SessionPool.close_all` or when found dead
on the next acquire.  There is no idle timer.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable

from ssh_gateway.exceptions import AuthenticationError, CapacityError
from ssh_gateway.models.commands import ServerIdentity
from ssh_gateway.services.transport import SSHConnection, Transport
from ssh_gateway.utils.logging import get_logger
from ssh_gateway.utils.paths import expand_tilde

log = get_logger(__name__)

DEFAULT_MAX_CONNECTIONS = 5
DEFAULT_CONNECT_TIMEOUT = 30.0

KeyReader = Callable[[str], Awaitable[bytes]]
SessionKey = tuple[str, str, int]


async def read_private_key(path: str) -> bytes:
    """Read key material, expanding a leading ``~/``, off the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, Path(expand_tilde(path)).read_bytes)


class SessionPool:
    """Owns the identity -> session registry."""

    def __init__(
        self,
        transport: Transport,
        *,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        key_reader: KeyReader = read_private_key,
    ) -> None:
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self._transport = transport
        self._max_connections = max_connections
        self._connect_timeout = connect_timeout
        self._read_key = key_reader
        self._sessions: dict[SessionKey, SSHConnection] = {}
        self._connecting: dict[SessionKey, asyncio.Task[SSHConnection]] = {}

    # ── lookup / create ───────────────────────────────────────────────

    async def acquire(self, identity: ServerIdentity) -> SSHConnection:
        """Return the live session for *identity*, connecting if needed.

        Raises :class:`CapacityError` before connecting when the pool is
        full, and :class:`TransportError` / :class:`AuthenticationError`
        when the connect fails.
        """
        key = identity.key

        session = self._sessions.get(key)
        if session is not None:
            if session.is_open():
                return session
            del self._sessions[key]
            log.info("ssh.session_evicted", target=str(identity))
            session.close()

        pending = self._connecting.get(key)
        if pending is None:
            in_use = len(self._sessions) + len(self._connecting)
            if in_use >= self._max_connections:
                raise CapacityError(
                    f"Maximum number of connections ({self._max_connections}) "
                    f"reached; cannot connect to {identity}",
                    limit=self._max_connections,
                )
            pending = asyncio.ensure_future(self._connect(identity))
            self._connecting[key] = pending

        # shield: one cancelled caller must not abort a connect others await
        return await asyncio.shield(pending)

    async def _connect(self, identity: ServerIdentity) -> SSHConnection:
        key = identity.key
        try:
            try:
                private_key = await self._read_key(identity.private_key_path)
            except OSError as exc:
                raise AuthenticationError(
                    f"Cannot read private key {identity.private_key_path} "
                    f"for {identity}: {exc}",
                    target=str(identity),
                ) from exc
            session = await self._transport.connect(
                identity, private_key, timeout=self._connect_timeout,
            )
        finally:
            if self._connecting.get(key) is asyncio.current_task():
                del self._connecting[key]

        self._sessions[key] = session
        log.info("ssh.session_registered", target=str(identity), active=len(self._sessions))
        return session

    # ── introspection ─────────────────────────────────────────────────

    def is_connected(self, identity: ServerIdentity) -> bool:
        session = self._sessions.get(identity.key)
        return session is not None and session.is_open()

    @property
    def max_connections(self) -> int:
        return self._max_connections

    def __len__(self) -> int:
        return len(self._sessions)

    # ── shutdown ──────────────────────────────────────────────────────

    async def close_all(self) -> None:
        """Close every session and abandon in-flight connects."""
        sessions = list(self._sessions.values())
        connecting = list(self._connecting.values())
        self._sessions.clear()
        self._connecting.clear()

        for task in connecting:
            task.cancel()
        for session in sessions:
            session.close()
        await asyncio.gather(
            *connecting,
            *(session.wait_closed() for session in sessions),
            return_exceptions=True,
        )
        if sessions:
            log.info("ssh.sessions_closed", count=len(sessions))
