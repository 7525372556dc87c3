"""Run one remote command per call on a pooled session."""

from __future__ import annotations

import asyncio
import math
from typing import Optional

from ssh_gateway.exceptions import ExecutionError, InvalidArgumentError
from ssh_gateway.models.commands import CommandResult, ServerIdentity
from ssh_gateway.services.session_pool import SessionPool
from ssh_gateway.services.transport import ExecChannel
from ssh_gateway.utils.logging import get_logger

log = get_logger(__name__)


def validate_timeout_ms(timeout_ms: Optional[float]) -> None:
    if timeout_ms is None:
        return
    if (
        isinstance(timeout_ms, bool)
        or not isinstance(timeout_ms, (int, float))
        or not math.isfinite(timeout_ms)
        or timeout_ms <= 0
    ):
        raise InvalidArgumentError(
            f"timeout must be a finite positive number of milliseconds, got {timeout_ms!r}"
        )


class _PendingCommand:
    """Collects one channel's output and settles its future exactly once.

    Whichever of close, error or timeout arrives first wins; later events
    are ignored and the timer is cancelled on settle.
    """

    def __init__(self, identity: ServerIdentity, command: str) -> None:
        self.identity = identity
        self.command = command
        self.future: asyncio.Future[CommandResult] = asyncio.get_running_loop().create_future()
        self.channel: Optional[ExecChannel] = None
        self._stdout: list[str] = []
        self._stderr: list[str] = []
        self._timer: Optional[asyncio.TimerHandle] = None

    def start_timer(self, timeout_ms: float) -> None:
        if self.future.done():
            return
        self._timer = asyncio.get_running_loop().call_later(
            timeout_ms / 1000.0, self._on_timeout,
        )

    def _settle(self) -> bool:
        if self.future.done():
            return False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return True

    def _result(self, exit_code: Optional[int], timed_out: bool) -> CommandResult:
        return CommandResult(
            stdout="".join(self._stdout),
            stderr="".join(self._stderr),
            exit_code=exit_code,
            timed_out=timed_out,
        )

    # ── ExecListener ──────────────────────────────────────────────────

    def on_stdout(self, data: str) -> None:
        if not self.future.done():
            self._stdout.append(data)

    def on_stderr(self, data: str) -> None:
        if not self.future.done():
            self._stderr.append(data)

    def on_close(self, exit_code: Optional[int]) -> None:
        if self._settle():
            self.future.set_result(self._result(exit_code, timed_out=False))

    def on_error(self, exc: BaseException) -> None:
        if self._settle():
            self.future.set_exception(
                ExecutionError(f"Command failed on {self.identity}: {exc}")
            )

    # ── timeout / cancel ──────────────────────────────────────────────

    def _on_timeout(self) -> None:
        self._timer = None
        if self._settle():
            log.warning("exec.timeout", target=str(self.identity), command=self.command)
            self.future.set_result(self._result(None, timed_out=True))
            self._close_channel()

    def abandon(self) -> None:
        if self._settle():
            self.future.cancel()
        self._close_channel()

    def _close_channel(self) -> None:
        if self.channel is not None:
            self.channel.close()


class RemoteExecutor:
    def __init__(self, pool: SessionPool) -> None:
        self._pool = pool

    async def execute(
        self,
        identity: ServerIdentity,
        command: str,
        timeout_ms: Optional[float] = None,
    ) -> CommandResult:
        """Run *command* and collect its output.

        A timeout is not an error: the channel is closed and the partial
        output comes back with ``timed_out=True`` and ``exit_code=None``.
        Channel failures raise :class:`ExecutionError`.
        """
        validate_timeout_ms(timeout_ms)
        session = await self._pool.acquire(identity)

        pending = _PendingCommand(identity, command)
        log.debug("exec.start", target=str(identity), command=command)
        pending.channel = await session.exec(command, pending)
        if timeout_ms is not None:
            pending.start_timer(timeout_ms)

        try:
            result = await pending.future
        except asyncio.CancelledError:
            pending.abandon()
            raise
        log.info(
            "exec.done",
            target=str(identity),
            exit_code=result.exit_code,
            timed_out=result.timed_out,
        )
        return result
