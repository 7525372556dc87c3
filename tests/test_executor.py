"""Tests for remote command execution."""

from __future__ import annotations

import asyncio
import math

import pytest

from ssh_gateway.exceptions import ExecutionError, InvalidArgumentError
from ssh_gateway.services.executor import RemoteExecutor
from tests.mock_ssh import Script


@pytest.fixture
def executor(pool):
    return RemoteExecutor(pool)


class TestExecute:
    async def test_collects_output_and_exit_code(self, executor, identity):
        result = await executor.execute(identity, "uname -a")
        assert result.stdout.startswith("Linux web-01")
        assert result.stderr == ""
        assert result.exit_code == 0
        assert result.timed_out is False

    async def test_non_zero_exit_is_a_result(self, executor, identity):
        result = await executor.execute(identity, "false")
        assert result.exit_code == 1

    async def test_stdout_and_stderr_are_separate(self, executor, transport, identity):
        transport.add_response("make", Script(stdout="building\n", stderr="warning: x\n", exit_code=2))
        result = await executor.execute(identity, "make")
        assert result.stdout == "building\n"
        assert result.stderr == "warning: x\n"
        assert result.exit_code == 2

    async def test_commands_share_one_session(self, executor, transport, identity):
        await asyncio.gather(
            executor.execute(identity, "whoami"),
            executor.execute(identity, "uname -a"),
        )
        assert len(transport.connections) == 1
        assert sorted(transport.connections[0].commands) == ["uname -a", "whoami"]

    async def test_channel_error_raises(self, executor, transport, identity):
        transport.add_response("boom", Script(error=ConnectionResetError("reset by peer")))
        with pytest.raises(ExecutionError) as excinfo:
            await executor.execute(identity, "boom")
        assert "deploy@web-01:22" in str(excinfo.value)


class TestTimeout:
    async def test_timeout_returns_partial_output(self, executor, transport, identity):
        transport.add_response("tail -f log", Script(stdout="line 1\n", hang=True))
        result = await executor.execute(identity, "tail -f log", timeout_ms=50)
        assert result.timed_out is True
        assert result.exit_code is None
        assert result.stdout == "line 1\n"
        assert transport.connections[0].channels[0].closed

    async def test_fast_command_beats_timeout(self, executor, identity):
        result = await executor.execute(identity, "whoami", timeout_ms=5000)
        assert result.timed_out is False
        assert result.exit_code == 0

    @pytest.mark.parametrize("bad", [0, -1, math.inf, math.nan, True, "100"])
    async def test_invalid_timeout(self, executor, identity, bad):
        with pytest.raises(InvalidArgumentError):
            await executor.execute(identity, "whoami", timeout_ms=bad)

    async def test_caller_cancel_closes_channel(self, executor, transport, identity):
        transport.add_response("sleep 100", Script(hang=True))
        task = asyncio.ensure_future(executor.execute(identity, "sleep 100"))
        await asyncio.sleep(0.02)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert transport.connections[0].channels[0].closed
