"""Tests for the connection manager lifecycle."""

from __future__ import annotations

import asyncio

import pytest


@pytest.fixture
async def echo_port():
    async def _echo(reader, writer):
        data = await reader.read(1024)
        writer.write(data)
        await writer.drain()
        writer.close()

    server = await asyncio.start_server(_echo, "127.0.0.1", 0)
    yield server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()


class TestDisconnectAll:
    async def test_clears_tunnels_and_sessions(self, manager, transport, identity, echo_port):
        result = await manager.execute_command(identity, "whoami")
        assert result.stdout == "deploy\n"
        opened = await manager.setup_port_forward(identity, 0, "127.0.0.1", echo_port)
        assert manager.active_sessions == 1
        assert len(manager.list_port_forwards()) == 1

        await manager.disconnect_all()

        assert manager.list_port_forwards() == []
        assert manager.active_sessions == 0
        assert all(not conn.is_open() for conn in transport.connections)
        with pytest.raises(OSError):
            await asyncio.open_connection("127.0.0.1", opened.local_port)

    async def test_tunnels_close_before_sessions(self, manager, identity, monkeypatch, echo_port):
        await manager.setup_port_forward(identity, 0, "127.0.0.1", echo_port)
        seen: list[int] = []
        close_sessions = manager.pool.close_all

        async def _record():
            seen.append(len(manager.tunnels))
            await close_sessions()

        monkeypatch.setattr(manager.pool, "close_all", _record)
        await manager.disconnect_all()
        assert seen == [0]

    async def test_is_safe_to_repeat(self, manager, identity):
        await manager.execute_command(identity, "uname -a")
        await manager.disconnect_all()
        await manager.disconnect_all()
        assert manager.active_sessions == 0

    async def test_manager_usable_after_disconnect(self, manager, transport, identity):
        await manager.execute_command(identity, "whoami")
        await manager.disconnect_all()
        result = await manager.execute_command(identity, "whoami")
        assert result.exit_code == 0
        assert len(transport.connects) == 2
