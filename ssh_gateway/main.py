"""FastAPI application entry-point."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from ssh_gateway import __version__
from ssh_gateway.config import settings
from ssh_gateway.routers import health, tools
from ssh_gateway.services.audit import AuditLogger
from ssh_gateway.services.config_manager import ConfigManager
from ssh_gateway.services.ssh_manager import SSHConnectionManager
from ssh_gateway.services.tools import ToolContext
from ssh_gateway.utils.logging import get_logger, setup_logging

log = get_logger(__name__)


def build_context() -> ToolContext:
    config = ConfigManager(settings.config_path)
    config.load()
    manager = SSHConnectionManager(settings, max_connections=config.max_connections)
    return ToolContext(config=config, manager=manager, audit=AuditLogger.from_settings(settings))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks."""
    setup_logging()
    ctx = build_context()
    app.state.gateway = ctx
    log.info("gateway.started", config=settings.config_path, version=__version__)
    yield
    # Shutdown: tunnels first, then sessions
    await ctx.manager.disconnect_all()
    app.state.gateway = None
    log.info("gateway.stopped")


app = FastAPI(
    title="SSH Gateway",
    description="Allowlisted command execution, port forwarding and SFTP over pooled SSH sessions",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(tools.router)
