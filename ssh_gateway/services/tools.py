"""Named gateway operations ("tools") and their dispatcher.

Each tool takes a camelCase argument dict and returns a JSON-able dict.
:func:`call_tool` is the only boundary that turns exceptions into the
``{"success": false, "error": ...}`` envelope.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ssh_gateway.exceptions import (
    AuthorizationError,
    ConfigurationError,
    GatewayError,
    InvalidArgumentError,
)
from ssh_gateway.models.commands import CommandResult
from ssh_gateway.models.config import require_text
from ssh_gateway.services.audit import AuditEntry, AuditLogger
from ssh_gateway.services.config_manager import ConfigManager, format_validation_errors
from ssh_gateway.services.ssh_manager import SSHConnectionManager
from ssh_gateway.services.templates import extract_variables, substitute_variables
from ssh_gateway.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class ToolContext:
    config: ConfigManager
    manager: SSHConnectionManager
    audit: AuditLogger


# ── argument models ───────────────────────────────────────────────────────


def _text(*fields: str):
    def _check(cls, value, info):
        return require_text(value, to_camel(info.field_name))
    return field_validator(*fields)(_check)


class _Args(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


_TIMEOUT_ALIASES = AliasChoices("timeoutMs", "commandTimeout", "timeout_ms")


class ExecuteCommandArgs(_Args):
    connection_name: str = Field(description="Name of a configured server")
    command: str = Field(description="Shell command to run")
    timeout_ms: Optional[float] = Field(
        default=None,
        validation_alias=_TIMEOUT_ALIASES,
        description="Timeout in milliseconds (defaults to commandTimeout)",
    )

    _check_text = _text("connection_name", "command")


class ExecuteTemplateArgs(_Args):
    connection_name: str = Field(description="Name of a configured server")
    template_name: str = Field(description="Name of a command template")
    variables: dict[str, str] = Field(default_factory=dict)
    timeout_ms: Optional[float] = Field(default=None, validation_alias=_TIMEOUT_ALIASES)

    _check_text = _text("connection_name", "template_name")


class PortForwardArgs(_Args):
    connection_name: str
    local_port: int = Field(default=0, ge=0, le=65535, description="0 picks a free port")
    remote_host: str
    remote_port: int = Field(ge=1, le=65535)

    _check_text = _text("connection_name", "remote_host")


class ForwardServiceArgs(_Args):
    service_name: str

    _check_text = _text("service_name")


class ClosePortForwardArgs(_Args):
    connection_name: str
    local_port: int = Field(ge=0, le=65535)

    _check_text = _text("connection_name")


class UploadFileArgs(_Args):
    connection_name: str
    local_path: str
    remote_path: str
    permissions: Optional[str] = Field(default=None, description='Octal mode, e.g. "0644"')

    _check_text = _text("connection_name", "local_path", "remote_path")


class DownloadFileArgs(_Args):
    connection_name: str
    remote_path: str
    local_path: str

    _check_text = _text("connection_name", "remote_path", "local_path")


class ListRemoteFilesArgs(_Args):
    connection_name: str
    remote_path: str
    pattern: Optional[str] = Field(default=None, description='Glob such as "*.log"')

    _check_text = _text("connection_name", "remote_path")


class DeleteRemoteFileArgs(_Args):
    connection_name: str
    remote_path: str

    _check_text = _text("connection_name", "remote_path")


class NoArgs(_Args):
    pass


# ── handlers ──────────────────────────────────────────────────────────────


def _result_fields(result: CommandResult) -> dict[str, Any]:
    return {
        "exitCode": result.exit_code,
        "stdout": result.stdout,
        "stderr": result.stderr,
        "timedOut": result.timed_out,
    }


async def _run_audited(
    ctx: ToolContext, connection_name: str, command: str, timeout_ms: Optional[float],
) -> CommandResult:
    identity = ctx.config.get_server(connection_name).identity()
    timeout = timeout_ms if timeout_ms is not None else ctx.config.command_timeout
    started = time.monotonic()
    result = await ctx.manager.execute_command(identity, command, timeout)
    await ctx.audit.log(AuditEntry(
        connection_name=connection_name,
        command=command,
        exit_code=result.exit_code,
        timed_out=result.timed_out,
        duration_ms=int((time.monotonic() - started) * 1000),
    ))
    return result


async def execute_command(args: ExecuteCommandArgs, ctx: ToolContext) -> dict[str, Any]:
    ctx.config.get_server(args.connection_name)
    check = ctx.config.check_command(args.command)
    if not check:
        raise AuthorizationError(
            f'Command "{args.command}" is not in the allowed commands list ({check.reason})',
            command=args.command,
        )
    result = await _run_audited(ctx, args.connection_name, args.command, args.timeout_ms)
    return {"success": True, **_result_fields(result)}


async def execute_template(args: ExecuteTemplateArgs, ctx: ToolContext) -> dict[str, Any]:
    template = ctx.config.get_template(args.template_name)
    command = substitute_variables(template, args.variables)
    check = ctx.config.check_command(command)
    if not check:
        raise AuthorizationError(
            f"Command not allowed. The expanded command '{command}' "
            f"is not in the allowedCommands list ({check.reason})",
            command=command,
        )
    result = await _run_audited(ctx, args.connection_name, command, args.timeout_ms)
    return {
        "success": True,
        "templateName": args.template_name,
        "expandedCommand": command,
        "variables": args.variables,
        "result": _result_fields(result),
    }


async def list_templates(args: NoArgs, ctx: ToolContext) -> dict[str, Any]:
    templates = [
        {
            "name": t["name"],
            "command": t["command"],
            "description": t["description"] or "No description provided",
            "variables": [
                v.model_dump(by_alias=True, exclude_none=True)
                for v in extract_variables(t["command"])
            ],
        }
        for t in ctx.config.list_templates()
    ]
    return {"success": True, "templates": templates, "count": len(templates)}


async def port_forward(args: PortForwardArgs, ctx: ToolContext) -> dict[str, Any]:
    identity = ctx.config.get_server(args.connection_name).identity()
    opened = await ctx.manager.setup_port_forward(
        identity, args.local_port, args.remote_host, args.remote_port,
    )
    return {
        "success": True,
        "localPort": opened.local_port,
        "remoteHost": args.remote_host,
        "remotePort": args.remote_port,
        "status": opened.status.value,
        "message": (
            f"Port forwarding active: localhost:{opened.local_port} -> "
            f"{args.remote_host}:{args.remote_port}"
        ),
    }


async def port_forward_service(args: ForwardServiceArgs, ctx: ToolContext) -> dict[str, Any]:
    service = ctx.config.get_service(args.service_name)
    identity = ctx.config.get_server(service.connection_name).identity()
    opened = await ctx.manager.setup_port_forward(
        identity, service.local_port or 0, service.remote_host, service.remote_port,
    )
    return {
        "success": True,
        "serviceName": args.service_name,
        "description": service.description,
        "localPort": opened.local_port,
        "remoteHost": service.remote_host,
        "remotePort": service.remote_port,
        "status": opened.status.value,
        "message": (
            f"Port forwarding service '{args.service_name}' {opened.status.value}: "
            f"localhost:{opened.local_port} -> {service.remote_host}:{service.remote_port}"
        ),
    }


async def close_port_forward(args: ClosePortForwardArgs, ctx: ToolContext) -> dict[str, Any]:
    identity = ctx.config.get_server(args.connection_name).identity()
    forward = ctx.manager.find_port_forward(identity, args.local_port)
    if forward is None:
        raise ConfigurationError(
            f"No active port forward found for {args.connection_name} "
            f"on local port {args.local_port}"
        )
    await ctx.manager.close_port_forward(
        identity, args.local_port, forward.remote_host, forward.remote_port,
    )
    return {"success": True, "message": f"Port forwarding closed: {forward.route}"}


async def list_port_forwards(args: NoArgs, ctx: ToolContext) -> dict[str, Any]:
    forwards = ctx.manager.list_port_forwards()
    return {
        "success": True,
        "count": len(forwards),
        "forwards": [
            {"sshConnection": f.ssh_connection, "tunnel": f.route, "status": f.status.value}
            for f in forwards
        ],
    }


async def upload_file(args: UploadFileArgs, ctx: ToolContext) -> dict[str, Any]:
    identity = ctx.config.get_server(args.connection_name).identity()
    result = await ctx.manager.upload_file(
        identity, args.local_path, args.remote_path, args.permissions,
    )
    return {
        "success": True,
        "bytesTransferred": result.bytes_transferred,
        "message": result.message,
        "localPath": args.local_path,
        "remotePath": args.remote_path,
    }


async def download_file(args: DownloadFileArgs, ctx: ToolContext) -> dict[str, Any]:
    identity = ctx.config.get_server(args.connection_name).identity()
    result = await ctx.manager.download_file(identity, args.remote_path, args.local_path)
    return {
        "success": True,
        "bytesTransferred": result.bytes_transferred,
        "message": result.message,
        "remotePath": args.remote_path,
        "localPath": args.local_path,
    }


async def list_remote_files(args: ListRemoteFilesArgs, ctx: ToolContext) -> dict[str, Any]:
    identity = ctx.config.get_server(args.connection_name).identity()
    listing = await ctx.manager.list_remote_files(identity, args.remote_path, args.pattern)
    return {
        "success": True,
        "remotePath": args.remote_path,
        "pattern": args.pattern or "none",
        "totalCount": listing.total_count,
        "files": [
            {
                "name": f.filename,
                "size": f.size,
                "modified": f.modified,
                "permissions": f.permissions,
                "isDirectory": f.is_directory,
                "isFile": f.is_file,
            }
            for f in listing.files
        ],
    }


async def delete_remote_file(args: DeleteRemoteFileArgs, ctx: ToolContext) -> dict[str, Any]:
    identity = ctx.config.get_server(args.connection_name).identity()
    result = await ctx.manager.delete_remote_file(identity, args.remote_path)
    return {"success": True, "message": result.message, "remotePath": args.remote_path}


async def list_servers(args: NoArgs, ctx: ToolContext) -> dict[str, Any]:
    servers = [
        {"name": name, "host": s.host, "port": s.port, "username": s.username}
        for name, s in ctx.config.list_servers().items()
    ]
    return {"success": True, "count": len(servers), "servers": servers}


# ── registry ──────────────────────────────────────────────────────────────


Handler = Callable[[Any, ToolContext], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    args_model: type[_Args]
    handler: Handler

    def definition(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.args_model.model_json_schema(by_alias=True),
        }


TOOLS: dict[str, Tool] = {
    tool.name: tool
    for tool in (
        Tool("ssh_execute_command",
             "Execute a command on a configured SSH server.",
             ExecuteCommandArgs, execute_command),
        Tool("ssh_execute_template",
             "Execute a configured command template with {{variable}} substitution.",
             ExecuteTemplateArgs, execute_template),
        Tool("ssh_list_templates",
             "List command templates with their descriptions and variables.",
             NoArgs, list_templates),
        Tool("ssh_port_forward",
             "Forward a local port to a host reachable from a configured server.",
             PortForwardArgs, port_forward),
        Tool("ssh_port_forward_service",
             "Start a pre-configured port forwarding service by name.",
             ForwardServiceArgs, port_forward_service),
        Tool("ssh_close_port_forward",
             "Close an active port forward.",
             ClosePortForwardArgs, close_port_forward),
        Tool("ssh_list_port_forwards",
             "List active port forwards.",
             NoArgs, list_port_forwards),
        Tool("ssh_upload_file",
             "Upload a local file to a configured server via SFTP.",
             UploadFileArgs, upload_file),
        Tool("ssh_download_file",
             "Download a file from a configured server via SFTP.",
             DownloadFileArgs, download_file),
        Tool("ssh_list_remote_files",
             "List a remote directory via SFTP, optionally filtered by a glob.",
             ListRemoteFilesArgs, list_remote_files),
        Tool("ssh_delete_remote_file",
             "Delete a remote file via SFTP.",
             DeleteRemoteFileArgs, delete_remote_file),
        Tool("ssh_list_servers",
             "List configured servers.",
             NoArgs, list_servers),
    )
}


def list_tools() -> list[dict[str, Any]]:
    return [tool.definition() for tool in TOOLS.values()]


def error_envelope(message: str) -> dict[str, Any]:
    return {"success": False, "error": message}


async def call_tool(name: str, arguments: Optional[dict[str, Any]], ctx: ToolContext) -> dict[str, Any]:
    """Run tool *name*; every failure comes back as an error envelope."""
    tool = TOOLS.get(name)
    if tool is None:
        log.warning("tool.unknown", tool=name)
        return error_envelope(f"Unknown tool: {name}")

    try:
        try:
            args = tool.args_model.model_validate(arguments or {})
        except ValidationError as exc:
            raise InvalidArgumentError("; ".join(format_validation_errors(exc))) from exc
        result = await tool.handler(args, ctx)
    except GatewayError as exc:
        log.warning("tool.failed", tool=name, error_type=type(exc).__name__, error=str(exc))
        return error_envelope(str(exc))
    except Exception as exc:
        log.exception("tool.crashed", tool=name)
        return error_envelope(str(exc) or type(exc).__name__)

    log.info("tool.done", tool=name)
    return result
