"""Load and validate the gateway config file.

Every server, service and template is validated on its own so one error
message lists everything wrong with that entry:

    Invalid configuration for server 'web':
      - host is required and must be a non-empty string
      - privateKeyPath file does not exist: ~/.ssh/missing
"""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, ValidationError

from ssh_gateway.exceptions import ConfigurationError, InvalidArgumentError
from ssh_gateway.models.config import (
    CommandTemplate,
    ForwardingService,
    GatewayConfig,
    ServerConfig,
    SSHConfigImport,
)
from ssh_gateway.services.command_filter import CommandFilterResult, check_command
from ssh_gateway.services.ssh_config_import import import_ssh_config
from ssh_gateway.utils.logging import get_logger
from ssh_gateway.utils.paths import expand_tilde

log = get_logger(__name__)

DEFAULT_COMMAND_TIMEOUT_MS = 30000
DEFAULT_MAX_CONNECTIONS = 5

_RANGE_MESSAGES = {
    "port": "port must be a number between 1 and 65535",
    "remotePort": "remotePort must be a number between 1 and 65535",
    "localPort": "localPort must be a number between 0 and 65535 (0 for dynamic allocation)",
    "commandTimeout": "commandTimeout must be a positive number of milliseconds",
    "maxConnections": "maxConnections must be a positive integer",
}


def format_validation_errors(exc: ValidationError) -> list[str]:
    messages: list[str] = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "value"
        kind = err["type"]
        if field in _RANGE_MESSAGES:
            message = _RANGE_MESSAGES[field]
        elif kind == "value_error":
            message = str(err["ctx"]["error"])
        elif kind in ("missing", "string_type"):
            message = f"{field} is required and must be a non-empty string"
        else:
            message = f"{field}: {err['msg']}"
        if message not in messages:
            messages.append(message)
    return messages


def _entry_error(kind: str, name: str, errors: list[str]) -> ConfigurationError:
    return ConfigurationError(
        f"Invalid {kind} '{name}':\n  - " + "\n  - ".join(errors)
    )


def _validate(model: type[BaseModel], data: Any) -> tuple[Optional[BaseModel], list[str]]:
    if not isinstance(data, dict):
        return None, ["entry must be an object"]
    try:
        return model.model_validate(data), []
    except ValidationError as exc:
        return None, format_validation_errors(exc)


class ConfigManager:
    def __init__(self, config_path: str | Path | None = None) -> None:
        self.config_path = Path(config_path) if config_path else None
        self.config = GatewayConfig()

    # ── loading ───────────────────────────────────────────────────────

    def load(self) -> GatewayConfig:
        if self.config_path is None:
            raise ConfigurationError("No config file path set")
        if not self.config_path.exists():
            raise ConfigurationError(f"Config file not found at {self.config_path}")
        try:
            raw = json.loads(self.config_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ConfigurationError(
                f"Failed to read config file {self.config_path}: {exc}"
            ) from exc

        self.config = self.load_dict(raw)
        log.info(
            "config.loaded",
            path=str(self.config_path),
            servers=len(self.config.servers),
            templates=len(self.config.command_templates),
            services=len(self.config.port_forwarding_services),
        )
        return self.config

    def load_dict(self, raw: Any) -> GatewayConfig:
        """Validate an already-parsed config document and make it current."""
        if not isinstance(raw, dict):
            raise ConfigurationError("Config file must contain a JSON object")

        top_level = {
            key: raw[key]
            for key in ("allowedCommands", "commandTimeout", "maxConnections")
            if key in raw
        }
        timeout = top_level.get("commandTimeout")
        if isinstance(timeout, float) and not math.isfinite(timeout):
            raise ConfigurationError(
                "Invalid configuration:\n  - " + _RANGE_MESSAGES["commandTimeout"]
            )
        try:
            base = GatewayConfig.model_validate(top_level)
        except ValidationError as exc:
            raise ConfigurationError(
                "Invalid configuration:\n  - " + "\n  - ".join(format_validation_errors(exc))
            ) from exc

        ssh_import = self._validate_import(raw.get("sshConfigImport"))
        servers: dict[str, ServerConfig] = {}
        if ssh_import is not None:
            servers.update(import_ssh_config(ssh_import.path, ssh_import.hosts))
        # Servers declared in the gateway config win over imported ones
        servers.update(self._validate_servers(raw.get("servers") or {}))

        services = self._validate_services(raw.get("portForwardingServices") or {}, servers)
        templates = self._validate_templates(raw.get("commandTemplates") or {})

        self.config = GatewayConfig(
            servers=servers,
            allowed_commands=base.allowed_commands,
            command_timeout=base.command_timeout,
            max_connections=base.max_connections,
            port_forwarding_services=services,
            command_templates=templates,
            ssh_config_import=ssh_import,
        )
        return self.config

    def _validate_import(self, data: Any) -> Optional[SSHConfigImport]:
        if data is None:
            return None
        model, errors = _validate(SSHConfigImport, data)
        if errors:
            raise ConfigurationError(
                "Invalid sshConfigImport:\n  - " + "\n  - ".join(errors)
            )
        return model

    def _validate_servers(self, data: Any) -> dict[str, ServerConfig]:
        if not isinstance(data, dict):
            raise ConfigurationError("servers must be an object keyed by server name")
        servers: dict[str, ServerConfig] = {}
        for name, entry in data.items():
            model, errors = _validate(ServerConfig, entry)
            if model is not None and not Path(expand_tilde(model.private_key_path)).exists():
                errors.append(f"privateKeyPath file does not exist: {model.private_key_path}")
            if errors:
                raise _entry_error("configuration for server", name, errors)
            servers[name] = model
        return servers

    def _validate_services(
        self, data: Any, servers: dict[str, ServerConfig],
    ) -> dict[str, ForwardingService]:
        if not isinstance(data, dict):
            raise ConfigurationError("portForwardingServices must be an object keyed by name")
        services: dict[str, ForwardingService] = {}
        for name, entry in data.items():
            model, errors = _validate(ForwardingService, entry)
            if model is not None and model.connection_name not in servers:
                errors.append(f"connectionName '{model.connection_name}' does not exist in servers")
            if errors:
                raise _entry_error("port forwarding service", name, errors)
            services[name] = model
        return services

    def _validate_templates(self, data: Any) -> dict[str, Union[str, CommandTemplate]]:
        if not isinstance(data, dict):
            raise ConfigurationError("commandTemplates must be an object keyed by name")
        templates: dict[str, Union[str, CommandTemplate]] = {}
        for name, entry in data.items():
            errors: list[str] = []
            if not name.strip():
                errors.append("Template name is required and must be a non-empty string")
            if isinstance(entry, str):
                if not entry.strip():
                    errors.append("Template command is required and must be a non-empty string")
                value: Union[str, CommandTemplate, None] = entry
            elif isinstance(entry, dict):
                value, entry_errors = _validate(CommandTemplate, entry)
                errors.extend(entry_errors)
            else:
                value = None
                errors.append(
                    "Template must be either a string or an object with a command property"
                )
            if errors:
                raise _entry_error("command template", name, errors)
            templates[name] = value
        return templates

    # ── servers ───────────────────────────────────────────────────────

    def get_server(self, connection_name: Optional[str]) -> ServerConfig:
        if not connection_name:
            raise InvalidArgumentError(
                "connectionName is required and must reference a configured server"
            )
        server = self.config.servers.get(connection_name)
        if server is None:
            raise ConfigurationError(f"Server configuration '{connection_name}' not found")
        return server

    def list_servers(self) -> dict[str, ServerConfig]:
        return dict(self.config.servers)

    # ── policy ────────────────────────────────────────────────────────

    @property
    def allowed_commands(self) -> list[str]:
        return list(self.config.allowed_commands or [])

    def check_command(self, command: str) -> CommandFilterResult:
        return check_command(command, self.config.allowed_commands)

    def is_command_allowed(self, command: str) -> bool:
        return self.check_command(command).allowed

    @property
    def command_timeout(self) -> float:
        """Default per-command timeout in milliseconds."""
        return self.config.command_timeout or DEFAULT_COMMAND_TIMEOUT_MS

    @property
    def max_connections(self) -> int:
        return self.config.max_connections or DEFAULT_MAX_CONNECTIONS

    # ── port forwarding services ──────────────────────────────────────

    def get_service(self, service_name: Optional[str]) -> ForwardingService:
        if not service_name:
            raise InvalidArgumentError("serviceName is required")
        service = self.config.port_forwarding_services.get(service_name)
        if service is None:
            raise ConfigurationError(f"Port forwarding service '{service_name}' not found")
        return service

    def list_services(self) -> list[str]:
        return list(self.config.port_forwarding_services)

    # ── templates ─────────────────────────────────────────────────────

    def get_template(self, template_name: Optional[str]) -> str:
        if not template_name:
            raise InvalidArgumentError("templateName is required")
        template = self.config.command_templates.get(template_name)
        if template is None:
            raise ConfigurationError(f"Command template '{template_name}' not found")
        return template if isinstance(template, str) else template.command

    def list_templates(self) -> list[dict[str, Optional[str]]]:
        result = []
        for name, template in self.config.command_templates.items():
            if isinstance(template, str):
                result.append({"name": name, "command": template, "description": None})
            else:
                result.append({
                    "name": name,
                    "command": template.command,
                    "description": template.description,
                })
        return result
