"""Schema of the gateway config file (``ssh-gateway-config.json``).

Keys in the file are camelCase; attribute names are snake_case.
"""

from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from ssh_gateway.models.commands import ServerIdentity


class _ConfigModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def require_text(value: str, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} is required and must be a non-empty string")
    return value


class ServerConfig(_ConfigModel):
    host: str
    port: int = Field(default=22, ge=1, le=65535)
    username: str
    private_key_path: str

    @field_validator("port", mode="before")
    @classmethod
    def _default_port(cls, value):
        return 22 if value is None else value

    @field_validator("host", "username", "private_key_path")
    @classmethod
    def _non_empty(cls, value: str, info: ValidationInfo) -> str:
        return require_text(value, to_camel(info.field_name))

    def identity(self) -> ServerIdentity:
        return ServerIdentity(
            host=self.host,
            port=self.port,
            username=self.username,
            private_key_path=self.private_key_path,
        )


class ForwardingService(_ConfigModel):
    """A named, pre-configured tunnel."""

    connection_name: str
    remote_host: str
    remote_port: int = Field(ge=1, le=65535)
    # 0 or missing requests an OS-assigned port
    local_port: Optional[int] = Field(default=None, ge=0, le=65535)
    description: Optional[str] = None

    @field_validator("connection_name", "remote_host")
    @classmethod
    def _non_empty(cls, value: str, info: ValidationInfo) -> str:
        return require_text(value, to_camel(info.field_name))


class CommandTemplate(_ConfigModel):
    command: str
    description: Optional[str] = None

    @field_validator("command")
    @classmethod
    def _command_required(cls, value: str) -> str:
        return require_text(value, "Template command")

    @field_validator("description")
    @classmethod
    def _description_non_empty(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError(
                "Template description, if provided, must be a non-empty string"
            )
        return value


class SSHConfigImport(_ConfigModel):
    """Which hosts to import from an OpenSSH client config file."""

    path: Optional[str] = None
    hosts: list[str] = Field(default_factory=list)


class GatewayConfig(_ConfigModel):
    servers: dict[str, ServerConfig] = Field(default_factory=dict)
    allowed_commands: Optional[list[str]] = None
    # Milliseconds
    command_timeout: Optional[float] = Field(default=None, gt=0)
    max_connections: Optional[int] = Field(default=None, ge=1)
    port_forwarding_services: dict[str, ForwardingService] = Field(default_factory=dict)
    command_templates: dict[str, Union[str, CommandTemplate]] = Field(default_factory=dict)
    ssh_config_import: Optional[SSHConfigImport] = None
