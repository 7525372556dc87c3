"""Exception hierarchy for the gateway.

Every error raised on purpose by the services derives from
:class:`GatewayError`, so the tool dispatcher can render them uniformly.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for all gateway errors."""


class ConfigurationError(GatewayError):
    """Missing or invalid server, service, template or config file."""


class TemplateError(ConfigurationError):
    """A command template could not be expanded."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class InvalidArgumentError(GatewayError, ValueError):
    """A caller supplied an argument of the wrong shape."""


class CapacityError(GatewayError):
    """The session pool is at its configured maximum."""

    def __init__(self, message: str, limit: int = 0) -> None:
        super().__init__(message)
        self.limit = limit


class TransportError(GatewayError, ConnectionError):
    """Network failure, connect timeout or mid-session disconnect."""

    def __init__(self, message: str, target: str = "") -> None:
        super().__init__(message)
        self.target = target


class AuthenticationError(TransportError):
    """The private key could not be read or was rejected by the server."""


class ExecutionError(GatewayError):
    """An exec channel failed (not a timeout)."""


class TunnelBindError(GatewayError, OSError):
    """The local listener for a tunnel could not be bound."""

    def __init__(self, message: str, local_port: int = 0) -> None:
        super().__init__(message)
        self.local_port = local_port


class FileTransferError(GatewayError):
    """An SFTP operation or local file access failed."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path = path


class AuthorizationError(GatewayError):
    """A command contains a program that is not on the allowlist."""

    def __init__(self, message: str, command: str = "") -> None:
        super().__init__(message)
        self.command = command
