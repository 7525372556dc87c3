"""Import server entries from an OpenSSH client config (``~/.ssh/config``)."""

from __future__ import annotations

import fnmatch
from pathlib import Path
from typing import Iterable, Optional

import paramiko

from ssh_gateway.exceptions import ConfigurationError
from ssh_gateway.models.config import ServerConfig
from ssh_gateway.utils.logging import get_logger
from ssh_gateway.utils.paths import expand_tilde

log = get_logger(__name__)

DEFAULT_SSH_CONFIG = "~/.ssh/config"


def _matches(alias: str, patterns: Iterable[str]) -> bool:
    return any(fnmatch.fnmatchcase(alias, pattern) for pattern in patterns)


def import_ssh_config(path: Optional[str], hosts: list[str]) -> dict[str, ServerConfig]:
    """Return servers for every concrete ``Host`` alias matching *hosts*.

    Wildcard ``Host`` blocks only contribute settings to the computed
    config of concrete aliases; they are never imported themselves.
    """
    config_path = Path(expand_tilde(path or DEFAULT_SSH_CONFIG))
    if not config_path.exists():
        log.warning("ssh_config.not_found", path=str(config_path))
        return {}
    if not hosts:
        log.warning("ssh_config.no_hosts", path=str(config_path))
        return {}

    try:
        ssh_config = paramiko.SSHConfig.from_path(str(config_path))
    except (OSError, paramiko.ssh_exception.ConfigParseError) as exc:
        raise ConfigurationError(
            f"Failed to parse SSH config file at {config_path}: {exc}"
        ) from exc

    servers: dict[str, ServerConfig] = {}
    for alias in sorted(ssh_config.get_hostnames()):
        if "*" in alias or "?" in alias or alias.startswith("!"):
            continue
        if not _matches(alias, hosts):
            continue

        computed = ssh_config.lookup(alias)
        hostname = computed.get("hostname") or alias
        username = computed.get("user")
        identity_files = computed.get("identityfile") or []
        key_path = identity_files[0] if identity_files else None

        if not (hostname and username and key_path):
            log.warning(
                "ssh_config.host_skipped",
                host=alias,
                hostname=hostname,
                user=username,
                identity_file=key_path,
            )
            continue

        servers[alias] = ServerConfig(
            host=hostname,
            port=int(computed.get("port", 22)),
            username=username,
            private_key_path=expand_tilde(key_path),
        )

    log.info("ssh_config.imported", path=str(config_path), count=len(servers))
    return servers
