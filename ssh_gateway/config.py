"""Process settings loaded from environment variables."""

from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Process-level knobs; per-server data lives in the gateway config file."""

    # Gateway config file (servers, allowlist, templates, services)
    config_path: str = "ssh-gateway-config.json"

    # API key (blank disables the check)
    api_key: str = ""

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # SSH transport
    connect_timeout_seconds: float = Field(default=30.0, gt=0)
    keepalive_interval_seconds: float = Field(default=60.0, ge=0)
    # Blank disables host key verification
    known_hosts_path: Optional[str] = None

    # Audit trail of executed commands
    audit_log_enabled: bool = False
    audit_log_dir: str = "logs"

    model_config = {
        "env_prefix": "SSH_GATEWAY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


# Singleton – import this from anywhere
settings = Settings()
