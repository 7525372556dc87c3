"""Command-related data structures."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ServerIdentity(BaseModel):
    """One remote target: who to log in as, where, and with which key."""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(default=22, ge=1, le=65535)
    username: str
    private_key_path: str

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.username, self.host, self.port)

    def __str__(self) -> str:
        return f"{self.username}@{self.host}:{self.port}"


class CommandResult(BaseModel):
    """Outcome of one remote command.

    ``exit_code`` is ``None`` when the command was cut off by its timeout.
    """

    model_config = ConfigDict(frozen=True)

    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    timed_out: bool = False
