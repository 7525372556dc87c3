"""Per-session JSON-lines audit trail of executed commands."""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from ssh_gateway.config import Settings, settings
from ssh_gateway.utils.logging import get_logger
from ssh_gateway.utils.paths import safe_filename

log = get_logger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _append_line(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fh.write(line)


class AuditEntry(BaseModel):
    session_id: str = ""
    timestamp: str = Field(default_factory=_now)
    connection_name: str
    command: str
    exit_code: Optional[int] = None
    timed_out: bool = False
    duration_ms: int = 0


class AuditLogger:
    """Appends one line per command to ``audit-<connection>-<session>.jsonl``.

    The session id is fixed for the life of the logger, so one process run
    produces one file per connection.
    """

    def __init__(
        self,
        enabled: bool = False,
        log_dir: str | Path = "logs",
        session_id: Optional[str] = None,
    ) -> None:
        self.enabled = enabled
        self.log_dir = Path(log_dir)
        self.session_id = session_id or uuid.uuid4().hex[:12]

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> "AuditLogger":
        cfg = cfg or settings
        return cls(enabled=cfg.audit_log_enabled, log_dir=cfg.audit_log_dir)

    def path_for(self, connection_name: str) -> Path:
        return self.log_dir / f"audit-{safe_filename(connection_name)}-{self.session_id}.jsonl"

    async def log(self, entry: AuditEntry) -> None:
        """Append *entry* off the event loop. Write errors are logged, not raised."""
        if not self.enabled:
            return
        entry = entry.model_copy(update={"session_id": self.session_id})
        path = self.path_for(entry.connection_name)
        line = json.dumps(entry.model_dump()) + "\n"
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _append_line, path, line)
        except OSError as exc:
            # the command already ran; a lost audit line must not fail it
            log.error("audit.write_failed", path=str(path), error=str(exc))
