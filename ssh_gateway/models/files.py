"""SFTP transfer and listing models."""

from __future__ import annotations

import stat
from datetime import datetime, timezone

from pydantic import BaseModel


class FileTransferResult(BaseModel):
    bytes_transferred: int
    message: str


class RemoteFileEntry(BaseModel):
    """One directory entry as reported by the SFTP server."""

    filename: str
    longname: str = ""
    size: int = 0
    mode: int = 0
    uid: int = 0
    gid: int = 0
    atime: int = 0
    mtime: int = 0

    @property
    def is_directory(self) -> bool:
        return stat.S_ISDIR(self.mode)

    @property
    def is_file(self) -> bool:
        return stat.S_ISREG(self.mode)

    @property
    def permissions(self) -> str:
        return format(self.mode, "o")

    @property
    def modified(self) -> str:
        return datetime.fromtimestamp(self.mtime, tz=timezone.utc).isoformat()


class RemoteFileList(BaseModel):
    files: list[RemoteFileEntry]
    total_count: int
