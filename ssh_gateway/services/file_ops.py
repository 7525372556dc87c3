"""SFTP file operations on pooled sessions.

Every call opens its own SFTP subsystem on the identity's session and
closes it before returning.
"""

from __future__ import annotations

import asyncio
import fnmatch
import re
from pathlib import Path
from typing import Optional

import asyncssh

from ssh_gateway.exceptions import FileTransferError, InvalidArgumentError
from ssh_gateway.models.commands import ServerIdentity
from ssh_gateway.models.files import FileTransferResult, RemoteFileEntry, RemoteFileList
from ssh_gateway.services.session_pool import SessionPool
from ssh_gateway.utils.logging import get_logger
from ssh_gateway.utils.paths import expand_tilde

log = get_logger(__name__)

_PERMISSIONS_RE = re.compile(r"^0?[0-7]{3,4}$")
_SKIP_NAMES = frozenset((".", ".."))


def parse_permissions(value: str) -> int:
    """``"0644"`` / ``"755"`` -> mode bits."""
    if not isinstance(value, str) or not _PERMISSIONS_RE.match(value):
        raise InvalidArgumentError(
            'permissions must be a valid octal string (e.g., "0644", "755")'
        )
    return int(value, 8)


class RemoteFileOps:
    def __init__(self, pool: SessionPool) -> None:
        self._pool = pool

    async def upload(
        self,
        identity: ServerIdentity,
        local_path: str,
        remote_path: str,
        permissions: Optional[str] = None,
    ) -> FileTransferResult:
        mode = parse_permissions(permissions) if permissions else None
        source = Path(expand_tilde(local_path))
        loop = asyncio.get_running_loop()
        try:
            info = await loop.run_in_executor(None, source.stat)
        except OSError as exc:
            raise FileTransferError(
                f"Local file not found: {local_path} ({exc.strerror})", path=local_path,
            ) from exc
        if not source.is_file():
            raise FileTransferError(f"Local path is not a file: {local_path}", path=local_path)

        session = await self._pool.acquire(identity)
        try:
            async with session.open_sftp() as sftp:
                await sftp.put(str(source), remote_path)
                if mode is not None:
                    await sftp.chmod(remote_path, mode)
        except (asyncssh.Error, OSError) as exc:
            raise FileTransferError(
                f"Upload to {identity}:{remote_path} failed: {exc}", path=remote_path,
            ) from exc

        log.info(
            "sftp.uploaded",
            target=str(identity),
            remote_path=remote_path,
            bytes=info.st_size,
        )
        return FileTransferResult(
            bytes_transferred=info.st_size, message="File uploaded successfully",
        )

    async def download(
        self, identity: ServerIdentity, remote_path: str, local_path: str,
    ) -> FileTransferResult:
        target = Path(expand_tilde(local_path))
        session = await self._pool.acquire(identity)
        try:
            async with session.open_sftp() as sftp:
                await sftp.get(remote_path, str(target))
        except (asyncssh.Error, OSError) as exc:
            raise FileTransferError(
                f"Download of {identity}:{remote_path} failed: {exc}", path=remote_path,
            ) from exc

        size = (await asyncio.get_running_loop().run_in_executor(None, target.stat)).st_size
        log.info("sftp.downloaded", target=str(identity), remote_path=remote_path, bytes=size)
        return FileTransferResult(bytes_transferred=size, message="File downloaded successfully")

    async def list_files(
        self, identity: ServerIdentity, remote_path: str, pattern: Optional[str] = None,
    ) -> RemoteFileList:
        """List *remote_path*, optionally keeping names matching glob *pattern*."""
        session = await self._pool.acquire(identity)
        try:
            async with session.open_sftp() as sftp:
                names = await sftp.readdir(remote_path)
        except (asyncssh.Error, OSError) as exc:
            raise FileTransferError(
                f"Listing {identity}:{remote_path} failed: {exc}", path=remote_path,
            ) from exc

        entries = []
        for name in names:
            filename = name.filename
            if filename in _SKIP_NAMES:
                continue
            if pattern and not fnmatch.fnmatchcase(filename, pattern):
                continue
            attrs = name.attrs
            entries.append(RemoteFileEntry(
                filename=filename,
                longname=name.longname or "",
                size=attrs.size or 0,
                mode=attrs.permissions or 0,
                uid=attrs.uid or 0,
                gid=attrs.gid or 0,
                atime=attrs.atime or 0,
                mtime=attrs.mtime or 0,
            ))
        return RemoteFileList(files=entries, total_count=len(entries))

    async def delete(self, identity: ServerIdentity, remote_path: str) -> FileTransferResult:
        session = await self._pool.acquire(identity)
        try:
            async with session.open_sftp() as sftp:
                await sftp.remove(remote_path)
        except (asyncssh.Error, OSError) as exc:
            raise FileTransferError(
                f"Delete of {identity}:{remote_path} failed: {exc}", path=remote_path,
            ) from exc
        log.info("sftp.deleted", target=str(identity), remote_path=remote_path)
        return FileTransferResult(bytes_transferred=0, message="File deleted successfully")
