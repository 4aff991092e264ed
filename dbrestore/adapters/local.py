# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Local filesystem storage adapter.

Remote paths are resolved below the configured ``base_path``; paths that
escape it are refused.
"""

import os
from datetime import datetime, UTC
from pathlib import Path
from typing import List

import aiofiles
import aiofiles.os
import structlog

from dbrestore.adapters.base import (
    Capability,
    ConnectionTestResult,
    FileInfo,
    ProgressCallback,
)
from dbrestore.config import AdapterKind
from dbrestore.exceptions import TransferError

logger = structlog.get_logger()

_COPY_CHUNK = 64 * 1024


class LocalStorageAdapter:
    """Stores backups in a directory on the local machine (or a mounted share)."""

    id = "local-filesystem"
    name = "Local Filesystem"
    kind = AdapterKind.STORAGE
    capabilities = frozenset({Capability.READ})

    def _resolve(self, config: dict, remote_path: str) -> Path:
        base = Path(config.get("base_path") or "/backups").resolve()
        target = (base / remote_path.lstrip("/")).resolve()
        if target != base and base not in target.parents:
            raise TransferError(
                f"Path escapes storage root: {remote_path}",
                details={"base_path": str(base)},
            )
        return target

    async def list(self, config: dict, directory: str) -> List[FileInfo]:
        root = self._resolve(config, directory)
        base = self._resolve(config, "")
        if not root.is_dir():
            return []

        files: List[FileInfo] = []
        for path in sorted(root.rglob("*")):
            if not path.is_file():
                continue
            stat = path.stat()
            files.append(
                FileInfo(
                    name=path.name,
                    path=path.relative_to(base).as_posix(),
                    size=stat.st_size,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, UTC),
                )
            )
        return files

    async def download(
        self,
        config: dict,
        remote_path: str,
        local_path: str,
        on_progress: ProgressCallback | None = None,
    ) -> bool:
        try:
            source = self._resolve(config, remote_path)
            total = source.stat().st_size
            copied = 0
            Path(local_path).parent.mkdir(parents=True, exist_ok=True)

            async with aiofiles.open(source, "rb") as src, aiofiles.open(
                local_path, "wb"
            ) as dst:
                while chunk := await src.read(_COPY_CHUNK):
                    await dst.write(chunk)
                    copied += len(chunk)
                    if on_progress and total:
                        on_progress(copied / total * 100)
            return True

        except (OSError, TransferError) as e:
            logger.error(
                "local_download_failed", remote_path=remote_path, error=str(e)
            )
            return False

    async def upload(self, config: dict, local_path: str, remote_path: str) -> bool:
        try:
            target = self._resolve(config, remote_path)
            target.parent.mkdir(parents=True, exist_ok=True)
            temp_path = target.with_name(target.name + ".tmp")

            async with aiofiles.open(local_path, "rb") as src, aiofiles.open(
                temp_path, "wb"
            ) as dst:
                while chunk := await src.read(_COPY_CHUNK):
                    await dst.write(chunk)

            os.replace(temp_path, target)
            return True

        except (OSError, TransferError) as e:
            logger.error("local_upload_failed", remote_path=remote_path, error=str(e))
            return False

    async def delete(self, config: dict, remote_path: str) -> bool:
        try:
            await aiofiles.os.remove(self._resolve(config, remote_path))
        except FileNotFoundError:
            pass
        except (OSError, TransferError) as e:
            logger.error("local_delete_failed", remote_path=remote_path, error=str(e))
            return False
        return True

    async def read(self, config: dict, remote_path: str) -> str | None:
        try:
            async with aiofiles.open(
                self._resolve(config, remote_path), "r", encoding="utf-8"
            ) as f:
                return await f.read()
        except FileNotFoundError:
            return None

    async def test(self, config: dict) -> ConnectionTestResult:
        base = self._resolve(config, "")
        if not base.is_dir():
            return ConnectionTestResult(False, f"Directory does not exist: {base}")
        if not os.access(base, os.W_OK):
            return ConnectionTestResult(False, f"Directory is not writable: {base}")
        return ConnectionTestResult(True, f"Directory accessible: {base}")
