# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore Archive Handler - Composite multi-database backups.

A multi-database backup is a TAR archive whose first entry is
``manifest.json``:

    {
        "version": 1,
        "createdAt": "...",
        "sourceType": "postgres",
        "engineVersion": "16.1",
        "databases": [{"name": "app", "filename": "app.sql", "size": 123, "format": "sql"}],
        "totalSize": 123
    }

followed by one dump file per database. Restores extract into an isolated
scratch directory, pick and rename entries from the caller's mapping,
and hand each dump to the database adapter's single-database restore.
"""

import asyncio
import io
import json
import shutil
import tarfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import List, Sequence

import structlog

from dbrestore.adapters.base import (
    AdapterResult,
    Capability,
    LogCallback,
    ProgressCallback,
    supports,
)
from dbrestore.config import LogLevel, LogType
from dbrestore.exceptions import ArchiveError
from dbrestore.models import DatabaseMapping

logger = structlog.get_logger()

# Thread pool for blocking tar I/O
_executor = ThreadPoolExecutor(max_workers=2)

MANIFEST_FILENAME = "manifest.json"
MANIFEST_VERSION = 1

_USTAR_MAGIC = b"ustar"
_TAR_BLOCK = 512


@dataclass(frozen=True)
class ManifestEntry:
    """One database dump inside a composite archive."""

    name: str
    filename: str
    size: int = 0
    format: str = ""


@dataclass(frozen=True)
class Manifest:
    """Index of a composite archive."""

    databases: List[ManifestEntry]
    source_type: str | None = None
    engine_version: str | None = None
    version: int = MANIFEST_VERSION
    created_at: str | None = None
    total_size: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "Manifest":
        entries = data.get("databases")
        if not isinstance(entries, list):
            raise ArchiveError("Manifest has no databases list")
        try:
            databases = [
                ManifestEntry(
                    name=str(e["name"]),
                    filename=str(e["filename"]),
                    size=int(e.get("size", 0)),
                    format=str(e.get("format", "")),
                )
                for e in entries
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise ArchiveError(f"Malformed manifest entry: {e}") from e

        return cls(
            databases=databases,
            source_type=data.get("sourceType"),
            engine_version=data.get("engineVersion"),
            version=int(data.get("version", MANIFEST_VERSION)),
            created_at=data.get("createdAt"),
            total_size=int(data.get("totalSize", 0)),
        )

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "createdAt": self.created_at,
            "sourceType": self.source_type,
            "engineVersion": self.engine_version,
            "databases": [asdict(e) for e in self.databases],
            "totalSize": self.total_size,
        }


# =============================================================================
# Mapping
# =============================================================================


def should_restore_database(
    name: str, mapping: Sequence[DatabaseMapping] | None
) -> bool:
    """
    Whether a manifest entry is selected.

    No mapping restores everything; with a mapping, unlisted entries are skipped.
    """
    if not mapping:
        return True
    for m in mapping:
        if m.original_name == name:
            return m.selected
    return False


def get_target_database_name(
    name: str, mapping: Sequence[DatabaseMapping] | None
) -> str:
    """Target name for a manifest entry; the original name unless renamed."""
    for m in mapping or ():
        if m.original_name == name:
            return m.effective_target
    return name


# =============================================================================
# Reading and writing
# =============================================================================


def _read_manifest_sync(path: Path) -> Manifest | None:
    try:
        with tarfile.open(path, "r:") as tar:
            member = tar.next()
            while member is not None:
                if member.name == MANIFEST_FILENAME:
                    handle = tar.extractfile(member)
                    if handle is None:
                        return None
                    return Manifest.from_dict(json.loads(handle.read().decode("utf-8")))
                member = tar.next()
    except (tarfile.TarError, OSError, ValueError, ArchiveError):
        return None
    return None


async def read_manifest(path: Path) -> Manifest | None:
    """Read only the manifest, or None if absent or invalid."""
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(_executor, _read_manifest_sync, Path(path))


async def is_multi_db_tar(path: Path) -> bool:
    """
    Detect a composite archive.

    Looks for the POSIX ``ustar`` magic at offset 257 or a first header
    named manifest.json, then confirms by reading the manifest.
    """
    path = Path(path)
    try:
        with open(path, "rb") as f:
            header = f.read(_TAR_BLOCK)
    except OSError:
        return False

    if len(header) < _TAR_BLOCK:
        return False

    if header[257:262] != _USTAR_MAGIC:
        first_name = header[:100].replace(b"\0", b"").decode("utf-8", "replace").strip()
        if first_name != MANIFEST_FILENAME:
            return False

    return await read_manifest(path) is not None


def _safe_target(root: Path, name: str) -> Path:
    target = (root / name).resolve()
    if not target.is_relative_to(root.resolve()):
        raise ArchiveError(f"Archive entry escapes extraction directory: {name}")
    return target


def _extract_sync(path: Path, extract_dir: Path) -> tuple[Manifest, List[Path]]:
    extract_dir.mkdir(parents=True, exist_ok=True)
    manifest: Manifest | None = None
    files: List[Path] = []

    try:
        with tarfile.open(path, "r:") as tar:
            for member in tar:
                if not member.isfile():
                    continue
                handle = tar.extractfile(member)
                if handle is None:
                    continue
                if member.name == MANIFEST_FILENAME:
                    try:
                        manifest = Manifest.from_dict(json.loads(handle.read().decode("utf-8")))
                    except ValueError as e:
                        raise ArchiveError(f"Failed to parse manifest: {e}") from e
                    continue

                target = _safe_target(extract_dir, member.name)
                target.parent.mkdir(parents=True, exist_ok=True)
                with open(target, "wb") as out:
                    shutil.copyfileobj(handle, out)
                files.append(target)
    except tarfile.TarError as e:
        raise ArchiveError(f"Unreadable archive: {e}") from e

    if manifest is None:
        raise ArchiveError("TAR archive does not contain a manifest.json")
    return manifest, files


async def extract_multi_db_tar(
    path: Path, extract_dir: Path
) -> tuple[Manifest, List[Path]]:
    """
    Extract a composite archive.

    Returns:
        The manifest and the paths of extracted dump files

    Raises:
        ArchiveError: If the archive is unreadable, lacks a manifest or
            contains entries outside extract_dir
    """
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(
        _executor, _extract_sync, Path(path), Path(extract_dir)
    )


def _create_sync(
    files: Sequence[tuple[str, Path, str]],
    destination: Path,
    source_type: str,
    engine_version: str | None,
) -> Manifest:
    entries = []
    for db_name, file_path, fmt in files:
        entries.append(
            ManifestEntry(
                name=db_name,
                filename=Path(file_path).name,
                size=Path(file_path).stat().st_size,
                format=fmt,
            )
        )

    manifest = Manifest(
        databases=entries,
        source_type=source_type,
        engine_version=engine_version,
        created_at=datetime.now(UTC).isoformat(),
        total_size=sum(e.size for e in entries),
    )
    payload = json.dumps(manifest.to_dict(), indent=2).encode("utf-8")

    with tarfile.open(destination, "w", format=tarfile.USTAR_FORMAT) as tar:
        info = tarfile.TarInfo(MANIFEST_FILENAME)
        info.size = len(payload)
        tar.addfile(info, io.BytesIO(payload))
        for (_, file_path, _), entry in zip(files, entries):
            tar.add(str(file_path), arcname=entry.filename)

    return manifest


async def create_multi_db_tar(
    files: Sequence[tuple[str, Path, str]],
    destination: Path,
    source_type: str,
    engine_version: str | None = None,
) -> Manifest:
    """
    Write a composite archive from (database name, dump path, format) triples.

    The manifest is always the first entry.
    """
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(
        _executor, _create_sync, files, Path(destination), source_type, engine_version
    )


# =============================================================================
# Restore
# =============================================================================


async def restore_multi_database(
    adapter,
    config: dict,
    archive_path: Path,
    scratch_dir: Path,
    mapping: Sequence[DatabaseMapping] | None = None,
    on_log: LogCallback | None = None,
    on_progress: ProgressCallback | None = None,
) -> AdapterResult:
    """
    Restore the selected databases of a composite archive.

    Steps:
    1. Extract into scratch_dir
    2. Resolve selection and target name of every manifest entry
    3. Run the adapter's permission probe for every selected target
    4. Restore each selected entry as (source name, target name)
    5. Remove scratch_dir whatever the outcome

    Args:
        adapter: Database adapter declaring Capability.RESTORE_DATABASE
        config: Target configuration with overrides applied
        archive_path: Local, decrypted and decompressed archive
        scratch_dir: Isolated extraction directory (removed afterwards)
        mapping: Optional selection/rename table
        on_log: Execution log relay
        on_progress: Execution progress relay (0-100)

    Returns:
        AdapterResult; success only if every selected database restored
    """
    if not supports(adapter, Capability.RESTORE_DATABASE):
        raise ArchiveError(
            f"Adapter '{adapter.id}' cannot restore individual databases from an archive"
        )

    def log(message: str, level: LogLevel = LogLevel.INFO) -> None:
        if on_log:
            on_log(message, level, LogType.GENERAL, None)

    logs: List[str] = []
    scratch_dir = Path(scratch_dir)

    try:
        manifest, _ = await extract_multi_db_tar(archive_path, scratch_dir)
        total = len(manifest.databases)
        log(f"Archive contains {total} database(s)")

        plan = [
            (
                entry,
                should_restore_database(entry.name, mapping),
                get_target_database_name(entry.name, mapping),
            )
            for entry in manifest.databases
        ]
        selected_targets = [target for _, selected, target in plan if selected]

        if not selected_targets:
            return AdapterResult(success=False, error="No databases selected for restore")

        if supports(adapter, Capability.PREPARE_RESTORE):
            log(f"Checking permissions for: {', '.join(selected_targets)}")
            await adapter.prepare_restore(config, selected_targets)

        processed = 0
        for entry, selected, target in plan:
            if not selected:
                message = f"Skipping database: {entry.name}"
                log(message, LogLevel.WARNING)
                logs.append(message)
            else:
                log(f"Restoring database {entry.name} -> {target}")
                source = _safe_target(scratch_dir, entry.filename)
                if not source.exists():
                    raise ArchiveError(
                        f"Archive entry missing for database {entry.name}: {entry.filename}"
                    )
                result = await adapter.restore_database(
                    config, str(source), entry.name, target, on_log
                )
                logs.extend(result.logs)
                if not result.success:
                    return AdapterResult(
                        success=False,
                        logs=logs,
                        error=result.error or f"Restore of {entry.name} failed",
                    )
                log(f"Restored database {target}", LogLevel.SUCCESS)

            processed += 1
            if on_progress:
                on_progress(processed / total * 100)

        logger.info(
            "multi_database_restore_completed",
            restored=len(selected_targets),
            skipped=total - len(selected_targets),
        )
        return AdapterResult(success=True, logs=logs)

    finally:
        shutil.rmtree(scratch_dir, ignore_errors=True)
