# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Adapter capability model.

Storage and database backends implement the mandatory protocol for their
kind. Optional operations are declared explicitly through the adapter's
``capabilities`` set and live in their own protocols, so callers check
``supports(adapter, Capability.READ)`` instead of probing attributes.

Usage:
    from dbrestore.adapters.base import Capability, StorageAdapter, supports

    if supports(storage, Capability.READ):
        text = await cast(SidecarReader, storage).read(config, path + ".meta.json")
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Protocol, runtime_checkable

from dbrestore.config import AdapterKind, LogLevel, LogType


class Capability(str, Enum):
    """Optional adapter operations."""

    READ = "read"  # StorageAdapter: read small text objects (sidecars)
    PREPARE_RESTORE = "prepare_restore"  # DatabaseAdapter: permission probe
    RESTORE_DATABASE = "restore_database"  # DatabaseAdapter: single-db restore with rename


# on_log(message, level, type, details)
LogCallback = Callable[[str, LogLevel | None, LogType | None, str | None], None]
# on_progress(percentage 0-100)
ProgressCallback = Callable[[float], None]


@dataclass
class FileInfo:
    """A file listed by a storage adapter."""

    name: str
    path: str
    size: int
    last_modified: datetime


@dataclass
class ConnectionTestResult:
    """Outcome of an adapter's test()."""

    success: bool
    message: str = ""
    version: str | None = None
    edition: str | None = None


@dataclass
class AdapterResult:
    """Outcome of a dump or restore."""

    success: bool
    logs: List[str] = field(default_factory=list)
    error: str | None = None
    path: str | None = None
    size: int | None = None
    metadata: Dict[str, Any] | None = None


@runtime_checkable
class StorageAdapter(Protocol):
    """Mandatory operations of every storage backend."""

    id: str
    name: str
    kind: AdapterKind
    capabilities: FrozenSet[Capability]

    async def list(self, config: dict, directory: str) -> List[FileInfo]:
        """List files below a remote directory."""
        ...

    async def download(
        self,
        config: dict,
        remote_path: str,
        local_path: str,
        on_progress: ProgressCallback | None = None,
    ) -> bool:
        """Download a remote file to a local path. Returns False on failure."""
        ...

    async def upload(self, config: dict, local_path: str, remote_path: str) -> bool:
        """Upload a local file. Returns False on failure."""
        ...

    async def delete(self, config: dict, remote_path: str) -> bool:
        """
        Delete a remote file.

        Must return True when the path is already absent.
        """
        ...

    async def test(self, config: dict) -> ConnectionTestResult:
        """Check connectivity and credentials."""
        ...


@runtime_checkable
class SidecarReader(Protocol):
    """Capability.READ: read a small text object, None when absent."""

    async def read(self, config: dict, remote_path: str) -> str | None:
        ...


@runtime_checkable
class DatabaseAdapter(Protocol):
    """Mandatory operations of every database backend."""

    id: str
    name: str
    kind: AdapterKind
    capabilities: FrozenSet[Capability]

    async def dump(self, config: dict, destination_path: str) -> AdapterResult:
        """Dump the configured database(s) to a local file."""
        ...

    async def restore(
        self,
        config: dict,
        source_path: str,
        on_log: LogCallback | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> AdapterResult:
        """
        Restore a local dump file into the configured target.

        Honors ``database``, ``database_mapping`` and ``privileged_auth``
        keys merged into config by RestoreOverrides.
        """
        ...

    async def test(self, config: dict) -> ConnectionTestResult:
        """Check connectivity; report live version and edition when known."""
        ...


@runtime_checkable
class RestorePreparer(Protocol):
    """
    Capability.PREPARE_RESTORE: permission probe before any data is touched.

    Must raise with a descriptive message on insufficient privilege and
    must not mutate anything else.
    """

    async def prepare_restore(self, config: dict, database_names: List[str]) -> None:
        ...


@runtime_checkable
class DatabaseRestorer(Protocol):
    """Capability.RESTORE_DATABASE: restore one dump under a (possibly new) name."""

    async def restore_database(
        self,
        config: dict,
        source_path: str,
        source_name: str,
        target_name: str,
        on_log: LogCallback | None = None,
    ) -> AdapterResult:
        ...


def supports(adapter: Any, capability: Capability) -> bool:
    """Whether an adapter declares an optional capability."""
    return capability in getattr(adapter, "capabilities", frozenset())


_BACKUP_EXTENSIONS = {
    "mysql": "sql",
    "mariadb": "sql",
    "postgres": "sql",
    "mssql": "bak",
    "mongodb": "archive",
    "redis": "rdb",
    "sqlite": "db",
}

_FORMAT_DESCRIPTIONS = {
    "mysql": "MySQL SQL Dump",
    "mariadb": "MariaDB SQL Dump",
    "postgres": "PostgreSQL SQL Dump",
    "mssql": "SQL Server Native Backup",
    "mongodb": "MongoDB Archive",
    "redis": "Redis RDB Snapshot",
    "sqlite": "SQLite Database Copy",
}


def backup_file_extension(adapter_id: str) -> str:
    """File extension (without dot) of a database adapter's dump format."""
    return _BACKUP_EXTENSIONS.get(adapter_id.lower(), "sql")


def backup_format_description(adapter_id: str) -> str:
    """Human-readable name of a database adapter's dump format."""
    return _FORMAT_DESCRIPTIONS.get(adapter_id.lower(), "Database Backup")
