# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore Configuration - Immutable engine configuration and shared enums.

The engine configuration is frozen after creation so concurrent restore
tasks can share it without coordination.
"""

import os
import re
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import FrozenSet, List


class AdapterKind(str, Enum):
    """Kind of a configured adapter endpoint."""

    STORAGE = "storage"
    DATABASE = "database"


class CompressionType(str, Enum):
    """Compression algorithm recorded in the sidecar."""

    NONE = "NONE"
    GZIP = "GZIP"
    BROTLI = "BROTLI"
    ZSTD = "ZSTD"


class ExecutionStatus(str, Enum):
    """Lifecycle status of an Execution record."""

    RUNNING = "Running"  # Only non-terminal status
    SUCCESS = "Success"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class RestoreStage(str, Enum):
    """Stages of the restore state machine, persisted on every transition."""

    INITIALIZING = "Initializing"
    DOWNLOADING = "Downloading"
    DECRYPTING = "Decrypting"
    DECOMPRESSING = "Decompressing"
    RESTORING_DATABASE = "RestoringDatabase"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RestoreStage.COMPLETED, RestoreStage.FAILED)


class LogLevel(str, Enum):
    """Severity of an execution log entry."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class LogType(str, Enum):
    """Origin of an execution log entry."""

    GENERAL = "general"
    COMMAND = "command"
    STORAGE = "storage"


def default_scratch_dir() -> Path:
    """Scratch root, honouring TMPDIR so large restores can use mounted storage."""
    return Path(os.getenv("TMPDIR") or tempfile.gettempdir()) / "dbrestore"


def _validate_system_key(key_hex: str) -> bool:
    """Validate a 32-byte hex key."""
    return bool(re.fullmatch(r"[0-9a-fA-F]{64}", key_hex))


@dataclass(frozen=True)
class RestoreEngineConfig:
    """
    Immutable configuration for the restore engine.

    Shared read-only by the orchestrator and every background restore.
    """

    # Directory holding executions.db
    state_path: Path = field(default_factory=lambda: Path("./dbrestore_state"))

    # Root of the per-execution scratch namespace
    scratch_dir: Path = field(default_factory=default_scratch_dir)

    # Hex AES-256 key wrapping stored adapter secrets and profile keys
    system_key_hex: str | None = None

    # Debounce window for execution log/progress persistence
    flush_interval_seconds: float = 1.0

    # Smart key recovery: ciphertext prefix size and printable-byte ratio
    recovery_sample_bytes: int = 1024
    printable_threshold: float = 0.7

    # Engines whose edition changes the on-disk backup format
    edition_sensitive_engines: FrozenSet[str] = frozenset({"mssql"})

    # Upper bound on concurrently running restores (0 = unbounded)
    max_concurrent_restores: int = 0

    # Chunk size for streaming decrypt/decompress
    chunk_size: int = 64 * 1024

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if self.system_key_hex is not None and not _validate_system_key(
            self.system_key_hex
        ):
            errors.append("system_key_hex must be a 64-character hex string")

        if self.flush_interval_seconds < 0:
            errors.append(
                f"flush_interval_seconds must be >= 0, got {self.flush_interval_seconds}"
            )

        if self.recovery_sample_bytes < 16:
            errors.append(
                f"recovery_sample_bytes must be >= 16, got {self.recovery_sample_bytes}"
            )

        if not 0.0 < self.printable_threshold < 1.0:
            errors.append(
                f"printable_threshold must be between 0 and 1, got {self.printable_threshold}"
            )

        if self.max_concurrent_restores < 0:
            errors.append(
                f"max_concurrent_restores must be >= 0, got {self.max_concurrent_restores}"
            )

        if self.chunk_size < 1024:
            errors.append(f"chunk_size must be >= 1024, got {self.chunk_size}")

        if errors:
            from dbrestore.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def executions_db_path(self) -> Path:
        return self.state_path / "executions.db"

    @property
    def system_key(self) -> bytes | None:
        return bytes.fromhex(self.system_key_hex) if self.system_key_hex else None

    def with_updates(self, **kwargs) -> "RestoreEngineConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return RestoreEngineConfig(**current)
