# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Adapters - Capability model, registry and reference storage backends.
"""

from dbrestore.adapters.base import (
    AdapterResult,
    Capability,
    ConnectionTestResult,
    DatabaseAdapter,
    DatabaseRestorer,
    FileInfo,
    RestorePreparer,
    SidecarReader,
    StorageAdapter,
    backup_file_extension,
    backup_format_description,
    supports,
)
from dbrestore.adapters.local import LocalStorageAdapter
from dbrestore.adapters.registry import AdapterRegistry, build_registry
from dbrestore.adapters.s3 import S3StorageAdapter

__all__ = [
    # Capability model
    "AdapterResult",
    "Capability",
    "ConnectionTestResult",
    "DatabaseAdapter",
    "DatabaseRestorer",
    "FileInfo",
    "RestorePreparer",
    "SidecarReader",
    "StorageAdapter",
    "supports",
    "backup_file_extension",
    "backup_format_description",
    # Registry
    "AdapterRegistry",
    "build_registry",
    # Storage backends
    "LocalStorageAdapter",
    "S3StorageAdapter",
]
