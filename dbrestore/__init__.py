# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore - Restore orchestration engine for database backups.

Locates a stored backup, decrypts it (recovering stale key references),
decompresses it, checks engine/version/edition compatibility with the
target and hands the restore to a pluggable database adapter, while
persisting progress and logs of every run. Package name: dbrestore.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from dbrestore.builder import create_config
from dbrestore.env import create_config_from_env

# Adapter wiring
from dbrestore.adapters import AdapterRegistry, Capability, build_registry

# Records
from dbrestore.models import (
    AdapterConfig,
    DatabaseMapping,
    EncryptionProfile,
    PrivilegedAuth,
    RestoreRequest,
)
from dbrestore.store import ConfigStore, InMemoryConfigStore

# Orchestration
from dbrestore.orchestrator import RestoreOrchestrator

__all__ = [
    # Version
    "__version__",
    # Configuration creation
    "create_config",
    "create_config_from_env",
    # Adapters
    "AdapterRegistry",
    "Capability",
    "build_registry",
    # Records
    "AdapterConfig",
    "DatabaseMapping",
    "EncryptionProfile",
    "PrivilegedAuth",
    "RestoreRequest",
    "ConfigStore",
    "InMemoryConfigStore",
    # Orchestration
    "RestoreOrchestrator",
]
