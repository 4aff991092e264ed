# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example FastAPI Application with dbrestore Integration.

This example wires the restore engine into a FastAPI application with a
local backup directory and a SQLite target, so restores can be tried
without any external services.

Run with:
    uvicorn examples.basic_app:app --reload

Environment variables:
    ENCRYPTION_KEY: 64-hex system key protecting stored secrets
    DBRESTORE_ADMIN_API_KEY: API key for admin endpoints
    BACKUP_DIR: Directory holding backup artifacts (default: ./backups)
    SQLITE_DATA_DIR: Directory restored SQLite databases are written to
"""

import asyncio
import os
import shutil
from pathlib import Path

import aiosqlite
from fastapi import FastAPI

from dbrestore import (
    AdapterConfig,
    Capability,
    InMemoryConfigStore,
    RestoreOrchestrator,
    build_registry,
    create_config_from_env,
)
from dbrestore.adapters import AdapterResult, ConnectionTestResult, LocalStorageAdapter
from dbrestore.config import AdapterKind, LogLevel, LogType
from dbrestore.integrations.fastapi import get_restore_orchestrator, setup_restore_plugin


class SQLiteDatabaseAdapter:
    """
    Restores SQLite database files into a data directory.

    A plain backup replaces config["database"]; multi-database archives
    restore each entry as <target_name>.db next to it.
    """

    id = "sqlite"
    name = "SQLite"
    kind = AdapterKind.DATABASE
    capabilities = frozenset({Capability.RESTORE_DATABASE})

    def _data_dir(self, config: dict) -> Path:
        return Path(config.get("data_dir") or "./data")

    async def dump(self, config: dict, destination_path: str) -> AdapterResult:
        source = self._data_dir(config) / config.get("database", "app.db")
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, shutil.copyfile, source, destination_path)
        return AdapterResult(success=True, path=destination_path)

    async def restore(self, config, source_path, on_log=None, on_progress=None):
        target = self._data_dir(config) / config.get("database", "app.db")
        return await self.restore_database(
            config, source_path, target.stem, target.stem, on_log
        )

    async def restore_database(
        self, config, source_path, source_name, target_name, on_log=None
    ):
        data_dir = self._data_dir(config)
        data_dir.mkdir(parents=True, exist_ok=True)
        target = data_dir / f"{target_name}.db"

        if on_log:
            on_log(f"Writing {source_name} to {target}", LogLevel.INFO, LogType.COMMAND, None)
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, shutil.copyfile, source_path, target)

        async with aiosqlite.connect(target) as db:
            async with db.execute("PRAGMA integrity_check") as cursor:
                (result,) = await cursor.fetchone()
        if result != "ok":
            return AdapterResult(success=False, error=f"Integrity check failed: {result}")
        return AdapterResult(success=True, path=str(target))

    async def test(self, config: dict) -> ConnectionTestResult:
        async with aiosqlite.connect(":memory:") as db:
            async with db.execute("SELECT sqlite_version()") as cursor:
                (version,) = await cursor.fetchone()
        return ConnectionTestResult(success=True, message="ok", version=version)


# Create FastAPI app
app = FastAPI(
    title="My App with dbrestore",
    description="Example application demonstrating backup restores",
    version="1.0.0",
)

engine_config = create_config_from_env()

store = InMemoryConfigStore(
    adapter_configs=[
        AdapterConfig(
            id="local-backups",
            kind=AdapterKind.STORAGE,
            adapter_id="local-filesystem",
            config={"base_path": os.getenv("BACKUP_DIR", "./backups")},
            name="Local backups",
        ),
        AdapterConfig(
            id="sqlite-main",
            kind=AdapterKind.DATABASE,
            adapter_id="sqlite",
            config={
                "data_dir": os.getenv("SQLITE_DATA_DIR", "./data"),
                "database": "app.db",
            },
            name="Main SQLite",
        ),
    ]
)

registry = build_registry([LocalStorageAdapter(), SQLiteDatabaseAdapter()])

# Setup restore plugin (startup/shutdown hooks plus /admin/restore routes)
setup_restore_plugin(app, RestoreOrchestrator(registry, store, engine_config))


# ============================================================================
# Application Routes
# ============================================================================


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Welcome to the dbrestore example",
        "admin_endpoints": [
            "POST /admin/restore",
            "GET /admin/restore/executions",
            "GET /admin/restore/executions/{execution_id}",
            "GET /admin/restore/health",
        ],
    }


@app.get("/restores/running")
async def running_restores():
    """Execution ids of restores currently in progress."""
    orchestrator = get_restore_orchestrator(app)
    return {"running": sorted(orchestrator.pool.running)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
