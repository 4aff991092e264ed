# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Critical Safety Tests for dbrestore.

These tests verify the core restore guarantees:
1. Preflight first - Incompatible restores are rejected before any transfer
2. No guessing - Encrypted backups without IV/tag are never decrypted
3. Terminal once - Executions finish exactly once with an append-only log
4. Scratch hygiene - Scratch files are removed whatever the outcome
5. Stale keys - Backups whose profile was deleted are still restorable

These tests MUST pass before any production deployment.
"""

import asyncio
import os
from pathlib import Path

import aiosqlite
import pytest

from dbrestore import tracker as tracker_module
from dbrestore.adapters.base import AdapterResult, Capability
from dbrestore.adapters.registry import build_registry
from dbrestore.archive import create_multi_db_tar
from dbrestore.config import ExecutionStatus
from dbrestore.exceptions import ConfigurationError, ExecutionStateError, PreflightError
from dbrestore.executions import complete_execution
from dbrestore.models import DatabaseMapping, PrivilegedAuth, RestoreRequest
from dbrestore.orchestrator import RestoreOrchestrator

from tests.conftest import FakeDatabaseAdapter, make_profile, write_backup

SQL = b"CREATE TABLE users (id INT);\nINSERT INTO users VALUES (1);\n" * 40


def _request(file: str, **kwargs) -> RestoreRequest:
    return RestoreRequest(
        storage_config_id="storage-1",
        file=file,
        target_source_id="target-1",
        **kwargs,
    )


def _scratch_is_empty(orchestrator) -> bool:
    return list(orchestrator.config.scratch_dir.iterdir()) == []


# ============================================================================
# Test 1: PREFLIGHT FIRST
# ============================================================================


@pytest.mark.asyncio
async def test_vendor_mismatch_never_reaches_download(
    orchestrator, storage_root: Path, storage_adapter
):
    """
    CRITICAL: A backup from another engine is rejected before any transfer
    and no execution is created.
    """
    write_backup(storage_root, "mysql/app.sql", SQL, source_type="mysql")

    with pytest.raises(PreflightError) as exc:
        await orchestrator.start_restore(_request("mysql/app.sql"))

    assert "Cross-vendor" in exc.value.message
    assert storage_adapter.downloads == []
    assert await orchestrator.list_executions() == []


@pytest.mark.asyncio
async def test_version_downgrade_never_invokes_restore(
    orchestrator, storage_root: Path, database_adapter
):
    """
    CRITICAL: Backup engine 6.0 into a 5.0 server is rejected and the
    adapter's restore() is never called.
    """
    database_adapter.version = "5.0"
    write_backup(storage_root, "app.sql", SQL, engine_version="6.0")

    with pytest.raises(PreflightError) as exc:
        await orchestrator.start_restore(_request("app.sql"))

    assert "newer database version" in exc.value.message
    assert database_adapter.restore_calls == []


@pytest.mark.asyncio
async def test_permission_probe_failure_rejects_request(
    engine_config, config_store, storage_adapter, storage_root: Path
):
    """
    CRITICAL: An adapter's permission probe failing aborts the request
    synchronously with its message.
    """
    database = FakeDatabaseAdapter(capabilities={Capability.PREPARE_RESTORE})
    database.prepare_error = "permission denied to create database"
    orch = RestoreOrchestrator(
        build_registry([storage_adapter, database]), config_store, engine_config
    )
    await orch.initialize()
    write_backup(storage_root, "app.sql", SQL)

    try:
        with pytest.raises(PreflightError) as exc:
            await orch.start_restore(_request("app.sql", target_database_name="app_copy"))

        assert "permission denied" in exc.value.message
        assert database.prepare_calls == [["app_copy"]]
        assert storage_adapter.downloads == []
    finally:
        await orch.close()


@pytest.mark.asyncio
async def test_missing_request_field_rejected(orchestrator):
    with pytest.raises(PreflightError):
        await orchestrator.start_restore(_request(""))


@pytest.mark.asyncio
async def test_unknown_target_is_configuration_error(orchestrator):
    request = RestoreRequest("storage-1", "app.sql", "no-such-target")

    with pytest.raises(ConfigurationError) as exc:
        await orchestrator.start_restore(request)

    assert exc.value.message.startswith("Target source not found")


# ============================================================================
# Test 2: NO GUESSING
# ============================================================================


@pytest.mark.asyncio
async def test_encrypted_backup_without_iv_fails_with_metadata_missing(
    orchestrator, storage_root: Path, storage_adapter, database_adapter
):
    """
    CRITICAL: Encryption parameters are never guessed.
    """
    key = os.urandom(32)
    write_backup(
        storage_root, "app.sql.enc", SQL, key=key, profile_id="p1", include_iv=False
    )

    execution_id = await orchestrator.start_restore(_request("app.sql.enc"))
    record = await orchestrator.wait_for(execution_id)

    assert record["status"] == "Failed"
    assert any("metadata missing" in l["message"] for l in record["logs"])
    assert storage_adapter.downloads == []
    assert database_adapter.restore_calls == []


@pytest.mark.asyncio
async def test_encrypted_backup_without_sidecar_fails(
    orchestrator, storage_root: Path, database_adapter
):
    write_backup(
        storage_root, "app.sql.gz.enc", SQL, compression="GZIP", key=os.urandom(32), sidecar=False
    )

    execution_id = await orchestrator.start_restore(_request("app.sql.gz.enc"))
    record = await orchestrator.wait_for(execution_id)

    assert record["status"] == "Failed"
    assert any("metadata missing" in l["message"] for l in record["logs"])
    assert database_adapter.restore_calls == []


# ============================================================================
# Test 3: TERMINAL ONCE
# ============================================================================


@pytest.mark.asyncio
async def test_successful_restore_reaches_completed(
    orchestrator, storage_root: Path, database_adapter
):
    database_adapter.log_lines = ("restoring users", "WARNING: sequence reset")
    write_backup(storage_root, "daily/app.sql", SQL)

    execution_id = await orchestrator.start_restore(_request("daily/app.sql"))
    record = await orchestrator.wait_for(execution_id)

    assert record["status"] == "Success"
    assert record["metadata"] == {"progress": 100.0, "stage": "Completed"}
    assert record["path"] == "daily/app.sql"
    assert database_adapter.restored_payloads == [SQL]

    levels = {l["message"]: l["level"] for l in record["logs"]}
    assert levels["WARNING: sequence reset"] == "warning"
    assert levels["restoring users"] == "info"
    assert record["logs"][-1]["level"] == "success"

    with pytest.raises(ExecutionStateError):
        await complete_execution(
            orchestrator.db, execution_id, ExecutionStatus.FAILED, [], {}
        )


@pytest.mark.asyncio
async def test_adapter_failure_recorded_verbatim(
    orchestrator, storage_root: Path, database_adapter
):
    database_adapter.restore_error = "psql: error: relation \"users\" already exists"
    write_backup(storage_root, "app.sql", SQL)

    execution_id = await orchestrator.start_restore(_request("app.sql"))
    record = await orchestrator.wait_for(execution_id)

    assert record["status"] == "Failed"
    assert record["metadata"]["stage"] == "Failed"
    assert record["logs"][-1]["message"] == database_adapter.restore_error
    assert record["logs"][-1]["level"] == "error"
    assert _scratch_is_empty(orchestrator)


@pytest.mark.asyncio
async def test_download_failure_fails_execution(orchestrator):
    execution_id = await orchestrator.start_restore(_request("missing/app.sql"))
    record = await orchestrator.wait_for(execution_id)

    assert record["status"] == "Failed"
    assert any("Download failed" in l["message"] for l in record["logs"])



@pytest.mark.asyncio
async def test_adapter_string_levels_still_complete(
    orchestrator, storage_root: Path, database_adapter
):
    """Adapters may pass log levels as plain strings instead of enum members."""

    async def restore(config, source_path, on_log=None, on_progress=None):
        on_log("index rebuilt", "info", None, None)
        on_log("vacuum skipped", "warning", "command", None)
        on_log("checkpoint reached", "verbose", "stdout", None)
        return AdapterResult(success=True)

    database_adapter.restore = restore
    write_backup(storage_root, "app.sql", SQL)

    execution_id = await orchestrator.start_restore(_request("app.sql"))
    record = await orchestrator.wait_for(execution_id)

    assert record["status"] == "Success"
    assert record["metadata"]["stage"] == "Completed"
    entries = {l["message"]: (l["level"], l["type"]) for l in record["logs"]}
    assert entries["index rebuilt"] == ("info", "general")
    assert entries["vacuum skipped"] == ("warning", "command")
    assert entries["checkpoint reached"] == ("info", "general")


@pytest.mark.asyncio
async def test_failure_after_completed_stage_records_failed(
    orchestrator, storage_root: Path, monkeypatch
):
    """A final write that fails after the Completed transition still ends Failed."""
    real_complete = tracker_module.complete_execution

    async def complete_or_lock(db, execution_id, status, logs, metadata):
        if status == ExecutionStatus.SUCCESS:
            raise aiosqlite.OperationalError("database is locked")
        return await real_complete(db, execution_id, status, logs, metadata)

    monkeypatch.setattr(tracker_module, "complete_execution", complete_or_lock)
    write_backup(storage_root, "app.sql", SQL)

    execution_id = await orchestrator.start_restore(_request("app.sql"))
    record = await orchestrator.wait_for(execution_id)

    assert record["status"] == "Failed"
    assert record["metadata"]["stage"] == "Failed"
    assert record["logs"][-1]["message"] == "database is locked"
    assert record["logs"][-1]["level"] == "error"
    assert _scratch_is_empty(orchestrator)


# ============================================================================
# Test 4: SCRATCH HYGIENE AND OVERRIDES
# ============================================================================


@pytest.mark.asyncio
async def test_encrypted_compressed_restore_cleans_scratch(
    orchestrator, storage_root: Path, config_store, database_adapter
):
    key = os.urandom(32)
    config_store.add_profile(make_profile("p1", key))
    write_backup(
        storage_root, "app.sql.gz.enc", SQL, compression="GZIP", key=key, profile_id="p1"
    )

    execution_id = await orchestrator.start_restore(_request("app.sql.gz.enc"))
    record = await orchestrator.wait_for(execution_id)

    assert record["status"] == "Success"
    assert database_adapter.restored_payloads == [SQL]
    stages = [l["stage"] for l in record["logs"]]
    assert stages.index("Decrypting") < stages.index("Decompressing")
    assert _scratch_is_empty(orchestrator)


@pytest.mark.asyncio
async def test_overrides_applied_to_target_config(
    orchestrator, storage_root: Path, database_adapter
):
    write_backup(storage_root, "app.sql", SQL)

    execution_id = await orchestrator.start_restore(
        _request(
            "app.sql",
            target_database_name="app_restored",
            privileged_auth=PrivilegedAuth("postgres", "root-pw"),
        )
    )
    await orchestrator.wait_for(execution_id)

    config = database_adapter.restore_calls[0]
    assert config["database"] == "app_restored"
    assert config["privileged_auth"] == {"user": "postgres", "password": "root-pw"}
    assert config["detected_version"] == "16.2"
    # Stored secret decrypted before reaching the adapter
    assert config["password"] == "s3cret"


@pytest.mark.asyncio
async def test_multi_database_archive_restores_selection(
    engine_config, config_store, storage_adapter, storage_root: Path, temp_dir: Path
):
    database = FakeDatabaseAdapter(
        capabilities={Capability.PREPARE_RESTORE, Capability.RESTORE_DATABASE}
    )
    orch = RestoreOrchestrator(
        build_registry([storage_adapter, database]), config_store, engine_config
    )
    await orch.initialize()

    dumps = []
    for name in ("a", "b"):
        path = temp_dir / f"{name}.sql"
        path.write_bytes(f"-- {name}\n".encode())
        dumps.append((name, path, "sql"))
    await create_multi_db_tar(dumps, storage_root / "cluster.tar", "postgres", "16.2")
    write_backup(storage_root, "cluster.tar", (storage_root / "cluster.tar").read_bytes())

    try:
        execution_id = await orch.start_restore(
            _request(
                "cluster.tar",
                database_mapping=[
                    DatabaseMapping("a", "a2", True),
                    DatabaseMapping("b", "b", False),
                ],
            )
        )
        record = await orch.wait_for(execution_id)
    finally:
        await orch.close()

    assert record["status"] == "Success"
    assert [(s, t) for s, t, _ in database.database_calls] == [("a", "a2")]
    assert database.restore_calls == []
    assert any("Skipping database: b" in l["message"] for l in record["logs"])
    assert list(engine_config.scratch_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_concurrent_restores_do_not_collide(
    orchestrator, storage_root: Path, database_adapter
):
    write_backup(storage_root, "one/app.sql", SQL)
    write_backup(storage_root, "two/app.sql", SQL + b"-- second\n")

    ids = [
        await orchestrator.start_restore(_request("one/app.sql")),
        await orchestrator.start_restore(_request("two/app.sql")),
    ]
    records = await asyncio.gather(*(orchestrator.wait_for(i) for i in ids))

    assert ids[0] != ids[1]
    assert [r["status"] for r in records] == ["Success", "Success"]
    assert sorted(database_adapter.restored_payloads) == sorted([SQL, SQL + b"-- second\n"])


# ============================================================================
# Test 5: STALE KEYS
# ============================================================================


@pytest.mark.asyncio
async def test_deleted_profile_recovered_from_remaining_profiles(
    orchestrator, storage_root: Path, config_store, database_adapter
):
    """
    CRITICAL: The referenced profile was deleted; another profile holding
    the same key must still decrypt the backup.
    """
    key = os.urandom(32)
    config_store.add_profile(make_profile("unrelated", os.urandom(32)))
    config_store.add_profile(make_profile("rotated-copy", key, name="Rotated"))
    write_backup(
        storage_root, "app.sql.enc", SQL, key=key, profile_id="deleted-profile"
    )

    execution_id = await orchestrator.start_restore(_request("app.sql.enc"))
    record = await orchestrator.wait_for(execution_id)

    assert record["status"] == "Success"
    assert database_adapter.restored_payloads == [SQL]
    assert any(
        "recovered key from profile 'Rotated'" in l["message"] for l in record["logs"]
    )


@pytest.mark.asyncio
async def test_no_matching_profile_fails(orchestrator, storage_root: Path, config_store):
    config_store.add_profile(make_profile("unrelated", os.urandom(32)))
    write_backup(
        storage_root, "app.sql.enc", SQL, key=os.urandom(32), profile_id="deleted-profile"
    )

    execution_id = await orchestrator.start_restore(_request("app.sql.enc"))
    record = await orchestrator.wait_for(execution_id)

    assert record["status"] == "Failed"
    assert any("no candidate profile" in l["message"] for l in record["logs"])
    assert _scratch_is_empty(orchestrator)
