# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Tests for the execution store and the debounced tracker.
"""

import asyncio
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from structlog.testing import capture_logs

from dbrestore.config import ExecutionStatus, LogLevel, RestoreStage
from dbrestore.exceptions import ExecutionStateError
from dbrestore.executions import (
    complete_execution,
    create_execution,
    get_execution,
    init_execution_db,
    list_executions,
    save_progress,
)
from dbrestore.models import LogEntry
from dbrestore.tracker import ExecutionTracker, FlushScheduler, classify_log_level


@pytest_asyncio.fixture
async def db(temp_dir: Path):
    db_path = temp_dir / "state" / "executions.db"
    await init_execution_db(db_path)
    async with aiosqlite.connect(db_path) as conn:
        conn.row_factory = aiosqlite.Row
        yield conn


# ============================================================================
# Execution store
# ============================================================================


@pytest.mark.asyncio
async def test_create_and_get_execution(db):
    await create_execution(db, "E1", "Restore", "daily/app.sql", [LogEntry("queued")])

    record = await get_execution(db, "E1")

    assert record["status"] == "Running"
    assert record["path"] == "daily/app.sql"
    assert record["logs"][0]["message"] == "queued"
    assert record["ended_at"] is None


@pytest.mark.asyncio
async def test_terminal_status_is_set_exactly_once(db):
    await create_execution(db, "E1", "Restore", "x.sql")
    await complete_execution(db, "E1", ExecutionStatus.SUCCESS, [], {"progress": 100})

    with pytest.raises(ExecutionStateError):
        await complete_execution(db, "E1", ExecutionStatus.FAILED, [], {})

    record = await get_execution(db, "E1")
    assert record["status"] == "Success"
    assert record["ended_at"] is not None


@pytest.mark.asyncio
async def test_progress_not_saved_after_terminal(db):
    await create_execution(db, "E1", "Restore", "x.sql")
    await complete_execution(db, "E1", ExecutionStatus.FAILED, [LogEntry("boom")], {})

    written = await save_progress(db, "E1", [LogEntry("late")], {"progress": 50})

    assert written is False
    assert [l["message"] for l in (await get_execution(db, "E1"))["logs"]] == ["boom"]


@pytest.mark.asyncio
async def test_non_terminal_completion_rejected(db):
    await create_execution(db, "E1", "Restore", "x.sql")

    with pytest.raises(ExecutionStateError):
        await complete_execution(db, "E1", ExecutionStatus.RUNNING, [], {})


@pytest.mark.asyncio
async def test_list_executions_filters_and_paginates(db):
    for i in range(3):
        await create_execution(db, f"E{i}", "Restore", f"{i}.sql")
    await complete_execution(db, "E1", ExecutionStatus.SUCCESS, [], {})

    running = await list_executions(db, status=ExecutionStatus.RUNNING)
    page = await list_executions(db, limit=2)

    assert {r["id"] for r in running} == {"E0", "E2"}
    assert len(page) == 2


# ============================================================================
# Tracker
# ============================================================================


@pytest.mark.parametrize(
    "message,level",
    [
        ("ERROR 1045: Access denied", LogLevel.ERROR),
        ("pg_restore: failed to connect", LogLevel.ERROR),
        ("FATAL: role does not exist", LogLevel.ERROR),
        ("Warning: using a password on the command line", LogLevel.WARNING),
        ("restoring table users", LogLevel.INFO),
    ],
)
def test_classify_log_level(message, level):
    assert classify_log_level(message) == level


@pytest.mark.asyncio
async def test_tracker_persists_stage_transitions(db):
    await create_execution(db, "E1", "Restore", "x.sql")
    tracker = ExecutionTracker(db, "E1", flush_interval=60)

    await tracker.transition(RestoreStage.DOWNLOADING)

    record = await get_execution(db, "E1")
    assert record["metadata"]["stage"] == "Downloading"


@pytest.mark.asyncio
async def test_tracker_rejects_illegal_transition(db):
    await create_execution(db, "E1", "Restore", "x.sql")
    tracker = ExecutionTracker(db, "E1")

    with pytest.raises(ExecutionStateError):
        await tracker.transition(RestoreStage.RESTORING_DATABASE)


@pytest.mark.asyncio
async def test_tracker_debounces_until_forced(db):
    await create_execution(db, "E1", "Restore", "x.sql")
    tracker = ExecutionTracker(db, "E1", flush_interval=60)
    await tracker.transition(RestoreStage.DOWNLOADING)

    for pct in (10, 20, 30):
        tracker.set_progress(pct)
        tracker.log(f"at {pct}%")
    await asyncio.sleep(0.05)

    record = await get_execution(db, "E1")
    assert record["metadata"]["progress"] == 0
    assert record["logs"] == []

    await tracker.flush()

    record = await get_execution(db, "E1")
    assert record["metadata"]["progress"] == 30
    assert len(record["logs"]) == 3


@pytest.mark.asyncio
async def test_tracker_flushes_errors_immediately(db):
    await create_execution(db, "E1", "Restore", "x.sql")
    tracker = ExecutionTracker(db, "E1", flush_interval=60)
    await tracker.transition(RestoreStage.DOWNLOADING)

    tracker.relay_log("ERROR: disk full")
    await asyncio.sleep(0.05)

    record = await get_execution(db, "E1")
    assert record["logs"][-1]["level"] == "error"
    assert record["logs"][-1]["stage"] == "Downloading"


@pytest.mark.asyncio
async def test_tracker_finish_is_final(db):
    await create_execution(db, "E1", "Restore", "x.sql")
    tracker = ExecutionTracker(db, "E1", flush_interval=60)
    await tracker.transition(RestoreStage.DOWNLOADING)
    tracker.log("downloading")

    await tracker.finish(ExecutionStatus.FAILED)

    record = await get_execution(db, "E1")
    assert record["status"] == "Failed"
    assert record["metadata"]["stage"] == "Failed"
    assert [l["message"] for l in record["logs"]] == ["downloading"]
    with pytest.raises(ExecutionStateError):
        tracker.log("after the end")


@pytest.mark.asyncio
async def test_flush_scheduler_coalesces_requests():
    writes = []

    async def flush():
        writes.append(1)

    scheduler = FlushScheduler(flush, interval=0.05)
    for _ in range(10):
        scheduler.request()
    await asyncio.sleep(0.2)

    assert len(writes) == 1


@pytest.mark.asyncio
async def test_tracker_relay_accepts_string_levels(db):
    await create_execution(db, "E1", "Restore", "x.sql")
    tracker = ExecutionTracker(db, "E1", flush_interval=60)
    await tracker.transition(RestoreStage.RESTORING_DATABASE)

    tracker.relay_log("sequence reset", "warning", "command")
    tracker.relay_log("fatal: role missing", "loud")
    await tracker.flush()

    record = await get_execution(db, "E1")
    assert [(l["level"], l["type"]) for l in record["logs"]] == [
        ("warning", "command"),
        ("error", "general"),
    ]


@pytest.mark.asyncio
async def test_flush_scheduler_logs_background_failures():
    async def flush():
        raise RuntimeError("disk I/O error")

    scheduler = FlushScheduler(flush, interval=0)
    with capture_logs() as events:
        scheduler.urgent()
        await asyncio.sleep(0.05)

    failures = [e for e in events if e["event"] == "execution_flush_failed"]
    assert len(failures) == 1
    assert failures[0]["error"] == "disk I/O error"
    assert failures[0]["log_level"] == "error"
