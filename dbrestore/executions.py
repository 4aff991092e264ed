# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore Execution Store - Persisted progress of long-running restores.

One row per Execution. Status moves from Running to exactly one terminal
value (Success or Failed); once terminal, the row is never written again.
Logs are stored as a JSON array that only ever grows.
"""

import json
from datetime import datetime, UTC
from pathlib import Path
from typing import List, Sequence, TypedDict

import aiosqlite
import structlog

from dbrestore.config import ExecutionStatus
from dbrestore.exceptions import ExecutionStateError
from dbrestore.models import LogEntry

logger = structlog.get_logger()


class ExecutionRecord(TypedDict):
    """Persisted record of one long-running operation."""

    id: str  # ULID
    type: str  # e.g. "Restore"
    status: str  # Running, Success, Failed
    logs: List[dict]  # LogEntry.to_dict() items, oldest first
    metadata: dict  # {"progress": float, "stage": str, ...}
    path: str | None  # Source artifact path
    started_at: str  # ISO 8601
    ended_at: str | None  # ISO 8601 once terminal


async def init_execution_db(db_path: Path) -> None:
    """
    Initialize the execution database schema.

    Creates tables if they don't exist. This is idempotent.
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    async with aiosqlite.connect(db_path) as db:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                status TEXT NOT NULL,
                logs TEXT NOT NULL,
                metadata TEXT NOT NULL,
                path TEXT,
                started_at TEXT NOT NULL,
                ended_at TEXT
            )
        """)

        await db.execute("""
            CREATE INDEX IF NOT EXISTS idx_executions_started_at
            ON executions(started_at)
        """)

        await db.execute("""
            CREATE INDEX IF NOT EXISTS idx_executions_status
            ON executions(status)
        """)

        await db.commit()

    logger.info("execution_db_initialized", db_path=str(db_path))


def _serialize_logs(logs: Sequence[LogEntry]) -> str:
    return json.dumps([entry.to_dict() for entry in logs])


async def create_execution(
    db: aiosqlite.Connection,
    execution_id: str,
    execution_type: str,
    path: str | None,
    logs: Sequence[LogEntry] = (),
    metadata: dict | None = None,
) -> None:
    """Insert a new Running execution."""
    await db.execute(
        """
        INSERT INTO executions (id, type, status, logs, metadata, path, started_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            execution_id,
            execution_type,
            ExecutionStatus.RUNNING.value,
            _serialize_logs(logs),
            json.dumps(metadata or {}),
            path,
            datetime.now(UTC).isoformat(),
        ),
    )
    await db.commit()

    logger.info("execution_created", execution_id=execution_id, type=execution_type)


async def save_progress(
    db: aiosqlite.Connection,
    execution_id: str,
    logs: Sequence[LogEntry],
    metadata: dict,
) -> bool:
    """
    Persist logs and metadata of a Running execution.

    Returns:
        False if the execution is no longer Running (nothing written)
    """
    cursor = await db.execute(
        """
        UPDATE executions
        SET logs = ?, metadata = ?
        WHERE id = ? AND status = ?
        """,
        (
            _serialize_logs(logs),
            json.dumps(metadata),
            execution_id,
            ExecutionStatus.RUNNING.value,
        ),
    )
    await db.commit()
    return cursor.rowcount > 0


async def complete_execution(
    db: aiosqlite.Connection,
    execution_id: str,
    status: ExecutionStatus,
    logs: Sequence[LogEntry],
    metadata: dict,
) -> None:
    """
    Move a Running execution to a terminal status.

    Raises:
        ExecutionStateError: If status is not terminal or the execution
            is missing or already terminal
    """
    if not status.is_terminal:
        raise ExecutionStateError(
            f"Cannot complete execution with non-terminal status {status.value}",
            details={"execution_id": execution_id},
        )

    cursor = await db.execute(
        """
        UPDATE executions
        SET status = ?, logs = ?, metadata = ?, ended_at = ?
        WHERE id = ? AND status = ?
        """,
        (
            status.value,
            _serialize_logs(logs),
            json.dumps(metadata),
            datetime.now(UTC).isoformat(),
            execution_id,
            ExecutionStatus.RUNNING.value,
        ),
    )
    await db.commit()

    if cursor.rowcount == 0:
        raise ExecutionStateError(
            "Execution is not running; terminal status can only be set once",
            details={"execution_id": execution_id, "status": status.value},
        )

    logger.info("execution_completed", execution_id=execution_id, status=status.value)


def _row_to_record(row: aiosqlite.Row) -> ExecutionRecord:
    return ExecutionRecord(
        id=row["id"],
        type=row["type"],
        status=row["status"],
        logs=json.loads(row["logs"]),
        metadata=json.loads(row["metadata"]),
        path=row["path"],
        started_at=row["started_at"],
        ended_at=row["ended_at"],
    )


async def get_execution(
    db: aiosqlite.Connection, execution_id: str
) -> ExecutionRecord | None:
    """Fetch one execution by id."""
    db.row_factory = aiosqlite.Row
    async with db.execute(
        "SELECT * FROM executions WHERE id = ?", (execution_id,)
    ) as cursor:
        row = await cursor.fetchone()
    return _row_to_record(row) if row else None


async def list_executions(
    db: aiosqlite.Connection,
    limit: int = 50,
    offset: int = 0,
    status: ExecutionStatus | None = None,
) -> List[ExecutionRecord]:
    """List executions, newest first."""
    db.row_factory = aiosqlite.Row

    query = "SELECT * FROM executions"
    params: list = []
    if status is not None:
        query += " WHERE status = ?"
        params.append(status.value)
    query += " ORDER BY started_at DESC, id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    async with db.execute(query, params) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_record(row) for row in rows]
