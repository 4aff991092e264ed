# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore Tracker - In-memory Execution state with debounced persistence.

Adapters report logs and progress through synchronous callbacks, often
many per second. The tracker buffers them and lets a FlushScheduler
write at most once per flush interval. Stage transitions, errors and the
terminal status are flushed immediately.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, FrozenSet, List

import aiosqlite
import structlog

from dbrestore.config import ExecutionStatus, LogLevel, LogType, RestoreStage
from dbrestore.exceptions import ExecutionStateError
from dbrestore.executions import complete_execution, save_progress
from dbrestore.models import LogEntry

logger = structlog.get_logger()

# Decrypting and Decompressing are conditional, so later stages may be skipped to.
STAGE_TRANSITIONS: Dict[RestoreStage, FrozenSet[RestoreStage]] = {
    RestoreStage.INITIALIZING: frozenset({RestoreStage.DOWNLOADING, RestoreStage.FAILED}),
    RestoreStage.DOWNLOADING: frozenset(
        {
            RestoreStage.DECRYPTING,
            RestoreStage.DECOMPRESSING,
            RestoreStage.RESTORING_DATABASE,
            RestoreStage.FAILED,
        }
    ),
    RestoreStage.DECRYPTING: frozenset(
        {RestoreStage.DECOMPRESSING, RestoreStage.RESTORING_DATABASE, RestoreStage.FAILED}
    ),
    RestoreStage.DECOMPRESSING: frozenset(
        {RestoreStage.RESTORING_DATABASE, RestoreStage.FAILED}
    ),
    RestoreStage.RESTORING_DATABASE: frozenset(
        {RestoreStage.COMPLETED, RestoreStage.FAILED}
    ),
    RestoreStage.COMPLETED: frozenset(),
    RestoreStage.FAILED: frozenset(),
}


def classify_log_level(message: str) -> LogLevel:
    """
    Severity of a line of adapter output.

    "error", "fail" or "fatal" -> error; "warn" -> warning; otherwise info.
    """
    lowered = message.lower()
    if "error" in lowered or "fail" in lowered or "fatal" in lowered:
        return LogLevel.ERROR
    if "warn" in lowered:
        return LogLevel.WARNING
    return LogLevel.INFO


def _log_flush_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(
            "execution_flush_failed", error=str(error), error_type=type(error).__name__
        )


class FlushScheduler:
    """
    Debounced flusher: at most one write per interval, plus forced flushes.

    request() marks state dirty and arms a single timer; force() cancels
    the timer and writes now. Writes never overlap.
    """

    def __init__(self, flush: Callable[[], Awaitable[None]], interval: float):
        self._flush = flush
        self._interval = interval
        self._lock = asyncio.Lock()
        self._timer: asyncio.Task | None = None
        self._last_flush = 0.0
        self._dirty = False
        self._sleeping = False

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def request(self) -> None:
        """Mark dirty and write within the interval."""
        self._dirty = True
        if self.pending:
            return
        delay = max(0.0, self._last_flush + self._interval - time.monotonic())
        self._timer = self._spawn(self._delayed(delay))

    def urgent(self) -> None:
        """Mark dirty and write as soon as the loop allows."""
        self._dirty = True
        self._cancel_timer()
        self._timer = self._spawn(self._write())

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.get_event_loop().create_task(coro)
        task.add_done_callback(_log_flush_failure)
        return task

    async def _delayed(self, delay: float) -> None:
        self._sleeping = True
        try:
            if delay > 0:
                await asyncio.sleep(delay)
        finally:
            self._sleeping = False
        await self._write()

    async def _write(self) -> None:
        async with self._lock:
            if not self._dirty:
                return
            self._dirty = False
            self._last_flush = time.monotonic()
            await self._flush()

    async def force(self) -> None:
        """Write now, waiting for any write already in progress."""
        self._cancel_timer()
        self._dirty = True
        await self._write()

    def _cancel_timer(self) -> None:
        # Only a sleeping timer is cancelled; an in-flight write completes.
        if self.pending and self._sleeping:
            self._timer.cancel()
        self._timer = None

    async def close(self) -> None:
        """Drop any pending timer without writing."""
        self._cancel_timer()
        self._dirty = False

    async def run_exclusive(self, write: Awaitable[None]) -> None:
        """Run a final write that must not interleave with a flush."""
        async with self._lock:
            await write


class ExecutionTracker:
    """
    Owner of one Running Execution.

    Only the restore task that created the Execution holds its tracker.
    """

    def __init__(
        self,
        db: aiosqlite.Connection,
        execution_id: str,
        flush_interval: float = 1.0,
        logs: List[LogEntry] | None = None,
    ):
        self.db = db
        self.execution_id = execution_id
        self.stage = RestoreStage.INITIALIZING
        self.progress = 0.0
        self.status = ExecutionStatus.RUNNING
        self._logs: List[LogEntry] = list(logs or [])
        self._scheduler = FlushScheduler(self._persist, flush_interval)

    @property
    def logs(self) -> List[LogEntry]:
        return list(self._logs)

    @property
    def metadata(self) -> dict:
        return {"progress": round(self.progress, 2), "stage": self.stage.value}

    def _ensure_running(self) -> None:
        if self.status.is_terminal:
            raise ExecutionStateError(
                "Execution is terminal and can no longer change",
                details={"execution_id": self.execution_id, "status": self.status.value},
            )

    async def _persist(self) -> None:
        written = await save_progress(self.db, self.execution_id, self._logs, self.metadata)
        if not written:
            logger.warning("execution_flush_ignored", execution_id=self.execution_id)

    def log(
        self,
        message: str,
        level: LogLevel = LogLevel.INFO,
        type: LogType = LogType.GENERAL,
        details: str | None = None,
    ) -> LogEntry:
        """Append a log entry; errors are flushed without waiting."""
        self._ensure_running()
        level = LogLevel(level)
        entry = LogEntry(
            message=message,
            level=level,
            type=LogType(type),
            stage=self.stage.value,
            details=details,
        )
        self._logs.append(entry)

        if level == LogLevel.ERROR:
            self._scheduler.urgent()
        else:
            self._scheduler.request()
        return entry

    def relay_log(
        self,
        message: str,
        level: LogLevel | None = None,
        type: LogType | None = None,
        details: str | None = None,
    ) -> None:
        """
        Adapter on_log callback.

        Accepts enum members or their string values; severity is inferred
        from the message when missing or unknown.
        """
        try:
            level = LogLevel(level) if level else classify_log_level(message)
        except ValueError:
            level = classify_log_level(message)
        try:
            type = LogType(type) if type else LogType.GENERAL
        except ValueError:
            type = LogType.GENERAL
        self.log(message, level, type, details)

    def set_progress(self, percentage: float) -> None:
        """Adapter on_progress callback."""
        self._ensure_running()
        self.progress = min(100.0, max(0.0, float(percentage)))
        self._scheduler.request()

    async def transition(self, stage: RestoreStage) -> None:
        """
        Move to the next stage and persist immediately.

        Raises:
            ExecutionStateError: If the transition is not allowed
        """
        self._ensure_running()
        if stage not in STAGE_TRANSITIONS[self.stage]:
            raise ExecutionStateError(
                f"Illegal stage transition {self.stage.value} -> {stage.value}",
                details={"execution_id": self.execution_id},
            )
        self.stage = stage
        if stage.is_terminal:
            return
        self.progress = 0.0
        await self._scheduler.force()

    async def flush(self) -> None:
        """Persist current state now."""
        self._ensure_running()
        await self._scheduler.force()

    async def finish(self, status: ExecutionStatus) -> None:
        """
        Record the terminal status with a final forced write.

        Raises:
            ExecutionStateError: If already terminal
        """
        self._ensure_running()
        await self._scheduler.close()

        if status == ExecutionStatus.SUCCESS:
            self.progress = 100.0
            if self.stage != RestoreStage.COMPLETED:
                self.stage = RestoreStage.COMPLETED
        elif self.stage != RestoreStage.FAILED:
            self.stage = RestoreStage.FAILED

        await self._scheduler.run_exclusive(
            complete_execution(
                self.db, self.execution_id, status, self._logs, self.metadata
            )
        )
        self.status = status
