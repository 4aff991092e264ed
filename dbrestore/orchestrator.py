# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore Orchestrator - The restore state machine.

start_restore() runs every preflight check synchronously, records a
Running Execution and hands the pipeline to a task pool:

    Initializing -> Downloading -> Decrypting* -> Decompressing*
                 -> RestoringDatabase -> Completed | Failed

(* conditional). The caller gets the Execution id back immediately and
follows progress through get_execution().
"""

import asyncio
import shutil
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Awaitable, Dict, List

import aiofiles
import aiosqlite
import structlog
from ulid import ULID

from dbrestore.adapters.base import (
    Capability,
    ConnectionTestResult,
    backup_format_description,
    supports,
)
from dbrestore.adapters.registry import AdapterRegistry
from dbrestore.archive import is_multi_db_tar, restore_multi_database
from dbrestore.artifacts import decompress_artifact, decrypt_artifact
from dbrestore.compatibility import run_compatibility_guard
from dbrestore.config import (
    AdapterKind,
    ExecutionStatus,
    LogLevel,
    LogType,
    RestoreEngineConfig,
    RestoreStage,
)
from dbrestore.errors import (
    explain_adapter_config_not_found,
    explain_missing_encryption_metadata,
)
from dbrestore.exceptions import (
    AdapterRestoreError,
    ConfigurationError,
    CryptoError,
    PreflightError,
    RestoreEngineError,
    TransferError,
)
from dbrestore.executions import (
    ExecutionRecord,
    create_execution,
    get_execution,
    init_execution_db,
    list_executions,
)
from dbrestore.metadata import BackupMetadata, resolve_metadata, sidecar_path
from dbrestore.models import AdapterConfig, LogEntry, RestoreOverrides, RestoreRequest
from dbrestore.security.secrets import decrypt_config
from dbrestore.store import ConfigStore
from dbrestore.tracker import ExecutionTracker

logger = structlog.get_logger()

EXECUTION_TYPE = "Restore"


# =============================================================================
# Task pool
# =============================================================================


class RestoreTaskPool:
    """
    Runs restore pipelines as background tasks, one per Execution.

    Tasks are never cancelled; shutdown() waits for them. An optional
    limit bounds how many pipelines run at once.
    """

    def __init__(self, max_concurrent: int = 0):
        self._semaphore = asyncio.Semaphore(max_concurrent) if max_concurrent > 0 else None
        self._tasks: Dict[str, asyncio.Task] = {}

    def submit(self, execution_id: str, pipeline: Awaitable[None]) -> asyncio.Task:
        """Schedule a pipeline and return its handle."""
        task = asyncio.get_event_loop().create_task(self._run(execution_id, pipeline))
        self._tasks[execution_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(execution_id, None))
        return task

    async def _run(self, execution_id: str, pipeline: Awaitable[None]) -> None:
        try:
            if self._semaphore is None:
                await pipeline
            else:
                async with self._semaphore:
                    await pipeline
        except Exception as e:
            # The pipeline records its own failures; this only guards the host.
            logger.error("restore_task_crashed", execution_id=execution_id, error=str(e))

    @property
    def running(self) -> List[str]:
        return list(self._tasks)

    async def wait(self, execution_id: str) -> None:
        """Wait for one pipeline; returns at once if it is not running."""
        task = self._tasks.get(execution_id)
        if task is not None:
            await asyncio.shield(task)

    async def shutdown(self) -> None:
        """Wait for every running pipeline to reach a terminal state."""
        tasks = list(self._tasks.values())
        if tasks:
            logger.info("restore_pool_draining", running=len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)


# =============================================================================
# Orchestrator
# =============================================================================


@dataclass
class _RestoreJob:
    """Everything a background pipeline needs, resolved during preflight."""

    execution_id: str
    request: RestoreRequest
    storage: Any
    storage_conn: dict
    database: Any
    target: AdapterConfig
    target_conn: dict
    metadata: BackupMetadata
    artifact_path: Path
    extract_dir: Path
    tracker: ExecutionTracker
    scratch_files: List[Path] = field(default_factory=list)


class RestoreOrchestrator:
    """
    Entry point of the restore engine.

    Usage:
        orchestrator = RestoreOrchestrator(registry, store, config)
        await orchestrator.initialize()
        execution_id = await orchestrator.start_restore(request)
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        store: ConfigStore,
        config: RestoreEngineConfig | None = None,
    ):
        self.registry = registry
        self.store = store
        self.config = config or RestoreEngineConfig()
        self.pool = RestoreTaskPool(self.config.max_concurrent_restores)
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Create the scratch namespace and open the execution store."""
        self.config.scratch_dir.mkdir(parents=True, exist_ok=True)
        await init_execution_db(self.config.executions_db_path)
        self._db = await aiosqlite.connect(self.config.executions_db_path)
        self._db.row_factory = aiosqlite.Row
        logger.info(
            "restore_orchestrator_initialized",
            adapters=self.registry.ids(),
            scratch_dir=str(self.config.scratch_dir),
        )

    async def close(self) -> None:
        """Wait for running restores, then close the execution store."""
        await self.pool.shutdown()
        if self._db is not None:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise ConfigurationError("RestoreOrchestrator.initialize() has not been called")
        return self._db

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        return await get_execution(self.db, execution_id)

    async def list_executions(
        self,
        limit: int = 50,
        offset: int = 0,
        status: ExecutionStatus | None = None,
    ) -> List[ExecutionRecord]:
        return await list_executions(self.db, limit, offset, status)

    async def wait_for(self, execution_id: str) -> ExecutionRecord | None:
        """Wait until a restore is terminal and return its record."""
        await self.pool.wait(execution_id)
        return await self.get_execution(execution_id)

    # -------------------------------------------------------------------------
    # Preflight
    # -------------------------------------------------------------------------

    async def _load_adapter_config(self, config_id: str, kind: AdapterKind) -> AdapterConfig:
        record = await self.store.get_adapter_config(config_id)
        if record is None or record.kind != kind:
            raise ConfigurationError(
                explain_adapter_config_not_found(config_id, kind.value),
                details={"config_id": config_id},
            )
        return record

    def _decrypt_connection(self, record: AdapterConfig) -> dict:
        try:
            return decrypt_config(record.config, self.config.system_key)
        except CryptoError as e:
            raise ConfigurationError(
                f"Cannot decrypt configuration of '{record.name or record.id}': {e.message}",
                details={"config_id": record.id},
            ) from e

    async def _fetch_sidecar(
        self, storage: Any, conn: dict, remote_file: str, local_path: Path
    ) -> str | None:
        """Sidecar text, or None when absent or unreadable."""
        remote = sidecar_path(remote_file)
        try:
            if supports(storage, Capability.READ):
                return await storage.read(conn, remote)

            if not await storage.download(conn, remote, str(local_path)):
                return None
            async with aiofiles.open(local_path, "r", encoding="utf-8") as f:
                return await f.read()
        except Exception as e:
            logger.warning("sidecar_fetch_failed", file=remote_file, error=str(e))
            return None

    async def _probe(self, database: Any, conn: dict) -> ConnectionTestResult | None:
        try:
            return await database.test(conn)
        except Exception as e:
            logger.warning("target_probe_failed", adapter=database.id, error=str(e))
            return None

    async def _check_permissions(
        self, database: Any, conn: dict, request: RestoreRequest
    ) -> None:
        names = request.selected_target_names()
        if not names or not supports(database, Capability.PREPARE_RESTORE):
            return
        prepared = RestoreOverrides.from_request(request).apply(conn)
        try:
            await database.prepare_restore(prepared, names)
        except PreflightError:
            raise
        except Exception as e:
            raise PreflightError(
                str(e), details={"databases": names, "adapter": database.id}
            ) from e

    async def start_restore(self, request: RestoreRequest) -> str:
        """
        Validate and preflight a restore, then run it in the background.

        Returns:
            The Execution id

        Raises:
            PreflightError: Invalid request, incompatible target or
                insufficient privileges
            ConfigurationError: Unknown adapter or adapter config
        """
        request.validate()

        storage_cfg = await self._load_adapter_config(
            request.storage_config_id, AdapterKind.STORAGE
        )
        target_cfg = await self._load_adapter_config(
            request.target_source_id, AdapterKind.DATABASE
        )
        storage = self.registry.get_storage(storage_cfg.adapter_id)
        database = self.registry.get_database(target_cfg.adapter_id)
        storage_conn = self._decrypt_connection(storage_cfg)
        target_conn = self._decrypt_connection(target_cfg)

        execution_id = str(ULID())
        basename = PurePosixPath(request.file).name
        scratch_root = self.config.scratch_dir
        scratch_root.mkdir(parents=True, exist_ok=True)
        artifact_path = scratch_root / f"{execution_id}_{basename}"
        sidecar_local = scratch_root / f"{execution_id}_{basename}.meta.json"

        try:
            sidecar_text = await self._fetch_sidecar(
                storage, storage_conn, request.file, sidecar_local
            )
        finally:
            sidecar_local.unlink(missing_ok=True)
        metadata = resolve_metadata(sidecar_text, basename)

        # Version and edition are only checked when the sidecar exists
        probe = await self._probe(database, target_conn) if metadata.from_sidecar else None
        run_compatibility_guard(
            metadata,
            target_cfg.adapter_id,
            probe,
            self.config.edition_sensitive_engines,
        )
        await self._check_permissions(database, target_conn, request)

        initial = [
            LogEntry(
                message=f"Restore requested for {request.file} into "
                f"{target_cfg.name or target_cfg.id}",
                stage=RestoreStage.INITIALIZING.value,
            )
        ]
        if not metadata.from_sidecar:
            initial.append(
                LogEntry(
                    message="No metadata sidecar found; detecting format from file name",
                    level=LogLevel.WARNING,
                    stage=RestoreStage.INITIALIZING.value,
                )
            )

        await create_execution(
            self.db,
            execution_id,
            EXECUTION_TYPE,
            request.file,
            initial,
            {"progress": 0, "stage": RestoreStage.INITIALIZING.value},
        )

        job = _RestoreJob(
            execution_id=execution_id,
            request=request,
            storage=storage,
            storage_conn=storage_conn,
            database=database,
            target=target_cfg,
            target_conn=target_conn,
            metadata=metadata,
            artifact_path=artifact_path,
            extract_dir=scratch_root / f"{execution_id}_extract",
            tracker=ExecutionTracker(
                self.db, execution_id, self.config.flush_interval_seconds, initial
            ),
        )
        self.pool.submit(execution_id, self._run_pipeline(job))

        logger.info(
            "restore_started",
            execution_id=execution_id,
            file=request.file,
            target=target_cfg.id,
        )
        return execution_id

    # -------------------------------------------------------------------------
    # Background pipeline
    # -------------------------------------------------------------------------

    async def _run_pipeline(self, job: _RestoreJob) -> None:
        tracker = job.tracker
        job.scratch_files.append(job.artifact_path)

        try:
            await self._download(job)
            current = job.artifact_path

            if job.metadata.is_encrypted:
                await tracker.transition(RestoreStage.DECRYPTING)
                current, _ = await decrypt_artifact(
                    current, job.metadata, self.store, self.config, tracker.log
                )
                job.scratch_files.append(current)

            if job.metadata.is_compressed:
                await tracker.transition(RestoreStage.DECOMPRESSING)
                current = await decompress_artifact(
                    current, job.metadata, self.config, tracker.log
                )
                job.scratch_files.append(current)

            await tracker.transition(RestoreStage.RESTORING_DATABASE)
            await self._restore(job, current)

            tracker.log("Restore completed successfully", LogLevel.SUCCESS)
            await tracker.transition(RestoreStage.COMPLETED)
            await tracker.finish(ExecutionStatus.SUCCESS)
            logger.info("restore_completed", execution_id=job.execution_id)

        except Exception as e:
            message = e.message if isinstance(e, RestoreEngineError) else str(e)
            logger.error(
                "restore_failed",
                execution_id=job.execution_id,
                stage=tracker.stage.value,
                error=message,
                error_type=type(e).__name__,
            )
            await self._record_failure(tracker, message or type(e).__name__)

        finally:
            self._cleanup(job)

    async def _record_failure(self, tracker: ExecutionTracker, message: str) -> None:
        """Mark the Execution Failed; never raises."""
        if tracker.status.is_terminal:
            return
        try:
            tracker.log(message, LogLevel.ERROR)
            if not tracker.stage.is_terminal:
                await tracker.transition(RestoreStage.FAILED)
            await tracker.finish(ExecutionStatus.FAILED)
        except Exception as e:
            logger.error(
                "restore_failure_not_recorded",
                execution_id=tracker.execution_id,
                error=str(e),
            )

    async def _download(self, job: _RestoreJob) -> None:
        tracker = job.tracker
        await tracker.transition(RestoreStage.DOWNLOADING)

        if job.metadata.is_encrypted and not job.metadata.encryption.has_parameters:
            raise CryptoError(
                explain_missing_encryption_metadata(), details={"file": job.request.file}
            )

        tracker.log(f"Downloading {job.request.file}", type=LogType.STORAGE)
        ok = await job.storage.download(
            job.storage_conn,
            job.request.file,
            str(job.artifact_path),
            tracker.set_progress,
        )
        if not ok:
            raise TransferError(
                f"Download failed: {job.request.file}",
                details={"storage": job.storage.id},
            )
        tracker.log("Download finished", type=LogType.STORAGE)

    async def _restore(self, job: _RestoreJob, source: Path) -> None:
        tracker = job.tracker
        database = job.database

        probe = await self._probe(database, job.target_conn)
        overrides = RestoreOverrides.from_request(
            job.request,
            detected_version=probe.version if probe else None,
            detected_edition=probe.edition if probe else None,
        )
        target_conn = overrides.apply(job.target_conn)
        if probe and probe.version:
            tracker.log(f"Target server version: {probe.version}")

        tracker.log(
            f"Restoring {backup_format_description(job.target.adapter_id)} into "
            f"{job.target.name or job.target.id}"
        )

        if supports(database, Capability.RESTORE_DATABASE) and await is_multi_db_tar(source):
            job.scratch_files.append(job.extract_dir)
            result = await restore_multi_database(
                database,
                target_conn,
                source,
                job.extract_dir,
                job.request.database_mapping,
                tracker.relay_log,
                tracker.set_progress,
            )
        else:
            result = await database.restore(
                target_conn, str(source), tracker.relay_log, tracker.set_progress
            )

        if not result.success:
            raise AdapterRestoreError(
                result.error or "Restore failed", details={"adapter": database.id}
            )

    def _cleanup(self, job: _RestoreJob) -> None:
        for path in job.scratch_files:
            if path.is_dir():
                shutil.rmtree(path, ignore_errors=True)
            else:
                path.unlink(missing_ok=True)
        logger.debug("restore_scratch_cleaned", execution_id=job.execution_id)
