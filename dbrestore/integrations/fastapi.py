# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore FastAPI Integration - Restore endpoints for FastAPI applications.

This module provides:
- Lifespan management (orchestrator startup/shutdown)
- Protected admin endpoints to start restores and follow executions
- Health check
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, UTC
from typing import List

import structlog
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from dbrestore.config import ExecutionStatus
from dbrestore.exceptions import ConfigurationError, PreflightError
from dbrestore.models import DatabaseMapping, PrivilegedAuth, RestoreRequest
from dbrestore.orchestrator import RestoreOrchestrator

logger = structlog.get_logger()

# Security
security = HTTPBearer(auto_error=False)


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the DBRESTORE_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv("DBRESTORE_ADMIN_API_KEY")

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail="DBRESTORE_ADMIN_API_KEY environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if credentials.credentials != api_key:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


class DatabaseMappingBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    original_name: str = Field(alias="originalName")
    target_name: str = Field("", alias="targetName")
    selected: bool = True


class PrivilegedAuthBody(BaseModel):
    user: str
    password: str = ""


class RestoreRequestBody(BaseModel):
    """Restore request as sent by the dashboard (camelCase)."""

    model_config = ConfigDict(populate_by_name=True)

    storage_config_id: str = Field(alias="storageConfigId")
    file: str
    target_source_id: str = Field(alias="targetSourceId")
    target_database_name: str | None = Field(None, alias="targetDatabaseName")
    database_mapping: List[DatabaseMappingBody] | None = Field(
        None, alias="databaseMapping"
    )
    privileged_auth: PrivilegedAuthBody | None = Field(None, alias="privilegedAuth")

    def to_request(self) -> RestoreRequest:
        return RestoreRequest(
            storage_config_id=self.storage_config_id,
            file=self.file,
            target_source_id=self.target_source_id,
            target_database_name=self.target_database_name or None,
            database_mapping=(
                [
                    DatabaseMapping.from_dict(m.model_dump(by_alias=True))
                    for m in self.database_mapping
                ]
                if self.database_mapping
                else None
            ),
            privileged_auth=(
                PrivilegedAuth(self.privileged_auth.user, self.privileged_auth.password)
                if self.privileged_auth
                else None
            ),
        )


def register_restore_routes(
    app: FastAPI,
    orchestrator: RestoreOrchestrator,
    prefix: str = "/admin/restore",
) -> None:
    """
    Register restore endpoints on a FastAPI app.

    All endpoints require Bearer token authentication.

    Args:
        app: FastAPI application
        orchestrator: Initialized restore orchestrator
        prefix: URL prefix for endpoints (default: /admin/restore)
    """

    @app.post(f"{prefix}", status_code=202, dependencies=[Depends(verify_api_key)])
    async def start_restore(body: RestoreRequestBody) -> dict:
        """
        Start a restore in the background.

        Preflight failures are returned synchronously; otherwise the
        execution id is returned immediately.
        """
        request = body.to_request()
        try:
            request.validate()
        except PreflightError as e:
            raise HTTPException(status_code=400, detail=e.message)

        try:
            execution_id = await orchestrator.start_restore(request)
        except PreflightError as e:
            logger.warning("restore_rejected", file=request.file, error=e.message)
            raise HTTPException(status_code=409, detail=e.message)
        except ConfigurationError as e:
            raise HTTPException(status_code=404, detail=e.message)

        return {"success": True, "executionId": execution_id}

    @app.get(f"{prefix}/executions/{{execution_id}}", dependencies=[Depends(verify_api_key)])
    async def get_restore_execution(execution_id: str) -> dict:
        """Current status, stage, progress and logs of one execution."""
        record = await orchestrator.get_execution(execution_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Execution not found")
        return dict(record)

    @app.get(f"{prefix}/executions", dependencies=[Depends(verify_api_key)])
    async def list_restore_executions(
        limit: int = 50,
        offset: int = 0,
        status: str | None = None,
    ) -> list:
        """
        List executions with pagination.

        Args:
            limit: Maximum number of executions to return
            offset: Number of executions to skip
            status: Filter by status (Running, Success, Failed)
        """
        try:
            status_filter = ExecutionStatus(status) if status else None
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
        records = await orchestrator.list_executions(limit, offset, status_filter)
        return [dict(r) for r in records]

    @app.get(f"{prefix}/health", dependencies=[Depends(verify_api_key)])
    async def health_check() -> dict:
        """
        Health check endpoint.

        Verifies the execution store and scratch directory.
        """
        store_ok = orchestrator.config.executions_db_path.exists()
        scratch_ok = orchestrator.config.scratch_dir.is_dir()

        status = "healthy"
        if not store_ok or not scratch_ok:
            status = "degraded"
        if not store_ok and not scratch_ok:
            status = "unhealthy"

        return {
            "status": status,
            "execution_store_accessible": store_ok,
            "scratch_dir_accessible": scratch_ok,
            "running_restores": len(orchestrator.pool.running),
            "adapters": orchestrator.registry.ids(),
            "timestamp": datetime.now(UTC).isoformat(),
        }


def setup_restore_plugin(
    app: FastAPI,
    orchestrator: RestoreOrchestrator,
    prefix: str = "/admin/restore",
) -> None:
    """
    Set up the restore endpoints with startup/shutdown management.

    Args:
        app: FastAPI application
        orchestrator: Orchestrator to initialize on startup
        prefix: URL prefix for admin endpoints
    """
    app.state.restore_orchestrator = orchestrator
    register_restore_routes(app, orchestrator, prefix)

    @app.on_event("startup")
    async def startup():
        """Initialize the orchestrator on app startup."""
        logger.info("restore_plugin_starting")
        await orchestrator.initialize()
        logger.info("restore_plugin_started")

    @app.on_event("shutdown")
    async def shutdown():
        """Wait for running restores on app shutdown."""
        logger.info("restore_plugin_stopping")
        await orchestrator.close()
        logger.info("restore_plugin_stopped")


@asynccontextmanager
async def restore_lifespan(
    app: FastAPI,
    orchestrator: RestoreOrchestrator,
    prefix: str = "/admin/restore",
):
    """
    Lifespan context manager for FastAPI.

    Use this instead of setup_restore_plugin if you prefer the
    lifespan pattern:

        app = FastAPI(lifespan=lambda app: restore_lifespan(app, orchestrator))
    """
    logger.info("restore_lifespan_starting")

    await orchestrator.initialize()
    app.state.restore_orchestrator = orchestrator
    register_restore_routes(app, orchestrator, prefix)

    logger.info("restore_lifespan_started")

    try:
        yield
    finally:
        logger.info("restore_lifespan_stopping")
        await orchestrator.close()
        logger.info("restore_lifespan_stopped")


def get_restore_orchestrator(app: FastAPI) -> RestoreOrchestrator:
    """
    Get the orchestrator from a FastAPI app.

    Useful for accessing it in custom endpoints.

    Raises:
        RuntimeError: If the plugin has not been set up
    """
    orchestrator = getattr(app.state, "restore_orchestrator", None)
    if orchestrator is None:
        raise RuntimeError("Restore plugin not initialized")
    return orchestrator
