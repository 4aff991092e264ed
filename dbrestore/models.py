# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore Models - Records consumed and produced by the restore engine.

AdapterConfig and EncryptionProfile are owned by external configuration
management and are read-only here. RestoreRequest is transient input.
RestoreOverrides is the single point where request-time overrides are
merged into a target adapter's connection parameters.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Dict, List

from dbrestore.config import AdapterKind, LogLevel, LogType
from dbrestore.errors import explain_missing_request_field
from dbrestore.exceptions import PreflightError


@dataclass(frozen=True)
class AdapterConfig:
    """A configured storage or database endpoint."""

    id: str
    kind: AdapterKind
    adapter_id: str  # Registry key, e.g. "postgres", "local-fs"
    config: Dict[str, Any]  # Connection parameters, secrets still encrypted
    name: str = ""


@dataclass(frozen=True)
class EncryptionProfile:
    """Named key material; secret_key is wrapped by the system key."""

    id: str
    name: str
    secret_key: str
    created_at: str | None = None


@dataclass(frozen=True)
class DatabaseMapping:
    """Selection and rename of one database inside a composite backup."""

    original_name: str
    target_name: str = ""
    selected: bool = True

    @property
    def effective_target(self) -> str:
        return self.target_name or self.original_name

    def to_dict(self) -> dict:
        return {
            "originalName": self.original_name,
            "targetName": self.effective_target,
            "selected": self.selected,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DatabaseMapping":
        return cls(
            original_name=data["originalName"],
            target_name=data.get("targetName") or "",
            selected=bool(data.get("selected", True)),
        )


@dataclass(frozen=True)
class PrivilegedAuth:
    """Credential override used for database creation and permission probes."""

    user: str
    password: str = ""


@dataclass(frozen=True)
class RestoreRequest:
    """A request to restore one stored backup into a database target."""

    storage_config_id: str
    file: str
    target_source_id: str
    target_database_name: str | None = None
    database_mapping: List[DatabaseMapping] | None = None
    privileged_auth: PrivilegedAuth | None = None

    def validate(self) -> None:
        """
        Reject requests missing a required field.

        Raises:
            PreflightError: If storage config, file or target is empty
        """
        for name in ("storage_config_id", "file", "target_source_id"):
            if not getattr(self, name):
                raise PreflightError(explain_missing_request_field(name))

    def selected_target_names(self) -> List[str]:
        """Database names the restore will write to, as known before download."""
        if self.database_mapping:
            return [m.effective_target for m in self.database_mapping if m.selected]
        if self.target_database_name:
            return [self.target_database_name]
        return []


@dataclass(frozen=True)
class RestoreOverrides:
    """
    Request-time overrides for a target adapter's configuration.

    Built once per restore and applied once, right before the adapter's
    restore() is invoked.
    """

    database_name: str | None = None
    database_mapping: List[DatabaseMapping] | None = None
    privileged_auth: PrivilegedAuth | None = None
    detected_version: str | None = None
    detected_edition: str | None = None

    @classmethod
    def from_request(
        cls,
        request: RestoreRequest,
        detected_version: str | None = None,
        detected_edition: str | None = None,
    ) -> "RestoreOverrides":
        return cls(
            database_name=request.target_database_name,
            database_mapping=request.database_mapping,
            privileged_auth=request.privileged_auth,
            detected_version=detected_version,
            detected_edition=detected_edition,
        )

    def apply(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of config with the overrides merged in."""
        merged = dict(config)
        if self.database_name:
            merged["database"] = self.database_name
        if self.database_mapping:
            merged["database_mapping"] = [m.to_dict() for m in self.database_mapping]
        if self.privileged_auth:
            merged["privileged_auth"] = {
                "user": self.privileged_auth.user,
                "password": self.privileged_auth.password,
            }
        if self.detected_version:
            merged["detected_version"] = self.detected_version
        if self.detected_edition:
            merged["detected_edition"] = self.detected_edition
        return merged


@dataclass
class LogEntry:
    """One entry of an Execution's append-only log."""

    message: str
    level: LogLevel = LogLevel.INFO
    type: LogType = LogType.GENERAL
    stage: str | None = None
    details: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict:
        data = {
            "timestamp": self.timestamp,
            "message": self.message,
            "level": LogLevel(self.level).value,
            "type": LogType(self.type).value,
            "stage": self.stage,
        }
        if self.details is not None:
            data["details"] = self.details
        return data
