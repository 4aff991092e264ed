# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore Compatibility Guard - Engine, version and edition checks.

Runs before any transfer begins. Checks, in order:
1. Vendor: sidecar sourceType must equal the target adapter id
2. Version: backup engine version must not be newer than the live target
3. Edition: for edition-sensitive engines, editions must match

Every check is side-effect free and raises PreflightError with a
specific message on failure.
"""

import re
from typing import Iterable, List

import structlog

from dbrestore.adapters.base import ConnectionTestResult
from dbrestore.errors import (
    explain_edition_mismatch,
    explain_vendor_mismatch,
    explain_version_downgrade,
)
from dbrestore.exceptions import PreflightError
from dbrestore.metadata import BackupMetadata

logger = structlog.get_logger()


def _version_parts(version: str) -> List[int]:
    # Leading dotted number only: "16.2 (Debian 16.2-1)" -> [16, 2]
    match = re.search(r"\d+(?:\.\d+)*", str(version))
    if not match:
        return [0]
    return [int(part) for part in match.group().split(".")]


def compare_versions(left: str, right: str) -> int:
    """
    Compare dotted version strings numerically.

    Missing segments count as zero, so "8.0" == "8.0.0".

    Returns:
        -1 if left < right, 0 if equal, 1 if left > right
    """
    a, b = _version_parts(left), _version_parts(right)
    width = max(len(a), len(b))
    a += [0] * (width - len(a))
    b += [0] * (width - len(b))
    return (a > b) - (a < b)


def check_vendor(metadata: BackupMetadata, target_adapter_id: str) -> None:
    if metadata.source_type is None:
        logger.warning("vendor_check_skipped", reason="no source type in metadata")
        return
    if metadata.source_type != target_adapter_id:
        raise PreflightError(
            explain_vendor_mismatch(metadata.source_type, target_adapter_id),
            details={"source_type": metadata.source_type, "target": target_adapter_id},
        )


def check_version(backup_version: str | None, target_version: str | None) -> None:
    if not backup_version or not target_version:
        return
    if compare_versions(backup_version, target_version) > 0:
        raise PreflightError(
            explain_version_downgrade(backup_version, target_version),
            details={"backup_version": backup_version, "target_version": target_version},
        )


def check_edition(
    engine: str,
    backup_edition: str | None,
    target_edition: str | None,
    edition_sensitive_engines: Iterable[str],
) -> None:
    if engine not in set(edition_sensitive_engines):
        return
    if not backup_edition or not target_edition:
        return
    if backup_edition.strip().lower() != target_edition.strip().lower():
        raise PreflightError(
            explain_edition_mismatch(backup_edition, target_edition, engine),
            details={"backup_edition": backup_edition, "target_edition": target_edition},
        )


def run_compatibility_guard(
    metadata: BackupMetadata,
    target_adapter_id: str,
    probe: ConnectionTestResult | None,
    edition_sensitive_engines: Iterable[str] = frozenset({"mssql"}),
) -> None:
    """
    Run every compatibility check against a probed target.

    Args:
        metadata: Sidecar metadata of the backup
        target_adapter_id: Registry id of the target database adapter
        probe: Result of the target's test(), or None if not probed
        edition_sensitive_engines: Engines whose edition must match

    Raises:
        PreflightError: On the first failing check
    """
    check_vendor(metadata, target_adapter_id)

    target_version = probe.version if probe else None
    target_edition = probe.edition if probe else None

    if metadata.engine_version and not target_version:
        logger.warning(
            "version_check_skipped",
            target=target_adapter_id,
            reason=probe.message if probe else "target not probed",
        )

    check_version(metadata.engine_version, target_version)
    check_edition(
        target_adapter_id,
        metadata.engine_edition,
        target_edition,
        edition_sensitive_engines,
    )

    logger.debug(
        "compatibility_passed",
        target=target_adapter_id,
        backup_version=metadata.engine_version,
        target_version=target_version,
    )
