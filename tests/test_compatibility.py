# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Tests for vendor, version and edition checks.
"""

import pytest

from dbrestore.adapters.base import ConnectionTestResult
from dbrestore.compatibility import (
    check_edition,
    compare_versions,
    run_compatibility_guard,
)
from dbrestore.exceptions import PreflightError
from dbrestore.metadata import BackupMetadata


@pytest.mark.parametrize(
    "left,right,expected",
    [
        ("8.0", "8.0.0", 0),
        ("8.0.36", "8.0.4", 1),
        ("5.0", "6.0", -1),
        ("16.2 (Debian 16.2-1)", "16.2", 0),
        ("15.0.2000.5", "16.0.1000.6", -1),
    ],
)
def test_compare_versions(left, right, expected):
    assert compare_versions(left, right) == expected


def test_vendor_mismatch_rejected():
    meta = BackupMetadata(source_type="mysql", from_sidecar=True)

    with pytest.raises(PreflightError) as exc:
        run_compatibility_guard(meta, "mariadb", ConnectionTestResult(True, version="11.0"))

    assert "Cross-vendor" in exc.value.message


def test_newer_backup_rejected():
    meta = BackupMetadata(source_type="mysql", engine_version="6.0", from_sidecar=True)

    with pytest.raises(PreflightError) as exc:
        run_compatibility_guard(meta, "mysql", ConnectionTestResult(True, version="5.0"))

    assert "newer database version" in exc.value.message
    assert "6.0" in exc.value.message and "5.0" in exc.value.message


def test_older_backup_accepted():
    meta = BackupMetadata(source_type="mysql", engine_version="5.7.44", from_sidecar=True)

    run_compatibility_guard(meta, "mysql", ConnectionTestResult(True, version="8.0.36"))


def test_unknown_target_version_skips_version_check():
    meta = BackupMetadata(source_type="mysql", engine_version="9.0", from_sidecar=True)

    run_compatibility_guard(meta, "mysql", ConnectionTestResult(False, message="down"))
    run_compatibility_guard(meta, "mysql", None)


def test_edition_mismatch_rejected_for_sensitive_engine():
    meta = BackupMetadata(
        source_type="mssql",
        engine_version="15.0",
        engine_edition="Azure SQL Edge",
        from_sidecar=True,
    )
    probe = ConnectionTestResult(True, version="15.0", edition="Enterprise")

    with pytest.raises(PreflightError) as exc:
        run_compatibility_guard(meta, "mssql", probe)

    assert "Azure SQL Edge" in exc.value.message


def test_edition_ignored_for_other_engines():
    check_edition("postgres", "Enterprise", "Community", {"mssql"})


def test_edition_compare_is_case_insensitive():
    check_edition("mssql", "express", "Express", {"mssql"})
