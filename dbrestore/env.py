# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration for the restore engine.

A thin wrapper around create_config() reading a small set of
well-known environment variables.
"""

from __future__ import annotations

import os

from dbrestore.builder import create_config
from dbrestore.config import RestoreEngineConfig
from dbrestore.errors import (
    explain_invalid_flush_interval_env,
    explain_invalid_max_concurrent_env,
    explain_invalid_system_key,
)
from dbrestore.exceptions import ConfigurationError


def _parse_flush_interval(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_flush_interval_env(value)) from exc
    if seconds < 0:
        raise ConfigurationError(explain_invalid_flush_interval_env(value))
    return seconds


def _parse_max_concurrent(value: str | None) -> int | None:
    if not value:
        return None
    try:
        limit = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_max_concurrent_env(value)) from exc
    if limit < 0:
        raise ConfigurationError(explain_invalid_max_concurrent_env(value))
    return limit


def _parse_system_key(value: str | None) -> str | None:
    if not value:
        return None
    value = value.strip()
    if len(value) != 64:
        raise ConfigurationError(explain_invalid_system_key())
    return value


def create_config_from_env() -> RestoreEngineConfig:
    """
    Create a RestoreEngineConfig from environment variables.

    Optional environment variables:
        - DBRESTORE_STATE_PATH: Directory for executions.db (default: ./dbrestore_state)
        - DBRESTORE_SCRATCH_DIR: Scratch root (default: $TMPDIR/dbrestore)
        - ENCRYPTION_KEY: 64-hex system key protecting stored secrets
        - DBRESTORE_FLUSH_INTERVAL: Seconds between execution flushes (default: 1)
        - DBRESTORE_MAX_CONCURRENT_RESTORES: Concurrency cap, 0 = unbounded
    """

    return create_config(
        state_path=os.getenv("DBRESTORE_STATE_PATH") or None,
        scratch_dir=os.getenv("DBRESTORE_SCRATCH_DIR") or None,
        system_key_hex=_parse_system_key(os.getenv("ENCRYPTION_KEY")),
        flush_interval_seconds=_parse_flush_interval(
            os.getenv("DBRESTORE_FLUSH_INTERVAL")
        ),
        max_concurrent_restores=_parse_max_concurrent(
            os.getenv("DBRESTORE_MAX_CONCURRENT_RESTORES")
        ),
    )
