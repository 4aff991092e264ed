# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore Builder - Functional builder pattern for engine configuration.

Each function takes a config dict and returns a new dict with the
modification applied. build_config() validates and freezes the result.
"""

from pathlib import Path
from typing import Any, Callable, Dict, Iterable

from dbrestore.config import RestoreEngineConfig, default_scratch_dir


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial configuration dictionary with default values.
    """
    return {
        "state_path": Path("./dbrestore_state"),
        "scratch_dir": default_scratch_dir(),
        "system_key_hex": None,
        "flush_interval_seconds": 1.0,
        "recovery_sample_bytes": 1024,
        "printable_threshold": 0.7,
        "edition_sensitive_engines": frozenset({"mssql"}),
        "max_concurrent_restores": 0,
        "chunk_size": 64 * 1024,
    }


def with_state_path(config: ConfigDict, state_path: Path | str) -> ConfigDict:
    """
    Set the directory that holds the executions database.
    """
    return {**config, "state_path": Path(state_path)}


def with_scratch_dir(config: ConfigDict, scratch_dir: Path | str) -> ConfigDict:
    """
    Set the scratch root used for downloaded and intermediate files.
    """
    return {**config, "scratch_dir": Path(scratch_dir)}


def with_system_key(config: ConfigDict, key_hex: str) -> ConfigDict:
    """
    Set the hex system key that unwraps stored secrets.
    """
    return {**config, "system_key_hex": key_hex.strip()}


def flush_every(config: ConfigDict, seconds: float) -> ConfigDict:
    """
    Set the debounce window for execution persistence.

    Errors and terminal states always flush immediately regardless.
    """
    return {**config, "flush_interval_seconds": float(seconds)}


def tune_smart_recovery(
    config: ConfigDict,
    sample_bytes: int | None = None,
    printable_threshold: float | None = None,
) -> ConfigDict:
    """
    Adjust the smart key recovery heuristics.

    Args:
        config: Current configuration dictionary
        sample_bytes: Ciphertext prefix size tried per candidate key
        printable_threshold: Minimum printable ratio for uncompressed payloads
    """
    updated = dict(config)
    if sample_bytes is not None:
        updated["recovery_sample_bytes"] = sample_bytes
    if printable_threshold is not None:
        updated["printable_threshold"] = printable_threshold
    return updated


def edition_sensitive(config: ConfigDict, engines: Iterable[str]) -> ConfigDict:
    """
    Add engine ids whose backups must match the target edition.
    """
    merged = frozenset(config["edition_sensitive_engines"]) | {
        e.lower() for e in engines
    }
    return {**config, "edition_sensitive_engines": merged}


def limit_concurrent_restores(config: ConfigDict, limit: int) -> ConfigDict:
    """
    Cap how many restores may run at once (0 means unbounded).
    """
    return {**config, "max_concurrent_restores": limit}


def build_config(config_dict: ConfigDict) -> RestoreEngineConfig:
    """
    Validate and build an immutable RestoreEngineConfig.

    Raises:
        ConfigurationError: If validation fails
    """
    return RestoreEngineConfig(**config_dict)


def build_from_steps(*steps: BuilderFunc) -> RestoreEngineConfig:
    """
    Build config by applying a sequence of builder functions.

    Example:
        config = build_from_steps(
            lambda c: with_state_path(c, "/var/lib/dbrestore"),
            lambda c: flush_every(c, 0.5),
        )
    """
    config = create_empty_config()
    for step in steps:
        config = step(config)
    return build_config(config)


def create_config(
    *,
    state_path: Path | str | None = None,
    scratch_dir: Path | str | None = None,
    system_key_hex: str | None = None,
    flush_interval_seconds: float | None = None,
    recovery_sample_bytes: int | None = None,
    printable_threshold: float | None = None,
    edition_sensitive_engines: Iterable[str] | None = None,
    max_concurrent_restores: int | None = None,
) -> RestoreEngineConfig:
    """
    Create a restore engine configuration in a single call.

    Example:
        config = create_config(
            state_path="/var/lib/dbrestore",
            system_key_hex=os.environ["ENCRYPTION_KEY"],
            max_concurrent_restores=4,
        )
    """
    config_dict = create_empty_config()

    if state_path:
        config_dict = with_state_path(config_dict, state_path)

    if scratch_dir:
        config_dict = with_scratch_dir(config_dict, scratch_dir)

    if system_key_hex:
        config_dict = with_system_key(config_dict, system_key_hex)

    if flush_interval_seconds is not None:
        config_dict = flush_every(config_dict, flush_interval_seconds)

    config_dict = tune_smart_recovery(
        config_dict, recovery_sample_bytes, printable_threshold
    )

    if edition_sensitive_engines:
        config_dict = edition_sensitive(config_dict, edition_sensitive_engines)

    if max_concurrent_restores is not None:
        config_dict = limit_concurrent_restores(config_dict, max_concurrent_restores)

    return build_config(config_dict)
