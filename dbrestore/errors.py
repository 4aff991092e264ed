# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for dbrestore.

These helpers centralize wording for preflight, crypto and configuration
errors so the HTTP layer, execution logs and tests all see the same text.
"""


def explain_vendor_mismatch(source_type: str, target_adapter_id: str) -> str:
    """
    Explain that a backup cannot be restored into a different engine.
    """

    return (
        f"Backup was created from a '{source_type}' database and cannot be restored "
        f"into a '{target_adapter_id}' target. Cross-vendor restores are not supported, "
        "even between wire-compatible engines."
    )


def explain_version_downgrade(backup_version: str, target_version: str) -> str:
    """
    Explain that the backup comes from a newer engine than the target.
    """

    return (
        f"Backup was created with a newer database version ({backup_version}) than the "
        f"target server ({target_version}). Restoring into an older server risks an "
        "incompatible downgrade. Upgrade the target or pick another server."
    )


def explain_edition_mismatch(
    backup_edition: str, target_edition: str, engine: str
) -> str:
    """
    Explain that engine editions differ in their on-disk backup format.
    """

    return (
        f"Backup was created on {engine} edition '{backup_edition}' but the target runs "
        f"'{target_edition}'. These editions use incompatible backup formats."
    )


def explain_missing_encryption_metadata() -> str:
    """
    Explain that an encrypted file has no usable IV/authentication tag.
    """

    return (
        "Encrypted backup detected but encryption metadata missing (IV/AuthTag). "
        "Please upload the .meta.json sidecar alongside the backup file."
    )


def explain_missing_profile_reference() -> str:
    """
    Explain that an encrypted file names no encryption profile.
    """

    return (
        "File is encrypted but no encryption profile was provided and the metadata "
        "has no profileId."
    )


def explain_no_candidate_profile(tried: int) -> str:
    """
    Explain that smart key recovery exhausted every profile.
    """

    return (
        f"Encryption profile missing and no candidate profile decrypts this backup "
        f"({tried} profile(s) tried). Restore the original encryption profile first."
    )


def explain_adapter_not_registered(adapter_id: str) -> str:
    """
    Explain that an adapter implementation id is unknown to the registry.
    """

    return (
        f"No adapter implementation registered for '{adapter_id}'. "
        "Register it when building the AdapterRegistry at startup."
    )


def explain_adapter_config_not_found(config_id: str, kind: str) -> str:
    """
    Explain that an adapter configuration record is missing or of the wrong kind.
    """

    label = "Target source" if kind == "database" else "Storage adapter"
    return f"{label} not found: no {kind} configuration with id {config_id!r}."


def explain_missing_request_field(field_name: str) -> str:
    """
    Explain that a restore request lacks a required field.
    """

    return f"Restore request is missing required field {field_name!r}."


def explain_missing_system_key() -> str:
    """
    Explain that the system key needed to unwrap stored secrets is absent.
    """

    return (
        "ENCRYPTION_KEY is not configured. Set it to the 64-character hex key "
        "that protects stored adapter secrets and encryption profiles."
    )


def explain_invalid_system_key() -> str:
    """
    Explain that the system key has the wrong shape.
    """

    return "ENCRYPTION_KEY must be a 64-character hex string (32 bytes)."


def explain_invalid_flush_interval_env(value: str | None) -> str:
    """
    Explain that DBRESTORE_FLUSH_INTERVAL is invalid.
    """

    return (
        f"Invalid DBRESTORE_FLUSH_INTERVAL value: {value!r}. "
        "It must be a non-negative number of seconds."
    )


def explain_invalid_max_concurrent_env(value: str | None) -> str:
    """
    Explain that DBRESTORE_MAX_CONCURRENT_RESTORES is invalid.
    """

    return (
        f"Invalid DBRESTORE_MAX_CONCURRENT_RESTORES value: {value!r}. "
        "Expected a non-negative integer (0 means unbounded)."
    )
