# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore Metadata - Sidecar parsing and extension-based fallback.

Every backup artifact may be accompanied by ``<artifact>.meta.json``
written once at backup time. Two layouts exist:

    Nested:  {"encryption": {"enabled": true, "profileId": ..., "iv": ..., "authTag": ...}}
    Legacy:  {"encryption": "AES-256-GCM", "encryptionProfileId": ..., "iv": ..., "authTag": ...}

When the sidecar is missing or unreadable, compression and encryption
are guessed from the file name. Encryption parameters are never guessed.
"""

import json
from dataclasses import dataclass, field, replace
from typing import Any, List

import structlog

from dbrestore.compression import compression_from_extension, parse_compression
from dbrestore.config import CompressionType
from dbrestore.exceptions import CompressionError

logger = structlog.get_logger()

SIDECAR_SUFFIX = ".meta.json"


def sidecar_path(artifact_path: str) -> str:
    """Remote path of an artifact's sidecar."""
    return artifact_path + SIDECAR_SUFFIX


@dataclass(frozen=True)
class EncryptionInfo:
    """Encryption block of a sidecar."""

    enabled: bool = False
    profile_id: str | None = None
    iv: bytes | None = None
    auth_tag: bytes | None = None

    @property
    def has_parameters(self) -> bool:
        return bool(self.iv) and bool(self.auth_tag)


@dataclass(frozen=True)
class BackupMetadata:
    """Provenance, compression and encryption of one backup artifact."""

    source_type: str | None = None
    source_name: str | None = None
    job_name: str | None = None
    engine_version: str | None = None
    engine_edition: str | None = None
    database_count: int | None = None
    database_names: List[str] = field(default_factory=list)
    compression: CompressionType = CompressionType.NONE
    encryption: EncryptionInfo = field(default_factory=EncryptionInfo)
    locked: bool = False
    from_sidecar: bool = False

    @property
    def is_encrypted(self) -> bool:
        return self.encryption.enabled

    @property
    def is_compressed(self) -> bool:
        return self.compression != CompressionType.NONE


def _hex_or_none(value: Any) -> bytes | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return bytes.fromhex(value)
    except ValueError:
        return None


def _parse_encryption(data: dict) -> EncryptionInfo:
    block = data.get("encryption")

    if isinstance(block, dict):
        return EncryptionInfo(
            enabled=bool(block.get("enabled")),
            profile_id=block.get("profileId"),
            iv=_hex_or_none(block.get("iv")),
            auth_tag=_hex_or_none(block.get("authTag")),
        )

    # Legacy flat layout
    enabled = bool(block) and str(block).upper() != "NONE"
    iv = _hex_or_none(data.get("iv"))
    return EncryptionInfo(
        enabled=enabled or iv is not None,
        profile_id=data.get("encryptionProfileId"),
        iv=iv,
        auth_tag=_hex_or_none(data.get("authTag")),
    )


def _parse_databases(value: Any) -> tuple[int | None, List[str]]:
    if isinstance(value, dict):
        names = value.get("names") or []
        count = value.get("count")
        return (int(count) if count is not None else len(names) or None), list(names)
    if isinstance(value, (int, float)):
        return int(value), []
    return None, []


def _opt_str(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


def parse_sidecar(content: str) -> BackupMetadata:
    """
    Parse sidecar JSON.

    Raises:
        ValueError: If the content is not a JSON object
        CompressionError: If the compression algorithm is unknown
    """
    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError("Sidecar is not a JSON object")

    count, names = _parse_databases(data.get("databases"))

    return BackupMetadata(
        source_type=_opt_str(data.get("sourceType")),
        source_name=_opt_str(data.get("sourceName")),
        job_name=_opt_str(data.get("jobName")),
        engine_version=_opt_str(data.get("engineVersion")),
        engine_edition=_opt_str(data.get("engineEdition")),
        database_count=count,
        database_names=names,
        compression=parse_compression(data.get("compression")),
        encryption=_parse_encryption(data),
        locked=bool(data.get("locked", False)),
        from_sidecar=True,
    )


def metadata_from_extension(filename: str) -> BackupMetadata:
    """Conservative guess from the file name alone (no encryption parameters)."""
    return BackupMetadata(
        compression=compression_from_extension(filename),
        encryption=EncryptionInfo(enabled=filename.lower().endswith(".enc")),
        from_sidecar=False,
    )


def resolve_metadata(content: str | None, filename: str) -> BackupMetadata:
    """
    Combine sidecar content (if any) with extension detection.

    Sidecar values win; the extension only fills in compression or
    encryption the sidecar did not declare.
    """
    if content is None:
        return metadata_from_extension(filename)

    try:
        meta = parse_sidecar(content)
    except (ValueError, CompressionError) as e:
        logger.warning("sidecar_unreadable", file=filename, error=str(e))
        return metadata_from_extension(filename)

    guessed = metadata_from_extension(filename)
    if not meta.is_compressed and guessed.is_compressed:
        meta = replace(meta, compression=guessed.compression)
    if not meta.is_encrypted and guessed.is_encrypted:
        meta = replace(
            meta,
            encryption=EncryptionInfo(
                enabled=True,
                profile_id=meta.encryption.profile_id,
                iv=meta.encryption.iv,
                auth_tag=meta.encryption.auth_tag,
            ),
        )
    return meta
