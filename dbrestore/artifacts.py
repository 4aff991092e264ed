# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore Artifacts - Decrypt and decompress a local backup artifact.

The same two steps serve database restores and any other artifact that
uses the backup encryption scheme, such as configuration exports
(``config.json.gz.enc``). Decryption always comes first, then
decompression; each step deletes its input once its output is complete.
"""

import json
from pathlib import Path
from typing import Any, Callable

import aiofiles
import structlog

from dbrestore.compression import decompress_file, strip_extension
from dbrestore.config import LogLevel, RestoreEngineConfig
from dbrestore.errors import (
    explain_missing_encryption_metadata,
    explain_no_candidate_profile,
)
from dbrestore.exceptions import CryptoError, RestoreEngineError
from dbrestore.metadata import BackupMetadata
from dbrestore.security.recovery import KeyRecoveryResult, resolve_candidates
from dbrestore.security.stream import decrypt_file
from dbrestore.store import ConfigStore

logger = structlog.get_logger()

# note(message, level)
NoteCallback = Callable[[str, LogLevel], None]


def _noop(message: str, level: LogLevel) -> None:
    pass


async def read_sample(path: Path, size: int) -> bytes:
    """First bytes of a file."""
    async with aiofiles.open(path, "rb") as f:
        return await f.read(size)


def _decrypted_name(path: Path) -> Path:
    if path.suffix.lower() == ".enc":
        return path.with_suffix("")
    return path.with_name(path.name + ".dec")


async def decrypt_artifact(
    path: Path,
    metadata: BackupMetadata,
    store: ConfigStore,
    config: RestoreEngineConfig,
    note: NoteCallback = _noop,
) -> tuple[Path, KeyRecoveryResult]:
    """
    Decrypt an encrypted artifact next to itself and delete the ciphertext.

    Recovered keys are tried in order; one whose authentication tag does
    not verify is discarded and the next candidate is used.

    Raises:
        CryptoError: If IV/tag are missing, no key is found or the tag
            does not verify
    """
    path = Path(path)
    encryption = metadata.encryption
    if not encryption.has_parameters:
        raise CryptoError(explain_missing_encryption_metadata(), details={"file": path.name})

    sample = await read_sample(path, config.recovery_sample_bytes)
    candidates = await resolve_candidates(
        store,
        encryption,
        metadata.compression,
        sample,
        config.system_key,
        config.printable_threshold,
    )

    destination = _decrypted_name(path)
    for key in candidates:
        try:
            written = await decrypt_file(
                path,
                destination,
                key.key,
                encryption.iv,
                encryption.auth_tag,
                config.chunk_size,
            )
        except CryptoError as e:
            if not key.recovered:
                raise
            logger.info(
                "recovery_candidate_rejected", profile_id=key.profile_id, error=e.message
            )
            continue
        break
    else:
        raise CryptoError(
            explain_no_candidate_profile(len(candidates)),
            details={"file": path.name, "candidates": len(candidates)},
        )

    if key.recovered:
        note(
            f"Encryption profile {encryption.profile_id or '(none)'} not usable; "
            f"recovered key from profile '{key.profile_name}'",
            LogLevel.WARNING,
        )
    else:
        note(f"Using encryption profile '{key.profile_name}'", LogLevel.INFO)
    path.unlink(missing_ok=True)

    logger.info(
        "artifact_decrypted",
        file=path.name,
        bytes=written,
        profile_id=key.profile_id,
        recovered=key.recovered,
    )
    return destination, key


async def decompress_artifact(
    path: Path,
    metadata: BackupMetadata,
    config: RestoreEngineConfig,
    note: NoteCallback = _noop,
) -> Path:
    """Decompress an artifact next to itself and delete the compressed input."""
    path = Path(path)
    stripped = strip_extension(path.name, metadata.compression)
    if stripped == path.name:
        stripped = path.name + ".out"
    destination = path.with_name(stripped)

    written = await decompress_file(path, destination, metadata.compression, config.chunk_size)
    path.unlink(missing_ok=True)

    note(f"Decompressed {metadata.compression.value} stream ({written} bytes)", LogLevel.INFO)
    logger.info("artifact_decompressed", file=path.name, bytes=written)
    return destination


async def decode_artifact(
    path: Path,
    metadata: BackupMetadata,
    store: ConfigStore,
    config: RestoreEngineConfig,
    note: NoteCallback = _noop,
) -> Path:
    """
    Run decryption (if encrypted) then decompression (if compressed).

    The input is consumed, so pass a scratch copy.

    Returns:
        Path of the plain artifact; intermediates are deleted
    """
    current = Path(path)
    if metadata.is_encrypted:
        note("Decrypting artifact", LogLevel.INFO)
        current, _ = await decrypt_artifact(current, metadata, store, config, note)
    if metadata.is_compressed:
        note("Decompressing artifact", LogLevel.INFO)
        current = await decompress_artifact(current, metadata, config, note)
    return current


async def load_json_artifact(
    path: Path,
    metadata: BackupMetadata,
    store: ConfigStore,
    config: RestoreEngineConfig,
    note: NoteCallback = _noop,
) -> Any:
    """
    Decode a JSON artifact and return its parsed payload.

    The decoded file is removed after parsing.

    Raises:
        RestoreEngineError: If the decoded content is not valid JSON
    """
    decoded = await decode_artifact(path, metadata, store, config, note)
    try:
        async with aiofiles.open(decoded, "r", encoding="utf-8") as f:
            content = await f.read()
        return json.loads(content)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise RestoreEngineError(
            f"Artifact is not valid JSON: {e}", details={"file": decoded.name}
        ) from e
    finally:
        decoded.unlink(missing_ok=True)
