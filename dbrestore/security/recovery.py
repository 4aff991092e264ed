# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Smart Key Recovery - Find the profile that encrypted a backup.

When the profile referenced by a sidecar no longer exists (or its key
cannot be unwrapped), every known profile is tried against the first
bytes of the ciphertext. GCM cannot authenticate a prefix, so a
candidate is accepted heuristically:

1. Compressed artifacts: the decrypted prefix must start a valid stream
   for the declared codec and yield output.
2. Uncompressed artifacts: the decrypted prefix must be mostly printable
   text (SQL dumps, JSON).

Candidates are tried in enumeration order. Acceptance here is provisional:
the authentication tag is verified over the whole file, and a candidate
that fails it gives way to the next one. The first verified key wins.
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, List

import structlog

from dbrestore.compression import probe_decompress
from dbrestore.config import CompressionType
from dbrestore.errors import (
    explain_missing_encryption_metadata,
    explain_missing_profile_reference,
    explain_no_candidate_profile,
)
from dbrestore.exceptions import CryptoError
from dbrestore.metadata import EncryptionInfo
from dbrestore.models import EncryptionProfile
from dbrestore.security.secrets import derive_profile_key
from dbrestore.security.stream import decrypt_prefix
from dbrestore.store import ConfigStore

logger = structlog.get_logger()

_PRINTABLE = frozenset(range(0x20, 0x7F)) | {0x09, 0x0A, 0x0D}

DEFAULT_PRINTABLE_THRESHOLD = 0.7


@dataclass(frozen=True)
class KeyRecoveryResult:
    """The key chosen for an artifact and how it was found."""

    key: bytes
    profile_id: str
    profile_name: str
    recovered: bool  # True when found by trial rather than by reference


def printable_ratio(data: bytes) -> float:
    """Share of bytes that are printable ASCII or common whitespace."""
    if not data:
        return 0.0
    return sum(1 for b in data if b in _PRINTABLE) / len(data)


def _looks_valid(
    plaintext: bytes, compression: CompressionType, threshold: float
) -> bool:
    if compression != CompressionType.NONE:
        return probe_decompress(plaintext, compression)
    return printable_ratio(plaintext) > threshold


def iter_candidates(
    profiles: Iterable[EncryptionProfile],
    sample: bytes,
    iv: bytes,
    auth_tag: bytes,
    compression: CompressionType,
    system_key: bytes | None,
    threshold: float = DEFAULT_PRINTABLE_THRESHOLD,
) -> Iterator[KeyRecoveryResult]:
    """
    Yield every profile whose key decrypts the prefix plausibly, in order.

    Profiles whose key cannot be derived are skipped. Some codecs (BROTLI)
    have no stream header, so a wrong key can pass the prefix check;
    callers confirm each candidate against the authentication tag.
    """
    for position, profile in enumerate(profiles, start=1):
        try:
            key = derive_profile_key(profile, system_key)
            plaintext = decrypt_prefix(key, iv, auth_tag, sample)
        except (CryptoError, ValueError) as e:
            logger.debug("recovery_candidate_unusable", profile_id=profile.id, error=str(e))
            continue

        if _looks_valid(plaintext, compression, threshold):
            logger.info("recovery_candidate_accepted", profile_id=profile.id, position=position)
            yield KeyRecoveryResult(
                key=key, profile_id=profile.id, profile_name=profile.name, recovered=True
            )


def recover_key(
    profiles: Iterable[EncryptionProfile],
    sample: bytes,
    iv: bytes,
    auth_tag: bytes,
    compression: CompressionType,
    system_key: bytes | None,
    threshold: float = DEFAULT_PRINTABLE_THRESHOLD,
) -> KeyRecoveryResult:
    """
    First profile whose key decrypts the ciphertext prefix plausibly.

    Raises:
        CryptoError: If no profile produces plausible plaintext
    """
    profiles = list(profiles)
    candidate = next(
        iter_candidates(profiles, sample, iv, auth_tag, compression, system_key, threshold),
        None,
    )
    if candidate is not None:
        return candidate

    logger.warning("recovery_exhausted", tried=len(profiles))
    raise CryptoError(
        explain_no_candidate_profile(len(profiles)), details={"tried": len(profiles)}
    )


async def resolve_candidates(
    store: ConfigStore,
    encryption: EncryptionInfo,
    compression: CompressionType,
    sample: bytes,
    system_key: bytes | None,
    threshold: float = DEFAULT_PRINTABLE_THRESHOLD,
) -> List[KeyRecoveryResult]:
    """
    Keys to try for an artifact, in the order they should be tried.

    The referenced profile, when it exists and unwraps cleanly, is the
    only entry. Otherwise every profile that passes the prefix check is
    returned in enumeration order.

    Raises:
        CryptoError: If encryption parameters are missing or no profile
            passes the prefix check
    """
    if not encryption.has_parameters:
        raise CryptoError(explain_missing_encryption_metadata())

    if encryption.profile_id:
        profile = await store.get_encryption_profile(encryption.profile_id)
        if profile is not None:
            try:
                key = derive_profile_key(profile, system_key)
                return [
                    KeyRecoveryResult(
                        key=key,
                        profile_id=profile.id,
                        profile_name=profile.name,
                        recovered=False,
                    )
                ]
            except CryptoError as e:
                logger.warning(
                    "profile_key_unusable", profile_id=profile.id, error=e.message
                )
        else:
            logger.warning("profile_missing", profile_id=encryption.profile_id)
    else:
        logger.warning("profile_reference_missing", detail=explain_missing_profile_reference())

    profiles = await store.list_encryption_profiles()
    candidates = list(
        iter_candidates(
            profiles,
            sample,
            encryption.iv,
            encryption.auth_tag,
            compression,
            system_key,
            threshold,
        )
    )
    if not candidates:
        logger.warning("recovery_exhausted", tried=len(profiles))
        raise CryptoError(
            explain_no_candidate_profile(len(profiles)), details={"tried": len(profiles)}
        )
    return candidates


async def resolve_key(
    store: ConfigStore,
    encryption: EncryptionInfo,
    compression: CompressionType,
    sample: bytes,
    system_key: bytes | None,
    threshold: float = DEFAULT_PRINTABLE_THRESHOLD,
) -> KeyRecoveryResult:
    """
    Resolve the decryption key for an artifact.

    Uses the referenced profile when it exists and unwraps cleanly,
    otherwise the first profile that passes the prefix check.

    Raises:
        CryptoError: If encryption parameters are missing or no key is found
    """
    candidates = await resolve_candidates(
        store, encryption, compression, sample, system_key, threshold
    )
    return candidates[0]
