# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Streaming AES-256-GCM for backup artifacts.

Backups are encrypted as a single GCM stream; the IV and authentication
tag are stored hex-encoded in the sidecar. Decryption always requires
both. The tag is verified when the stream is finalized, so a file is
only accepted once every byte has been processed.
"""

import asyncio
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Tuple

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from dbrestore.exceptions import CryptoError

logger = structlog.get_logger()

# Thread pool for CPU-bound cipher work
_executor = ThreadPoolExecutor(max_workers=4)

GCM_IV_LENGTH = 16
DEFAULT_CHUNK_SIZE = 64 * 1024


def create_decryptor(key: bytes, iv: bytes, auth_tag: bytes):
    """Build a GCM decryption context for the given key, IV and tag."""
    return Cipher(algorithms.AES(key), modes.GCM(iv, auth_tag)).decryptor()


def decrypt_prefix(key: bytes, iv: bytes, auth_tag: bytes, ciphertext: bytes) -> bytes:
    """
    Decrypt a prefix of a GCM stream without verifying the tag.

    Used for speculative key checks only; the result is untrusted.
    """
    return create_decryptor(key, iv, auth_tag).update(ciphertext)


async def decrypt_file(
    source: Path,
    destination: Path,
    key: bytes,
    iv: bytes,
    auth_tag: bytes,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """
    Decrypt source into destination, verifying the authentication tag.

    Returns:
        Number of plaintext bytes written

    Raises:
        CryptoError: On authentication failure; destination is removed
    """
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(
        _executor,
        _decrypt_file_sync,
        Path(source),
        Path(destination),
        key,
        iv,
        auth_tag,
        chunk_size,
    )


def _decrypt_file_sync(
    source: Path,
    destination: Path,
    key: bytes,
    iv: bytes,
    auth_tag: bytes,
    chunk_size: int,
) -> int:
    """Synchronous streaming decryption."""
    written = 0
    try:
        decryptor = create_decryptor(key, iv, auth_tag)
        with open(source, "rb") as src, open(destination, "wb") as dst:
            while chunk := src.read(chunk_size):
                plaintext = decryptor.update(chunk)
                dst.write(plaintext)
                written += len(plaintext)
            tail = decryptor.finalize()
            dst.write(tail)
            written += len(tail)
        return written

    except InvalidTag as e:
        destination.unlink(missing_ok=True)
        raise CryptoError(
            "Decryption failed: authentication tag mismatch (wrong key or corrupted file)",
            details={"file": source.name},
        ) from e
    except ValueError as e:
        destination.unlink(missing_ok=True)
        raise CryptoError(f"Decryption failed: {e}", details={"file": source.name}) from e


async def encrypt_file(
    source: Path,
    destination: Path,
    key: bytes,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Tuple[bytes, bytes]:
    """
    Encrypt source into destination with a fresh IV.

    Returns:
        Tuple of (iv, auth_tag) to be recorded in the sidecar
    """
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(
        _executor,
        _encrypt_file_sync,
        Path(source),
        Path(destination),
        key,
        chunk_size,
    )


def _encrypt_file_sync(
    source: Path, destination: Path, key: bytes, chunk_size: int
) -> Tuple[bytes, bytes]:
    """Synchronous streaming encryption."""
    iv = os.urandom(GCM_IV_LENGTH)
    encryptor = Cipher(algorithms.AES(key), modes.GCM(iv)).encryptor()
    with open(source, "rb") as src, open(destination, "wb") as dst:
        while chunk := src.read(chunk_size):
            dst.write(encryptor.update(chunk))
        dst.write(encryptor.finalize())
    return iv, encryptor.tag
