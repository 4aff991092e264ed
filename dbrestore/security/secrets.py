# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Secret envelope for stored configuration.

Sensitive connection parameters and encryption profile keys are stored
as ``iv:authTag:ciphertext`` (hex) encrypted with AES-256-GCM under the
system key. Values that are not in envelope format pass through
unchanged so plaintext legacy records keep working.
"""

import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from dbrestore.errors import explain_missing_system_key
from dbrestore.exceptions import CryptoError
from dbrestore.models import EncryptionProfile

IV_LENGTH = 16
TAG_LENGTH = 16
PROFILE_KEY_HEX_LENGTH = 64

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "token",
        "secret",
        "secretKey",
        "secretAccessKey",
        "secret_access_key",
        "accessKey",
        "accessKeyId",
        "access_key_id",
        "apiKey",
        "webhookUrl",
        "uri",
        "passphrase",
        "privateKey",
    }
)


def _require_key(system_key: bytes | None) -> bytes:
    if not system_key:
        raise CryptoError(explain_missing_system_key())
    return system_key


def encrypt_secret(text: str, system_key: bytes | None) -> str:
    """Wrap a plaintext value in the hex envelope."""
    if not text:
        return text

    key = _require_key(system_key)
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, text.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt_secret(text: str, system_key: bytes | None) -> str:
    """
    Unwrap an enveloped value.

    Raises:
        CryptoError: If the value looks enveloped but fails authentication
    """
    if not text or text.count(":") != 2:
        return text

    iv_hex, tag_hex, ciphertext_hex = text.split(":")
    try:
        iv = bytes.fromhex(iv_hex)
        tag = bytes.fromhex(tag_hex)
        ciphertext = bytes.fromhex(ciphertext_hex)
    except ValueError:
        # Not hex, so not an envelope (e.g. "host:port:db" style values)
        return text

    key = _require_key(system_key)
    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise CryptoError("Failed to decrypt stored secret") from e
    return plaintext.decode("utf-8")


def _map_sensitive(config: Any, transform) -> Any:
    if isinstance(config, list):
        return [_map_sensitive(item, transform) for item in config]
    if not isinstance(config, dict):
        return config

    result = {}
    for key, value in config.items():
        if isinstance(value, (dict, list)):
            result[key] = _map_sensitive(value, transform)
        elif isinstance(value, str) and key in SENSITIVE_KEYS:
            result[key] = transform(value)
        else:
            result[key] = value
    return result


def encrypt_config(config: Any, system_key: bytes | None) -> Any:
    """Return a copy of config with sensitive values enveloped."""
    return _map_sensitive(config, lambda v: encrypt_secret(v, system_key))


def decrypt_config(config: Any, system_key: bytes | None) -> Any:
    """Return a copy of config with sensitive values unwrapped."""
    return _map_sensitive(config, lambda v: decrypt_secret(v, system_key))


def generate_profile_secret(system_key: bytes | None) -> str:
    """Create a fresh random 32-byte profile key, already enveloped for storage."""
    return encrypt_secret(os.urandom(32).hex(), system_key)


def derive_profile_key(profile: EncryptionProfile, system_key: bytes | None) -> bytes:
    """
    Derive the raw 32-byte AES key of an encryption profile.

    Raises:
        CryptoError: If the stored secret cannot be unwrapped or is malformed
    """
    key_hex = decrypt_secret(profile.secret_key, system_key)

    if not key_hex or len(key_hex) != PROFILE_KEY_HEX_LENGTH:
        raise CryptoError(
            "Integrity Error: Decrypted master key has invalid length or format.",
            details={"profile_id": profile.id},
        )
    try:
        return bytes.fromhex(key_hex)
    except ValueError as e:
        raise CryptoError(
            "Integrity Error: Decrypted master key is not hex.",
            details={"profile_id": profile.id},
        ) from e
