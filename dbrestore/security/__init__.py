# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Security - Secret envelope, streaming GCM and smart key recovery.
"""

from dbrestore.security.recovery import (
    KeyRecoveryResult,
    iter_candidates,
    recover_key,
    resolve_candidates,
    resolve_key,
)
from dbrestore.security.secrets import (
    decrypt_config,
    decrypt_secret,
    derive_profile_key,
    encrypt_config,
    encrypt_secret,
    generate_profile_secret,
)
from dbrestore.security.stream import decrypt_file, decrypt_prefix, encrypt_file

__all__ = [
    # Secrets
    "decrypt_config",
    "decrypt_secret",
    "derive_profile_key",
    "encrypt_config",
    "encrypt_secret",
    "generate_profile_secret",
    # Streams
    "decrypt_file",
    "decrypt_prefix",
    "encrypt_file",
    # Recovery
    "KeyRecoveryResult",
    "iter_candidates",
    "recover_key",
    "resolve_candidates",
    "resolve_key",
]
