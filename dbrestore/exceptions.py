# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
dbrestore Exceptions - Error taxonomy for the restore engine.

PreflightError and ConfigurationError are raised synchronously to the
caller of start_restore(). Everything else is caught by the background
pipeline and recorded on the Execution.
"""


class RestoreEngineError(Exception):
    """Base exception for all dbrestore errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(RestoreEngineError):
    """Raised when an adapter, adapter config or encryption profile cannot be resolved."""

    pass


class PreflightError(RestoreEngineError):
    """Raised when a restore is rejected before any destructive action."""

    pass


class TransferError(RestoreEngineError):
    """Raised when a storage download or upload fails."""

    pass


class CryptoError(RestoreEngineError):
    """Raised when decryption parameters are missing or no key fits."""

    pass


class CompressionError(RestoreEngineError):
    """Raised when decompression fails."""

    pass


class AdapterRestoreError(RestoreEngineError):
    """Raised when the database engine tool reports a failure."""

    pass


class ArchiveError(AdapterRestoreError):
    """Raised when a multi-database archive is malformed."""

    pass


class ExecutionStateError(RestoreEngineError):
    """Raised on an illegal Execution status transition."""

    pass
