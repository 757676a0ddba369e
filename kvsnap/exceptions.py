# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
kvsnap Exceptions - Typed error kinds for the backup writer.

Every exception carries a machine-readable ``kind`` plus a ``details`` dict
(key, backend name, block index, ...) so schedulers and tests can react to
failures without parsing messages.
"""

from enum import Enum
from typing import List


class ErrorKind(str, Enum):
    """Classification of a failed backup cycle."""

    CONFIG = "config_error"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    BACKEND_AUTH_FAILED = "backend_auth_failed"
    UPLOAD_INCOMPLETE = "upload_incomplete"
    PURGE_PARTIAL = "purge_partial"
    TIMEOUT = "timeout"
    UNEXPECTED = "unexpected"


class KVSnapError(Exception):
    """Base exception for all kvsnap errors."""

    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(KVSnapError):
    """Raised when a backup spec or setting is invalid. Never retried."""

    kind = ErrorKind.CONFIG


class BackendUnavailable(KVSnapError):
    """Raised when the object store cannot be reached or answers with a server error."""

    kind = ErrorKind.BACKEND_UNAVAILABLE


class BackendAuthFailed(KVSnapError):
    """Raised when the object store rejects the supplied credentials."""

    kind = ErrorKind.BACKEND_AUTH_FAILED


class UploadIncomplete(KVSnapError):
    """
    Raised when a chunked upload fails before its manifest is committed.

    ``block_index`` is the zero-based index of the failing block, or None
    when the failure happened while committing the manifest.
    """

    kind = ErrorKind.UPLOAD_INCOMPLETE

    def __init__(
        self,
        message: str,
        *,
        key: str,
        block_index: int | None,
        details: dict | None = None,
    ):
        self.key = key
        self.block_index = block_index
        merged = {"key": key, "block_index": block_index, **(details or {})}
        super().__init__(message, details=merged)


class PurgePartial(KVSnapError):
    """Raised when retention deleted some, but not all, of the excess backups."""

    kind = ErrorKind.PURGE_PARTIAL

    def __init__(
        self,
        message: str,
        *,
        deleted: List[str],
        remaining: List[str],
        details: dict | None = None,
    ):
        self.deleted = list(deleted)
        self.remaining = list(remaining)
        merged = {"deleted": self.deleted, "remaining": self.remaining, **(details or {})}
        super().__init__(message, details=merged)


def error_kind(exc: BaseException) -> ErrorKind:
    """Return the ErrorKind for any exception raised during a cycle."""
    if isinstance(exc, KVSnapError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    return ErrorKind.UNEXPECTED
