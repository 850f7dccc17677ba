# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Dockvault Exceptions - Error taxonomy for the backup/restore pipeline.

Every exception carries the process exit code the CLI reports for it:
1 for usage/configuration problems, 2 when a workload, generation or
archive is missing, 3 for everything that aborted a run.
"""

from pathlib import Path


class DockvaultError(Exception):
    """Base exception for all dockvault errors."""

    exit_code = 3

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class UsageError(DockvaultError):
    """Raised for a bad invocation. No side effects have happened."""

    exit_code = 1


class ConfigurationError(UsageError):
    """Raised when configuration is invalid."""

    pass


class NotFoundError(DockvaultError):
    """Raised when a workload, generation or archive does not exist."""

    exit_code = 2


class QuiesceTimeout(DockvaultError):
    """Raised when a stop (or restart) of the workload cannot be confirmed."""

    pass


class TransferError(DockvaultError):
    """Raised when copying one mount fails. Scoped to that mount."""

    def __init__(
        self,
        mount: str | Path,
        cause: BaseException | str,
        details: dict | None = None,
    ):
        self.mount = str(mount)
        self.cause = cause
        merged = {"mount": self.mount, "cause": str(cause)}
        merged.update(details or {})
        super().__init__(f"Transfer failed for mount {self.mount}: {cause}", merged)


class NoMountsFound(DockvaultError):
    """Raised when a workload has no usable host-side data directories."""

    pass


class IncompleteMetadata(DockvaultError):
    """Raised when a metadata blob lacks a field restore cannot do without."""

    pass


class PackagingError(DockvaultError):
    """Raised when the archive codec fails."""

    pass


class GenerationError(DockvaultError):
    """Raised when an operation would break the generation chain."""

    pass


class LockError(DockvaultError):
    """Raised when another run already holds the workload lock."""

    pass


class RuntimeClientError(DockvaultError):
    """Raised when the container runtime API fails."""

    pass
