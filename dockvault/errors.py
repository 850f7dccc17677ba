# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for dockvault.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""


def explain_invalid_retention_days_env(value: str | None) -> str:
    """
    Explain that DOCKVAULT_RETENTION_DAYS is invalid.
    """

    return (
        f"Invalid DOCKVAULT_RETENTION_DAYS value: {value!r}. "
        "It must be a non-negative integer number of days."
    )


def explain_invalid_stop_timeout_env(value: str | None) -> str:
    """
    Explain that DOCKVAULT_STOP_TIMEOUT is invalid.
    """

    return (
        f"Invalid DOCKVAULT_STOP_TIMEOUT value: {value!r}. "
        "It must be a positive integer number of seconds."
    )


def explain_invalid_strategy_env(value: str | None) -> str:
    """
    Explain that DOCKVAULT_TRANSFER_STRATEGY is invalid.
    """

    return (
        f"Invalid DOCKVAULT_TRANSFER_STRATEGY value: {value!r}. "
        "Expected 'native' or 'rsync'."
    )


def explain_invalid_codec_env(value: str | None) -> str:
    """
    Explain that DOCKVAULT_ARCHIVE_CODEC is invalid.
    """

    return (
        f"Invalid DOCKVAULT_ARCHIVE_CODEC value: {value!r}. "
        "Expected one of: 'zstd', 'gzip', or 'none'."
    )


def explain_invalid_concurrency_env(value: str | None) -> str:
    """
    Explain that DOCKVAULT_MAX_CONCURRENT_TRANSFERS is invalid.
    """

    return (
        f"Invalid DOCKVAULT_MAX_CONCURRENT_TRANSFERS value: {value!r}. "
        "It must be an integer >= 1."
    )


def explain_invalid_override(value: str) -> str:
    """
    Explain that a --map host path override is malformed.
    """

    return (
        f"Invalid mount override: {value!r}. "
        "Expected CONTAINER_PATH=HOST_PATH with both paths absolute, "
        "e.g. --map /var/lib/mysql=/srv/restore/mysql."
    )


def explain_missing_rsync() -> str:
    """
    Explain that the rsync transfer strategy needs the rsync binary.
    """

    return (
        "The 'rsync' transfer strategy was selected but no rsync binary was found on PATH. "
        "Install rsync or set DOCKVAULT_TRANSFER_STRATEGY=native."
    )
