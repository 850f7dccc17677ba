# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers and profiles.

These helpers are small, convenient wrappers around VaultConfig and
VaultConfig.with_updates(). They make it easy to:

- Build a configuration from environment variables
- Apply ready-made profiles
"""

from __future__ import annotations

import os
from pathlib import Path

from dockvault.config import ArchiveCodec, TransferStrategy, VaultConfig
from dockvault.errors import (
    explain_invalid_codec_env,
    explain_invalid_concurrency_env,
    explain_invalid_retention_days_env,
    explain_invalid_stop_timeout_env,
    explain_invalid_strategy_env,
)
from dockvault.exceptions import ConfigurationError

_TRUTHY = {"1", "true", "yes", "on"}


def _parse_retention_days(value: str | None) -> int:
    if not value:
        return 7
    try:
        days = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_retention_days_env(value)) from exc
    if days < 0:
        raise ConfigurationError(explain_invalid_retention_days_env(value))
    return days


def _parse_stop_timeout(value: str | None) -> int:
    if not value:
        return 30
    try:
        seconds = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_stop_timeout_env(value)) from exc
    if seconds < 1:
        raise ConfigurationError(explain_invalid_stop_timeout_env(value))
    return seconds


def _parse_strategy(value: str | None) -> TransferStrategy:
    if not value:
        return TransferStrategy.NATIVE
    try:
        return TransferStrategy(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_strategy_env(value)) from exc


def _parse_codec(value: str | None) -> ArchiveCodec:
    if not value:
        return ArchiveCodec.ZSTD
    try:
        return ArchiveCodec(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_codec_env(value)) from exc


def _parse_concurrency(value: str | None) -> int:
    if not value:
        return 4
    try:
        workers = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_concurrency_env(value)) from exc
    if workers < 1:
        raise ConfigurationError(explain_invalid_concurrency_env(value))
    return workers


def _parse_flag(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUTHY


def create_config_from_env() -> VaultConfig:
    """
    Create a VaultConfig from environment variables.

    Optional environment variables:
        - DOCKVAULT_BACKUP_ROOT: Backup root directory (default: /var/backups/docker)
        - DOCKVAULT_RETENTION_DAYS: Non-negative integer (default: 7)
        - DOCKVAULT_STOP_TIMEOUT: Stop grace period in seconds (default: 30)
        - DOCKVAULT_TRANSFER_STRATEGY: 'native' | 'rsync' (default: native)
        - DOCKVAULT_ARCHIVE_CODEC: 'zstd' | 'gzip' | 'none' (default: zstd)
        - DOCKVAULT_PACKAGE_ARCHIVES: Produce archives, boolean (default: true)
        - DOCKVAULT_SNAPSHOT_IMAGE: Commit/save the image, boolean (default: false)
        - DOCKVAULT_MAX_CONCURRENT_TRANSFERS: Integer >= 1 (default: 4)
        - DOCKVAULT_WORK_DIR: Scratch directory for archive extraction
    """

    root_env = os.getenv("DOCKVAULT_BACKUP_ROOT")
    work_env = os.getenv("DOCKVAULT_WORK_DIR")

    return VaultConfig(
        backup_root=Path(root_env) if root_env else Path("/var/backups/docker"),
        retention_days=_parse_retention_days(os.getenv("DOCKVAULT_RETENTION_DAYS")),
        stop_timeout=_parse_stop_timeout(os.getenv("DOCKVAULT_STOP_TIMEOUT")),
        transfer_strategy=_parse_strategy(os.getenv("DOCKVAULT_TRANSFER_STRATEGY")),
        archive_codec=_parse_codec(os.getenv("DOCKVAULT_ARCHIVE_CODEC")),
        package_archives=_parse_flag(os.getenv("DOCKVAULT_PACKAGE_ARCHIVES"), True),
        snapshot_image=_parse_flag(os.getenv("DOCKVAULT_SNAPSHOT_IMAGE"), False),
        max_concurrent_transfers=_parse_concurrency(
            os.getenv("DOCKVAULT_MAX_CONCURRENT_TRANSFERS")
        ),
        work_dir=Path(work_env) if work_env else None,
    )


# ============================================================================
# Profiles
# ============================================================================

def space_saver(config: VaultConfig) -> VaultConfig:
    """
    Keep only the hard-linked generation chain.

    - No packaged archives (each would be a full copy)
    - Native transfer strategy
    """

    return config.with_updates(
        package_archives=False,
        transfer_strategy=TransferStrategy.NATIVE,
    )


def portable(config: VaultConfig) -> VaultConfig:
    """
    Make every generation restorable on another host.

    - zstd archives for each sealed generation
    - Container image committed and saved with the data
    """

    return config.with_updates(
        package_archives=True,
        archive_codec=ArchiveCodec.ZSTD,
        snapshot_image=True,
    )
