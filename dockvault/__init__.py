# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Dockvault - Incremental backup and restore for Docker workloads.

Backs up the persistent state of one container (its bind mounts and named
volumes plus the metadata needed to recreate it) as a chain of timestamped,
hard-link-incremental generations with retention and an atomically swapped
latest pointer, and restores a runnable container from any generation.
"""

__version__ = "0.1.0"

# Configuration
from dockvault.config import ArchiveCodec, TransferStrategy, VaultConfig

# Pipelines
from dockvault.core import (
    BackupResult,
    RestoreResult,
    list_generations,
    run_backup,
    run_prune,
    run_restore,
)

# Environment-based configuration and profiles
from dockvault.env import create_config_from_env, portable, space_saver

__all__ = [
    # Version
    "__version__",
    # Configuration
    "ArchiveCodec",
    "TransferStrategy",
    "VaultConfig",
    "create_config_from_env",
    "portable",
    "space_saver",
    # Pipelines
    "BackupResult",
    "RestoreResult",
    "list_generations",
    "run_backup",
    "run_prune",
    "run_restore",
]
