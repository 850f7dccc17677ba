# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Transfer - Incremental backup copy and restore copy of mount trees.
"""

from dockvault.transfer.engine import (
    MountTransfer,
    TransferSummary,
    restore_mounts,
    transfer_mounts,
)

from dockvault.transfer.rsync import build_rsync_command, rsync_tree

from dockvault.transfer.sync import SyncAborted, SyncStats, sync_tree

__all__ = [
    # Engines
    "MountTransfer",
    "TransferSummary",
    "restore_mounts",
    "transfer_mounts",
    # Strategies
    "SyncAborted",
    "SyncStats",
    "build_rsync_command",
    "rsync_tree",
    "sync_tree",
]
