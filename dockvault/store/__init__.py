# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Generation Store - Generation chain, latest pointer and workload lock.
"""

from dockvault.store.generations import (
    GenerationStore,
    new_timestamp,
    timestamp_to_datetime,
    validate_timestamp,
    validate_workload,
)

from dockvault.store.lock import workload_lock

__all__ = [
    # Store
    "GenerationStore",
    "new_timestamp",
    "timestamp_to_datetime",
    "validate_timestamp",
    "validate_workload",
    # Lock
    "workload_lock",
]
