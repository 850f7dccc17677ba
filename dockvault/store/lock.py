# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Per-workload exclusive lock.

Held for the whole duration of a backup, restore or prune run so that two
runs for the same workload never interleave. Because a restore holds it
while reading a generation, pruning can never remove the generation a
restore is using.
"""

import fcntl
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import structlog

from dockvault.exceptions import LockError

logger = structlog.get_logger()

LOCK_FILENAME = ".lock"


@asynccontextmanager
async def workload_lock(workload_dir: Path, workload: str) -> AsyncIterator[Path]:
    """
    Acquire the workload lock without blocking.

    Raises:
        LockError: If another run already holds it
    """
    workload_dir.mkdir(parents=True, exist_ok=True)
    lock_path = workload_dir / LOCK_FILENAME

    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as e:
        os.close(fd)
        raise LockError(
            f"Another run holds the lock for workload: {workload}",
            details={"workload": workload, "lock_path": str(lock_path)},
        ) from e

    os.ftruncate(fd, 0)
    os.write(fd, f"{os.getpid()}\n".encode())
    logger.debug("workload_lock_acquired", workload=workload, lock_path=str(lock_path))

    try:
        yield lock_path
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
        logger.debug("workload_lock_released", workload=workload)
