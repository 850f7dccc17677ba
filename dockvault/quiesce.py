# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Quiescence Coordinator - Hold the workload stopped while its mounts are copied.

State machine:

    Running -> Stopping -> Stopped -> Transferring -> Restarting -> Running
    Stopped -> Transferring -> Stopped          (workload was not running)

A workload that was running when the run started is running again when the
run ends, whatever happened to the transfer.
"""

from enum import Enum
from types import TracebackType
from typing import Type

import structlog

from dockvault.exceptions import DockvaultError, NotFoundError, QuiesceTimeout
from dockvault.runtime.base import WorkloadRuntime

logger = structlog.get_logger()


class QuiesceState(str, Enum):
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    TRANSFERRING = "transferring"
    RESTARTING = "restarting"


async def _stop(runtime: WorkloadRuntime, ref: str, timeout: int) -> None:
    """Graceful stop, then one forced kill, then give up."""
    await runtime.stop(ref, timeout)
    if not await runtime.is_running(ref):
        return

    logger.warning("workload_stop_timeout_killing", workload=ref, timeout=timeout)
    await runtime.kill(ref)
    if await runtime.is_running(ref):
        raise QuiesceTimeout(
            f"Workload {ref} is still running after stop and kill",
            details={"workload": ref, "timeout": timeout},
        )


class QuiescenceCoordinator:
    """
    Async context manager around the transfer phase of a backup.

    Example:
        async with QuiescenceCoordinator(runtime, "web1", 30) as quiesce:
            await transfer_mounts(...)
    """

    def __init__(self, runtime: WorkloadRuntime, ref: str, stop_timeout: int = 30):
        self.runtime = runtime
        self.ref = ref
        self.stop_timeout = stop_timeout
        self.was_running = False
        self.state = QuiesceState.STOPPED

    async def __aenter__(self) -> "QuiescenceCoordinator":
        self.was_running = await self.runtime.is_running(self.ref)

        if self.was_running:
            self.state = QuiesceState.STOPPING
            logger.info("workload_stopping", workload=self.ref, timeout=self.stop_timeout)
            try:
                await _stop(self.runtime, self.ref, self.stop_timeout)
            except BaseException:
                # Nothing was copied; bring the workload back before failing
                await self._restart(raise_errors=False)
                raise
            logger.info("workload_stopped", workload=self.ref)

        self.state = QuiesceState.TRANSFERRING
        return self

    async def __aexit__(
        self,
        exc_type: Type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if not self.was_running:
            self.state = QuiesceState.STOPPED
            return

        # A restart failure never masks the error that ended the body
        await self._restart(raise_errors=exc is None)

    async def _restart(self, raise_errors: bool) -> None:
        self.state = QuiesceState.RESTARTING
        try:
            await self.runtime.start(self.ref)
        except DockvaultError as e:
            logger.error("workload_restart_failed", workload=self.ref, error=str(e))
            self.state = QuiesceState.STOPPED
            if raise_errors:
                raise
            return

        self.state = QuiesceState.RUNNING
        logger.info("workload_restarted", workload=self.ref)


async def stop_for_replace(runtime: WorkloadRuntime, ref: str, timeout: int = 30) -> bool:
    """
    Stop a workload that is about to be removed and recreated.

    Returns:
        True if the workload existed
    """
    try:
        running = await runtime.is_running(ref)
    except NotFoundError:
        return False

    if running:
        logger.info("workload_stopping_for_replace", workload=ref, timeout=timeout)
        await _stop(runtime, ref, timeout)
    return True
