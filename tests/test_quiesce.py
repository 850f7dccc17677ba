# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Quiescence Coordinator Tests.

The workload is stopped for the transfer and always restarted afterwards
if it was running before, without a restart failure ever hiding the error
that ended the transfer.
"""

import pytest

from conftest import FakeRuntime, make_inspect
from dockvault.exceptions import NotFoundError, QuiesceTimeout, RuntimeClientError, TransferError
from dockvault.quiesce import QuiescenceCoordinator, QuiesceState, stop_for_replace


@pytest.mark.asyncio
async def test_running_workload_is_stopped_then_restarted(fake_runtime: FakeRuntime):
    fake_runtime.add("web1", make_inspect(running=True))

    async with QuiescenceCoordinator(fake_runtime, "web1", 5) as quiesce:
        assert quiesce.state == QuiesceState.TRANSFERRING
        assert not await fake_runtime.is_running("web1")

    assert quiesce.state == QuiesceState.RUNNING
    assert await fake_runtime.is_running("web1")
    assert [c[0] for c in fake_runtime.calls] == ["stop", "start"]


@pytest.mark.asyncio
async def test_stopped_workload_is_left_stopped(fake_runtime: FakeRuntime):
    fake_runtime.add("web1", make_inspect(running=False))

    async with QuiescenceCoordinator(fake_runtime, "web1", 5) as quiesce:
        assert quiesce.state == QuiesceState.TRANSFERRING

    assert quiesce.state == QuiesceState.STOPPED
    assert not await fake_runtime.is_running("web1")
    assert fake_runtime.calls == []


@pytest.mark.asyncio
async def test_restart_happens_when_transfer_fails(fake_runtime: FakeRuntime):
    fake_runtime.add("web1", make_inspect(running=True))

    with pytest.raises(TransferError):
        async with QuiescenceCoordinator(fake_runtime, "web1", 5):
            raise TransferError("/data/web1", "disk full")

    assert await fake_runtime.is_running("web1")


@pytest.mark.asyncio
async def test_restart_failure_does_not_mask_transfer_error(fake_runtime: FakeRuntime):
    fake_runtime.add("web1", make_inspect(running=True))
    fake_runtime.fail_start = True

    with pytest.raises(TransferError):
        async with QuiescenceCoordinator(fake_runtime, "web1", 5):
            raise TransferError("/data/web1", "disk full")


@pytest.mark.asyncio
async def test_restart_failure_is_raised_after_successful_transfer(fake_runtime: FakeRuntime):
    fake_runtime.add("web1", make_inspect(running=True))
    fake_runtime.fail_start = True

    with pytest.raises(RuntimeClientError):
        async with QuiescenceCoordinator(fake_runtime, "web1", 5):
            pass


@pytest.mark.asyncio
async def test_stop_timeout_escalates_to_kill(fake_runtime: FakeRuntime):
    fake_runtime.add("web1", make_inspect(running=True))
    fake_runtime.ignore_stop = True

    async with QuiescenceCoordinator(fake_runtime, "web1", 1):
        assert not await fake_runtime.is_running("web1")

    assert [c[0] for c in fake_runtime.calls] == ["stop", "kill", "start"]


@pytest.mark.asyncio
async def test_unkillable_workload_raises_quiesce_timeout(fake_runtime: FakeRuntime):
    fake_runtime.add("web1", make_inspect(running=True))
    fake_runtime.ignore_stop = True
    fake_runtime.ignore_kill = True
    entered = False

    with pytest.raises(QuiesceTimeout):
        async with QuiescenceCoordinator(fake_runtime, "web1", 1):
            entered = True

    assert not entered


@pytest.mark.asyncio
async def test_unknown_workload_raises_not_found(fake_runtime: FakeRuntime):
    with pytest.raises(NotFoundError):
        async with QuiescenceCoordinator(fake_runtime, "ghost", 1):
            pass


@pytest.mark.asyncio
async def test_stop_for_replace(fake_runtime: FakeRuntime):
    fake_runtime.add("web1", make_inspect(running=True))

    assert await stop_for_replace(fake_runtime, "web1", 1) is True
    assert not await fake_runtime.is_running("web1")
    assert await stop_for_replace(fake_runtime, "ghost", 1) is False
