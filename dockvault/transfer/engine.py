# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Dockvault Transfer Engines - Copy mounts into and out of generations.

Backup side (incremental): every mount is copied into a staging directory
``<dest>.partial`` next to its final place, using the same mount in the
base generation as hard-link source, and renamed into place only once the
copy completed. A failed or cancelled mount leaves nothing behind, so a
generation never references a half-written tree.

Restore side: generation data is mirrored onto the restore-time host path
of each binding.

Mounts are independent (disjoint destination subtrees) and run
concurrently, bounded by a semaphore; everything joins before the caller
seals anything.
"""

import asyncio
import contextlib
import functools
import os
import shutil
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

import structlog

from dockvault.config import TransferStrategy
from dockvault.exceptions import TransferError
from dockvault.models import MountPoint
from dockvault.mounts import covered_path, covering_mount, mount_slug
from dockvault.transfer.rsync import rsync_tree
from dockvault.transfer.sync import SyncAborted, SyncStats, sync_tree

logger = structlog.get_logger()

STAGING_SUFFIX = ".partial"


@dataclass
class MountTransfer:
    """Outcome of copying one mount."""

    host_path: str
    destination: str
    stats: SyncStats
    duration_seconds: float = 0.0


@dataclass
class TransferSummary:
    """Outcome of copying every mount of a run."""

    transfers: List[MountTransfer] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def totals(self) -> SyncStats:
        total = SyncStats()
        for transfer in self.transfers:
            total.merge(transfer.stats)
        return total


async def _run_sync(
    strategy: TransferStrategy,
    src: Path,
    dst: Path,
    link_base: Path | None,
    stop_event: threading.Event,
    verify_existing: bool = False,
) -> SyncStats:
    if strategy == TransferStrategy.RSYNC:
        return await rsync_tree(src, dst, link_base, mirror=True, checksum=verify_existing)

    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(
        None,
        functools.partial(
            sync_tree,
            src,
            dst,
            link_base=link_base,
            mirror=True,
            should_stop=stop_event.is_set,
            verify_existing=verify_existing,
        ),
    )
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        # The worker thread cannot be interrupted; ask it to stop and wait
        # for it so the caller's rollback does not race with its writes
        stop_event.set()
        with contextlib.suppress(SyncAborted, OSError):
            await future
        raise


def _first_failure(results: Sequence[object]) -> BaseException | None:
    failures = [r for r in results if isinstance(r, BaseException)]
    if not failures:
        return None

    for failure in failures:
        if isinstance(failure, asyncio.CancelledError):
            return failure

    # Prefer the mount that actually failed over siblings that were stopped
    for failure in failures:
        if not (isinstance(failure, TransferError) and isinstance(failure.cause, SyncAborted)):
            return failure
    return failures[0]


async def transfer_mounts(
    mounts: Iterable[MountPoint],
    generation_dir: Path,
    base_dir: Path | None = None,
    strategy: TransferStrategy = TransferStrategy.NATIVE,
    concurrency: int = 4,
) -> TransferSummary:
    """
    Copy every mount into a new generation.

    Args:
        mounts: Enumerated mounts
        generation_dir: Directory of the (unsealed) target generation
        base_dir: Directory of the sealed base generation, if any
        strategy: Tree copy implementation
        concurrency: Maximum mounts copied at once

    Returns:
        TransferSummary with per-mount statistics

    Raises:
        TransferError: For the first mount that failed, after every other
            mount finished or was rolled back
    """
    semaphore = asyncio.Semaphore(concurrency)
    stop_event = threading.Event()

    async def _transfer_one(mount: MountPoint) -> MountTransfer:
        async with semaphore:
            slug = mount_slug(mount.host_path)
            destination = generation_dir / slug
            staging = destination.with_name(destination.name + STAGING_SUFFIX)
            link_base = base_dir / slug if base_dir is not None else None

            if staging.exists():
                shutil.rmtree(staging)
            staging.parent.mkdir(parents=True, exist_ok=True)

            started = time.monotonic()
            logger.info(
                "mount_transfer_started",
                host_path=mount.host_path,
                destination=str(destination),
                incremental=link_base is not None and link_base.is_dir(),
            )

            try:
                if stop_event.is_set():
                    raise SyncAborted(mount.host_path)
                stats = await _run_sync(
                    strategy, Path(mount.host_path), staging, link_base, stop_event
                )
                staging.rename(destination)
            except BaseException as e:
                # Stop the siblings and roll this mount back
                stop_event.set()
                if staging.exists():
                    shutil.rmtree(staging)
                if isinstance(e, Exception) and not isinstance(e, TransferError):
                    raise TransferError(
                        mount.host_path,
                        e,
                        details={"destination": str(destination)},
                    ) from e
                raise

            duration = time.monotonic() - started
            logger.info(
                "mount_transfer_completed",
                host_path=mount.host_path,
                files_copied=stats.files_copied,
                files_linked=stats.files_linked,
                bytes_copied=stats.bytes_copied,
                bytes_linked=stats.bytes_linked,
                removed=stats.entries_removed,
                duration=duration,
            )
            return MountTransfer(
                host_path=mount.host_path,
                destination=str(destination),
                stats=stats,
                duration_seconds=duration,
            )

    results = await asyncio.gather(
        *(_transfer_one(m) for m in mounts),
        return_exceptions=True,
    )

    failure = _first_failure(results)
    if failure is not None:
        if isinstance(failure, TransferError):
            logger.error(
                "mount_transfer_failed",
                mount=failure.mount,
                cause=str(failure.cause),
            )
        raise failure

    return TransferSummary(transfers=list(results))


async def restore_mounts(
    bindings: Iterable[Tuple[MountPoint, str]],
    generation_dir: Path,
    strategy: TransferStrategy = TransferStrategy.NATIVE,
    concurrency: int = 4,
) -> TransferSummary:
    """
    Mirror generation data back onto host paths.

    A mount nested inside another mount was stored as part of its parent's
    tree. It needs no copy of its own when its restore path is the matching
    subpath of the parent's; otherwise its subtree is copied out of the
    parent's data.

    Existing destination files are compared by content, never trusted on
    size and mtime alone.

    Args:
        bindings: (original mount, restore-time host path) pairs
        generation_dir: Directory of the generation being restored
        strategy: Tree copy implementation
        concurrency: Maximum mounts restored at once

    Returns:
        TransferSummary; mounts without data in the generation are listed
        in ``skipped``

    Raises:
        TransferError: For the first mount that failed
    """
    bindings = list(bindings)
    mounts = [mount for mount, _ in bindings]
    targets = {mount.host_path: target for mount, target in bindings}

    semaphore = asyncio.Semaphore(concurrency)
    stop_event = threading.Event()
    skipped: List[str] = []

    def _source_of(mount: MountPoint, target: str) -> Path | None:
        cover = covering_mount(mount, mounts)
        if cover is None:
            return generation_dir / mount_slug(mount.host_path)

        relative = covered_path(mount, cover)
        if os.path.normpath(target) == os.path.normpath(
            os.path.join(targets[cover.host_path], relative)
        ):
            logger.debug(
                "mount_restored_with_parent",
                container_path=mount.container_path,
                parent=cover.host_path,
            )
            return None
        return generation_dir / mount_slug(cover.host_path) / relative

    async def _restore_one(mount: MountPoint, source: Path, target: str) -> MountTransfer | None:
        if not source.is_dir():
            logger.warning(
                "mount_restore_skipped_no_data",
                host_path=mount.host_path,
                container_path=mount.container_path,
                source=str(source),
            )
            skipped.append(mount.container_path)
            return None

        async with semaphore:
            started = time.monotonic()
            try:
                Path(target).mkdir(parents=True, exist_ok=True)
                stats = await _run_sync(
                    strategy, source, Path(target), None, stop_event, verify_existing=True
                )
            except BaseException as e:
                stop_event.set()
                if isinstance(e, Exception) and not isinstance(e, TransferError):
                    raise TransferError(
                        target,
                        e,
                        details={"source": str(source), "container_path": mount.container_path},
                    ) from e
                raise

            duration = time.monotonic() - started
            logger.info(
                "mount_restored",
                host_path=target,
                container_path=mount.container_path,
                files_copied=stats.files_copied,
                files_unchanged=stats.files_unchanged,
                removed=stats.entries_removed,
                duration=duration,
            )
            return MountTransfer(
                host_path=target,
                destination=str(target),
                stats=stats,
                duration_seconds=duration,
            )

    jobs = []
    for mount, target in bindings:
        source = _source_of(mount, target)
        if source is not None:
            jobs.append(_restore_one(mount, source, target))

    results = await asyncio.gather(*jobs, return_exceptions=True)

    failure = _first_failure(results)
    if failure is not None:
        if isinstance(failure, TransferError):
            logger.error("mount_restore_failed", mount=failure.mount, cause=str(failure.cause))
        raise failure

    return TransferSummary(
        transfers=[r for r in results if isinstance(r, MountTransfer)],
        skipped=skipped,
    )
