# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Retention Pruner - Age out old generations.

A generation's age comes from its timestamp, not from file mtimes: copying
preserves source mtimes, so the files inside a generation say nothing about
when it was taken.

The generation the latest pointer refers to is never deleted, whatever its
age. Unsealed generations are leftovers of failed runs and always go.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import List

import structlog

from dockvault.exceptions import DockvaultError
from dockvault.store.generations import GenerationStore, timestamp_to_datetime

logger = structlog.get_logger()


@dataclass
class PruneResult:
    """Outcome of a pruning pass."""

    deleted: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    archives_removed: List[str] = field(default_factory=list)
    bytes_freed: int = 0
    dry_run: bool = False


async def prune_generations(
    store: GenerationStore,
    workload: str,
    retention_days: int,
    now: datetime | None = None,
    dry_run: bool = False,
) -> PruneResult:
    """
    Delete generations older than the retention horizon.

    Args:
        store: Generation store
        workload: Workload name
        retention_days: Horizon in days
        now: Reference time (defaults to the current UTC time)
        dry_run: If True, only report what would be deleted

    Returns:
        PruneResult; a failure to delete one generation is logged and
        counted, and pruning continues with the next one
    """
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(days=retention_days)
    result = PruneResult(dry_run=dry_run)

    latest = await store.latest(workload)
    latest_ts = latest.timestamp if latest else None

    for generation in await store.list(workload):
        if generation.timestamp == latest_ts:
            result.kept.append(generation.timestamp)
            continue

        taken_at = timestamp_to_datetime(generation.timestamp)
        expired = taken_at < cutoff
        if generation.sealed and not expired:
            result.kept.append(generation.timestamp)
            continue

        if dry_run:
            result.deleted.append(generation.timestamp)
            logger.info(
                "generation_would_prune",
                workload=workload,
                timestamp=generation.timestamp,
                sealed=generation.sealed,
                age_days=(now - taken_at).days,
            )
            continue

        try:
            result.bytes_freed += await store.discard(generation)
            result.deleted.append(generation.timestamp)
            logger.debug(
                "generation_pruned",
                workload=workload,
                timestamp=generation.timestamp,
                age_days=(now - taken_at).days,
            )
        except (DockvaultError, OSError) as e:
            result.failed.append(generation.timestamp)
            logger.warning(
                "prune_generation_error",
                workload=workload,
                timestamp=generation.timestamp,
                error=str(e),
            )

    orphans = await prune_orphan_archives(store, workload, dry_run=dry_run)
    result.archives_removed.extend(orphans)

    logger.info(
        "generation_pruning_complete",
        workload=workload,
        deleted=len(result.deleted),
        kept=len(result.kept),
        failed=len(result.failed),
        bytes_freed=result.bytes_freed,
        dry_run=dry_run,
    )
    return result


async def prune_orphan_archives(
    store: GenerationStore,
    workload: str,
    dry_run: bool = False,
) -> List[str]:
    """
    Remove archives that no live generation refers to.

    Leftover ``.tmp`` files of interrupted packaging count as orphans.

    Returns:
        Names of the removed (or, with dry_run, removable) archives
    """
    archives_dir = store.archives_dir(workload)
    if not archives_dir.is_dir():
        return []

    referenced = set()
    for generation in await store.list(workload):
        if generation.archive_path is not None:
            referenced.add(Path(generation.archive_path).name)

    latest = await store.latest(workload)
    latest_prefix = f"{workload}_{latest.timestamp}" if latest else None

    removed: List[str] = []
    for archive in sorted(archives_dir.iterdir()):
        if not archive.is_file() or archive.name in referenced:
            continue
        if latest_prefix and archive.name.startswith(latest_prefix) and not archive.name.endswith(
            ".tmp"
        ):
            continue

        if not dry_run:
            try:
                archive.unlink()
            except OSError as e:
                logger.warning("prune_archive_error", path=str(archive), error=str(e))
                continue
        removed.append(archive.name)
        logger.debug("orphan_archive_pruned", path=str(archive), dry_run=dry_run)

    return removed
