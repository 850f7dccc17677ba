# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Dockvault Core - Backup and restore pipelines.

This module wires the components together:

    backup:  metadata -> mounts -> generation -> quiesce { transfer } ->
             seal -> package -> latest pointer -> retention
    restore: resolve generation (unpack if needed) -> metadata -> creation
             spec -> replace existing -> restore transfer -> create/start

Every run holds the workload lock and carries a ULID run id that is bound
into the logging context.
"""

import shutil
import tempfile
from dataclasses import dataclass, field, replace
from datetime import datetime, UTC
from pathlib import Path
from typing import Dict, List, Tuple

import structlog
from ulid import ULID

from dockvault.config import ArchiveCodec, VaultConfig
from dockvault.exceptions import NotFoundError
from dockvault.metadata import capture_metadata, read_metadata, write_metadata
from dockvault.models import Generation, WorkloadMetadata
from dockvault.mounts import enumerate_mounts, transfer_roots
from dockvault.packaging import (
    archive_name,
    compress_file,
    decompress_file,
    pack_generation,
    unpack_archive,
)
from dockvault.quiesce import QuiescenceCoordinator
from dockvault.reconcile import derive_creation_spec, replace_existing
from dockvault.retention import PruneResult, prune_generations
from dockvault.runtime.base import WorkloadRuntime
from dockvault.store import GenerationStore, validate_workload, workload_lock
from dockvault.transfer import restore_mounts, transfer_mounts

logger = structlog.get_logger()

IMAGE_BASENAME = "image"
IMAGE_REPOSITORY_PREFIX = "dockvault"


@dataclass
class BackupResult:
    """Result of a backup run."""

    operation_id: str  # ULID
    workload: str
    timestamp: str
    generation_path: str
    base_timestamp: str | None
    mounts: List[str]
    files_copied: int
    files_linked: int
    bytes_copied: int
    bytes_linked: int
    duration_seconds: float
    archive_path: str | None = None
    snapshot_image: str | None = None
    pruned: List[str] = field(default_factory=list)
    prune_failures: List[str] = field(default_factory=list)


@dataclass
class RestoreResult:
    """Result of a restore run."""

    operation_id: str
    workload: str
    timestamp: str
    container_id: str
    replaced_existing: bool
    started: bool
    duration_seconds: float
    restored_mounts: List[str] = field(default_factory=list)
    skipped_mounts: List[str] = field(default_factory=list)
    from_archive: bool = False


# ============================================================================
# Backup
# ============================================================================


async def run_backup(
    config: VaultConfig,
    runtime: WorkloadRuntime,
    workload: str,
) -> BackupResult:
    """
    Take a new generation of a workload.

    Nothing becomes visible to restore until the latest pointer moves,
    which is the last step before retention. A failure anywhere before
    that discards the new generation and leaves the previous latest in
    place.

    Args:
        config: Vault configuration
        runtime: Container runtime
        workload: Workload name

    Returns:
        BackupResult with run details

    Raises:
        NotFoundError: If the workload does not exist
        NoMountsFound: If the workload has no usable data directories
        QuiesceTimeout: If the workload cannot be stopped
        TransferError: If copying a mount failed
    """
    validate_workload(workload)
    operation_id = str(ULID())
    start_time = datetime.now(UTC)
    store = GenerationStore(config.backup_root)

    with structlog.contextvars.bound_contextvars(workload=workload, run_id=operation_id):
        logger.info("backup_started", backup_root=str(config.backup_root))

        async with workload_lock(store.workload_dir(workload), workload):
            # Captured before any stop so the running state is the operator's
            metadata, raw_inspect = await capture_metadata(runtime, workload)
            mounts = enumerate_mounts(workload, metadata.mounts)
            metadata = metadata.with_mounts(mounts)

            base = await store.latest(workload)
            generation = await store.create(workload)

            try:
                if config.snapshot_image:
                    metadata = await _snapshot_image(config, runtime, workload, generation, metadata)

                await write_metadata(generation.metadata_path, workload, metadata, raw_inspect)
                await store.record_metadata(generation)

                async with QuiescenceCoordinator(runtime, workload, config.stop_timeout):
                    summary = await transfer_mounts(
                        transfer_roots(mounts),
                        generation.path,
                        base.path if base else None,
                        strategy=config.transfer_strategy,
                        concurrency=config.max_concurrent_transfers,
                    )

                await store.record_transfer(generation)
                generation = await store.seal(generation)

                if config.package_archives:
                    archive_path = store.archives_dir(workload) / archive_name(
                        workload, generation.timestamp, config.archive_codec
                    )
                    await pack_generation(
                        generation.path,
                        archive_path,
                        config.archive_codec,
                        config.zstd_level,
                    )
                    generation = await store.record_archive(generation, archive_path)

                await store.advance_latest(generation)

            except BaseException as e:
                logger.error(
                    "backup_failed",
                    timestamp=generation.timestamp,
                    error=str(e) or type(e).__name__,
                )
                try:
                    await store.discard(generation)
                except Exception as discard_error:
                    logger.error(
                        "generation_discard_failed",
                        timestamp=generation.timestamp,
                        path=str(generation.path),
                        error=str(discard_error),
                    )
                raise

            prune = await prune_generations(store, workload, config.retention_days)

    totals = summary.totals
    duration = (datetime.now(UTC) - start_time).total_seconds()

    logger.info(
        "backup_completed",
        workload=workload,
        run_id=operation_id,
        timestamp=generation.timestamp,
        base=base.timestamp if base else None,
        files_copied=totals.files_copied,
        files_linked=totals.files_linked,
        pruned=len(prune.deleted),
        duration=duration,
    )

    return BackupResult(
        operation_id=operation_id,
        workload=workload,
        timestamp=generation.timestamp,
        generation_path=str(generation.path),
        base_timestamp=base.timestamp if base else None,
        mounts=[m.host_path for m in mounts],
        files_copied=totals.files_copied,
        files_linked=totals.files_linked,
        bytes_copied=totals.bytes_copied,
        bytes_linked=totals.bytes_linked,
        duration_seconds=duration,
        archive_path=str(generation.archive_path) if generation.archive_path else None,
        snapshot_image=metadata.snapshot_image,
        pruned=prune.deleted,
        prune_failures=prune.failed,
    )


async def _snapshot_image(
    config: VaultConfig,
    runtime: WorkloadRuntime,
    workload: str,
    generation: Generation,
    metadata: WorkloadMetadata,
) -> WorkloadMetadata:
    """Commit the workload to an image and store it inside the generation."""
    repository = f"{IMAGE_REPOSITORY_PREFIX}/{workload.lower()}"
    image_ref = await runtime.commit(workload, repository, generation.timestamp)

    raw_path = generation.path / f"{IMAGE_BASENAME}.tar"
    await runtime.save_image(image_ref, raw_path)

    if config.archive_codec != ArchiveCodec.NONE:
        packed = generation.path / f"{IMAGE_BASENAME}{config.archive_codec.extension}"
        await compress_file(raw_path, packed, config.archive_codec, config.zstd_level)
        raw_path.unlink()

    logger.info("image_snapshot_saved", image=image_ref)
    return metadata.with_snapshot_image(image_ref)


def _find_image_file(generation_dir: Path) -> Path | None:
    candidates = sorted(generation_dir.glob(f"{IMAGE_BASENAME}.tar*"))
    return candidates[0] if candidates else None


# ============================================================================
# Restore
# ============================================================================


async def _resolve_generation(
    store: GenerationStore,
    config: VaultConfig,
    workload: str,
    timestamp: str | None,
    archive: Path | None,
) -> Tuple[Path, str, Path | None]:
    """
    Locate the generation directory to restore from.

    Returns:
        (generation directory, timestamp, scratch directory to remove or None)
    """
    if archive is not None:
        scratch = _make_scratch(config)
        generation_dir = await unpack_archive(Path(archive), scratch)
        return generation_dir, generation_dir.name, scratch

    if timestamp is not None:
        generation = await store.get(workload, timestamp)
        if not generation.sealed:
            raise NotFoundError(
                f"Generation {timestamp} of {workload} is not sealed",
                details={"workload": workload, "timestamp": timestamp},
            )
    else:
        generation = await store.latest(workload)
        if generation is None:
            raise NotFoundError(
                f"No backup available for {workload}",
                details={"workload": workload, "backup_root": str(config.backup_root)},
            )

    if generation.path.is_dir():
        return generation.path, generation.timestamp, None

    # Only the archive survived
    if generation.archive_path is not None and generation.archive_path.is_file():
        logger.info("generation_restoring_from_archive", archive=str(generation.archive_path))
        scratch = _make_scratch(config)
        generation_dir = await unpack_archive(generation.archive_path, scratch)
        return generation_dir, generation.timestamp, scratch

    raise NotFoundError(
        f"Generation data missing for {workload}/{generation.timestamp}",
        details={"workload": workload, "path": str(generation.path)},
    )


def _make_scratch(config: VaultConfig) -> Path:
    config.scratch_dir.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix="restore-", dir=config.scratch_dir))


async def _load_snapshot_image(
    config: VaultConfig,
    runtime: WorkloadRuntime,
    generation_dir: Path,
    metadata: WorkloadMetadata,
) -> WorkloadMetadata:
    image_file = _find_image_file(generation_dir)
    if image_file is None:
        logger.warning(
            "image_snapshot_missing",
            snapshot_image=metadata.snapshot_image,
            fallback=metadata.image,
        )
        return replace(metadata, snapshot_image=None)

    config.scratch_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix="image-", dir=config.scratch_dir) as tmp:
        image_tar = Path(tmp) / f"{IMAGE_BASENAME}.tar"
        await decompress_file(image_file, image_tar)
        await runtime.load_image(image_tar)

    logger.info("image_snapshot_loaded", image=metadata.snapshot_image)
    return metadata


async def run_restore(
    config: VaultConfig,
    runtime: WorkloadRuntime,
    workload: str,
    timestamp: str | None = None,
    overrides: Dict[str, str] | None = None,
    archive: Path | None = None,
) -> RestoreResult:
    """
    Recreate a workload from a generation.

    Args:
        config: Vault configuration
        runtime: Container runtime
        workload: Workload name to (re)create
        timestamp: Generation to restore (default: latest)
        overrides: container_path -> restore-time host path
        archive: Restore from this archive instead of the store

    Returns:
        RestoreResult with run details

    Raises:
        NotFoundError: If no matching generation or archive exists
        IncompleteMetadata: If the stored metadata cannot produce a workload
        TransferError: If restoring a mount failed
    """
    validate_workload(workload)
    operation_id = str(ULID())
    start_time = datetime.now(UTC)
    store = GenerationStore(config.backup_root)

    with structlog.contextvars.bound_contextvars(workload=workload, run_id=operation_id):
        logger.info("restore_started", timestamp=timestamp, archive=str(archive) if archive else None)

        async with workload_lock(store.workload_dir(workload), workload):
            generation_dir, resolved, scratch = await _resolve_generation(
                store, config, workload, timestamp, archive
            )
            try:
                metadata = await read_metadata(generation_dir / "metadata.json")

                if metadata.snapshot_image:
                    metadata = await _load_snapshot_image(config, runtime, generation_dir, metadata)

                spec = derive_creation_spec(metadata, workload, overrides)

                replaced = await replace_existing(runtime, workload, config.stop_timeout)

                bindings = [
                    (mount, spec.mount_bindings[mount.container_path][1])
                    for mount in metadata.mounts
                ]
                summary = await restore_mounts(
                    bindings,
                    generation_dir,
                    strategy=config.transfer_strategy,
                    concurrency=config.max_concurrent_transfers,
                )

                container_id = await runtime.create(spec)
                if config.start_after_restore:
                    await runtime.start(workload)
            finally:
                if scratch is not None:
                    shutil.rmtree(scratch, ignore_errors=True)

    duration = (datetime.now(UTC) - start_time).total_seconds()
    logger.info(
        "restore_completed",
        workload=workload,
        run_id=operation_id,
        timestamp=resolved,
        container_id=container_id,
        replaced_existing=replaced,
        skipped=len(summary.skipped),
        duration=duration,
    )

    return RestoreResult(
        operation_id=operation_id,
        workload=workload,
        timestamp=resolved,
        container_id=container_id,
        replaced_existing=replaced,
        started=config.start_after_restore,
        duration_seconds=duration,
        restored_mounts=[t.host_path for t in summary.transfers],
        skipped_mounts=summary.skipped,
        from_archive=scratch is not None,
    )


# ============================================================================
# Operator commands
# ============================================================================


async def list_generations(config: VaultConfig, workload: str) -> Tuple[List[Generation], str | None]:
    """
    List the live generations of a workload.

    Returns:
        (generations newest first, timestamp of latest or None)
    """
    store = GenerationStore(config.backup_root)
    generations = await store.list(workload)
    latest = await store.latest(workload)
    return generations, latest.timestamp if latest else None


async def run_prune(
    config: VaultConfig,
    workload: str,
    dry_run: bool = False,
) -> PruneResult:
    """Apply the retention policy outside of a backup run."""
    validate_workload(workload)
    store = GenerationStore(config.backup_root)
    with structlog.contextvars.bound_contextvars(workload=workload, run_id=str(ULID())):
        async with workload_lock(store.workload_dir(workload), workload):
            return await prune_generations(
                store, workload, config.retention_days, dry_run=dry_run
            )
