# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Dockvault Mount Enumerator - Decide which host paths a backup preserves.
"""

import os
from pathlib import PurePosixPath
from typing import Dict, Iterable, Tuple

import structlog

from dockvault.exceptions import NoMountsFound, TransferError
from dockvault.models import MountPoint

logger = structlog.get_logger()

VOLUMES_DIR = "volumes"


def enumerate_mounts(workload: str, mounts: Iterable[MountPoint]) -> Tuple[MountPoint, ...]:
    """
    Filter, deduplicate and order the mounts of a workload.

    Entries whose host path is not an existing directory are skipped with
    a warning. The result is deduplicated by host path (first container
    path wins) and sorted by host path, so nothing downstream depends on
    the order the runtime reported them in.

    Mounts nested inside another mount are kept: the workload binds them
    on their own. transfer_roots() picks the trees actually copied.

    Raises:
        NoMountsFound: If nothing usable remains
    """
    selected: Dict[str, MountPoint] = {}

    for mount in mounts:
        host_path = os.path.normpath(mount.host_path) if mount.host_path else ""

        if not host_path or not os.path.isabs(host_path):
            logger.warning(
                "mount_skipped_not_absolute",
                workload=workload,
                host_path=mount.host_path,
            )
            continue

        if not os.path.isdir(host_path):
            logger.warning(
                "mount_skipped_missing_directory",
                workload=workload,
                host_path=host_path,
                container_path=mount.container_path,
            )
            continue

        if host_path in selected:
            logger.debug(
                "mount_duplicate_ignored",
                workload=workload,
                host_path=host_path,
                container_path=mount.container_path,
            )
            continue

        selected[host_path] = MountPoint(
            host_path=host_path,
            container_path=mount.container_path,
            kind=mount.kind,
        )

    if not selected:
        raise NoMountsFound(
            f"No usable mounts found for workload: {workload}",
            details={"workload": workload},
        )

    result = tuple(selected[path] for path in sorted(selected))
    logger.info(
        "mounts_enumerated",
        workload=workload,
        count=len(result),
        host_paths=[m.host_path for m in result],
    )
    return result


def _is_within(path: str, parent: str) -> bool:
    return path.startswith(parent.rstrip("/") + "/")


def covering_mount(mount: MountPoint, mounts: Iterable[MountPoint]) -> MountPoint | None:
    """
    The outermost other mount whose host path contains this one, if any.

    A covered mount's data travels inside its cover's tree.
    """
    for other in sorted(mounts, key=lambda m: m.host_path):
        if other.host_path != mount.host_path and _is_within(mount.host_path, other.host_path):
            return other
    return None


def transfer_roots(mounts: Iterable[MountPoint]) -> Tuple[MountPoint, ...]:
    """Mounts that are copied as trees of their own, sorted by host path."""
    ordered = sorted(mounts, key=lambda m: m.host_path)
    roots = []
    for mount in ordered:
        cover = covering_mount(mount, ordered)
        if cover is not None:
            logger.debug(
                "mount_covered_by_parent",
                host_path=mount.host_path,
                container_path=mount.container_path,
                parent=cover.host_path,
            )
            continue
        roots.append(mount)
    return tuple(roots)


def covered_path(mount: MountPoint, cover: MountPoint) -> str:
    """Path of a covered mount relative to its cover's host path."""
    return os.path.relpath(mount.host_path, cover.host_path)


def mount_slug(host_path: str) -> str:
    """
    Relative location of a mount's data inside a generation.

    The full host path is kept (``/data/web1`` -> ``volumes/data/web1``) so
    two mounts sharing a basename never collide.
    """
    parts = PurePosixPath(os.path.normpath(host_path)).parts
    relative = [p for p in parts if p not in ("/", "")]

    if not relative or any(p in (".", "..") for p in relative):
        raise TransferError(host_path, "host path cannot be mapped into a generation")

    return str(PurePosixPath(VOLUMES_DIR, *relative))
