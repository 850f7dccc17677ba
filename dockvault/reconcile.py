# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore Reconciler - Turn stored metadata back into a runnable workload.

Mounts are joined on their container-side path: that is the identity a
workload sees, and the host side may legitimately differ at restore time
(``--map /var/lib/mysql=/srv/restore/mysql``).
"""

import os
from typing import Dict, Iterable, List

import structlog

from dockvault.errors import explain_invalid_override
from dockvault.exceptions import IncompleteMetadata, UsageError
from dockvault.models import CreationSpec, PortBinding, WorkloadMetadata
from dockvault.mounts import covered_path, covering_mount, transfer_roots
from dockvault.quiesce import stop_for_replace
from dockvault.runtime.base import WorkloadRuntime

logger = structlog.get_logger()


def _usable_host_port(binding: PortBinding) -> bool:
    return binding.host_port is not None and binding.host_port.isdigit()


def derive_creation_spec(
    metadata: WorkloadMetadata,
    name: str,
    overrides: Dict[str, str] | None = None,
) -> CreationSpec:
    """
    Build the creation parameters for a restored workload.

    Args:
        metadata: Metadata of the generation being restored
        name: Workload name to create
        overrides: container_path -> restore-time host path

    Returns:
        CreationSpec

    Raises:
        IncompleteMetadata: If no image can be determined
    """
    overrides = overrides or {}

    # A committed snapshot carries the workload's filesystem as it was
    image = metadata.snapshot_image or metadata.image
    if not image:
        raise IncompleteMetadata(
            f"Metadata for {name} has no image; cannot recreate the workload",
            details={"workload": name},
        )

    ports: List[PortBinding] = []
    for binding in metadata.ports:
        if not _usable_host_port(binding):
            logger.warning(
                "port_dropped_no_host_port",
                workload=name,
                container_port=binding.container_port,
                host_port=binding.host_port,
            )
            continue
        ports.append(binding)

    mount_bindings: Dict[str, tuple] = {}
    resolved: Dict[str, str] = {}
    for mount in transfer_roots(metadata.mounts):
        resolved[mount.host_path] = overrides.get(mount.container_path, mount.host_path)

    for mount in metadata.mounts:
        cover = covering_mount(mount, metadata.mounts)
        if mount.container_path in overrides:
            restore_path = overrides[mount.container_path]
        elif cover is not None:
            # Follows its parent when the parent is moved
            restore_path = os.path.join(resolved[cover.host_path], covered_path(mount, cover))
        else:
            restore_path = mount.host_path
        mount_bindings[mount.container_path] = (mount.host_path, restore_path)

    unused = set(overrides) - set(mount_bindings)
    for container_path in sorted(unused):
        logger.warning(
            "mount_override_unused",
            workload=name,
            container_path=container_path,
        )

    return CreationSpec(
        name=name,
        image=image,
        ports=ports,
        env=list(metadata.env),
        command=list(metadata.command),
        mount_bindings=mount_bindings,
    )


async def replace_existing(runtime: WorkloadRuntime, ref: str, stop_timeout: int = 30) -> bool:
    """
    Stop and remove a workload that is about to be recreated.

    Returns:
        True if a workload was removed
    """
    if not await stop_for_replace(runtime, ref, stop_timeout):
        return False

    await runtime.remove(ref)
    logger.info("workload_removed_for_restore", workload=ref)
    return True


def parse_overrides(values: Iterable[str] | None) -> Dict[str, str]:
    """
    Parse ``CONTAINER_PATH=HOST_PATH`` mount overrides.

    Raises:
        UsageError: On malformed entries or relative paths
    """
    overrides: Dict[str, str] = {}
    for value in values or ():
        container_path, sep, host_path = value.partition("=")
        container_path = container_path.strip()
        host_path = host_path.strip()

        if not sep or not os.path.isabs(container_path) or not os.path.isabs(host_path):
            raise UsageError(explain_invalid_override(value), details={"override": value})

        overrides[os.path.normpath(container_path)] = os.path.normpath(host_path)
    return overrides
