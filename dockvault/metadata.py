# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Dockvault Metadata Snapshotter - Capture and persist workload descriptions.

The runtime's inspect document is only loosely structured: keys may be
missing, null, or shaped differently between engine versions. This module
normalizes it into a WorkloadMetadata value, persists it next to the
generation, and parses it back on restore, accepting either the
normalized form or a raw inspect document.
"""

import json
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, List, Tuple

import aiofiles
import structlog

from dockvault.exceptions import DockvaultError, IncompleteMetadata, NotFoundError
from dockvault.models import MountKind, MountPoint, PortBinding, WorkloadMetadata
from dockvault.runtime.base import WorkloadRuntime

logger = structlog.get_logger()

METADATA_VERSION = 1


async def capture_metadata(
    runtime: WorkloadRuntime,
    ref: str,
) -> Tuple[WorkloadMetadata, Dict[str, Any]]:
    """
    Capture the current description of a workload.

    Must be called before the workload is stopped so that ``running``
    reflects the state the operator left it in.

    Args:
        runtime: Container runtime
        ref: Workload name or id

    Returns:
        Tuple of (normalized metadata, raw inspect document)
    """
    raw = await runtime.inspect(ref)
    metadata = metadata_from_inspect(raw)

    logger.info(
        "metadata_captured",
        workload=ref,
        running=metadata.running,
        image=metadata.image,
        mounts=len(metadata.mounts),
        ports=len(metadata.ports),
    )

    return metadata, raw


def metadata_from_inspect(raw: Dict[str, Any] | List[Dict[str, Any]]) -> WorkloadMetadata:
    """Normalize a raw inspect document (object or one-element list)."""
    if isinstance(raw, list):
        raw = raw[0] if raw else {}

    state = raw.get("State") or {}
    config = raw.get("Config") or {}
    host_config = raw.get("HostConfig") or {}

    return WorkloadMetadata(
        running=bool(state.get("Running", False)),
        image=config.get("Image") or raw.get("Image") or None,
        ports=tuple(_ports_from_inspect(host_config, config)),
        env=tuple(config.get("Env") or ()),
        command=tuple(_as_tokens(config.get("Cmd"))),
        mounts=tuple(_mounts_from_inspect(raw.get("Mounts") or [])),
    )


def _as_tokens(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    return [str(v) for v in value]


def _ports_from_inspect(
    host_config: Dict[str, Any],
    config: Dict[str, Any],
) -> List[PortBinding]:
    bindings: List[PortBinding] = []
    published = host_config.get("PortBindings") or {}

    for container_port, entries in sorted(published.items()):
        if not entries:
            bindings.append(PortBinding(container_port=container_port))
            continue
        for entry in entries:
            entry = entry or {}
            host_port = entry.get("HostPort") or None
            bindings.append(
                PortBinding(
                    container_port=container_port,
                    host_port=host_port,
                    host_ip=entry.get("HostIp") or "",
                )
            )

    # Exposed but never published: recorded so restore can report the drop
    for container_port in sorted((config.get("ExposedPorts") or {}).keys()):
        if container_port not in published:
            bindings.append(PortBinding(container_port=container_port))

    return bindings


def _mounts_from_inspect(mounts: List[Dict[str, Any]]) -> List[MountPoint]:
    result: List[MountPoint] = []
    for mount in mounts:
        source = mount.get("Source")
        destination = mount.get("Destination")
        if not source or not destination:
            continue
        kind = MountKind.VOLUME if mount.get("Type") == "volume" else MountKind.BIND
        result.append(MountPoint(host_path=source, container_path=destination, kind=kind))
    return result


def load_metadata(blob: Dict[str, Any] | List[Dict[str, Any]]) -> WorkloadMetadata:
    """
    Parse a persisted metadata blob.

    Missing fields degrade to empty defaults. A raw inspect document is
    accepted as well, which lets generations written by hand (or by older
    tooling that only kept ``docker inspect`` output) be restored.
    """
    if not isinstance(blob, (dict, list)):
        raise IncompleteMetadata(
            "Metadata blob is not a JSON object",
            details={"type": type(blob).__name__},
        )

    if isinstance(blob, list) or "Config" in blob or "State" in blob:
        return metadata_from_inspect(blob)

    return WorkloadMetadata(
        running=bool(blob.get("running", False)),
        image=blob.get("image") or None,
        ports=tuple(PortBinding.from_dict(p) for p in blob.get("ports") or [] if p),
        env=tuple(str(e) for e in blob.get("env") or []),
        command=tuple(_as_tokens(blob.get("command"))),
        mounts=tuple(MountPoint.from_dict(m) for m in blob.get("mounts") or [] if m),
        snapshot_image=blob.get("snapshot_image") or None,
    )


async def write_metadata(
    path: Path,
    workload: str,
    metadata: WorkloadMetadata,
    raw_inspect: Dict[str, Any] | None = None,
) -> Path:
    """
    Persist metadata atomically (write to temp, then rename).

    Args:
        path: Destination file (usually <generation>/metadata.json)
        workload: Workload reference the metadata describes
        metadata: Normalized metadata
        raw_inspect: Verbatim inspect document kept for reference

    Returns:
        Path to the written file
    """
    document = {
        "version": METADATA_VERSION,
        "workload": workload,
        "captured_at": datetime.now(UTC).isoformat(),
        **metadata.to_dict(),
        "inspect": raw_inspect,
    }

    temp_path = path.with_suffix(".json.tmp")
    try:
        async with aiofiles.open(temp_path, "w") as f:
            await f.write(json.dumps(document, indent=2, sort_keys=True, default=str))
        temp_path.rename(path)
    except OSError as e:
        raise DockvaultError(
            f"Failed to write metadata: {e}",
            details={"path": str(path), "workload": workload},
        ) from e

    logger.debug("metadata_written", path=str(path), workload=workload)
    return path


async def read_metadata(path: Path) -> WorkloadMetadata:
    """Read and parse a metadata file."""
    try:
        async with aiofiles.open(path, "r") as f:
            blob = json.loads(await f.read())
    except FileNotFoundError as e:
        raise NotFoundError(
            f"Metadata file not found: {path}",
            details={"path": str(path)},
        ) from e
    except (OSError, ValueError) as e:
        raise DockvaultError(
            f"Failed to read metadata: {e}",
            details={"path": str(path)},
        ) from e

    return load_metadata(blob)
