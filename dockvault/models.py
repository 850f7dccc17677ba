# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Dockvault Models - Value types shared by the backup and restore pipelines.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Tuple


class MountKind(str, Enum):
    """Origin of a host-side data path."""

    BIND = "bind"
    VOLUME = "volume"


@dataclass(frozen=True)
class MountPoint:
    """One host directory mounted into the workload."""

    host_path: str
    container_path: str
    kind: MountKind = MountKind.BIND

    def to_dict(self) -> Dict[str, str]:
        return {
            "host_path": self.host_path,
            "container_path": self.container_path,
            "kind": self.kind.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MountPoint":
        kind = data.get("kind") or MountKind.BIND.value
        try:
            mount_kind = MountKind(kind)
        except ValueError:
            mount_kind = MountKind.BIND
        return cls(
            host_path=str(data.get("host_path") or ""),
            container_path=str(data.get("container_path") or ""),
            kind=mount_kind,
        )


@dataclass(frozen=True)
class PortBinding:
    """A published port. host_port is None when only exposed."""

    container_port: str  # e.g. "80/tcp"
    host_port: str | None = None
    host_ip: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "container_port": self.container_port,
            "host_port": self.host_port,
            "host_ip": self.host_ip,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PortBinding":
        host_port = data.get("host_port")
        return cls(
            container_port=str(data.get("container_port") or ""),
            host_port=str(host_port) if host_port not in (None, "") else None,
            host_ip=str(data.get("host_ip") or ""),
        )


@dataclass(frozen=True)
class WorkloadMetadata:
    """
    Point-in-time description of a workload.

    Captured once per backup before any stop is issued, persisted with the
    generation, and the only input to restore-time reconstruction.
    """

    running: bool = False
    image: str | None = None
    ports: Tuple[PortBinding, ...] = ()
    env: Tuple[str, ...] = ()
    command: Tuple[str, ...] = ()
    mounts: Tuple[MountPoint, ...] = ()
    snapshot_image: str | None = None  # Committed image tag, if any

    def with_mounts(self, mounts: Tuple[MountPoint, ...]) -> "WorkloadMetadata":
        return replace(self, mounts=tuple(mounts))

    def with_snapshot_image(self, image_ref: str) -> "WorkloadMetadata":
        return replace(self, snapshot_image=image_ref)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "image": self.image,
            "ports": [p.to_dict() for p in self.ports],
            "env": list(self.env),
            "command": list(self.command),
            "mounts": [m.to_dict() for m in self.mounts],
            "snapshot_image": self.snapshot_image,
        }


@dataclass(frozen=True)
class Generation:
    """One timestamped backup of a workload."""

    workload: str
    timestamp: str
    path: Path
    sealed: bool = False
    created_at: str | None = None  # ISO 8601
    archive_path: Path | None = None

    @property
    def metadata_path(self) -> Path:
        return self.path / "metadata.json"


@dataclass
class CreationSpec:
    """
    Typed container creation parameters derived from metadata.

    Handed to the runtime as structured data, never templated into a
    shell command.
    """

    name: str
    image: str
    ports: List[PortBinding] = field(default_factory=list)
    env: List[str] = field(default_factory=list)
    command: List[str] = field(default_factory=list)
    # container_path -> (original host path, restore-time host path)
    mount_bindings: Dict[str, Tuple[str, str]] = field(default_factory=dict)

    def to_docker_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for docker's ``containers.create``."""
        ports: Dict[str, Any] = {}
        for binding in self.ports:
            target = (binding.host_ip, int(binding.host_port)) if binding.host_ip else int(
                binding.host_port
            )
            existing = ports.get(binding.container_port)
            if existing is None:
                ports[binding.container_port] = target
            elif isinstance(existing, list):
                existing.append(target)
            else:
                ports[binding.container_port] = [existing, target]

        volumes = {
            host: {"bind": container, "mode": "rw"}
            for container, (_, host) in self.mount_bindings.items()
        }

        kwargs: Dict[str, Any] = {
            "image": self.image,
            "name": self.name,
            "environment": list(self.env),
            "ports": ports,
            "volumes": volumes,
        }
        if self.command:
            kwargs["command"] = list(self.command)
        return kwargs
