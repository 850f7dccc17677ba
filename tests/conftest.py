# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for dockvault tests.

Provides an in-memory container runtime, temporary directories and test
configuration helpers. File-system behaviour always runs on real
temporary directories.
"""

import copy
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List, Tuple

import pytest

from dockvault.config import ArchiveCodec, VaultConfig
from dockvault.exceptions import NotFoundError, RuntimeClientError
from dockvault.models import CreationSpec

ENV_VARS = [
    "DOCKVAULT_BACKUP_ROOT",
    "DOCKVAULT_RETENTION_DAYS",
    "DOCKVAULT_STOP_TIMEOUT",
    "DOCKVAULT_TRANSFER_STRATEGY",
    "DOCKVAULT_ARCHIVE_CODEC",
    "DOCKVAULT_PACKAGE_ARCHIVES",
    "DOCKVAULT_SNAPSHOT_IMAGE",
    "DOCKVAULT_MAX_CONCURRENT_TRANSFERS",
    "DOCKVAULT_WORK_DIR",
]


class FakeRuntime:
    """
    In-memory WorkloadRuntime.

    Behaviour switches:
        ignore_stop: the workload keeps running after stop()
        ignore_kill: the workload keeps running after kill()
        fail_start: start() raises RuntimeClientError
    """

    def __init__(self):
        self.containers: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.created: List[CreationSpec] = []
        self.loaded_images: List[bytes] = []
        self.ignore_stop = False
        self.ignore_kill = False
        self.fail_start = False

    def add(self, name: str, attrs: Dict[str, Any]) -> None:
        self.containers[name] = copy.deepcopy(attrs)

    def _get(self, ref: str) -> Dict[str, Any]:
        if ref not in self.containers:
            raise NotFoundError(f"Workload not found: {ref}", details={"workload": ref})
        return self.containers[ref]

    def _set_running(self, ref: str, running: bool) -> None:
        self._get(ref).setdefault("State", {})["Running"] = running

    async def inspect(self, ref: str) -> Dict[str, Any]:
        self.calls.append(("inspect", ref))
        return copy.deepcopy(self._get(ref))

    async def exists(self, ref: str) -> bool:
        return ref in self.containers

    async def is_running(self, ref: str) -> bool:
        return bool(self._get(ref).get("State", {}).get("Running"))

    async def stop(self, ref: str, timeout: int) -> None:
        self.calls.append(("stop", ref))
        if not self.ignore_stop:
            self._set_running(ref, False)

    async def kill(self, ref: str) -> None:
        self.calls.append(("kill", ref))
        if not self.ignore_kill:
            self._set_running(ref, False)

    async def start(self, ref: str) -> None:
        self.calls.append(("start", ref))
        if self.fail_start:
            raise RuntimeClientError("Docker start failed", details={"workload": ref})
        self._set_running(ref, True)

    async def remove(self, ref: str) -> None:
        self.calls.append(("remove", ref))
        self._get(ref)
        del self.containers[ref]

    async def create(self, spec: CreationSpec) -> str:
        self.calls.append(("create", spec.name))
        if spec.name in self.containers:
            raise RuntimeClientError("Conflict: name in use", details={"workload": spec.name})
        self.created.append(spec)
        kwargs = spec.to_docker_kwargs()
        self.containers[spec.name] = make_inspect(
            image=spec.image,
            mounts=[(host, cfg["bind"]) for host, cfg in kwargs["volumes"].items()],
            ports={p.container_port: p.host_port for p in spec.ports},
            env=list(spec.env),
            cmd=list(spec.command),
            running=False,
        )
        return f"id-{spec.name}-{len(self.created)}"

    async def commit(self, ref: str, repository: str, tag: str) -> str:
        self.calls.append(("commit", ref))
        self._get(ref)
        return f"{repository}:{tag}"

    async def save_image(self, image: str, dest: Path) -> None:
        self.calls.append(("save_image", image))
        Path(dest).write_bytes(f"image-tar:{image}".encode() * 64)

    async def load_image(self, src: Path) -> None:
        self.calls.append(("load_image", str(src)))
        self.loaded_images.append(Path(src).read_bytes())


def make_inspect(
    image: str = "nginx:1.25",
    mounts: List[Tuple[str, str]] | None = None,
    ports: Dict[str, str | None] | None = None,
    env: List[str] | None = None,
    cmd: List[str] | None = None,
    running: bool = True,
) -> Dict[str, Any]:
    """Build an inspect document shaped like the Docker Engine API's."""
    ports = ports or {}
    return {
        "Id": "0123456789ab",
        "Image": "sha256:deadbeef",
        "State": {"Running": running, "Status": "running" if running else "exited"},
        "Config": {
            "Image": image,
            "Env": env or [],
            "Cmd": cmd,
            "ExposedPorts": {port: {} for port in ports},
        },
        "HostConfig": {
            "PortBindings": {
                port: [{"HostIp": "", "HostPort": host_port}]
                for port, host_port in ports.items()
                if host_port is not None
            },
        },
        "Mounts": [
            {"Type": "bind", "Source": source, "Destination": destination, "RW": True}
            for source, destination in (mounts or [])
        ],
    }


def write_file(path: Path, content: str | bytes, mtime: float | None = None) -> Path:
    """Write a file, creating parents, optionally pinning its mtime."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        content = content.encode()
    path.write_bytes(content)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path) -> VaultConfig:
    """Create a test configuration."""
    return VaultConfig(
        backup_root=temp_dir / "backups",
        retention_days=7,
        stop_timeout=1,
        archive_codec=ArchiveCodec.ZSTD,
        package_archives=True,
        zstd_level=3,
        max_concurrent_transfers=2,
    )


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    """Create an empty in-memory runtime."""
    return FakeRuntime()


@pytest.fixture
def web1(temp_dir: Path, fake_runtime: FakeRuntime) -> Dict[str, Any]:
    """
    A running workload 'web1' with two bind mounts and one published port.

    /data/web1 holds a (config) file that never changes; /data/web1-logs
    holds a log that the tests append to between backups.
    """
    data = temp_dir / "host" / "data" / "web1"
    logs = temp_dir / "host" / "data" / "web1-logs"
    write_file(data / "config.yml", "listen: 80\n", mtime=1_700_000_000)
    write_file(data / "html" / "index.html", "<h1>hello</h1>\n", mtime=1_700_000_000)
    write_file(logs / "access.log", "GET /\n", mtime=1_700_000_000)

    fake_runtime.add(
        "web1",
        make_inspect(
            image="nginx:1.25",
            mounts=[(str(data), "/usr/share/nginx"), (str(logs), "/var/log/nginx")],
            ports={"80/tcp": "8080", "443/tcp": None},
            env=["MODE=prod"],
            cmd=["nginx", "-g", "daemon off;"],
            running=True,
        ),
    )
    return {"name": "web1", "data": data, "logs": logs}
