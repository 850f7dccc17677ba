# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Docker runtime - WorkloadRuntime backed by the Docker Engine API.

The docker SDK is synchronous, so every call is pushed to a worker thread
to keep the event loop free while mounts are being copied.
"""

import asyncio
import os
from pathlib import Path
from typing import Any, Callable, Dict

import docker
import structlog
from docker.errors import DockerException, NotFound

from dockvault.exceptions import NotFoundError, RuntimeClientError
from dockvault.models import CreationSpec

logger = structlog.get_logger()


class DockerRuntime:
    """Container runtime talking to a local or remote Docker daemon."""

    def __init__(self, client: Any | None = None, base_url: str | None = None):
        if client is None:
            docker_host = base_url or os.environ.get(
                "DOCKER_HOST", "unix:///var/run/docker.sock"
            )
            try:
                client = docker.DockerClient(base_url=docker_host)
            except DockerException as e:
                raise RuntimeClientError(
                    f"Cannot connect to Docker daemon: {e}",
                    details={"docker_host": docker_host},
                ) from e
        self.client = client

    async def _call(self, ref: str, action: str, func: Callable, *args, **kwargs) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except NotFound as e:
            raise NotFoundError(
                f"Workload not found: {ref}",
                details={"workload": ref, "action": action},
            ) from e
        except DockerException as e:
            raise RuntimeClientError(
                f"Docker {action} failed: {e}",
                details={"workload": ref, "action": action},
            ) from e

    async def _container(self, ref: str) -> Any:
        return await self._call(ref, "get", self.client.containers.get, ref)

    async def inspect(self, ref: str) -> Dict[str, Any]:
        container = await self._container(ref)
        return container.attrs

    async def exists(self, ref: str) -> bool:
        try:
            await self._container(ref)
        except NotFoundError:
            return False
        return True

    async def is_running(self, ref: str) -> bool:
        container = await self._container(ref)
        await self._call(ref, "reload", container.reload)
        return bool(container.attrs.get("State", {}).get("Running"))

    async def stop(self, ref: str, timeout: int) -> None:
        container = await self._container(ref)
        await self._call(ref, "stop", container.stop, timeout=timeout)

    async def kill(self, ref: str) -> None:
        container = await self._container(ref)
        await self._call(ref, "kill", container.kill)

    async def start(self, ref: str) -> None:
        container = await self._container(ref)
        await self._call(ref, "start", container.start)

    async def remove(self, ref: str) -> None:
        container = await self._container(ref)
        await self._call(ref, "remove", container.remove, force=True)

    async def create(self, spec: CreationSpec) -> str:
        container = await self._call(
            spec.name,
            "create",
            self.client.containers.create,
            **spec.to_docker_kwargs(),
        )
        logger.info("container_created", workload=spec.name, container_id=container.id)
        return container.id

    async def commit(self, ref: str, repository: str, tag: str) -> str:
        container = await self._container(ref)
        await self._call(ref, "commit", container.commit, repository=repository, tag=tag)
        return f"{repository}:{tag}"

    async def save_image(self, image: str, dest: Path) -> None:
        def _save() -> None:
            img = self.client.images.get(image)
            with open(dest, "wb") as f:
                for chunk in img.save(named=True):
                    f.write(chunk)

        await self._call(image, "save", _save)

    async def load_image(self, src: Path) -> None:
        def _load() -> None:
            with open(src, "rb") as f:
                self.client.images.load(f)

        await self._call(str(src), "load", _load)
