# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Workload runtime contract.

The pipeline only ever talks to the container runtime through these
operations. Implementations raise NotFoundError for unknown references
and RuntimeClientError for any other API failure.
"""

from pathlib import Path
from typing import Any, Dict, Protocol, runtime_checkable

from dockvault.models import CreationSpec


@runtime_checkable
class WorkloadRuntime(Protocol):
    """Abstract start/stop/inspect/create primitives of a container runtime."""

    async def inspect(self, ref: str) -> Dict[str, Any]:
        """Return the raw inspect document for ``ref``."""
        ...

    async def exists(self, ref: str) -> bool:
        ...

    async def is_running(self, ref: str) -> bool:
        ...

    async def stop(self, ref: str, timeout: int) -> None:
        """Ask the workload to stop, waiting at most ``timeout`` seconds."""
        ...

    async def kill(self, ref: str) -> None:
        ...

    async def start(self, ref: str) -> None:
        ...

    async def remove(self, ref: str) -> None:
        ...

    async def create(self, spec: CreationSpec) -> str:
        """Create a workload from ``spec`` and return its id."""
        ...

    async def commit(self, ref: str, repository: str, tag: str) -> str:
        """Snapshot the workload filesystem as an image, return its reference."""
        ...

    async def save_image(self, image: str, dest: Path) -> None:
        """Write the image as an uncompressed tar stream to ``dest``."""
        ...

    async def load_image(self, src: Path) -> None:
        """Load an uncompressed image tar from ``src``."""
        ...
