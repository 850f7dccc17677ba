# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Runtime - Container runtime collaborators.
"""

from dockvault.runtime.base import WorkloadRuntime

__all__ = [
    "WorkloadRuntime",
    "DockerRuntime",
]


def __getattr__(name: str):
    # docker is only imported when the real runtime is requested
    if name == "DockerRuntime":
        from dockvault.runtime.docker_runtime import DockerRuntime

        return DockerRuntime
    raise AttributeError(name)
