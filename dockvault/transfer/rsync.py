# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
rsync tree sync - Delegate the byte-level copy to rsync.

Same contract as dockvault.transfer.sync.sync_tree, implemented with
``rsync -aH --numeric-ids [--delete] [--checksum] [--link-dest=<base>]``.
"""

import asyncio
import re
import shutil
from pathlib import Path
from typing import List

import structlog

from dockvault.errors import explain_missing_rsync
from dockvault.exceptions import ConfigurationError
from dockvault.transfer.sync import SyncStats

logger = structlog.get_logger()

_STAT_PATTERNS = {
    "files_copied": re.compile(r"Number of regular files transferred:\s*([\d,]+)"),
    "bytes_copied": re.compile(r"Total transferred file size:\s*([\d,]+)"),
    "entries_removed": re.compile(r"Number of deleted files:\s*([\d,]+)"),
}


def build_rsync_command(
    src: Path,
    dst: Path,
    link_base: Path | None = None,
    mirror: bool = True,
    checksum: bool = False,
) -> List[str]:
    """Build the rsync argv for one tree."""
    binary = shutil.which("rsync")
    if binary is None:
        raise ConfigurationError(explain_missing_rsync())

    cmd = [binary, "-aH", "--numeric-ids", "--stats"]
    if mirror:
        cmd.append("--delete")
    if checksum:
        cmd.append("--checksum")
    if link_base is not None and Path(link_base).is_dir():
        # rsync resolves a relative --link-dest against the destination
        cmd.append(f"--link-dest={Path(link_base).resolve()}")

    # Trailing slash: copy the contents, not the directory itself
    cmd.append(str(src).rstrip("/") + "/")
    cmd.append(str(dst).rstrip("/") + "/")
    return cmd


def parse_rsync_stats(output: str) -> SyncStats:
    stats = SyncStats()
    for field_name, pattern in _STAT_PATTERNS.items():
        match = pattern.search(output)
        if match:
            setattr(stats, field_name, int(match.group(1).replace(",", "")))
    return stats


async def rsync_tree(
    src: Path,
    dst: Path,
    link_base: Path | None = None,
    mirror: bool = True,
    checksum: bool = False,
) -> SyncStats:
    """
    Run rsync for one tree.

    Raises:
        OSError: If rsync exits non-zero (the caller scopes it to a mount)
    """
    cmd = build_rsync_command(src, dst, link_base, mirror, checksum)
    Path(dst).mkdir(parents=True, exist_ok=True)

    logger.debug("rsync_started", cmd=cmd)
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    try:
        stdout_bytes, stderr_bytes = await process.communicate()
    except asyncio.CancelledError:
        # Do not leave rsync writing into a tree that is about to be rolled back
        process.terminate()
        await process.wait()
        raise

    stdout = stdout_bytes.decode("utf-8", errors="replace")
    stderr = stderr_bytes.decode("utf-8", errors="replace").strip()

    if process.returncode != 0:
        raise OSError(
            f"rsync exited with code {process.returncode}: {stderr or 'no output'}"
        )

    return parse_rsync_stats(stdout)
