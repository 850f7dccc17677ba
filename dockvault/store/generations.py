# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Dockvault Generation Store - Generation chain and latest pointer.

Layout per workload::

    <root>/<workload>/index.db                 append-only generation index
    <root>/<workload>/LATEST                   latest pointer (JSON)
    <root>/<workload>/<timestamp>/             generation directories
    <root>/<workload>/archives/<workload>_<timestamp>.tar.*

Index rows are never deleted: a pruned or discarded generation is only
marked, so a timestamp can never be handed out twice. The latest pointer is
replaced atomically (write to temp, then rename) and is the single commit
point of a backup.
"""

import asyncio
import json
import os
import re
import shutil
from dataclasses import replace
from datetime import datetime, UTC
from pathlib import Path
from typing import List

import aiofiles
import aiosqlite
import structlog

from dockvault.exceptions import GenerationError, NotFoundError, UsageError
from dockvault.models import Generation

logger = structlog.get_logger()

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"
TIMESTAMP_PATTERN = re.compile(r"^\d{8}_\d{6}(_\d{6})?$")
WORKLOAD_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

INDEX_FILENAME = "index.db"
LATEST_FILENAME = "LATEST"
ARCHIVES_DIRNAME = "archives"


def new_timestamp(now: datetime | None = None) -> str:
    """Fixed-width, string-sortable UTC timestamp token."""
    return (now or datetime.now(UTC)).strftime(TIMESTAMP_FORMAT)


def timestamp_to_datetime(timestamp: str) -> datetime:
    """Parse a generation timestamp (with or without microseconds)."""
    fmt = TIMESTAMP_FORMAT if timestamp.count("_") == 2 else "%Y%m%d_%H%M%S"
    return datetime.strptime(timestamp, fmt).replace(tzinfo=UTC)


def validate_workload(workload: str) -> str:
    if not workload or not WORKLOAD_PATTERN.fullmatch(workload):
        raise UsageError(
            f"Invalid workload reference: {workload!r}",
            details={"workload": workload},
        )
    return workload


def validate_timestamp(timestamp: str) -> str:
    if not timestamp or not TIMESTAMP_PATTERN.fullmatch(timestamp):
        raise UsageError(
            f"Invalid generation id: {timestamp!r}, expected YYYYMMDD_HHMMSS[_ffffff]",
            details={"timestamp": timestamp},
        )
    return timestamp


class GenerationStore:
    """
    Owner of generation directories and the latest pointer.

    No other component creates, seals or deletes generations, and only
    advance_latest() moves the pointer.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def workload_dir(self, workload: str) -> Path:
        return self.root / validate_workload(workload)

    def archives_dir(self, workload: str) -> Path:
        return self.workload_dir(workload) / ARCHIVES_DIRNAME

    def _index_path(self, workload: str) -> Path:
        return self.workload_dir(workload) / INDEX_FILENAME

    def _latest_path(self, workload: str) -> Path:
        return self.workload_dir(workload) / LATEST_FILENAME

    async def _connect(self, workload: str) -> aiosqlite.Connection:
        workload_dir = self.workload_dir(workload)
        workload_dir.mkdir(parents=True, exist_ok=True)

        db = await aiosqlite.connect(self._index_path(workload))
        await db.execute("""
            CREATE TABLE IF NOT EXISTS generations (
                timestamp TEXT PRIMARY KEY,
                path TEXT NOT NULL,
                created_at TEXT NOT NULL,
                metadata_ok INTEGER NOT NULL DEFAULT 0,
                transfer_ok INTEGER NOT NULL DEFAULT 0,
                sealed_at TEXT,
                archive_path TEXT,
                deleted_at TEXT
            )
        """)
        await db.commit()
        return db

    def _row_to_generation(self, workload: str, row) -> Generation:
        return Generation(
            workload=workload,
            timestamp=row[0],
            path=Path(row[1]),
            created_at=row[2],
            sealed=row[3] is not None,
            archive_path=Path(row[4]) if row[4] else None,
        )

    # ------------------------------------------------------------------
    # Chain operations
    # ------------------------------------------------------------------

    async def create(self, workload: str, timestamp: str | None = None) -> Generation:
        """
        Create a new, unsealed generation.

        Raises:
            GenerationError: If the timestamp exists or does not sort after
                every generation ever created for this workload
        """
        timestamp = validate_timestamp(timestamp or new_timestamp())
        path = self.workload_dir(workload) / timestamp
        now = datetime.now(UTC).isoformat()

        db = await self._connect(workload)
        try:
            async with db.execute("SELECT MAX(timestamp) FROM generations") as cursor:
                row = await cursor.fetchone()
            newest = row[0] if row else None

            if newest is not None and timestamp <= newest:
                raise GenerationError(
                    f"Generation timestamp {timestamp} is not after {newest}",
                    details={"workload": workload, "timestamp": timestamp, "newest": newest},
                )

            if path.exists():
                raise GenerationError(
                    f"Generation directory already exists: {path}",
                    details={"workload": workload, "timestamp": timestamp},
                )

            path.mkdir(parents=True)

            await db.execute(
                """
                INSERT INTO generations (timestamp, path, created_at)
                VALUES (?, ?, ?)
                """,
                (timestamp, str(path), now),
            )
            await db.commit()
        finally:
            await db.close()

        logger.info("generation_created", workload=workload, timestamp=timestamp)

        return Generation(workload=workload, timestamp=timestamp, path=path, created_at=now)

    async def record_metadata(self, generation: Generation) -> None:
        """Record that the metadata blob was written."""
        await self._set_flag(generation, "metadata_ok")

    async def record_transfer(self, generation: Generation) -> None:
        """Record that every mount was transferred."""
        await self._set_flag(generation, "transfer_ok")

    async def _set_flag(self, generation: Generation, column: str) -> None:
        db = await self._connect(generation.workload)
        try:
            cursor = await db.execute(
                f"UPDATE generations SET {column} = 1 "
                "WHERE timestamp = ? AND deleted_at IS NULL",
                (generation.timestamp,),
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise GenerationError(
                    f"Unknown generation: {generation.timestamp}",
                    details={"workload": generation.workload, "timestamp": generation.timestamp},
                )
        finally:
            await db.close()

    async def seal(self, generation: Generation) -> Generation:
        """
        Seal a generation. Idempotent.

        Raises:
            GenerationError: If metadata or transfer success was not recorded
        """
        db = await self._connect(generation.workload)
        try:
            async with db.execute(
                """
                SELECT metadata_ok, transfer_ok, sealed_at
                FROM generations
                WHERE timestamp = ? AND deleted_at IS NULL
                """,
                (generation.timestamp,),
            ) as cursor:
                row = await cursor.fetchone()

            if row is None:
                raise GenerationError(
                    f"Unknown generation: {generation.timestamp}",
                    details={"workload": generation.workload, "timestamp": generation.timestamp},
                )

            metadata_ok, transfer_ok, sealed_at = row
            if not (metadata_ok and transfer_ok):
                raise GenerationError(
                    f"Generation {generation.timestamp} cannot be sealed",
                    details={
                        "workload": generation.workload,
                        "timestamp": generation.timestamp,
                        "metadata_ok": bool(metadata_ok),
                        "transfer_ok": bool(transfer_ok),
                    },
                )

            if sealed_at is None:
                await db.execute(
                    "UPDATE generations SET sealed_at = ? WHERE timestamp = ?",
                    (datetime.now(UTC).isoformat(), generation.timestamp),
                )
                await db.commit()
                logger.info(
                    "generation_sealed",
                    workload=generation.workload,
                    timestamp=generation.timestamp,
                )
        finally:
            await db.close()

        return replace(generation, sealed=True)

    async def record_archive(self, generation: Generation, archive_path: Path) -> Generation:
        db = await self._connect(generation.workload)
        try:
            await db.execute(
                "UPDATE generations SET archive_path = ? WHERE timestamp = ?",
                (str(archive_path), generation.timestamp),
            )
            await db.commit()
        finally:
            await db.close()

        return replace(generation, archive_path=archive_path)

    async def get(self, workload: str, timestamp: str) -> Generation:
        """
        Look up one live generation.

        Raises:
            NotFoundError: If it does not exist or was deleted
        """
        validate_timestamp(timestamp)
        db = await self._connect(workload)
        try:
            async with db.execute(
                """
                SELECT timestamp, path, created_at, sealed_at, archive_path
                FROM generations
                WHERE timestamp = ? AND deleted_at IS NULL
                """,
                (timestamp,),
            ) as cursor:
                row = await cursor.fetchone()
        finally:
            await db.close()

        if row is None:
            raise NotFoundError(
                f"Generation not found: {workload}/{timestamp}",
                details={"workload": workload, "timestamp": timestamp},
            )
        return self._row_to_generation(workload, row)

    async def list(self, workload: str, sealed_only: bool = False) -> List[Generation]:
        """List live generations, newest first."""
        if not self._index_path(workload).exists():
            return []

        query = """
            SELECT timestamp, path, created_at, sealed_at, archive_path
            FROM generations
            WHERE deleted_at IS NULL
        """
        if sealed_only:
            query += " AND sealed_at IS NOT NULL"
        query += " ORDER BY timestamp DESC"

        generations: List[Generation] = []
        db = await self._connect(workload)
        try:
            async with db.execute(query) as cursor:
                async for row in cursor:
                    generations.append(self._row_to_generation(workload, row))
        finally:
            await db.close()

        return generations

    # ------------------------------------------------------------------
    # Latest pointer
    # ------------------------------------------------------------------

    async def latest(self, workload: str) -> Generation | None:
        """The generation the latest pointer refers to, if still sealed."""
        timestamp = await self._read_pointer(workload)
        if timestamp is None:
            return None

        try:
            generation = await self.get(workload, timestamp)
        except NotFoundError:
            logger.warning("latest_pointer_dangling", workload=workload, timestamp=timestamp)
            return None

        # A generation whose directory is gone is still restorable from its archive
        restorable = generation.path.is_dir() or (
            generation.archive_path is not None and generation.archive_path.is_file()
        )
        if not generation.sealed or not restorable:
            logger.warning("latest_pointer_invalid", workload=workload, timestamp=timestamp)
            return None
        return generation

    async def _read_pointer(self, workload: str) -> str | None:
        latest_path = self._latest_path(workload)
        try:
            async with aiofiles.open(latest_path, "r") as f:
                pointer = json.loads(await f.read())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("latest_pointer_unreadable", workload=workload, error=str(e))
            return None
        return pointer.get("timestamp")

    async def advance_latest(self, generation: Generation) -> None:
        """
        Point latest at a sealed generation.

        This is the single commit point of a backup.

        Raises:
            GenerationError: If the generation is not sealed or is older
                than the current latest
        """
        current = await self.get(generation.workload, generation.timestamp)
        if not current.sealed:
            raise GenerationError(
                f"Cannot advance latest to unsealed generation {generation.timestamp}",
                details={"workload": generation.workload, "timestamp": generation.timestamp},
            )

        previous = await self._read_pointer(generation.workload)
        if previous is not None and previous > generation.timestamp:
            raise GenerationError(
                f"Latest pointer {previous} is newer than {generation.timestamp}",
                details={"workload": generation.workload, "timestamp": generation.timestamp},
            )

        latest_path = self._latest_path(generation.workload)
        temp_path = latest_path.with_suffix(".tmp")
        pointer = {
            "timestamp": generation.timestamp,
            "path": str(generation.path),
            "updated_at": datetime.now(UTC).isoformat(),
        }

        async with aiofiles.open(temp_path, "w") as f:
            await f.write(json.dumps(pointer))
            await f.flush()
            os.fsync(f.fileno())

        # Atomic on POSIX filesystems
        os.replace(temp_path, latest_path)

        logger.info(
            "latest_advanced",
            workload=generation.workload,
            timestamp=generation.timestamp,
            previous=previous,
        )

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def discard(self, generation: Generation) -> int:
        """
        Delete a generation directory and its archive.

        Returns:
            Bytes freed (files whose last link was removed)

        Raises:
            GenerationError: If the generation is the latest
        """
        latest = await self._read_pointer(generation.workload)
        if latest == generation.timestamp:
            raise GenerationError(
                f"Refusing to delete latest generation {generation.timestamp}",
                details={"workload": generation.workload, "timestamp": generation.timestamp},
            )

        freed = 0
        if generation.path.exists():
            freed += await asyncio.to_thread(_unique_bytes, generation.path)
            await asyncio.to_thread(shutil.rmtree, generation.path)

        if generation.archive_path and generation.archive_path.exists():
            freed += generation.archive_path.stat().st_size
            generation.archive_path.unlink()

        db = await self._connect(generation.workload)
        try:
            await db.execute(
                "UPDATE generations SET deleted_at = ? WHERE timestamp = ?",
                (datetime.now(UTC).isoformat(), generation.timestamp),
            )
            await db.commit()
        finally:
            await db.close()

        logger.info(
            "generation_discarded",
            workload=generation.workload,
            timestamp=generation.timestamp,
            sealed=generation.sealed,
            bytes_freed=freed,
        )
        return freed


def _unique_bytes(path: Path) -> int:
    """Size of regular files under path that have no other hard link."""
    total = 0
    for dirpath, _, filenames in os.walk(path):
        for name in filenames:
            st = os.lstat(os.path.join(dirpath, name))
            if st.st_nlink == 1:
                total += st.st_size
    return total
