# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Packaging Stage - Turn a sealed generation into a single archive and back.

Archives are tar streams compressed with zstd (default, level 19), gzip,
or left uncompressed. They are written to ``<archive>.tmp`` and renamed
into place, so an archive path that exists is always complete.

Codec detection on unpack sniffs magic bytes rather than trusting the file
name, so any archive handed to ``restore --archive`` works.
"""

import asyncio
import gzip
import os
import shutil
import tarfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path, PurePosixPath
from typing import BinaryIO

import structlog
import zstandard as zstd

from dockvault.config import ArchiveCodec
from dockvault.exceptions import NotFoundError, PackagingError

logger = structlog.get_logger()

# Thread pool for CPU-bound compression
_executor = ThreadPoolExecutor(max_workers=2)

DEFAULT_ZSTD_LEVEL = 19

_ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"
_GZIP_MAGIC = b"\x1f\x8b"

_COPY_CHUNK = 1024 * 1024


def detect_codec(path: Path) -> ArchiveCodec:
    """Identify the codec of a file from its first bytes."""
    with open(path, "rb") as f:
        head = f.read(4)
    if head.startswith(_ZSTD_MAGIC):
        return ArchiveCodec.ZSTD
    if head.startswith(_GZIP_MAGIC):
        return ArchiveCodec.GZIP
    return ArchiveCodec.NONE


def archive_name(workload: str, timestamp: str, codec: ArchiveCodec) -> str:
    return f"{workload}_{timestamp}{codec.extension}"


def _check_member(member: tarfile.TarInfo, archive: Path) -> None:
    """Refuse members that would land outside the extraction directory."""
    for name in (member.name, member.linkname if member.islnk() else ""):
        if not name:
            continue
        parts = PurePosixPath(name).parts
        if name.startswith("/") or ".." in parts:
            raise PackagingError(
                f"Unsafe path in archive: {name}",
                details={"archive": str(archive), "member": member.name},
            )


def _pack_sync(
    generation_dir: Path,
    archive_path: Path,
    codec: ArchiveCodec,
    level: int,
) -> int:
    temp_path = archive_path.with_name(archive_path.name + ".tmp")
    archive_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(temp_path, "wb") as raw:
            if codec == ArchiveCodec.ZSTD:
                cctx = zstd.ZstdCompressor(level=level)
                with cctx.stream_writer(raw, closefd=False) as compressor:
                    with tarfile.open(fileobj=compressor, mode="w|") as tar:
                        tar.add(generation_dir, arcname=generation_dir.name)
            else:
                mode = "w|gz" if codec == ArchiveCodec.GZIP else "w|"
                with tarfile.open(fileobj=raw, mode=mode) as tar:
                    tar.add(generation_dir, arcname=generation_dir.name)
            raw.flush()
            os.fsync(raw.fileno())

        # Rename to final path (atomic on the same filesystem)
        os.replace(temp_path, archive_path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise

    return archive_path.stat().st_size


def _extract_stream(tar: tarfile.TarFile, dest: Path, archive: Path) -> None:
    # Members are validated one by one: a stream cannot be listed up front
    for member in tar:
        _check_member(member, archive)
        tar.extract(member, dest, filter="fully_trusted")


def _unpack_sync(archive: Path, dest: Path) -> Path:
    dest.mkdir(parents=True, exist_ok=True)
    codec = detect_codec(archive)

    with open(archive, "rb") as raw:
        if codec == ArchiveCodec.ZSTD:
            dctx = zstd.ZstdDecompressor()
            with dctx.stream_reader(raw, closefd=False) as reader:
                with tarfile.open(fileobj=reader, mode="r|") as tar:
                    _extract_stream(tar, dest, archive)
        else:
            mode = "r|gz" if codec == ArchiveCodec.GZIP else "r|"
            with tarfile.open(fileobj=raw, mode=mode) as tar:
                _extract_stream(tar, dest, archive)

    # Find the extracted generation directory
    extracted = [d for d in dest.iterdir() if d.is_dir()]
    if len(extracted) != 1:
        raise PackagingError(
            f"Archive does not contain exactly one generation: {archive}",
            details={"archive": str(archive), "entries": sorted(d.name for d in extracted)},
        )
    return extracted[0]


async def pack_generation(
    generation_dir: Path,
    archive_path: Path,
    codec: ArchiveCodec = ArchiveCodec.ZSTD,
    level: int = DEFAULT_ZSTD_LEVEL,
) -> Path:
    """
    Package a generation directory into one archive.

    Hard links inside the generation are stored as tar hard links, so the
    archive carries each unique file once.

    Args:
        generation_dir: Sealed generation directory
        archive_path: Final archive path
        codec: Compression codec
        level: zstd level (ignored for other codecs)

    Returns:
        Path to the archive

    Raises:
        PackagingError: If the archive cannot be written; no partial archive
            is left behind
    """
    if not generation_dir.is_dir():
        raise PackagingError(
            f"Generation directory not found: {generation_dir}",
            details={"generation_dir": str(generation_dir)},
        )

    loop = asyncio.get_running_loop()
    try:
        size = await loop.run_in_executor(
            _executor, _pack_sync, generation_dir, archive_path, codec, level
        )
    except (OSError, tarfile.TarError, zstd.ZstdError) as e:
        raise PackagingError(
            f"Failed to create archive: {e}",
            details={"generation_dir": str(generation_dir), "archive": str(archive_path)},
        ) from e

    logger.info(
        "archive_created",
        archive=str(archive_path),
        codec=codec.value,
        size=size,
    )
    return archive_path


async def unpack_archive(archive: Path, dest: Path) -> Path:
    """
    Extract an archive produced by pack_generation.

    Args:
        archive: Archive file
        dest: Directory to extract into

    Returns:
        Path to the extracted generation directory

    Raises:
        NotFoundError: If the archive does not exist
        PackagingError: On a corrupt archive or an unsafe member path
    """
    if not archive.is_file():
        raise NotFoundError(
            f"Archive not found: {archive}",
            details={"archive": str(archive)},
        )

    loop = asyncio.get_running_loop()
    try:
        generation_dir = await loop.run_in_executor(_executor, _unpack_sync, archive, dest)
    except PackagingError:
        raise
    except (OSError, tarfile.TarError, zstd.ZstdError, EOFError) as e:
        raise PackagingError(
            f"Failed to extract archive: {e}",
            details={"archive": str(archive), "dest": str(dest)},
        ) from e

    logger.info("archive_extracted", archive=str(archive), generation_dir=str(generation_dir))
    return generation_dir


def _copy_stream(src: BinaryIO, dst: BinaryIO) -> None:
    shutil.copyfileobj(src, dst, _COPY_CHUNK)


def _compress_file_sync(src: Path, dst: Path, codec: ArchiveCodec, level: int) -> None:
    temp_path = dst.with_name(dst.name + ".tmp")
    try:
        with open(src, "rb") as ifh, open(temp_path, "wb") as ofh:
            if codec == ArchiveCodec.ZSTD:
                zstd.ZstdCompressor(level=level).copy_stream(ifh, ofh)
            elif codec == ArchiveCodec.GZIP:
                with gzip.GzipFile(fileobj=ofh, mode="wb") as gz:
                    _copy_stream(ifh, gz)
            else:
                _copy_stream(ifh, ofh)
        os.replace(temp_path, dst)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


def _decompress_file_sync(src: Path, dst: Path) -> None:
    codec = detect_codec(src)
    temp_path = dst.with_name(dst.name + ".tmp")
    try:
        with open(src, "rb") as ifh, open(temp_path, "wb") as ofh:
            if codec == ArchiveCodec.ZSTD:
                zstd.ZstdDecompressor().copy_stream(ifh, ofh)
            elif codec == ArchiveCodec.GZIP:
                with gzip.GzipFile(fileobj=ifh, mode="rb") as gz:
                    _copy_stream(gz, ofh)
            else:
                _copy_stream(ifh, ofh)
        os.replace(temp_path, dst)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


async def compress_file(
    src: Path,
    dst: Path,
    codec: ArchiveCodec = ArchiveCodec.ZSTD,
    level: int = DEFAULT_ZSTD_LEVEL,
) -> Path:
    """Compress one file (streamed), e.g. a saved image tar."""
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(_executor, _compress_file_sync, src, dst, codec, level)
    except (OSError, zstd.ZstdError) as e:
        raise PackagingError(
            f"Compression failed for {src}: {e}",
            details={"src": str(src), "dst": str(dst)},
        ) from e

    logger.debug(
        "file_compressed",
        src=str(src),
        original_size=src.stat().st_size,
        compressed_size=dst.stat().st_size,
    )
    return dst


async def decompress_file(src: Path, dst: Path) -> Path:
    """Reverse compress_file; the codec is detected from the content."""
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(_executor, _decompress_file_sync, src, dst)
    except (OSError, zstd.ZstdError, EOFError) as e:
        raise PackagingError(
            f"Decompression failed for {src}: {e}",
            details={"src": str(src), "dst": str(dst)},
        ) from e
    return dst
