# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Packaging Stage Tests.
"""

import io
import os
import tarfile
from pathlib import Path

import pytest

from conftest import write_file
from dockvault.config import ArchiveCodec
from dockvault.exceptions import NotFoundError, PackagingError
from dockvault.packaging import (
    archive_name,
    compress_file,
    decompress_file,
    detect_codec,
    pack_generation,
    unpack_archive,
)


def _generation(temp_dir: Path) -> Path:
    generation = temp_dir / "web1" / "20260101_000000_000001"
    write_file(generation / "metadata.json", '{"image": "nginx:1.25"}')
    write_file(generation / "volumes" / "data" / "web1" / "index.html", "<h1>hi</h1>")
    os.symlink("index.html", generation / "volumes" / "data" / "web1" / "home.html")
    return generation


@pytest.mark.asyncio
@pytest.mark.parametrize("codec", [ArchiveCodec.ZSTD, ArchiveCodec.GZIP, ArchiveCodec.NONE])
async def test_pack_and_unpack_generation(temp_dir: Path, codec: ArchiveCodec):
    generation = _generation(temp_dir)
    archive = temp_dir / "archives" / archive_name("web1", generation.name, codec)

    await pack_generation(generation, archive, codec, level=3)
    extracted = await unpack_archive(archive, temp_dir / "extract")

    assert detect_codec(archive) == codec
    assert extracted.name == generation.name
    assert (extracted / "metadata.json").read_text() == '{"image": "nginx:1.25"}'
    web = extracted / "volumes" / "data" / "web1"
    assert (web / "index.html").read_text() == "<h1>hi</h1>"
    assert os.readlink(web / "home.html") == "index.html"
    assert not list(archive.parent.glob("*.tmp"))


def test_archive_name_uses_codec_extension():
    assert archive_name("web1", "20260101_000000_000001", ArchiveCodec.ZSTD) == (
        "web1_20260101_000000_000001.tar.zst"
    )
    assert archive_name("web1", "20260101_000000_000001", ArchiveCodec.NONE).endswith(".tar")


@pytest.mark.asyncio
async def test_pack_missing_generation_fails(temp_dir: Path):
    with pytest.raises(PackagingError):
        await pack_generation(temp_dir / "missing", temp_dir / "out.tar.zst")


@pytest.mark.asyncio
async def test_unpack_missing_archive_is_not_found(temp_dir: Path):
    with pytest.raises(NotFoundError):
        await unpack_archive(temp_dir / "missing.tar.zst", temp_dir / "extract")


@pytest.mark.asyncio
async def test_unpack_refuses_path_traversal(temp_dir: Path):
    archive = temp_dir / "evil.tar"
    payload = b"owned"
    with tarfile.open(archive, "w") as tar:
        info = tarfile.TarInfo("../escaped.txt")
        info.size = len(payload)
        tar.addfile(info, io.BytesIO(payload))

    with pytest.raises(PackagingError):
        await unpack_archive(archive, temp_dir / "extract")

    assert not (temp_dir / "escaped.txt").exists()


@pytest.mark.asyncio
async def test_unpack_corrupt_archive_fails(temp_dir: Path):
    archive = write_file(temp_dir / "corrupt.tar.zst", b"\x28\xb5\x2f\xfd" + b"garbage" * 10)

    with pytest.raises(PackagingError):
        await unpack_archive(archive, temp_dir / "extract")


@pytest.mark.asyncio
@pytest.mark.parametrize("codec", [ArchiveCodec.ZSTD, ArchiveCodec.GZIP])
async def test_compress_and_decompress_file(temp_dir: Path, codec: ArchiveCodec):
    original = write_file(temp_dir / "image.tar", b"layer-data" * 10_000)
    packed = temp_dir / f"image{codec.extension}"

    await compress_file(original, packed, codec, level=3)
    restored = await decompress_file(packed, temp_dir / "restored.tar")

    assert packed.stat().st_size < original.stat().st_size
    assert restored.read_bytes() == original.read_bytes()
