# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Retention Pruner Tests.

1. Retention gating - only generations older than the horizon go
2. Latest protection - the latest generation survives any horizon
3. Dry-run safety - dry-run never deletes anything
"""

from datetime import datetime, timedelta, UTC
from pathlib import Path

import pytest

from conftest import write_file
from dockvault.retention import prune_generations, prune_orphan_archives
from dockvault.store import GenerationStore, new_timestamp

NOW = datetime(2026, 6, 1, 12, 0, 0, tzinfo=UTC)


async def _sealed_at(store: GenerationStore, workload: str, days_ago: int):
    generation = await store.create(workload, new_timestamp(NOW - timedelta(days=days_ago)))
    write_file(generation.path / "volumes" / "data" / "file.txt", f"{days_ago} days")
    await store.record_metadata(generation)
    await store.record_transfer(generation)
    return await store.seal(generation)


@pytest.mark.asyncio
async def test_only_generations_past_the_horizon_are_pruned(temp_dir: Path):
    store = GenerationStore(temp_dir)
    generations = {}
    for days in (40, 20, 5, 0):
        generations[days] = await _sealed_at(store, "web1", days)
    await store.advance_latest(generations[0])

    result = await prune_generations(store, "web1", retention_days=30, now=NOW)

    assert result.deleted == [generations[40].timestamp]
    assert not generations[40].path.exists()
    for days in (20, 5, 0):
        assert generations[days].path.is_dir()
    assert result.failed == []
    assert result.bytes_freed > 0


@pytest.mark.asyncio
async def test_latest_survives_any_horizon(temp_dir: Path):
    store = GenerationStore(temp_dir)
    old = await _sealed_at(store, "web1", 400)
    await store.advance_latest(old)

    result = await prune_generations(store, "web1", retention_days=0, now=NOW)

    assert result.deleted == []
    assert result.kept == [old.timestamp]
    assert old.path.is_dir()


@pytest.mark.asyncio
async def test_unsealed_generations_are_always_pruned(temp_dir: Path):
    store = GenerationStore(temp_dir)
    latest = await _sealed_at(store, "web1", 2)
    await store.advance_latest(latest)
    leftover = await store.create("web1", new_timestamp(NOW - timedelta(days=1)))

    result = await prune_generations(store, "web1", retention_days=30, now=NOW)

    assert result.deleted == [leftover.timestamp]
    assert not leftover.path.exists()


@pytest.mark.asyncio
async def test_dry_run_deletes_nothing(temp_dir: Path):
    store = GenerationStore(temp_dir)
    old = await _sealed_at(store, "web1", 40)
    latest = await _sealed_at(store, "web1", 0)
    await store.advance_latest(latest)

    result = await prune_generations(store, "web1", retention_days=30, now=NOW, dry_run=True)

    assert result.dry_run
    assert result.deleted == [old.timestamp]
    assert old.path.is_dir()
    assert len(await store.list("web1")) == 2


@pytest.mark.asyncio
async def test_pruning_removes_the_generation_archive(temp_dir: Path):
    store = GenerationStore(temp_dir)
    old = await _sealed_at(store, "web1", 40)
    archive = write_file(store.archives_dir("web1") / f"web1_{old.timestamp}.tar.zst", b"x" * 10)
    old = await store.record_archive(old, archive)
    latest = await _sealed_at(store, "web1", 0)
    await store.advance_latest(latest)

    await prune_generations(store, "web1", retention_days=30, now=NOW)

    assert not archive.exists()


@pytest.mark.asyncio
async def test_orphan_archives_are_removed(temp_dir: Path):
    store = GenerationStore(temp_dir)
    latest = await _sealed_at(store, "web1", 0)
    kept = write_file(store.archives_dir("web1") / f"web1_{latest.timestamp}.tar.zst", b"k")
    latest = await store.record_archive(latest, kept)
    await store.advance_latest(latest)
    orphan = write_file(store.archives_dir("web1") / "web1_20200101_000000_000000.tar.zst", b"o")
    partial = write_file(store.archives_dir("web1") / f"web1_{latest.timestamp}.tar.zst.tmp", b"p")

    removed = await prune_orphan_archives(store, "web1")

    assert sorted(removed) == sorted([orphan.name, partial.name])
    assert kept.exists()
    assert not orphan.exists()
    assert not partial.exists()


@pytest.mark.asyncio
async def test_prune_failures_are_counted_and_pruning_continues(temp_dir: Path, monkeypatch):
    store = GenerationStore(temp_dir)
    first = await _sealed_at(store, "web1", 50)
    second = await _sealed_at(store, "web1", 40)
    latest = await _sealed_at(store, "web1", 0)
    await store.advance_latest(latest)

    original_discard = store.discard

    async def flaky_discard(generation):
        if generation.timestamp == second.timestamp:
            raise OSError("permission denied")
        return await original_discard(generation)

    monkeypatch.setattr(store, "discard", flaky_discard)

    result = await prune_generations(store, "web1", retention_days=30, now=NOW)

    assert result.failed == [second.timestamp]
    assert result.deleted == [first.timestamp]
    assert not first.path.exists()
