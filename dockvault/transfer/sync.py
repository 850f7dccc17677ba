# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Native tree sync - Mirror a directory tree with hard-link-on-unchanged.

Behaves like ``rsync -aH --delete --link-dest=<base>``:

- directories, regular files and symlinks are reproduced (symlinks are
  never followed), with permissions, ownership (when running as root)
  and timestamps preserved
- files hard-linked to each other inside the source stay hard-linked
- a file whose size, mtime, mode, uid and gid match the file at the same
  relative path in ``link_base`` is hard-linked to it instead of copied
- with ``mirror=True`` anything in the destination that is absent from
  the source is removed
- with ``verify_existing=True`` a destination file is only left in place
  when its bytes match the source (``rsync --checksum``)

This runs synchronously and is meant to be called from a worker thread.
"""

import errno
import os
import shutil
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Tuple

import structlog

logger = structlog.get_logger()

_CAN_CHOWN = hasattr(os, "geteuid") and os.geteuid() == 0

# Errors on which hard-linking falls back to a fresh copy
_LINK_FALLBACK_ERRNOS = {errno.EXDEV, errno.EMLINK, errno.EPERM}

_COMPARE_CHUNK = 1024 * 1024


class SyncAborted(Exception):
    """Raised inside a sync when the caller asked it to stop."""

    pass


@dataclass
class SyncStats:
    """Counters for one tree sync."""

    files_copied: int = 0
    files_linked: int = 0
    files_unchanged: int = 0
    bytes_copied: int = 0
    bytes_linked: int = 0
    entries_removed: int = 0
    entries_skipped: int = 0

    def merge(self, other: "SyncStats") -> None:
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(self, name) + getattr(other, name))


def _same_content(a: os.stat_result, b: os.stat_result) -> bool:
    return (
        a.st_size == b.st_size
        and int(a.st_mtime) == int(b.st_mtime)
        and stat.S_IMODE(a.st_mode) == stat.S_IMODE(b.st_mode)
        and a.st_uid == b.st_uid
        and a.st_gid == b.st_gid
    )


def _same_bytes(a: str, b: str) -> bool:
    with open(a, "rb") as fa, open(b, "rb") as fb:
        while True:
            chunk_a = fa.read(_COMPARE_CHUNK)
            if chunk_a != fb.read(_COMPARE_CHUNK):
                return False
            if not chunk_a:
                return True


def _lstat_or_none(path: str) -> os.stat_result | None:
    try:
        return os.lstat(path)
    except FileNotFoundError:
        return None


def _remove(path: str, st: os.stat_result) -> None:
    if stat.S_ISDIR(st.st_mode):
        shutil.rmtree(path)
    else:
        os.unlink(path)


def _apply_owner(path: str, st: os.stat_result, follow: bool = True) -> None:
    if not _CAN_CHOWN:
        return
    if follow:
        os.chown(path, st.st_uid, st.st_gid)
    else:
        os.lchown(path, st.st_uid, st.st_gid)


def _copy_file(src: str, dst: str, st: os.stat_result) -> None:
    # Copy next to the destination and rename so a reader never sees half a file
    temp = f"{dst}.dockvault-tmp"
    shutil.copy2(src, temp, follow_symlinks=False)
    _apply_owner(temp, st)
    os.chmod(temp, stat.S_IMODE(st.st_mode))
    os.replace(temp, dst)


class _TreeSync:
    def __init__(
        self,
        src: Path,
        dst: Path,
        link_base: Path | None,
        mirror: bool,
        should_stop: Callable[[], bool] | None,
        verify_existing: bool = False,
    ):
        self.src = str(src)
        self.dst = str(dst)
        self.link_base = str(link_base) if link_base else None
        self.mirror = mirror
        self.should_stop = should_stop
        self.verify_existing = verify_existing
        self.stats = SyncStats()
        # (st_dev, st_ino) of multiply-linked source files -> destination path
        self.inodes: Dict[Tuple[int, int], str] = {}

    def run(self) -> SyncStats:
        src_st = os.stat(self.src)
        if not stat.S_ISDIR(src_st.st_mode):
            raise NotADirectoryError(errno.ENOTDIR, "source is not a directory", self.src)

        dst_st = _lstat_or_none(self.dst)
        if dst_st is not None and not stat.S_ISDIR(dst_st.st_mode):
            _remove(self.dst, dst_st)
            dst_st = None
        if dst_st is None:
            os.makedirs(self.dst)

        self._sync_dir("")
        self._finish_dir(self.dst, src_st)
        return self.stats

    def _check_stop(self) -> None:
        if self.should_stop is not None and self.should_stop():
            raise SyncAborted(self.src)

    def _sync_dir(self, rel: str) -> None:
        src_dir = os.path.join(self.src, rel)
        dst_dir = os.path.join(self.dst, rel)

        with os.scandir(src_dir) as it:
            entries = sorted(it, key=lambda e: e.name)

        names = set()
        for entry in entries:
            self._check_stop()
            names.add(entry.name)
            entry_rel = os.path.join(rel, entry.name)
            st = entry.stat(follow_symlinks=False)

            if stat.S_ISLNK(st.st_mode):
                self._sync_symlink(entry.path, os.path.join(dst_dir, entry.name), st)
            elif stat.S_ISDIR(st.st_mode):
                target = os.path.join(dst_dir, entry.name)
                existing = _lstat_or_none(target)
                if existing is not None and not stat.S_ISDIR(existing.st_mode):
                    _remove(target, existing)
                    existing = None
                if existing is None:
                    os.mkdir(target)
                self._sync_dir(entry_rel)
                self._finish_dir(target, st)
            elif stat.S_ISREG(st.st_mode):
                self._sync_file(entry.path, entry_rel, st)
            else:
                # Sockets, fifos and device nodes are not carried over
                self.stats.entries_skipped += 1
                logger.debug("special_file_skipped", path=entry.path)

        if self.mirror:
            with os.scandir(dst_dir) as it:
                extraneous = [e for e in it if e.name not in names]
            for entry in extraneous:
                _remove(entry.path, entry.stat(follow_symlinks=False))
                self.stats.entries_removed += 1

    def _finish_dir(self, path: str, st: os.stat_result) -> None:
        _apply_owner(path, st)
        os.chmod(path, stat.S_IMODE(st.st_mode))
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns))

    def _sync_symlink(self, src: str, dst: str, st: os.stat_result) -> None:
        target = os.readlink(src)
        existing = _lstat_or_none(dst)
        if existing is not None:
            if stat.S_ISLNK(existing.st_mode) and os.readlink(dst) == target:
                self.stats.files_unchanged += 1
                return
            _remove(dst, existing)
        os.symlink(target, dst)
        _apply_owner(dst, st, follow=False)
        if os.utime in os.supports_follow_symlinks:
            os.utime(dst, ns=(st.st_atime_ns, st.st_mtime_ns), follow_symlinks=False)
        self.stats.files_copied += 1

    def _sync_file(self, src: str, rel: str, st: os.stat_result) -> None:
        dst = os.path.join(self.dst, rel)
        existing = _lstat_or_none(dst)

        # Hard links inside the source tree stay hard links
        key = (st.st_dev, st.st_ino)
        if st.st_nlink > 1 and key in self.inodes:
            first = self.inodes[key]
            if existing is not None:
                if existing.st_ino == os.lstat(first).st_ino:
                    self.stats.files_unchanged += 1
                    return
                _remove(dst, existing)
            os.link(first, dst)
            self.stats.files_linked += 1
            return
        if st.st_nlink > 1:
            self.inodes[key] = dst

        if existing is not None:
            if (
                stat.S_ISREG(existing.st_mode)
                and _same_content(st, existing)
                and (not self.verify_existing or _same_bytes(src, dst))
            ):
                self.stats.files_unchanged += 1
                return
            _remove(dst, existing)

        if self.link_base is not None:
            base = os.path.join(self.link_base, rel)
            base_st = _lstat_or_none(base)
            if base_st is not None and stat.S_ISREG(base_st.st_mode) and _same_content(st, base_st):
                try:
                    os.link(base, dst)
                except OSError as e:
                    if e.errno not in _LINK_FALLBACK_ERRNOS:
                        raise
                    logger.debug("hard_link_fallback_copy", path=dst, error=str(e))
                else:
                    self.stats.files_linked += 1
                    self.stats.bytes_linked += st.st_size
                    return

        _copy_file(src, dst, st)
        self.stats.files_copied += 1
        self.stats.bytes_copied += st.st_size


def sync_tree(
    src: Path,
    dst: Path,
    link_base: Path | None = None,
    mirror: bool = True,
    should_stop: Callable[[], bool] | None = None,
    verify_existing: bool = False,
) -> SyncStats:
    """
    Make ``dst`` a copy of ``src``.

    Args:
        src: Source directory
        dst: Destination directory (created if missing)
        link_base: Previous copy of ``src`` used as hard-link source
        mirror: Remove destination entries absent from the source
        should_stop: Polled between entries; a true result aborts with SyncAborted
        verify_existing: Compare the bytes of destination files that look
            unchanged instead of trusting size and mtime

    Returns:
        SyncStats for the run
    """
    if link_base is not None and not Path(link_base).is_dir():
        link_base = None
    return _TreeSync(
        Path(src), Path(dst), link_base, mirror, should_stop, verify_existing
    ).run()
