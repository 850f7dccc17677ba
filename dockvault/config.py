# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Dockvault Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation so a pipeline run
never observes a setting change halfway through.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List


class TransferStrategy(str, Enum):
    """How tree copies are performed."""

    NATIVE = "native"  # In-process walk with os.link / shutil.copy2
    RSYNC = "rsync"  # rsync -aH --delete --link-dest


class ArchiveCodec(str, Enum):
    """Compression used for packaged generation archives."""

    ZSTD = "zstd"
    GZIP = "gzip"
    NONE = "none"

    @property
    def extension(self) -> str:
        return {
            ArchiveCodec.ZSTD: ".tar.zst",
            ArchiveCodec.GZIP: ".tar.gz",
            ArchiveCodec.NONE: ".tar",
        }[self]


@dataclass(frozen=True)
class VaultConfig:
    """
    Immutable configuration for backup and restore runs.
    """

    # Root under which every workload gets its own directory
    backup_root: Path = field(default_factory=lambda: Path("/var/backups/docker"))

    # Sealed generations older than this are pruned (latest is always kept)
    retention_days: int = 7

    # Grace period in seconds given to the workload before a forced stop
    stop_timeout: int = 30

    # Tree copy implementation
    transfer_strategy: TransferStrategy = TransferStrategy.NATIVE

    # Codec for packaged archives
    archive_codec: ArchiveCodec = ArchiveCodec.ZSTD

    # Produce one portable archive per sealed generation
    package_archives: bool = True

    # zstd compression level (1-22)
    zstd_level: int = 19

    # Mounts copied in parallel
    max_concurrent_transfers: int = 4

    # Commit and save the container image alongside the data
    snapshot_image: bool = False

    # Start the recreated container after a restore
    start_after_restore: bool = True

    # Scratch space for archive extraction (default: <backup_root>/tmp)
    work_dir: Path | None = None

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if self.retention_days < 0:
            errors.append(f"retention_days must be >= 0, got {self.retention_days}")

        if self.stop_timeout < 1:
            errors.append(f"stop_timeout must be >= 1, got {self.stop_timeout}")

        if not 1 <= self.zstd_level <= 22:
            errors.append(f"zstd_level must be 1-22, got {self.zstd_level}")

        if self.max_concurrent_transfers < 1:
            errors.append(
                f"max_concurrent_transfers must be >= 1, got {self.max_concurrent_transfers}"
            )

        if not Path(self.backup_root).is_absolute():
            errors.append(f"backup_root must be an absolute path, got {self.backup_root}")

        if self.transfer_strategy not in {s.value for s in TransferStrategy}:
            errors.append(f"Unknown transfer_strategy: {self.transfer_strategy}")

        if self.archive_codec not in {c.value for c in ArchiveCodec}:
            errors.append(f"Unknown archive_codec: {self.archive_codec}")

        if errors:
            from dockvault.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

        # Normalize str paths and enum values passed by callers
        object.__setattr__(self, "backup_root", Path(self.backup_root))
        object.__setattr__(self, "transfer_strategy", TransferStrategy(self.transfer_strategy))
        object.__setattr__(self, "archive_codec", ArchiveCodec(self.archive_codec))
        if self.work_dir is not None:
            object.__setattr__(self, "work_dir", Path(self.work_dir))

    @property
    def scratch_dir(self) -> Path:
        return self.work_dir or self.backup_root / "tmp"

    def with_updates(self, **kwargs) -> "VaultConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return VaultConfig(**current)
