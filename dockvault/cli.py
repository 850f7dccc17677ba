# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Dockvault CLI - Process boundary for backup, restore, list and prune.

Usage:
    dockvault backup <workload>
    dockvault restore <workload> [generation-id] [--map CTR=HOST ...] [--archive PATH]
    dockvault list <workload>
    dockvault prune <workload> [--dry-run]

Exit codes:
    0  success
    1  usage or configuration error
    2  workload, generation or archive not found
    3  transfer, quiesce or any other failure (including interruption)
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List, Sequence

import structlog

from dockvault import __version__
from dockvault.config import VaultConfig
from dockvault.core import list_generations, run_backup, run_prune, run_restore
from dockvault.env import create_config_from_env, portable, space_saver
from dockvault.exceptions import DockvaultError, UsageError
from dockvault.reconcile import parse_overrides
from dockvault.runtime.base import WorkloadRuntime

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_FAILURE = 3

PROFILES = {
    "space_saver": space_saver,
    "portable": portable,
}


def configure_logging(level: str = "info", json_logs: bool = False) -> None:
    """Configure structlog once for the process. Logs go to stderr."""
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


class _ArgumentParser(argparse.ArgumentParser):
    """argparse exits with 2 on bad usage; usage errors are 1 here."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="dockvault",
        description="Incremental backup and restore of Docker workloads",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--backup-root", type=Path, help="Backup root directory")
    parser.add_argument("--retention-days", type=int, help="Retention horizon in days")
    parser.add_argument(
        "--profile",
        choices=sorted(PROFILES),
        help="Apply a configuration profile",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")

    sub = parser.add_subparsers(dest="command", required=True)

    backup = sub.add_parser("backup", help="Take a new generation of a workload")
    backup.add_argument("workload")

    restore = sub.add_parser("restore", help="Recreate a workload from a generation")
    restore.add_argument("workload")
    restore.add_argument("generation", nargs="?", help="Generation id (default: latest)")
    restore.add_argument(
        "--map",
        dest="overrides",
        action="append",
        default=[],
        metavar="CTR=HOST",
        help="Restore the mount at container path CTR to host path HOST",
    )
    restore.add_argument("--archive", type=Path, help="Restore from a standalone archive")
    restore.add_argument(
        "--no-start",
        action="store_true",
        help="Create the workload without starting it",
    )

    listing = sub.add_parser("list", help="List the generations of a workload")
    listing.add_argument("workload")

    prune = sub.add_parser("prune", help="Apply the retention policy")
    prune.add_argument("workload")
    prune.add_argument("--dry-run", action="store_true", help="Only report what would be deleted")

    return parser


def _build_config(args: argparse.Namespace) -> VaultConfig:
    config = create_config_from_env()

    if args.profile:
        config = PROFILES[args.profile](config)

    updates = {}
    if args.backup_root is not None:
        updates["backup_root"] = args.backup_root
    if args.retention_days is not None:
        updates["retention_days"] = args.retention_days
    if getattr(args, "no_start", False):
        updates["start_after_restore"] = False
    if updates:
        config = config.with_updates(**updates)
    return config


def _default_runtime() -> WorkloadRuntime:
    from dockvault.runtime.docker_runtime import DockerRuntime

    return DockerRuntime()


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _dispatch(
    args: argparse.Namespace,
    config: VaultConfig,
    runtime: WorkloadRuntime | None,
) -> int:
    if args.command == "backup":
        result = await run_backup(config, runtime or _default_runtime(), args.workload)
        _print_json(asdict(result))

    elif args.command == "restore":
        if args.generation and args.archive:
            raise UsageError("A generation id and --archive are mutually exclusive")
        overrides = parse_overrides(args.overrides)
        result = await run_restore(
            config,
            runtime or _default_runtime(),
            args.workload,
            timestamp=args.generation,
            overrides=overrides,
            archive=args.archive,
        )
        _print_json(asdict(result))

    elif args.command == "list":
        generations, latest = await list_generations(config, args.workload)
        for generation in generations:
            flags: List[str] = []
            if generation.timestamp == latest:
                flags.append("latest")
            if not generation.sealed:
                flags.append("unsealed")
            if generation.archive_path:
                flags.append(f"archive={generation.archive_path.name}")
            print(f"{generation.timestamp}  {' '.join(flags)}".rstrip())

    elif args.command == "prune":
        result = await run_prune(config, args.workload, dry_run=args.dry_run)
        _print_json(asdict(result))

    return EXIT_OK


def main(argv: Sequence[str] | None = None, runtime: WorkloadRuntime | None = None) -> int:
    """
    CLI entry point.

    Args:
        argv: Arguments (default: sys.argv[1:])
        runtime: Container runtime (default: local Docker daemon)

    Returns:
        Process exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.json_logs)

    try:
        config = _build_config(args)
        return asyncio.run(_dispatch(args, config, runtime))
    except DockvaultError as e:
        logger.error(
            "command_failed",
            command=args.command,
            error=e.message,
            details=e.details,
            exit_code=e.exit_code,
        )
        return e.exit_code
    except KeyboardInterrupt:
        logger.error("command_interrupted", command=args.command)
        return EXIT_FAILURE
    except Exception as e:
        logger.exception("command_crashed", command=args.command, error=str(e))
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
