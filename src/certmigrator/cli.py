"""
Command-line entry point.

Usage:
    migrator [-config file.json] import SOURCE STORAGE_NAME
    migrator [-config file.json] export STORAGE_NAME DEST

The optional config file is a JSON object whose "storage" key holds the
backend configuration, e.g.:

    {"storage": {"host": "redis.internal", "port": 6379}}
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from certmigrator.config import get_settings
from certmigrator.core.exceptions import ConfigFileError, MigratorError
from certmigrator.core.logging import (
    configure_logger,
    intercept_standard_logging,
    logger,
)
from certmigrator.core.trace_context import new_run_id
from certmigrator.infrastructure import StorageRegistry, default_registry, init_storage
from certmigrator.models.config import MigratorConfigFile
from certmigrator.services import export_files, import_files

USAGE = {
    "import": "migrator [-config file.json] import SOURCE STORAGE_NAME",
    "export": "migrator [-config file.json] export STORAGE_NAME DEST",
}


def add_run_options(parser: argparse.ArgumentParser, suppress: bool = False) -> None:
    """
    Add the options accepted both before and after the subcommand.

    Subcommand copies use SUPPRESS defaults so an option given before the
    subcommand isn't reset when the subparser runs.
    """
    parser.add_argument(
        "--log-level",
        dest="log_level",
        metavar="LEVEL",
        default=argparse.SUPPRESS if suppress else None,
        help="Override the log level (DEBUG, INFO, WARNING, ...)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=argparse.SUPPRESS if suppress else False,
        help="Read the source side without writing to the destination",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with the import and export subcommands."""
    parser = argparse.ArgumentParser(
        prog="migrator",
        description="Copy TLS certificates between a directory and a storage backend",
    )
    parser.add_argument(
        "-config",
        "--config",
        dest="config",
        metavar="FILE",
        help="Path to json file with a 'storage' object",
    )
    add_run_options(parser)

    run_options = argparse.ArgumentParser(add_help=False)
    add_run_options(run_options, suppress=True)

    subparsers = parser.add_subparsers(dest="command")

    import_cmd = subparsers.add_parser(
        "import", usage=USAGE["import"], parents=[run_options]
    )
    import_cmd.add_argument("source", nargs="?", metavar="SOURCE")
    import_cmd.add_argument("storage_name", nargs="?", metavar="STORAGE_NAME")

    export_cmd = subparsers.add_parser(
        "export", usage=USAGE["export"], parents=[run_options]
    )
    export_cmd.add_argument("storage_name", nargs="?", metavar="STORAGE_NAME")
    export_cmd.add_argument("dest", nargs="?", metavar="DEST")

    return parser


def print_usage(registry: StorageRegistry, commands: list[str] | None = None) -> None:
    """Print usage lines for the given (default: all) subcommands."""
    for command in commands or list(USAGE):
        print(USAGE[command])
    print(f"Available storages: {', '.join(registry.names())}")


def load_config(config_file: str | None) -> dict[str, Any]:
    """
    Read the "storage" object from a JSON config file.

    Args:
        config_file: Path to the file, or None for no configuration

    Returns:
        The storage configuration (empty when no file is given)

    Raises:
        ConfigFileError: If the file is unreadable, not a JSON object,
                         or has no "storage" object
    """
    if not config_file:
        return {}

    try:
        data = Path(config_file).read_bytes()
    except OSError as e:
        raise ConfigFileError(f"Error reading config: {e}") from e

    try:
        decoded = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigFileError(f"Couldn't decode json in {config_file}: {e}") from e

    if not isinstance(decoded, dict):
        raise ConfigFileError(f"{config_file} must contain a JSON object")
    if "storage" not in decoded:
        raise ConfigFileError(f"key 'storage' not found in {config_file}")

    try:
        return MigratorConfigFile.model_validate(decoded).storage
    except PydanticValidationError as e:
        raise ConfigFileError(f"Invalid 'storage' value in {config_file}: {e}") from e


def main(argv: list[str] | None = None, registry: StorageRegistry | None = None) -> int:
    """
    Run the migrator.

    Args:
        argv: Command-line arguments (sys.argv[1:] if None)
        registry: Storage registry (default_registry if None)

    Returns:
        Process exit status
    """
    registry = registry if registry is not None else default_registry
    args = build_parser().parse_args(argv)

    if args.log_level:
        configure_logger(args.log_level)
    intercept_standard_logging()
    new_run_id()

    if args.command == "import":
        source, storage_name = args.source, args.storage_name
        ready = source is not None and storage_name is not None
    elif args.command == "export":
        storage_name, dest = args.storage_name, args.dest
        ready = storage_name is not None and dest is not None
    else:
        ready = False

    if not ready:
        print_usage(registry, [args.command] if args.command else None)
        return 1

    settings = get_settings()

    try:
        config = load_config(args.config or settings.config_file)
        storage = init_storage(storage_name, config, registry=registry)
    except MigratorError as e:
        logger.error(f"Failed to init storage: {e}")
        return 1

    try:
        if args.command == "import":
            summary = import_files(storage, source, dry_run=args.dry_run)
        else:
            summary = export_files(storage, dest, dry_run=args.dry_run)
    except MigratorError as e:
        logger.error(f"{args.command.capitalize()} failed: {e}")
        return 1
    finally:
        storage.close()

    prefix = "[DRY RUN] " if summary.dry_run else ""
    logger.info(
        f"{prefix}{args.command.capitalize()}ed {summary.items} item(s), "
        f"{summary.total_bytes} bytes"
    )
    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
