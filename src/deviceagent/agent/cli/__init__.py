"""Command-line interface for deviceagent.

This module provides the main CLI entry point and assembles all commands.

Commands:
- register: Register this device with a server
- run: Run the agent (tasks, periodic jobs, push listener)
- send: Schedule a command locally
- sync: Sync all record kinds once
- scan: Scan the filesystem
- status: Show registration and sync status
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from deviceagent.agent.cli.config import (
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
)
from deviceagent.agent.cli.data import scan, status, sync
from deviceagent.agent.cli.register import register
from deviceagent.agent.cli.run import run, send

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: int = logging.INFO, log_file: Path | None = None) -> None:
    """Configure logging to stdout and, optionally, a file.

    Args:
        level: Level of the deviceagent logger.
        log_file: Optional path of a log file.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger("deviceagent")
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


@click.group()
@click.version_option(package_name="deviceagent")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write logs to this file.",
)
def cli(verbose: bool, log_file: Path | None) -> None:
    """deviceagent - Device data sync and remote command agent."""
    setup_logging(logging.DEBUG if verbose else logging.WARNING, log_file)


cli.add_command(register)
cli.add_command(run)
cli.add_command(send)
cli.add_command(sync)
cli.add_command(scan)
cli.add_command(status)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "setup_logging",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "save_config",
]
