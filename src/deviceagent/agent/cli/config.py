"""Configuration utilities for the deviceagent CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click

from deviceagent.core.config import AgentConfig


def get_config_dir() -> Path:
    """Get the configuration directory for deviceagent.

    Returns:
        Path to ~/.deviceagent.
    """
    return Path.home() / ".deviceagent"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def require_agent_config() -> AgentConfig:
    """Build the runtime configuration, exiting if no server is configured."""
    data = load_config()
    if not data.get("server_url"):
        click.echo("Error: No server configured. Run 'deviceagent register' first.", err=True)
        sys.exit(1)
    data.setdefault("data_dir", str(get_config_dir()))
    try:
        return AgentConfig.from_dict(data)
    except (TypeError, ValueError) as e:
        click.echo(f"Error: Invalid configuration in {get_config_file()}: {e}", err=True)
        sys.exit(1)
