"""Device registration command for the deviceagent CLI.

Commands:
- register: Register this device with a server
"""

from __future__ import annotations

import sys

import click

from deviceagent.agent.cli.config import load_config, require_agent_config, save_config
from deviceagent.agent.result import Success, describe


@click.command()
@click.option(
    "--server",
    default=None,
    help="Server URL (e.g., http://localhost:8000). Saved for later commands.",
)
@click.option(
    "--name",
    default=None,
    help="Device name (default: <system>-<model>).",
)
@click.option(
    "--token",
    default=None,
    help="Push token to register with (default: the last one received).",
)
def register(server: str | None, name: str | None, token: str | None) -> None:
    """Register this device with the server.

    Creates or refreshes the server's record of this device, keyed by its
    stable device id and current push token.
    """
    from deviceagent.agent.app import Agent

    if server:
        config = load_config()
        config["server_url"] = server.rstrip("/")
        if name:
            config["device_name"] = name
        save_config(config)

    agent_config = require_agent_config()

    with Agent(agent_config) as agent:
        if token:
            registration = agent.store.registration()
            registration.push_token = token
            agent.store.save_registration(registration)

        click.echo(f"Registering device '{agent.device_id}' with {agent_config.server_url}...")
        result = agent.registration.register(name)

        if not isinstance(result, Success):
            click.echo(f"Error: Registration failed ({describe(result)})", err=True)
            sys.exit(1)

        click.echo("\nDevice registered successfully!")
        click.echo(f"Server: {agent_config.server_url}")
        click.echo(f"Device id: {agent.device_id}")
