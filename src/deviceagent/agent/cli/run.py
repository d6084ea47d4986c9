"""Agent runtime commands for the deviceagent CLI.

Commands:
- run: Run the agent until interrupted
- send: Schedule a command as if it had been pushed by the server
"""

from __future__ import annotations

import sys
import time

import click

from deviceagent.agent.cli.config import require_agent_config


@click.command()
def run() -> None:
    """Run the agent until interrupted.

    Processes queued tasks, runs the periodic token check and full sync,
    and listens for pushed commands.
    """
    from deviceagent.agent.app import Agent

    config = require_agent_config()

    with Agent(config) as agent:
        agent.start()
        click.echo(f"Device agent running (device id {agent.device_id}). Press Ctrl+C to stop.")
        try:
            while True:
                time.sleep(1.0)
        except KeyboardInterrupt:
            click.echo("\nStopping...")


def _parse_params(values: tuple[str, ...]) -> dict[str, str]:
    params: dict[str, str] = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got '{value}'", param_hint="-p")
        params[key] = val
    return params


@click.command()
@click.argument("command")
@click.option(
    "--param",
    "-p",
    "params",
    multiple=True,
    help="Command parameter as key=value (repeatable).",
)
@click.option("--now", is_flag=True, help="Run the task in the foreground instead of queueing it.")
def send(command: str, params: tuple[str, ...], now: bool) -> None:
    """Schedule COMMAND with the same validation as a pushed message."""
    from deviceagent.agent.app import Agent
    from deviceagent.agent.tasks.types import TaskOutcome

    message: dict[str, str] = {"command": command, **_parse_params(params)}
    config = require_agent_config()

    with Agent(config) as agent:
        task = agent.dispatcher.dispatch(message)
        if task is None:
            click.echo(f"Error: Command '{command}' rejected (missing parameter?)", err=True)
            sys.exit(1)

        if not now:
            click.echo(f"Queued {task}")
            return

        outcome = agent.engine.process(task)
        if outcome is None:
            click.echo(f"{task} deferred: server unreachable")
            return
        click.echo(f"{task}: {outcome.name}")
        if outcome is TaskOutcome.FAILED:
            sys.exit(1)
