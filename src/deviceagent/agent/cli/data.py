"""Data commands for the deviceagent CLI.

Commands:
- sync: Sync all permitted record kinds once
- scan: Scan the filesystem and print counts
- status: Show registration, queue and per-kind sync status
"""

from __future__ import annotations

import sys
from datetime import datetime

import click

from deviceagent.agent.cli.config import require_agent_config
from deviceagent.agent.sync import SYNC_ORDER


@click.command()
def sync() -> None:
    """Sync all permitted record kinds with the server once."""
    from deviceagent.agent.app import Agent

    config = require_agent_config()
    with Agent(config) as agent:
        reports = agent.orchestrator.sync_all(agent.permissions.granted_kinds())
        failed = False
        for kind, report in reports.items():
            mark = "ok" if report.ok else "FAILED"
            click.echo(f"{kind.value:<13} {mark:<7} {report.summary()}")
            failed = failed or not report.ok
    if failed:
        sys.exit(1)


@click.command()
@click.option("--upload", is_flag=True, help="Upload the result to the server.")
def scan(upload: bool) -> None:
    """Scan the filesystem and print counts."""
    from deviceagent.agent.app import Agent
    from deviceagent.agent.result import Success, describe

    config = require_agent_config()
    with Agent(config) as agent:
        result = agent.scanner.scan()
        click.echo(f"Root:        {config.scan_root}")
        click.echo(f"Files:       {result.total_files}")
        click.echo(f"Directories: {result.total_directories}")
        click.echo(f"Total size:  {result.total_size} bytes")

        if upload and not result.is_empty:
            uploaded = agent.client.upload_file_system_scan(agent.device_id, result.to_json())
            if not isinstance(uploaded, Success):
                click.echo(f"Error: Upload failed ({describe(uploaded)})", err=True)
                sys.exit(1)
            click.echo("Scan uploaded.")


@click.command()
def status() -> None:
    """Show registration, task queue and sync status."""
    from deviceagent.agent.app import Agent

    config = require_agent_config()
    with Agent(config) as agent:
        click.echo(f"Server:       {config.server_url}")
        click.echo(f"Device id:    {agent.device_id}")
        click.echo(f"Registration: {agent.registration.state.value}")
        click.echo(f"Queued tasks: {len(agent.queue)}")
        click.echo("")
        for kind in SYNC_ORDER:
            unsynced = agent.store.count(kind, synced=False)
            at, last = agent.store.sync_status(kind)
            when = datetime.fromtimestamp(at).strftime("%Y-%m-%d %H:%M:%S") if at else "never"
            click.echo(f"{kind.value:<13} unsynced={unsynced:<6} last sync: {when} ({last or '-'})")
