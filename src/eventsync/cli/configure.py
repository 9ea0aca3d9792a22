"""Configure command for the eventsync CLI.

Commands:
- configure: Store the remote URL, token and database location
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from eventsync.cli.config import update_config
from eventsync.core.config import RemoteConfig


@click.command()
@click.option("--url", required=True, help="Base URL of the remote store API.")
@click.option("--token", required=True, help="Bearer token for the remote store.")
@click.option(
    "--database",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Replica database file (default: ~/.eventsync/eventsync.db).",
)
@click.option("--timeout", type=float, default=None, help="Request timeout in seconds.")
def configure(url: str, token: str, database: Path | None, timeout: float | None) -> None:
    """Configure the connection to the remote store."""
    try:
        remote = RemoteConfig(
            remote_url=url,
            token=token,
            timeout=timeout if timeout is not None else RemoteConfig.timeout,
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    config_file = update_config(
        remote_url=remote.remote_url,
        auth_token=remote.token,
        database=str(database.expanduser().resolve()) if database is not None else None,
        timeout=timeout,
    )
    click.echo(f"Configuration saved to {config_file}")
    if not remote.is_secure:
        click.echo("Warning: the token will be sent over plain HTTP.", err=True)
