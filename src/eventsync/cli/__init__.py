"""Command-line interface for eventsync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store the remote store connection settings
- sync: Synchronize collections with the remote store
- status: Show sync cursors and pending records
- reset: Forget sync cursors
"""

from __future__ import annotations

import click

from eventsync.cli.config import Settings, get_config_dir, setup_logging, update_config
from eventsync.cli.configure import configure
from eventsync.cli.sync import reset, status, sync


@click.group()
@click.version_option(package_name="eventsync")
def cli() -> None:
    """eventsync - Two-way sync of the event management replica."""


cli.add_command(configure)
cli.add_command(sync)
cli.add_command(status)
cli.add_command(reset)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Settings
    "Settings",
    "get_config_dir",
    "update_config",
    "setup_logging",
]
