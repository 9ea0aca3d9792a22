"""Sync commands for the eventsync CLI.

Commands:
- sync: Run one sync cycle per collection
- status: Show cursors and pending records per collection
- reset: Forget the sync cursors of collections
"""

from __future__ import annotations

import sys
from datetime import UTC, datetime
import click

from eventsync.cli.config import Settings, setup_logging
from eventsync.core.types import Collection, SyncDirection
from eventsync.remote.api import HTTPRemote
from eventsync.store.database import EntityStore
from eventsync.sync.coordinator import SYNC_ORDER, SyncCoordinator
from eventsync.sync.tracker import ChangeTracker
from eventsync.sync.types import SyncReport


def _parse_collections(names: tuple[str, ...]) -> list[Collection] | None:
    if not names:
        return None
    try:
        return [Collection.parse(name) for name in names]
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _format_cursor(value: int) -> str:
    if value == 0:
        return "never"
    return datetime.fromtimestamp(value / 1000, UTC).strftime("%Y-%m-%d %H:%M:%S")


def _load_settings() -> Settings:
    try:
        return Settings.load()
    except ValueError as e:
        click.echo(f"Error: invalid settings: {e}", err=True)
        sys.exit(1)


@click.command()
@click.argument("collections", nargs=-1)
@click.option("--verbose", "-v", is_flag=True, help="Log every record.")
def sync(collections: tuple[str, ...], verbose: bool) -> None:
    """Synchronize collections with the remote store.

    Pushes local changes, then pulls remote changes. All collections are
    synchronized unless some are named.
    """
    settings = _load_settings()
    remote_config = settings.remote
    if remote_config is None:
        click.echo("Error: Remote not configured. Run 'eventsync configure' first.", err=True)
        sys.exit(1)

    selected = _parse_collections(collections)
    setup_logging(verbose, settings.log_file)

    store = EntityStore(settings.database)
    remote = HTTPRemote(remote_config)
    try:
        if not remote.health_check():
            click.echo(f"Error: Remote store at {remote_config.remote_url} is unreachable.", err=True)
            sys.exit(1)
        results = SyncCoordinator(store, remote).run_all(selected)
    finally:
        remote.close()
        store.close()

    failed = False
    for collection, result in results.items():
        if not isinstance(result, SyncReport):
            click.echo(f"{collection.value}: failed: {result}", err=True)
            failed = True
            continue
        click.echo(result.summary())
        for error in result.errors:
            click.echo(f"  {error}")

    if failed:
        sys.exit(1)


@click.command()
def status() -> None:
    """Show sync cursors and unsynchronized records."""
    settings = _load_settings()
    store = EntityStore(settings.database)
    try:
        tracker = ChangeTracker(store)
        click.echo(f"Database: {settings.database}")
        remote_url = settings.remote.remote_url if settings.remote else "not configured"
        click.echo(f"Remote: {remote_url}")
        for collection in SYNC_ORDER:
            push = tracker.cursor_for(collection, SyncDirection.PUSH)
            pull = tracker.cursor_for(collection, SyncDirection.PULL)
            total = store.count(collection)
            unbound = store.count(collection, unbound_only=True)
            retries = len(tracker.pending_retries(collection))
            click.echo(
                f"{collection.value:<18} records={total} unbound={unbound} retries={retries} "
                f"pushed={_format_cursor(push)} pulled={_format_cursor(pull)}"
            )
    finally:
        store.close()


@click.command()
@click.argument("collections", nargs=-1)
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
def reset(collections: tuple[str, ...], yes: bool) -> None:
    """Forget sync cursors so the next sync starts from scratch.

    Records already bound to the remote stay bound.
    """
    selected = _parse_collections(collections) or list(SYNC_ORDER)
    names = ", ".join(c.value for c in selected)
    if not yes and not click.confirm(f"Reset sync state of {names}?"):
        click.echo("Aborted.")
        return

    store = EntityStore(_load_settings().database)
    try:
        tracker = ChangeTracker(store)
        for collection in selected:
            tracker.reset(collection)
    finally:
        store.close()

    click.echo(f"Reset sync state of {names}")
