"""Click CLI entry point for the notification relay."""
import json
import logging
import sys
import time

import click

from notification_relay import settings
from notification_relay.config_store import ConfigStore
from notification_relay.db import Database
from notification_relay.errors import StorageFailure
from notification_relay.logging_conf import set_console_level
from notification_relay.queue.store import QueueStore
from notification_relay.repository import NotificationRepository
from notification_relay.worker import DispatchWorker


def _open(ctx: click.Context):
    db = Database(ctx.obj["db_path"])
    ctx.call_on_close(db.close)
    store = QueueStore(db)
    config_store = ConfigStore(ctx.obj["config_path"])
    return store, config_store


@click.group()
@click.option("--db", "db_path", type=click.Path(dir_okay=False), default=None,
              help="Queue database file (default: QUEUE_DB_PATH)")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="Forwarding config JSON (default: CONFIG_PATH)")
@click.option("--verbose", is_flag=True, help="Log at DEBUG level")
@click.pass_context
def cli(ctx: click.Context, db_path, config_path, verbose: bool) -> None:
    """Notification Relay - durable forwarding of notifications to a webhook."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db_path
    ctx.obj["config_path"] = config_path
    if verbose:
        set_console_level(logging.DEBUG)


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Run the relay until interrupted."""
    from notification_relay.app import main

    main(ctx.obj["db_path"], ctx.obj["config_path"])


@cli.command()
@click.pass_context
def dispatch(ctx: click.Context) -> None:
    """Run one dispatch cycle now."""
    store, config_store = _open(ctx)
    try:
        result = DispatchWorker(store, config_store).run_cycle()
    except StorageFailure as e:
        click.echo(f"Dispatch failed: {e}", err=True)
        sys.exit(1)
    click.echo(result.value)


@cli.command()
@click.argument("package_name")
@click.option("--key", "notification_key", required=True, help="Dedupe key of the source event")
@click.option("--app-name", default=None, help="Display name (default: package name)")
@click.option("--title", default="", help="Notification title")
@click.option("--text", default="", help="Notification body")
@click.option("--posted-at", type=int, default=None, help="Origin time in epoch millis (default: now)")
@click.pass_context
def enqueue(ctx: click.Context, package_name: str, notification_key: str, app_name,
            title: str, text: str, posted_at) -> None:
    """Capture one notification into the queue."""
    store, config_store = _open(ctx)
    repository = NotificationRepository(store, config_store)
    item_id = repository.enqueue(
        package_name=package_name,
        app_name=app_name or package_name,
        title=title,
        text=text,
        posted_at=posted_at if posted_at is not None else int(time.time() * 1000),
        notification_key=notification_key,
    )
    click.echo(str(item_id) if item_id is not None else "dropped")


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
def stats(ctx: click.Context, json_output: bool) -> None:
    """Show item counts per status."""
    snapshot = NotificationRepository(*_open(ctx)).stats()
    if json_output:
        click.echo(json.dumps(snapshot.to_dict()))
        return
    for name, count in snapshot.to_dict().items():
        click.echo(f"{name:>8}: {count}")


@cli.command()
@click.option("--limit", type=click.IntRange(1, 1000), default=None, help="Number of items")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
def recent(ctx: click.Context, limit, json_output: bool) -> None:
    """List the newest queue items."""
    items = NotificationRepository(*_open(ctx)).recent(limit or settings.RECENT_LIMIT)
    if json_output:
        click.echo(json.dumps([item.to_dict() for item in items]))
        return
    for item in items:
        line = f"#{item.id} {item.status.value:<7} tries={item.attempt_count} {item.package_name} {item.title!r}"
        if item.last_error:
            line += f" [{item.last_error}]"
        click.echo(line)


@cli.command()
@click.argument("item_id", type=int)
@click.pass_context
def delete(ctx: click.Context, item_id: int) -> None:
    """Delete one queue item."""
    repository = NotificationRepository(*_open(ctx))
    if not repository.delete_queue_item(item_id):
        click.echo(f"No queue item #{item_id}", err=True)
        sys.exit(1)
    click.echo(f"Deleted #{item_id}")


@cli.command()
@click.confirmation_option(prompt="Delete every queued notification?")
@click.pass_context
def clear(ctx: click.Context) -> None:
    """Delete every queue item regardless of status."""
    repository = NotificationRepository(*_open(ctx))
    count = repository.clear_queue()
    click.echo(f"Cleared {count} items")


@cli.command()
@click.option("--host", default=None, help="Bind address (default: HOST)")
@click.option("--port", type=int, default=None, help="Port (default: PORT)")
def receiver(host, port) -> None:
    """Serve the reference webhook receiver."""
    from notification_relay.receiver.server import serve

    serve(host, port)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
