"""Sync queue and engine commands."""
import sys
import time

import click

from lexledger.core.constants import SYNC_CLEANUP_DAYS
from lexledger.core.errors import LexLedgerError

from .context import get_runtime
from .output import print_error, print_json, print_success, table


@click.group()
def sync():
    """Offline sync queue and engine."""
    pass


@sync.command()
@click.pass_context
def status(ctx):
    """Show engine state and queue counts."""
    try:
        runtime = get_runtime(ctx)
        result = runtime.engine.status()
        result["queue"] = runtime.queue.get_sync_status()
        print_json(result)
    except LexLedgerError as e:
        print_error(f"Status check failed: {e}")
        sys.exit(2)


@sync.command('queue')
@click.option('--status', 'status_filter', type=click.Choice(['pending', 'completed', 'failed']),
              help='Only entries with this status')
@click.option('--limit', '-n', default=20, help='Number of entries to show')
@click.pass_context
def show_queue(ctx, status_filter: str | None, limit: int):
    """List queue entries, oldest first."""
    try:
        entries = get_runtime(ctx).queue.entries(status_filter)
    except LexLedgerError as e:
        print_error(f"Queue list failed: {e}")
        sys.exit(2)

    if not entries:
        click.echo("Queue is empty")
        return

    click.echo(f"Showing {min(limit, len(entries))} of {len(entries)} entries:\n")
    table(
        ["id", "collection", "record_id", "operation", "status", "attempts"],
        [[e["id"], e["collection"], e["record_id"], e["operation"], e["status"], e["attempts"]]
         for e in entries[:limit]],
    )


@sync.command('now')
@click.pass_context
def sync_now(ctx):
    """Drain the queue against the backend."""
    try:
        result = get_runtime(ctx).engine.sync_now()
    except LexLedgerError as e:
        print_error(f"Sync failed: {e}")
        sys.exit(2)

    print_json(result)
    if result["status"] == "error":
        sys.exit(1)


@sync.command()
@click.option('--days', default=SYNC_CLEANUP_DAYS, help='Remove completed entries older than N days')
@click.pass_context
def cleanup(ctx, days: int):
    """Purge completed queue entries."""
    try:
        removed = get_runtime(ctx).queue.cleanup(days)
        print_success(f"Removed {removed} completed entries")
    except LexLedgerError as e:
        print_error(f"Cleanup failed: {e}")
        sys.exit(2)


@sync.command()
@click.argument('entry_id', type=int, required=False)
@click.pass_context
def retry(ctx, entry_id: int | None):
    """Return failed entries (or ENTRY_ID) to pending."""
    try:
        count = get_runtime(ctx).queue.retry_failed(entry_id)
        print_success(f"Requeued {count} failed entries")
    except LexLedgerError as e:
        print_error(f"Retry failed: {e}")
        sys.exit(2)


@sync.command()
@click.argument('entry_id', type=int, required=False)
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def discard(ctx, entry_id: int | None, yes: bool):
    """Delete failed entries (or ENTRY_ID) for good."""
    try:
        queue = get_runtime(ctx).queue
        failed = queue.entries("failed")
        if not failed:
            click.echo("No failed entries")
            return
        if not yes and not click.confirm(f"Discard {1 if entry_id else len(failed)} failed entries?"):
            return
        count = queue.discard_failed(entry_id)
        print_success(f"Discarded {count} failed entries")
    except LexLedgerError as e:
        print_error(f"Discard failed: {e}")
        sys.exit(2)


@sync.command()
@click.option('--interval', default=30.0, help='Seconds between ticks')
@click.option('--iterations', default=0, help='Stop after N ticks (0 = run forever)')
@click.pass_context
def watch(ctx, interval: float, iterations: int):
    """Run interval triggers (sync, Merkle, rollups) in a loop."""
    runtime = get_runtime(ctx)
    count = 0
    try:
        while True:
            print_json(runtime.tick())
            count += 1
            if iterations and count >= iterations:
                break
            time.sleep(interval)
    except KeyboardInterrupt:
        click.echo("Stopped")
