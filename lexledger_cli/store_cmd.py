"""Local entity store commands: put, get, list, query, delete, backup, restore."""
import json
import sys

import click

from lexledger.core.constants import MODE_LOCAL_AND_QUEUE, MODE_LOCAL_ONLY
from lexledger.core.errors import LexLedgerError
from lexledger.store.backup import create_backup, create_quick_backup, read_backup, restore_backup, write_backup

from .context import get_runtime
from .output import print_error, print_json, print_success, table


def _parse_record(raw: str) -> dict:
    try:
        record = json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}")
    if not isinstance(record, dict):
        raise click.BadParameter("Record must be a JSON object")
    return record


@click.group()
def store():
    """Local entity store."""
    pass


@store.command()
@click.argument('collection')
@click.argument('record')
@click.option('--local-only', is_flag=True, help='Mirror only; do not queue for sync')
@click.pass_context
def put(ctx, collection: str, record: str, local_only: bool):
    """Upsert a JSON RECORD into COLLECTION."""
    data = _parse_record(record)
    try:
        runtime = get_runtime(ctx)
        mode = MODE_LOCAL_ONLY if local_only else MODE_LOCAL_AND_QUEUE
        print_json(runtime.store.save(collection, data, mode=mode))
    except LexLedgerError as e:
        print_error(str(e))
        sys.exit(2)


@store.command()
@click.argument('collection')
@click.argument('record_id')
@click.pass_context
def get(ctx, collection: str, record_id: str):
    """Show one record."""
    try:
        record = get_runtime(ctx).store.get(collection, record_id)
    except LexLedgerError as e:
        print_error(str(e))
        sys.exit(2)

    if record is None:
        print_error(f"{collection}/{record_id} not found")
        sys.exit(1)
    print_json(record)


@store.command('list')
@click.argument('collection')
@click.option('--limit', '-n', default=0, help='Most recently updated N records')
@click.option('--json', 'as_json', is_flag=True, help='Print full records as JSON')
@click.pass_context
def list_records(ctx, collection: str, limit: int, as_json: bool):
    """List records of COLLECTION."""
    try:
        records = get_runtime(ctx).store.get_all(collection, limit=limit or None)
    except LexLedgerError as e:
        print_error(str(e))
        sys.exit(2)

    if as_json:
        print_json(records)
        return
    if not records:
        click.echo(f"No records in {collection}")
        return
    table(["id", "updated_at"], [[r["id"], r["updated_at"]] for r in records])


@store.command()
@click.argument('collection')
@click.argument('index')
@click.argument('value')
@click.pass_context
def query(ctx, collection: str, index: str, value: str):
    """Records whose INDEX equals VALUE."""
    try:
        print_json(get_runtime(ctx).store.query_by_index(collection, index, value))
    except LexLedgerError as e:
        print_error(str(e))
        sys.exit(2)


@store.command()
@click.argument('collection')
@click.argument('record_id')
@click.option('--local-only', is_flag=True, help='Do not queue a remote delete')
@click.pass_context
def delete(ctx, collection: str, record_id: str, local_only: bool):
    """Delete a record and queue its remote deletion."""
    try:
        mode = MODE_LOCAL_ONLY if local_only else MODE_LOCAL_AND_QUEUE
        get_runtime(ctx).store.delete(collection, record_id, mode=mode)
        print_success(f"Deleted {collection}/{record_id}")
    except LexLedgerError as e:
        print_error(str(e))
        sys.exit(2)


@store.command()
@click.option('--output', '-o', 'output', type=click.Path(), help='Write the backup to this file')
@click.option('--quick', is_flag=True, help='Essential collections only')
@click.option('--collection', '-c', 'collections', multiple=True, help='Collection to include (repeatable)')
@click.option('--auto', 'auto', is_flag=True, help='Write a rotated backup into the data directory')
@click.pass_context
def backup(ctx, output: str | None, quick: bool, collections: tuple, auto: bool):
    """Export collections with a metadata header."""
    try:
        runtime = get_runtime(ctx)
        if auto:
            print_json(runtime.backups.perform())
            return

        if quick:
            data = create_quick_backup(runtime.store, tenant_id=runtime.config.tenant_id)
        else:
            data = create_backup(runtime.store, list(collections) or None, tenant_id=runtime.config.tenant_id)

        if output:
            size = write_backup(data, output)
            print_success(f"Backed up {sum(data['_metadata']['item_counts'].values())} records to {output} ({size} bytes)")
        else:
            print_json(data)
    except LexLedgerError as e:
        print_error(str(e))
        sys.exit(2)


@store.command()
@click.argument('source')
@click.option('--clear', is_flag=True, help='Drop current records of each restored collection first')
@click.option('--collection', '-c', 'collections', multiple=True, help='Collection to restore (repeatable)')
@click.pass_context
def restore(ctx, source: str, clear: bool, collections: tuple):
    """Restore collections from a backup file or an auto backup id."""
    try:
        runtime = get_runtime(ctx)
        if source.startswith("auto_") and not source.endswith(".json"):
            data = runtime.backups.get(source)
        else:
            data = read_backup(source)
        result = restore_backup(
            runtime.store,
            data,
            list(collections) or None,
            clear_existing=clear,
            tenant_id=runtime.config.tenant_id,
        )
    except LexLedgerError as e:
        print_error(str(e))
        sys.exit(2)

    print_json(result)
    if not result["success"]:
        sys.exit(1)


@store.command('backups')
@click.pass_context
def list_backups(ctx):
    """List rotated auto backups, newest first."""
    try:
        entries = get_runtime(ctx).backups.list_backups()
    except LexLedgerError as e:
        print_error(str(e))
        sys.exit(2)

    if not entries:
        click.echo("No auto backups")
        return
    table(
        ["id", "timestamp", "records", "size"],
        [[e["id"], e["timestamp"], sum(e["item_counts"].values()), e["size"]] for e in entries],
    )
