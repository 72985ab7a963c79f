"""Audit log commands: record, search, verify, anchor, export."""
import json
import sys

import click

from lexledger.audit.export import export_audit_logs, get_audit_stats
from lexledger.core.errors import LexLedgerError

from .context import get_runtime
from .output import print_error, print_json, print_success, table


def _filters(event_type, entity, entity_id, user, start, end, text) -> dict:
    pairs = {
        "event_type": event_type,
        "entity": entity,
        "entity_id": entity_id,
        "user_id": user,
        "start_date": start,
        "end_date": end,
        "search_text": text,
    }
    return {k: v for k, v in pairs.items() if v}


def filter_options(f):
    f = click.option('--type', 'event_type', help='Event type')(f)
    f = click.option('--entity', help='Entity kind')(f)
    f = click.option('--entity-id', help='Entity id')(f)
    f = click.option('--user', help='User id')(f)
    f = click.option('--start', help='Start date (ISO)')(f)
    f = click.option('--end', help='End date (ISO, date-only is inclusive)')(f)
    f = click.option('--text', help='Free-text match')(f)
    return f


@click.group()
def audit():
    """Tamper-evident audit log."""
    pass


@audit.command()
@click.argument('event_type')
@click.argument('entity')
@click.argument('entity_id', required=False)
@click.option('--data', default=None, help='JSON payload (sensitive fields are masked)')
@click.pass_context
def record(ctx, event_type: str, entity: str, entity_id: str | None, data: str | None):
    """Record an audit event."""
    payload = None
    if data:
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"Invalid JSON: {e}")
    try:
        print_json(get_runtime(ctx).audit.record(event_type, entity, entity_id, payload))
    except LexLedgerError as e:
        print_error(f"Audit record failed: {e}")
        sys.exit(2)


@audit.command()
@filter_options
@click.option('--limit', '-n', default=20, help='Page size')
@click.option('--offset', default=0, help='Page offset')
@click.option('--asc', is_flag=True, help='Oldest first')
@click.option('--include-consolidated', is_flag=True, help='Also list daily rollups')
@click.option('--json', 'as_json', is_flag=True, help='Print the full result as JSON')
@click.pass_context
def search(ctx, event_type, entity, entity_id, user, start, end, text,
           limit: int, offset: int, asc: bool, include_consolidated: bool, as_json: bool):
    """Search audit events."""
    try:
        result = get_runtime(ctx).audit.search_audit_events(
            _filters(event_type, entity, entity_id, user, start, end, text),
            {
                "limit": limit,
                "offset": offset,
                "sort_direction": "asc" if asc else "desc",
                "include_consolidated": include_consolidated,
            },
        )
    except LexLedgerError as e:
        print_error(f"Search failed: {e}")
        sys.exit(2)

    if as_json:
        print_json(result)
        return
    if not result["events"]:
        click.echo("No matching events")
        return

    click.echo(f"Showing {len(result['events'])} of {result['total']} events:\n")
    table(
        ["timestamp", "event_type", "entity", "entity_id", "user_id", "tree"],
        [[e["timestamp"], e["event_type"], e["entity"], e["entity_id"] or "-",
          e["user_id"], "yes" if e.get("merkle_tree_id") else "no"]
         for e in result["events"]],
    )


@audit.command()
@click.argument('event_id')
@click.pass_context
def verify(ctx, event_id: str):
    """Verify an event's hash and Merkle membership."""
    try:
        runtime = get_runtime(ctx)
        event = runtime.audit.get(event_id)
        if event is None:
            print_error(f"Audit event {event_id} not found")
            sys.exit(1)
        result = runtime.audit.verify_integrity(event)
    except LexLedgerError as e:
        print_error(f"Verification failed: {e}")
        sys.exit(2)

    print_json(result)
    sys.exit(0 if result["overall_valid"] else 1)


@audit.command('verify-tree')
@click.argument('tree_id')
@click.pass_context
def verify_tree(ctx, tree_id: str):
    """Rebuild a Merkle tree and compare its root."""
    try:
        result = get_runtime(ctx).consolidator.verify_merkle_tree_integrity(tree_id)
    except LexLedgerError as e:
        print_error(f"Verification failed: {e}")
        sys.exit(2)

    print_json(result)
    sys.exit(0 if result["overall_valid"] else 1)


@audit.command()
@click.argument('event_id')
@click.pass_context
def prove(ctx, event_id: str):
    """Show the inclusion proof of an event in its tree."""
    try:
        result = get_runtime(ctx).consolidator.prove_inclusion(event_id)
    except LexLedgerError as e:
        print_error(f"Proof failed: {e}")
        sys.exit(2)

    print_json(result)
    sys.exit(0 if result["verified"] else 1)


@audit.command()
@click.pass_context
def anchor(ctx):
    """Anchor waiting events in a Merkle tree now."""
    try:
        tree = get_runtime(ctx).consolidator.consolidate()
    except LexLedgerError as e:
        print_error(f"Anchoring failed: {e}")
        sys.exit(2)

    if tree is None:
        click.echo("No unanchored events")
        return
    print_success(f"Anchored {tree['events_count']} events in {tree['id']}")
    print_json(tree)


@audit.command()
@click.pass_context
def consolidate(ctx):
    """Roll up events into daily summaries and apply retention."""
    try:
        print_json(get_runtime(ctx).compactor.consolidate_audit_logs())
    except LexLedgerError as e:
        print_error(f"Consolidation failed: {e}")
        sys.exit(2)


@audit.command()
@filter_options
@click.option('--format', 'fmt', type=click.Choice(['json', 'csv']), default='json')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write to file instead of stdout')
@click.pass_context
def export(ctx, event_type, entity, entity_id, user, start, end, text, fmt: str, output: str | None):
    """Export matching events as JSON or CSV."""
    try:
        result = export_audit_logs(
            get_runtime(ctx).audit,
            _filters(event_type, entity, entity_id, user, start, end, text),
            fmt,
        )
    except LexLedgerError as e:
        print_error(f"Export failed: {e}")
        sys.exit(2)

    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(result["content"])
        print_success(f"Exported {result['count']} events to {output}")
    else:
        click.echo(result["content"])


@audit.command()
@filter_options
@click.pass_context
def stats(ctx, event_type, entity, entity_id, user, start, end, text):
    """Counts by type, entity, user and day."""
    try:
        print_json(get_audit_stats(
            get_runtime(ctx).audit,
            _filters(event_type, entity, entity_id, user, start, end, text),
        ))
    except LexLedgerError as e:
        print_error(f"Stats failed: {e}")
        sys.exit(2)
