"""LexLedger CLI entry point - assembles all command groups."""
import click

from lexledger.core.constants import DEFAULT_PROBE_HOST, DEFAULT_PROBE_PORT, PROBE_TIMEOUT_SECONDS
from lexledger.offline.reconnect import is_connected

from . import __version__
from .audit_cmd import audit
from .output import print_json
from .store_cmd import store
from .sync_cmd import sync


@click.group()
@click.version_option(version=__version__)
@click.option('--data-dir', envvar='LEXLEDGER_DATA_DIR', default=None,
              help='Data directory (default: .lexledger)')
@click.option('--user', envvar='LEXLEDGER_USER', default='cli', help='Acting user id for audit events')
@click.option('--offline', is_flag=True, help='Start with connectivity marked offline')
@click.pass_context
def cli(ctx, data_dir: str | None, user: str, offline: bool):
    """LexLedger: offline-first store, sync queue and audit log."""
    ctx.ensure_object(dict)
    ctx.obj.update({"data_dir": data_dir, "user": user, "offline": offline})


@cli.command()
@click.option('--host', default=DEFAULT_PROBE_HOST, help='Backend host')
@click.option('--port', default=DEFAULT_PROBE_PORT, help='Backend port')
@click.option('--timeout', default=PROBE_TIMEOUT_SECONDS, help='Seconds to wait')
def connectivity(host: str, port: int, timeout: float):
    """Check if the backend host is reachable."""
    online = is_connected(host, port, timeout)
    print_json({
        "host": host,
        "port": port,
        "connected": online,
        "status": "online" if online else "offline",
    })


cli.add_command(store)
cli.add_command(sync)
cli.add_command(audit)


if __name__ == "__main__":
    cli()
