"""Lazily opened runtime shared by every command of one invocation."""
import click

from lexledger.config import LexLedgerConfig
from lexledger.runtime import OfflineRuntime


def get_runtime(ctx: click.Context) -> OfflineRuntime:
    """Open the runtime for the group's --data-dir on first use."""
    obj = ctx.ensure_object(dict)
    if obj.get("runtime") is None:
        config = LexLedgerConfig.from_env()
        if obj.get("data_dir"):
            config.data_dir = obj["data_dir"]
        user = obj.get("user") or "cli"
        obj["runtime"] = OfflineRuntime.open(
            config,
            current_user_id=lambda: user,
            request_context=lambda: {"user_ip": "127.0.0.1", "user_agent": "lexledger-cli"},
            online=not obj.get("offline", False),
        )
    return obj["runtime"]
