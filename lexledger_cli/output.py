"""Output helpers shared by every command group."""

import json

import click


def print_json(data) -> None:
    """Print JSON data formatted."""
    click.echo(json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False, default=str))


def print_error(message: str) -> None:
    """Print error message in red."""
    click.echo(click.style(f"Error: {message}", fg="red"))


def print_success(message: str) -> None:
    """Print success message in green."""
    click.echo(click.style(message, fg="green"))


def _cell(value, limit: int = 40) -> str:
    text = "" if value is None else str(value)
    if len(text) <= limit:
        return text
    return text[:limit - 1] + "…"


def table(headers: list[str], rows: list[list]) -> None:
    """Print rows as left-aligned columns under a dashed header rule.

    Short rows are padded with blanks; long cells are clipped to 40 chars.
    """
    cells = [[_cell(v) for v in row[:len(headers)]] for row in rows]
    cells = [row + [""] * (len(headers) - len(row)) for row in cells]
    widths = [max([len(h)] + [len(row[i]) for row in cells]) for i, h in enumerate(headers)]

    def render(values):
        return "  ".join(v.ljust(w) for v, w in zip(values, widths)).rstrip()

    click.echo(click.style(render(headers), bold=True))
    click.echo("  ".join("-" * w for w in widths))
    for row in cells:
        click.echo(render(row))
