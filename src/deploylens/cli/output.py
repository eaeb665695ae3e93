"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
import sys
from typing import Any

import click


def print_table(headers: list[str], rows: list[list[str]]) -> None:
    """Print a bordered ASCII table sized to its widest cells."""
    if not headers:
        return

    col_widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            if i < len(col_widths):
                col_widths[i] = max(col_widths[i], len(str(cell)))

    def _fmt_row(cells: list[str]) -> str:
        parts = [str(cell).ljust(col_widths[i]) for i, cell in enumerate(cells)]
        return "| " + " | ".join(parts) + " |"

    separator = "+-" + "-+-".join("-" * w for w in col_widths) + "-+"

    click.echo(separator)
    click.echo(_fmt_row(headers))
    click.echo(separator)
    for row in rows:
        padded = list(row) + [""] * (len(headers) - len(row))
        click.echo(_fmt_row(padded[: len(headers)]))
    click.echo(separator)


def print_json(data: Any) -> None:
    """Print data as formatted JSON to stdout."""
    json.dump(data, sys.stdout, indent=2, default=str)
    click.echo()


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    click.echo(f"Error: {message}", err=True)


def print_detail(label: str, value: Any) -> None:
    click.echo(f"  {label}: {value}")


def print_recommendations(recommendations: list[dict[str, Any]]) -> None:
    """Print recommendations as ``[PRIORITY] category: message`` lines."""
    if not recommendations:
        return
    click.echo("Recommendations:")
    for rec in recommendations:
        priority = str(rec.get("priority", "")).upper()
        click.echo(f"  [{priority}] {rec.get('category', '')}: {rec.get('message', '')}")
