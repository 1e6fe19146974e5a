"""Backoff command: show the configured polling policy."""

from __future__ import annotations

import click
from rich.table import Table

from ..backoff import BackoffRegistry
from ._common import console, resolve


def register_backoff_commands(main: click.Group) -> None:
    """Register the backoff command."""

    @main.command()
    @click.option("--home", default=None, type=click.Path(), help="Fleet home directory.")
    @click.option("--misses", default=5, show_default=True, help="Miss steps to preview.")
    def backoff(home: str, misses: int):
        """Show the polling policy and how intervals grow on misses."""
        _, config = resolve(home)
        policy = config.backoff.to_policy()

        console.print()
        console.print(
            f"  Strategy: [cyan]{policy.strategy.value}[/]  "
            f"base: {policy.base_interval.total_seconds():g}s  "
            f"max: {policy.max_interval.total_seconds():g}s  "
            f"factor: {policy.factor:g}"
        )

        preview = BackoffRegistry(policy)
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Misses", justify="right")
        table.add_column("Interval", justify="right")
        table.add_row("0", f"{preview.interval_for('preview').total_seconds():g}s")
        for step in range(1, misses + 1):
            preview.record_miss("preview")
            table.add_row(str(step), f"{preview.interval_for('preview').total_seconds():g}s")
        console.print(table)
        console.print()
