"""Doctor command: tool, workspace and orphan checks."""

from __future__ import annotations

import json
from pathlib import Path

import click

from ._common import console, resolve

CATEGORY_LABELS = {
    "system": "System Tools",
    "workspace": "Workspace",
    "orphans": "Orphans",
}


def register_doctor_commands(main: click.Group) -> None:
    """Register the doctor command."""

    @main.command()
    @click.option("--home", default=None, type=click.Path(), help="Fleet home directory.")
    @click.option("--town-root", default=None, type=click.Path(), help="Workspace root.")
    @click.option("--fix", is_flag=True, help="Kill orphaned sessions and processes.")
    @click.option("--json-out", is_flag=True, help="Output as machine-readable JSON.")
    def doctor(home: str, town_root: str, fix: bool, json_out: bool):
        """Diagnose fleet health and find orphans."""
        from ..doctor import run_diagnostics

        home_path, config = resolve(home)
        root = Path(town_root).expanduser() if town_root else config.resolved_town_root
        report = run_diagnostics(
            home_path, root, fix=fix,
            workload_pattern=config.workload_pattern,
            session_prefix=config.session_prefix,
        )

        if json_out:
            click.echo(json.dumps(report.to_dict(), indent=2))
            return

        console.print()
        categories: dict = {}
        for check in report.checks:
            categories.setdefault(check.category, []).append(check)

        for cat_key, label in CATEGORY_LABELS.items():
            checks = categories.get(cat_key, [])
            if not checks:
                continue
            console.print(f"  [bold]{label}[/]")
            for c in checks:
                if c.passed:
                    icon = "[green]✓[/]"
                elif c.status == "warning":
                    icon = "[yellow]![/]"
                else:
                    icon = "[red]✗[/]"
                detail = f" [dim]({c.detail})[/]" if c.detail else ""
                console.print(f"    {icon} {c.description}{detail}")
                for line in c.details:
                    console.print(f"        [dim]{line}[/]")
                if not c.passed and c.fix:
                    console.print(f"      [yellow]Fix: {c.fix}[/]")
            console.print()

        if report.all_passed:
            console.print(f"  [bold green]✓ All {report.total_count} checks passed.[/]")
        else:
            console.print(
                f"  [bold green]{report.passed_count}[/] passed, "
                f"[bold red]{report.failed_count}[/] need attention "
                f"out of {report.total_count} checks."
            )
        console.print()
