"""Agent lifecycle commands: start, stop, status, restart."""

from __future__ import annotations

import json
import sys

import click
from rich.panel import Panel

from ..errors import AlreadyRunningError, FleetError, NotRunningError
from ..lifecycle import LifecycleResult
from ._common import build_manager, console, resolve, state_label


def _manager_for(home: str, agent_id: str):
    home_path, config = resolve(home)
    definition = config.agent(agent_id)
    if definition is None:
        console.print(f"[bold red]Unknown agent:[/] {agent_id}")
        console.print("  [dim]Add it under 'agents:' in config/config.yaml[/]")
        sys.exit(1)
    return build_manager(home_path, config, definition)


def _print_diagnostics(result: LifecycleResult) -> None:
    for line in result.diagnostics:
        console.print(f"  [yellow]![/] {line}")


def register_agent_commands(main: click.Group) -> None:
    """Register the agent command group."""

    @main.group()
    def agent():
        """Start, stop and inspect individual agents."""

    @agent.command("start")
    @click.argument("agent_id")
    @click.option("--home", default=None, type=click.Path(), help="Fleet home directory.")
    @click.option("--foreground", is_flag=True, help="Record this process as the agent.")
    def agent_start(agent_id: str, home: str, foreground: bool):
        """Start AGENT_ID in its tmux session."""
        manager = _manager_for(home, agent_id)
        try:
            result = manager.start(foreground=foreground)
        except AlreadyRunningError:
            console.print(f"[yellow]{agent_id} is already running.[/]")
            return
        except FleetError as exc:
            console.print(f"[bold red]Start failed:[/] {exc}")
            sys.exit(1)

        console.print(f"\n  [green]Started[/] {agent_id} in session [cyan]{manager.session}[/]")
        _print_diagnostics(result)
        console.print()

    @agent.command("stop")
    @click.argument("agent_id")
    @click.option("--home", default=None, type=click.Path(), help="Fleet home directory.")
    def agent_stop(agent_id: str, home: str):
        """Stop AGENT_ID and kill its session."""
        manager = _manager_for(home, agent_id)
        try:
            result = manager.stop()
        except NotRunningError:
            console.print(f"[yellow]{agent_id} is not running.[/]")
            return
        except FleetError as exc:
            console.print(f"[bold red]Stop failed:[/] {exc}")
            sys.exit(1)

        console.print(f"  [green]Stopped[/] {agent_id}")
        _print_diagnostics(result)

    @agent.command("restart")
    @click.argument("agent_id")
    @click.option("--home", default=None, type=click.Path(), help="Fleet home directory.")
    def agent_restart(agent_id: str, home: str):
        """Stop AGENT_ID if running, then start it fresh."""
        manager = _manager_for(home, agent_id)
        try:
            result = manager.restart()
        except FleetError as exc:
            console.print(f"[bold red]Restart failed:[/] {exc}")
            sys.exit(1)

        console.print(f"  [green]Restarted[/] {agent_id}")
        _print_diagnostics(result)

    @agent.command("status")
    @click.argument("agent_id")
    @click.option("--home", default=None, type=click.Path(), help="Fleet home directory.")
    @click.option("--json-out", is_flag=True, help="Output as machine-readable JSON.")
    def agent_status(agent_id: str, home: str, json_out: bool):
        """Show persisted state and live health for AGENT_ID."""
        manager = _manager_for(home, agent_id)
        try:
            state = manager.status()
        except FleetError as exc:
            console.print(f"[bold red]Status failed:[/] {exc}")
            sys.exit(1)
        live = manager.is_running()

        if json_out:
            data = json.loads(state.model_dump_json())
            data["session"] = manager.session
            data["session_running"] = live
            click.echo(json.dumps(data, indent=2))
            return

        started = state.started_at.isoformat() if state.started_at else "never"
        workers = ", ".join(state.monitored_workers) or "none"
        live_label = "[green]yes[/]" if live else "[red]no[/]"
        console.print()
        console.print(Panel(
            f"State: {state_label(state.state)}\n"
            f"Session: [cyan]{manager.session}[/]  workload running: {live_label}\n"
            f"Started: {started}\n"
            f"PID: {state.controlling_pid or '-'}\n"
            f"Workers: {workers}",
            title=f"[bold]{agent_id}[/]",
            border_style="bright_blue",
        ))
        console.print()
