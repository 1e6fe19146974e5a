"""Supervise command: run the backoff-driven health loop."""

from __future__ import annotations

import sys

import click

from ..backoff import BackoffRegistry
from ..supervisor import FleetSupervisor, SupervisorConfig
from ..tmux import Tmux
from ._common import build_manager, console, resolve, setup_logging


def register_supervise_commands(main: click.Group) -> None:
    """Register the supervise command."""

    @main.command()
    @click.option("--home", default=None, type=click.Path(), help="Fleet home directory.")
    @click.option("--interval", default=10.0, show_default=True, help="Seconds between passes.")
    @click.option("--iterations", default=0, help="Stop after N passes (0 = forever).")
    @click.option("--auto-restart/--no-auto-restart", default=None,
                  help="Override the configured auto-restart setting.")
    def supervise(home: str, interval: float, iterations: int, auto_restart):
        """Poll every configured agent on its backoff schedule.

        Each agent is checked no more often than its current backoff
        interval allows; idle agents are polled less and less often.
        Press Ctrl+C to stop.
        """
        home_path, config = resolve(home)
        if not config.agents:
            console.print("[bold red]No agents configured.[/] Add some under 'agents:'.")
            sys.exit(1)

        log_file = home_path / "logs" / "supervisor.log"
        setup_logging(log_file=log_file)

        tmux = Tmux()
        managers = [build_manager(home_path, config, d, tmux) for d in config.agents]
        supervisor = FleetSupervisor(
            managers,
            BackoffRegistry(config.backoff.to_policy()),
            SupervisorConfig(
                auto_restart=config.auto_restart if auto_restart is None else auto_restart,
                restart_after_misses=config.restart_after_misses,
            ),
        )

        console.print(f"\n  [green]Supervising[/] {len(managers)} agent(s)")
        console.print(f"  Pass interval: {interval:g}s | Log: {log_file}")
        console.print("  [dim]Ctrl+C to stop[/]\n")
        supervisor.run(interval=interval, max_iterations=iterations)

        for agent_id, current in supervisor.registry.snapshot_all().items():
            console.print(f"  {agent_id}: next poll in {current.total_seconds():g}s")
