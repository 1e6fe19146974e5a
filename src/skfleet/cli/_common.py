"""Shared utilities for all CLI command modules.

Provides the Rich console instance, logging setup, and the wiring that
turns a FleetConfig into live lifecycle managers.
"""

from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from ..config import FleetConfig, fleet_home, load_config, state_path
from ..health import HealthClassifier
from ..lifecycle import AgentManager
from ..models import AgentDefinition, RunState
from ..state import StateStore
from ..tmux import Tmux
from ..workspace import rig_workers

console = Console()

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> None:
    """Configure console (and optionally file) logging.

    Args:
        verbose: Route DEBUG records to the console through Rich.
        log_file: Also append INFO and above to this file.
    """
    root = logging.getLogger()
    if verbose:
        root.addHandler(RichHandler(console=console, show_path=False))
        root.setLevel(logging.DEBUG)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(logging.INFO)
        root.addHandler(handler)
        if not verbose:
            root.setLevel(logging.INFO)


def resolve(home: Optional[str]) -> tuple[Path, FleetConfig]:
    """Fleet home path and its loaded configuration."""
    home_path = fleet_home(Path(home) if home else None)
    return home_path, load_config(home_path)


def build_manager(
    home: Path,
    config: FleetConfig,
    definition: AgentDefinition,
    tmux: Optional[Tmux] = None,
) -> AgentManager:
    """Wire one AgentManager from configuration."""
    tmux = tmux or Tmux()
    classifier = HealthClassifier(
        tmux, indicators=config.indicator_commands, shells=config.shells,
    )
    workers = None
    if definition.rig:
        workers = partial(rig_workers, config.resolved_town_root, definition.rig)
    return AgentManager(
        definition,
        StateStore(state_path(home, definition.agent_id), definition.agent_id),
        tmux,
        classifier,
        workers=workers,
        ready_timeout=config.ready_timeout,
        start_timeout=config.start_timeout,
        startup_delay=config.startup_delay,
        shells=config.shells,
        session_prefix=config.session_prefix,
    )


def state_label(state: RunState) -> str:
    """Rich markup for a persisted run state."""
    return {
        RunState.RUNNING: "[bold green]RUNNING[/]",
        RunState.STOPPED: "[dim]STOPPED[/]",
    }.get(state, "[dim]UNKNOWN[/]")
