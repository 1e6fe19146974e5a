"""
SKFleet CLI: supervise a fleet of tmux-hosted agents.

Each command group lives in its own module and is registered on the
main Click group here.

Entry point: skfleet.cli:main
"""

from __future__ import annotations

import click

from .. import __version__
from ._common import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="skfleet")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to the console.")
def main(verbose: bool):
    """SKFleet: Agent Fleet Supervision Engine.

    Adaptive polling, zombie detection, orphan cleanup.
    """
    if verbose:
        setup_logging(verbose=True)


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .agent import register_agent_commands
from .backoff import register_backoff_commands
from .doctor import register_doctor_commands
from .supervise import register_supervise_commands

register_agent_commands(main)
register_backoff_commands(main)
register_doctor_commands(main)
register_supervise_commands(main)
