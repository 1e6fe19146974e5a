"""
SKFleet: Agent Fleet Supervision Engine.

Keeps an accurate, self-healing picture of a fleet of tmux-hosted
agents: adaptive polling, zombie detection, orphan cleanup, and an
idempotent start/stop lifecycle with atomically persisted state.

A smilinTux Open Source Project.
"""

import os

__version__ = "0.1.0"
__author__ = "smilinTux"

FLEET_HOME = os.environ.get("SKFLEET_HOME", "~/.skfleet")
