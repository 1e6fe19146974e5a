"""
Fleet configuration loaded from ``<home>/config/config.yaml``.

A missing or invalid file never stops the fleet: defaults are used and a
warning is logged.

Example config.yaml:

    town_root: ~/gt
    backoff:
      strategy: geometric
      base_seconds: 60
      max_seconds: 600
      factor: 1.5
    agents:
      - agent_id: gastown/witness
        session: gt-gastown-witness
        work_dir: ~/gt/gastown/witness
        rig: gastown
        role: witness
"""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, model_validator

from . import FLEET_HOME
from .backoff import BackoffPolicy, BackoffStrategy
from .health import DEFAULT_INDICATORS
from .lifecycle import DEFAULT_READY_TIMEOUT, DEFAULT_START_TIMEOUT
from .models import AgentDefinition
from .orphans import DEFAULT_WORKLOAD_PATTERN
from .tmux import SUPPORTED_SHELLS
from .workspace import SESSION_PREFIX

logger = logging.getLogger("skfleet.config")

CONFIG_RELPATH = Path("config") / "config.yaml"


class BackoffSettings(BaseModel):
    """Backoff policy as written in YAML (seconds, not timedeltas)."""

    strategy: BackoffStrategy = BackoffStrategy.GEOMETRIC
    base_seconds: float = Field(default=60.0, gt=0)
    max_seconds: float = Field(default=600.0, gt=0)
    factor: float = Field(default=1.5, ge=1.0)

    @model_validator(mode="after")
    def _max_not_below_base(self) -> "BackoffSettings":
        if self.max_seconds < self.base_seconds:
            raise ValueError("max_seconds must be >= base_seconds")
        return self

    def to_policy(self) -> BackoffPolicy:
        """Build the immutable runtime policy."""
        return BackoffPolicy(
            strategy=self.strategy,
            base_interval=timedelta(seconds=self.base_seconds),
            max_interval=timedelta(seconds=self.max_seconds),
            factor=self.factor,
        )


class FleetConfig(BaseModel):
    """Persistent configuration for the fleet supervisor."""

    town_root: Path = Path("~/gt")
    session_prefix: str = SESSION_PREFIX
    backoff: BackoffSettings = Field(default_factory=BackoffSettings)
    workload_pattern: str = DEFAULT_WORKLOAD_PATTERN
    indicator_commands: list[str] = Field(default_factory=lambda: list(DEFAULT_INDICATORS))
    shells: list[str] = Field(default_factory=lambda: list(SUPPORTED_SHELLS))
    ready_timeout: float = Field(default=DEFAULT_READY_TIMEOUT, ge=0)
    start_timeout: float = Field(default=DEFAULT_START_TIMEOUT, ge=0)
    startup_delay: float = Field(default=0.0, ge=0)
    auto_restart: bool = False
    restart_after_misses: int = Field(default=3, ge=1)
    agents: list[AgentDefinition] = Field(default_factory=list)

    @property
    def resolved_town_root(self) -> Path:
        """town_root with ``~`` expanded."""
        return self.town_root.expanduser()

    def agent(self, agent_id: str) -> Optional[AgentDefinition]:
        """Definition for ``agent_id``, or None if not configured."""
        for definition in self.agents:
            if definition.agent_id == agent_id:
                return definition
        return None


def fleet_home(home: Optional[Path] = None) -> Path:
    """Resolve the fleet home directory.

    Args:
        home: Explicit override; otherwise ``SKFLEET_HOME`` or the default.
    """
    if home is not None:
        return Path(home).expanduser()
    return Path(os.environ.get("SKFLEET_HOME", FLEET_HOME)).expanduser()


def state_path(home: Path, agent_id: str) -> Path:
    """State file for ``agent_id`` under ``<home>/state``.

    Agent ids such as ``gastown/witness`` become ``gastown__witness.json``.
    """
    return Path(home) / "state" / f"{agent_id.replace('/', '__')}.json"


def load_config(home: Path) -> FleetConfig:
    """Load fleet configuration from disk.

    Args:
        home: Fleet home directory.

    Returns:
        FleetConfig loaded from config.yaml, or defaults.
    """
    config_file = Path(home) / CONFIG_RELPATH
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return FleetConfig(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load config: %s, using defaults", exc)
    return FleetConfig()
