"""
Pydantic models for persisted agent state and agent definitions.

AgentRunState is the single source of truth across supervisor restarts.
It is written atomically by the StateStore and only ever mutated by the
lifecycle controller.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class RunState(str, Enum):
    """Persisted lifecycle state of an agent."""

    STOPPED = "stopped"
    RUNNING = "running"


class AgentRunState(BaseModel):
    """Persisted run state of a single agent.

    Attributes:
        agent_id: Stable agent identifier (e.g. "gastown/witness").
        state: Stopped or running.
        started_at: When the agent last entered the running state.
        controlling_pid: PID of a directly held agent process, or 0 when
            the workload lives inside a session and is not OS-trackable.
        monitored_workers: Worker names this agent supervises.
    """

    agent_id: str = ""
    state: RunState = RunState.STOPPED
    started_at: Optional[datetime] = None
    controlling_pid: int = Field(default=0, ge=0)
    monitored_workers: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _running_has_start_time(self) -> "AgentRunState":
        if self.state == RunState.RUNNING and self.started_at is None:
            raise ValueError("running state requires started_at")
        return self

    @property
    def is_running(self) -> bool:
        """Whether the persisted state claims the agent is running."""
        return self.state == RunState.RUNNING


class SessionTheme(BaseModel):
    """tmux status-bar colours for an agent session."""

    name: str = "default"
    bg: str = "colour236"
    fg: str = "colour250"


class AgentDefinition(BaseModel):
    """Everything the lifecycle controller needs to launch one agent.

    Command composition and environment construction happen upstream;
    this model only carries their results.
    """

    agent_id: str
    session: str
    work_dir: str = "."
    start_command: str = "claude"
    env: dict[str, str] = Field(default_factory=dict)
    startup_message: str = ""
    rig: str = ""
    role: str = ""
    theme: Optional[SessionTheme] = None
