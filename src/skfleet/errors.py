"""
Error taxonomy for the fleet supervision engine.

Expected state conflicts (AlreadyRunningError, NotRunningError) are
ordinary outcomes callers branch on. LifecycleError wraps a fatal step
and names it. RemediationError is raised once, after a best-effort
cleanup pass has worked through its whole list.
"""

from __future__ import annotations

from typing import Optional


class FleetError(Exception):
    """Base class for all skfleet errors."""


class AlreadyRunningError(FleetError):
    """The agent is already running; a second start would duplicate it."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"{agent_id} already running")
        self.agent_id = agent_id


class NotRunningError(FleetError):
    """The agent is neither marked running nor backed by a live session."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"{agent_id} not running")
        self.agent_id = agent_id


class LifecycleError(FleetError):
    """A critical lifecycle step failed.

    Attributes:
        step: Short description of the failing step.
    """

    def __init__(self, step: str, cause: Exception) -> None:
        super().__init__(f"{step}: {cause}")
        self.step = step


class StateStoreError(FleetError):
    """Persisted agent state could not be read or written."""


class RemediationError(FleetError):
    """One or more remediation actions failed.

    Attributes:
        failures: (target, exception) pairs in the order they occurred.
    """

    def __init__(self, failures: list[tuple[str, Exception]]) -> None:
        targets = ", ".join(target for target, _ in failures)
        super().__init__(f"{len(failures)} remediation action(s) failed: {targets}")
        self.failures = failures

    @property
    def last_error(self) -> Optional[Exception]:
        """The most recent underlying failure."""
        return self.failures[-1][1] if self.failures else None
