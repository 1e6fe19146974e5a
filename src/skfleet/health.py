"""
Session health classification: is the real workload in the pane?

A tmux session outliving its agent is the common failure: the container
is alive, the workload is dead ("zombie"). The classifier answers in two
tiers:

1. The pane's foreground command is itself a known agent binary (exact
   name, or a bare semantic-version banner such as ``2.0.76``).
2. The foreground command is a plain shell, and somewhere below the
   pane's process an agent binary is running.

Every lookup failure classifies as NOT_RUNNING. Liveness checks never
raise.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Callable, Iterable

import psutil

from .process import ProcessTable
from .tmux import SUPPORTED_SHELLS, Tmux, TmuxError

logger = logging.getLogger("skfleet.health")

DEFAULT_INDICATORS = ("node", "claude")
VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+")


class SessionHealth(str, Enum):
    """Liveness verdict for one session."""

    RUNNING = "running"
    NOT_RUNNING = "not_running"


def matches_indicator(
    command: str,
    indicators: Iterable[str],
    match_versions: bool = False,
) -> bool:
    """Whether ``command`` directly identifies an agent process.

    Args:
        command: A foreground command or process name.
        indicators: Exact command names that count as the agent.
        match_versions: Also accept a leading ``N.N.N`` version banner.

    Returns:
        True on an exact name match or (optionally) a version banner.
    """
    if not command:
        return False
    if command in set(indicators):
        return True
    return match_versions and VERSION_PATTERN.match(command) is not None


class HealthClassifier:
    """Decides whether an agent workload occupies a session.

    Args:
        tmux: Session primitives.
        indicators: Command names that count as the agent running.
        shells: Foreground commands that trigger a process-subtree search.
        match_versions: Treat version-banner commands as the agent.
        table_factory: Produces a fresh process table snapshot.
    """

    def __init__(
        self,
        tmux: Tmux,
        indicators: Iterable[str] = DEFAULT_INDICATORS,
        shells: Iterable[str] = SUPPORTED_SHELLS,
        match_versions: bool = True,
        table_factory: Callable[[], ProcessTable] = ProcessTable.snapshot,
    ) -> None:
        self._tmux = tmux
        self._indicators = frozenset(indicators)
        self._shells = frozenset(shells)
        self._match_versions = match_versions
        self._table_factory = table_factory

    @property
    def indicators(self) -> frozenset[str]:
        """Command names treated as the agent."""
        return self._indicators

    def classify(self, session: str) -> SessionHealth:
        """Classify ``session`` using the configured indicators."""
        if self._check(session, self._indicators, self._match_versions):
            return SessionHealth.RUNNING
        return SessionHealth.NOT_RUNNING

    def is_running(self, session: str) -> bool:
        """True if ``session`` hosts a running agent workload."""
        return self.classify(session) == SessionHealth.RUNNING

    def is_agent_running(self, session: str, *process_names: str) -> bool:
        """Generalized check against caller-supplied agent binaries.

        Only exact names match; with no names nothing can match.
        """
        if not process_names:
            return False
        return self._check(session, frozenset(process_names), match_versions=False)

    def _check(
        self,
        session: str,
        indicators: frozenset[str],
        match_versions: bool,
    ) -> bool:
        if not indicators and not match_versions:
            return False
        try:
            command = self._tmux.get_pane_command(session)
            if matches_indicator(command, indicators, match_versions):
                return True
            if command not in self._shells:
                return False
            pane_pid = self._tmux.get_pane_pid(session)
            table = self._table_factory()
        except (TmuxError, OSError, psutil.Error) as exc:
            logger.debug("Health check for %s failed: %s", session, exc)
            return False
        return any(
            matches_indicator(child.name, indicators, match_versions)
            for child in table.descendants(pane_pid)
        )
