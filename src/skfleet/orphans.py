"""
Orphan reconciliation: sessions and processes nobody owns any more.

Two detectors share one contract: ``detect()`` re-derives ground truth
from scratch (nothing is cached between calls) and ``remediate()``
works through the whole list, raising a single RemediationError at the
end if any action failed.

Session orphans: ``gt-*`` sessions whose rig is not a known rig.
Worker names under a known rig cannot be validated without reading
work-assignment state, so any role under a known rig is accepted. The
check prefers missing an orphan over killing a legitimate worker.

Process orphans: agent processes with no tmux server or pane anywhere
in their ancestry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

import psutil

from .errors import RemediationError
from .process import ProcessRecord, ProcessTable, force_terminate, send_interrupt
from .tmux import TMUX_BINARY, Tmux, TmuxError
from .workspace import (
    SESSION_PREFIX,
    parse_session,
    singleton_sessions,
    valid_rig_names,
)

logger = logging.getLogger("skfleet.orphans")

DEFAULT_WORKLOAD_PATTERN = "claude"


# ---------------------------------------------------------------------------
# Session orphans
# ---------------------------------------------------------------------------


def is_valid_session(
    session: str,
    valid_rigs: Iterable[str],
    prefix: str = SESSION_PREFIX,
) -> bool:
    """Whether ``session`` maps onto a known logical agent.

    Valid names are ``<prefix>mayor``, ``<prefix>deacon`` and
    ``<prefix><rig>-<role>`` where ``rig`` is a known rig. Any role is
    accepted under a known rig.
    """
    if session in singleton_sessions(prefix):
        return True
    parsed = parse_session(session, prefix)
    if parsed is None:
        return False
    rig, _role = parsed
    # Witness and refinery are fixed roles; polecat and crew names are not
    # knowable without work-assignment state, so any role is accepted.
    return rig in set(valid_rigs)


@dataclass
class SessionScan:
    """Result of one session-orphan detection pass.

    Attributes:
        orphans: Session names that belong to no known agent.
        valid: Session names in the ``gt-`` domain that checked out.
        error: Why the scan could not run, if it could not.
    """

    orphans: list[str] = field(default_factory=list)
    valid: list[str] = field(default_factory=list)
    error: str = ""


class SessionOrphanDetector:
    """Finds and kills ``gt-*`` sessions for rigs that no longer exist.

    Args:
        tmux: Session primitives.
        town_root: Workspace root used to derive the valid rig set.
        rig_source: Returns the valid rig names for a town root.
        prefix: Session-name prefix that marks the fleet's sessions.
    """

    def __init__(
        self,
        tmux: Tmux,
        town_root: Path,
        rig_source: Callable[[Path], set[str]] = valid_rig_names,
        prefix: str = SESSION_PREFIX,
    ) -> None:
        self._tmux = tmux
        self._town_root = Path(town_root)
        self._rig_source = rig_source
        self._prefix = prefix

    @property
    def prefix(self) -> str:
        """Prefix of the sessions this detector owns."""
        return self._prefix

    def detect(self) -> SessionScan:
        """Classify every session under the prefix as valid or orphaned."""
        try:
            sessions = self._tmux.list_sessions()
        except TmuxError as exc:
            logger.warning("Could not list tmux sessions: %s", exc)
            return SessionScan(error=str(exc))

        rigs = self._rig_source(self._town_root)
        scan = SessionScan()
        for session in sessions:
            if not session.startswith(self._prefix):
                continue
            if is_valid_session(session, rigs, self._prefix):
                scan.valid.append(session)
            else:
                scan.orphans.append(session)
        return scan

    def remediate(self, orphans: Iterable[str]) -> int:
        """Kill each orphaned session, continuing past failures.

        Returns:
            Number of sessions killed.

        Raises:
            RemediationError: After the full list, if any kill failed.
        """
        killed = 0
        failures: list[tuple[str, Exception]] = []
        for session in orphans:
            try:
                self._tmux.kill_session(session)
                killed += 1
                logger.info("Killed orphaned session %s", session)
            except TmuxError as exc:
                logger.warning("Failed to kill session %s: %s", session, exc)
                failures.append((session, exc))
        if failures:
            raise RemediationError(failures)
        return killed


# ---------------------------------------------------------------------------
# Process orphans
# ---------------------------------------------------------------------------


def is_orphan_process(
    record: ProcessRecord,
    table: ProcessTable,
    trusted: set[int],
) -> bool:
    """Whether no ancestor of ``record`` is a trusted tmux PID.

    Walks parent links up to PID 1 or a dead end. A visited set bounds
    the walk when the table reports a parent cycle.
    """
    current = record.ppid
    visited: set[int] = set()
    while current > 1 and current not in visited:
        visited.add(current)
        if current in trusted:
            return False
        parent = table.parent_of(current)
        if parent is None:
            break
        current = parent
    return True


@dataclass
class ProcessScan:
    """Result of one process-orphan detection pass.

    Attributes:
        orphans: Matching processes with no trusted ancestor.
        valid: Matching processes that live under tmux.
        error: Why the scan could not run, if it could not.
    """

    orphans: list[ProcessRecord] = field(default_factory=list)
    valid: list[ProcessRecord] = field(default_factory=list)
    error: str = ""


class ProcessOrphanDetector:
    """Finds agent processes that escaped their tmux sessions.

    Args:
        tmux: Session primitives, used to collect pane PIDs.
        pattern: Case-insensitive regex matched against command lines.
        table_factory: Produces a fresh process table snapshot.
        interrupt: Delivers the graceful signal.
        terminate: Delivers the forceful signal.
    """

    def __init__(
        self,
        tmux: Tmux,
        pattern: str = DEFAULT_WORKLOAD_PATTERN,
        table_factory: Callable[[], ProcessTable] = ProcessTable.snapshot,
        interrupt: Callable[[int], None] = send_interrupt,
        terminate: Callable[[int], None] = force_terminate,
    ) -> None:
        self._tmux = tmux
        self._pattern = pattern
        self._table_factory = table_factory
        self._interrupt = interrupt
        self._terminate = terminate

    def trusted_pids(self, table: ProcessTable) -> set[int]:
        """tmux server PIDs plus every pane PID of every session.

        Raises:
            TmuxError: If sessions cannot be listed at all.
        """
        trusted = {
            r.pid for r in table
            if r.name == TMUX_BINARY or r.name.startswith(f"{TMUX_BINARY}:")
        }
        for session in self._tmux.list_sessions():
            try:
                trusted.update(self._tmux.list_pane_pids(session))
            except TmuxError as exc:
                logger.debug("Skipping panes of %s: %s", session, exc)
        return trusted

    def detect(self) -> ProcessScan:
        """Classify every matching process as orphaned or not."""
        try:
            table = self._table_factory()
            trusted = self.trusted_pids(table)
        except (TmuxError, OSError, psutil.Error) as exc:
            logger.warning("Could not inspect processes: %s", exc)
            return ProcessScan(error=str(exc))

        scan = ProcessScan()
        for record in table.matching(self._pattern):
            if record.pid in trusted:
                scan.valid.append(record)
            elif is_orphan_process(record, table, trusted):
                scan.orphans.append(record)
            else:
                scan.valid.append(record)
        return scan

    def remediate(self, orphans: Iterable[ProcessRecord]) -> int:
        """Interrupt each orphan, escalating to SIGKILL only if SIGINT fails.

        Returns:
            Number of processes signalled.

        Raises:
            RemediationError: After the full list, if any process could
                be neither interrupted nor killed.
        """
        signalled = 0
        failures: list[tuple[str, Exception]] = []
        for record in orphans:
            try:
                self._interrupt(record.pid)
                signalled += 1
                logger.info("Interrupted orphaned process %d (%s)", record.pid, record.name)
                continue
            except OSError as exc:
                logger.debug("SIGINT to %d failed: %s; escalating", record.pid, exc)
            try:
                self._terminate(record.pid)
                signalled += 1
                logger.info("Killed orphaned process %d (%s)", record.pid, record.name)
            except OSError as exc:
                logger.warning("Failed to kill process %d: %s", record.pid, exc)
                failures.append((f"pid {record.pid}", exc))
        if failures:
            raise RemediationError(failures)
        return signalled
