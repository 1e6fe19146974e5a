"""
Fleet health diagnostics.

Checks the tools and workspace the supervisor depends on, and reports
orphaned sessions and processes with fix suggestions. With ``fix=True``
the orphan checks also remediate what they found.

Usage:
    skfleet doctor
    skfleet doctor --fix
    skfleet doctor --json-out
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .config import CONFIG_RELPATH
from .errors import RemediationError
from .orphans import DEFAULT_WORKLOAD_PATTERN, ProcessOrphanDetector, SessionOrphanDetector
from .tmux import TMUX_BINARY, Tmux
from .workspace import SESSION_PREFIX, valid_rig_names


@dataclass
class Check:
    """A single diagnostic check result.

    Attributes:
        name: Short check identifier.
        description: Human-readable description.
        passed: Whether the check passed.
        detail: One-line summary (version, path, count, etc.).
        details: Per-item findings.
        fix: Suggested fix if the check failed.
        category: Grouping (system, workspace, orphans).
        severity: Reported status when the check fails.
    """

    name: str
    description: str
    passed: bool
    detail: str = ""
    details: list[str] = field(default_factory=list)
    fix: str = ""
    category: str = "general"
    severity: str = "error"

    @property
    def status(self) -> str:
        """``ok`` when passed, otherwise the severity."""
        return "ok" if self.passed else self.severity


@dataclass
class DiagnosticReport:
    """Full diagnostic report.

    Attributes:
        checks: All check results.
        fleet_home: Fleet home directory.
        town_root: Workspace root that was inspected.
    """

    checks: list[Check] = field(default_factory=list)
    fleet_home: str = ""
    town_root: str = ""

    @property
    def passed_count(self) -> int:
        """Number of checks that passed."""
        return sum(1 for c in self.checks if c.passed)

    @property
    def failed_count(self) -> int:
        """Number of checks that failed."""
        return sum(1 for c in self.checks if not c.passed)

    @property
    def total_count(self) -> int:
        """Total number of checks."""
        return len(self.checks)

    @property
    def all_passed(self) -> bool:
        """Whether every check passed."""
        return self.failed_count == 0

    def get(self, name: str) -> Optional[Check]:
        """Look up a check by name."""
        for check in self.checks:
            if check.name == name:
                return check
        return None

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict."""
        return {
            "fleet_home": self.fleet_home,
            "town_root": self.town_root,
            "passed": self.passed_count,
            "failed": self.failed_count,
            "total": self.total_count,
            "all_passed": self.all_passed,
            "checks": [
                {
                    "name": c.name,
                    "category": c.category,
                    "description": c.description,
                    "passed": c.passed,
                    "status": c.status,
                    "detail": c.detail,
                    "details": c.details,
                    "fix": c.fix,
                }
                for c in self.checks
            ],
        }


def run_diagnostics(
    home: Path,
    town_root: Path,
    fix: bool = False,
    tmux: Optional[Tmux] = None,
    session_detector: Optional[SessionOrphanDetector] = None,
    process_detector: Optional[ProcessOrphanDetector] = None,
    workload_pattern: str = DEFAULT_WORKLOAD_PATTERN,
    session_prefix: str = SESSION_PREFIX,
) -> DiagnosticReport:
    """Run every fleet check.

    Args:
        home: Fleet home directory.
        town_root: Workspace root holding the rigs.
        fix: Remediate orphans that are found.
        tmux: tmux wrapper shared by the detectors.
        session_detector: Override for the session-orphan detector.
        process_detector: Override for the process-orphan detector.
        workload_pattern: Command-line pattern for agent processes.
        session_prefix: Prefix of the fleet's tmux sessions.

    Returns:
        DiagnosticReport with results for every check.
    """
    tmux = tmux or Tmux()
    session_detector = session_detector or SessionOrphanDetector(
        tmux, town_root, prefix=session_prefix,
    )
    process_detector = process_detector or ProcessOrphanDetector(tmux, workload_pattern)

    report = DiagnosticReport(fleet_home=str(home), town_root=str(town_root))
    report.checks.extend(_check_system_tools())
    report.checks.extend(_check_workspace(home, town_root))
    report.checks.append(check_orphan_sessions(session_detector, fix))
    report.checks.append(check_orphan_processes(process_detector, fix))
    return report


def _check_system_tools() -> list[Check]:
    """Check for tmux on PATH."""
    path = shutil.which(TMUX_BINARY)
    if path:
        return [Check(
            name=f"tool:{TMUX_BINARY}",
            description="tmux (agent session host)",
            passed=True,
            detail=_get_tool_version(TMUX_BINARY) or path,
            category="system",
        )]
    return [Check(
        name=f"tool:{TMUX_BINARY}",
        description="tmux (agent session host)",
        passed=False,
        detail="not found",
        fix="sudo apt install tmux  # or: brew install tmux",
        category="system",
    )]


def _check_workspace(home: Path, town_root: Path) -> list[Check]:
    """Check the fleet config file and the rig registry."""
    checks = []

    config_file = home / CONFIG_RELPATH
    checks.append(Check(
        name="home:config",
        description="Fleet config",
        passed=True,
        detail=str(config_file) if config_file.exists() else "not found (using defaults)",
        category="workspace",
    ))

    registry = town_root / "mayor" / "rigs.json"
    if registry.exists():
        rigs = sorted(valid_rig_names(town_root))
        checks.append(Check(
            name="town:rigs",
            description="Rig registry",
            passed=True,
            detail=f"{len(rigs)} rig(s)",
            details=rigs,
            category="workspace",
        ))
    else:
        checks.append(Check(
            name="town:rigs",
            description="Rig registry",
            passed=False,
            detail=f"{registry} missing",
            fix="Run skfleet doctor --town-root PATH against your town root",
            category="workspace",
            severity="warning",
        ))
    return checks


def check_orphan_sessions(detector: SessionOrphanDetector, fix: bool = False) -> Check:
    """Report (and optionally kill) fleet sessions with no known rig."""
    check = Check(
        name="orphan-sessions",
        description="Orphaned tmux sessions",
        passed=True,
        category="orphans",
        severity="warning",
    )
    scan = detector.detect()
    if scan.error:
        check.detail = f"Could not list sessions: {scan.error}"
        return check

    if not scan.orphans:
        check.detail = f"All {len(scan.valid)} sessions are valid"
        return check

    check.passed = False
    check.detail = f"Found {len(scan.orphans)} orphaned session(s)"
    check.details = [f"Orphan: {name}" for name in scan.orphans]
    check.fix = "skfleet doctor --fix"
    if fix:
        _apply_fix(check, lambda: detector.remediate(scan.orphans), "session(s)")
    return check


def check_orphan_processes(detector: ProcessOrphanDetector, fix: bool = False) -> Check:
    """Report (and optionally signal) agent processes outside tmux."""
    check = Check(
        name="orphan-processes",
        description="Orphaned agent processes",
        passed=True,
        category="orphans",
        severity="warning",
    )
    scan = detector.detect()
    if scan.error:
        check.detail = f"Could not inspect processes: {scan.error}"
        return check

    if not scan.orphans:
        check.detail = f"All {len(scan.valid)} agent processes are inside tmux"
        return check

    check.passed = False
    check.detail = f"Found {len(scan.orphans)} orphaned process(es)"
    check.details = [
        f"PID {r.pid}: {r.name} (parent: {r.ppid})" for r in scan.orphans
    ]
    check.fix = "skfleet doctor --fix"
    if fix:
        _apply_fix(check, lambda: detector.remediate(scan.orphans), "process(es)")
    return check


def _apply_fix(check: Check, remediate, noun: str) -> None:
    try:
        count = remediate()
    except RemediationError as exc:
        check.details.extend(f"Failed: {target}: {err}" for target, err in exc.failures)
        check.detail = f"{check.detail}; {len(exc.failures)} could not be cleaned up"
        return
    check.passed = True
    check.fix = ""
    check.detail = f"{check.detail}; cleaned up {count} {noun}"


def _get_tool_version(tool: str) -> Optional[str]:
    """Try to get a tool's version string.

    Args:
        tool: Tool name on PATH.

    Returns:
        Version string, or None.
    """
    try:
        result = subprocess.run(
            [tool, "-V"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            return result.stdout.strip().split("\n")[0][:80]
    except (subprocess.TimeoutExpired, OSError):
        pass
    return None
