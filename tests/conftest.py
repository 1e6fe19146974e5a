"""Shared test fixtures for skfleet."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pytest

from skfleet.process import ProcessRecord, ProcessTable
from skfleet.tmux import SessionExistsError, SessionNotFoundError, TmuxError


@dataclass
class FakeSession:
    """In-memory stand-in for a tmux session."""

    command: str = "bash"
    pane_pid: int = 100
    pane_pids: list[int] = field(default_factory=list)
    work_dir: str = ""
    env: dict[str, str] = field(default_factory=dict)
    keys: list[str] = field(default_factory=list)
    options: dict[str, str] = field(default_factory=dict)


class FakeTmux:
    """Records calls and simulates tmux without a server.

    ``launch_command`` is what the pane's foreground command becomes once
    keys are sent; ``failures`` maps a method name to the TmuxError it
    should raise.
    """

    def __init__(self, launch_command: str = "claude") -> None:
        self.sessions: dict[str, FakeSession] = {}
        self.launch_command = launch_command
        self.failures: dict[str, TmuxError] = {}
        self.killed: list[str] = []
        self.calls: list[str] = []
        self._next_pid = 1000

    def add_session(self, name: str, command: str = "bash", pane_pid: Optional[int] = None,
                    pane_pids: Optional[list[int]] = None) -> FakeSession:
        pid = pane_pid if pane_pid is not None else self._allocate_pid()
        session = FakeSession(command=command, pane_pid=pid,
                              pane_pids=pane_pids if pane_pids is not None else [pid])
        self.sessions[name] = session
        return session

    def _allocate_pid(self) -> int:
        self._next_pid += 1
        return self._next_pid

    def _maybe_fail(self, method: str) -> None:
        self.calls.append(method)
        if method in self.failures:
            raise self.failures[method]

    def _get(self, session: str) -> FakeSession:
        if session not in self.sessions:
            raise SessionNotFoundError(f"can't find session: {session}")
        return self.sessions[session]

    def list_sessions(self) -> list[str]:
        self._maybe_fail("list_sessions")
        return list(self.sessions)

    def has_session(self, session: str) -> bool:
        self._maybe_fail("has_session")
        return session in self.sessions

    def new_session(self, session: str, work_dir: str = "") -> None:
        self._maybe_fail("new_session")
        if session in self.sessions:
            raise SessionExistsError(f"duplicate session: {session}")
        self.add_session(session).work_dir = work_dir

    def new_session_with_command(self, session: str, work_dir: str, command: str) -> None:
        self._maybe_fail("new_session_with_command")
        if session in self.sessions:
            raise SessionExistsError(f"duplicate session: {session}")
        created = self.add_session(session, command=command.split()[0])
        created.work_dir = work_dir

    def kill_session(self, session: str) -> None:
        self._maybe_fail("kill_session")
        self._get(session)
        del self.sessions[session]
        self.killed.append(session)

    def send_keys(self, session: str, text: str) -> None:
        self._maybe_fail("send_keys")
        target = self._get(session)
        target.keys.append(text)
        if len(target.keys) == 1:
            target.command = self.launch_command

    def set_environment(self, session: str, key: str, value: str) -> None:
        self._maybe_fail("set_environment")
        self._get(session).env[key] = value

    def get_pane_command(self, session: str) -> str:
        self._maybe_fail("get_pane_command")
        return self._get(session).command

    def get_pane_pid(self, session: str) -> int:
        self._maybe_fail("get_pane_pid")
        return self._get(session).pane_pid

    def list_pane_pids(self, session: str) -> list[int]:
        self._maybe_fail("list_pane_pids")
        return list(self._get(session).pane_pids)

    def wait_for_command(self, session, excluded=(), timeout=60.0, poll_interval=0.2) -> bool:
        self.calls.append("wait_for_command")
        target = self.sessions.get(session)
        return target is not None and target.command not in set(excluded)

    def wait_until_ready(self, session, timeout=5.0, shells=(), poll_interval=0.1) -> bool:
        self.calls.append("wait_until_ready")
        target = self.sessions.get(session)
        return target is not None and target.command in set(shells)

    def configure_session(self, session, theme, rig="", role="") -> None:
        self._maybe_fail("configure_session")
        self._get(session).options["theme"] = theme.name


def make_table(*rows: tuple) -> ProcessTable:
    """Build a ProcessTable from (pid, ppid, name[, cmdline]) tuples."""
    return ProcessTable(ProcessRecord(*row) for row in rows)


@pytest.fixture
def fake_tmux() -> FakeTmux:
    """A FakeTmux with no sessions."""
    return FakeTmux()


@pytest.fixture
def tmp_fleet_home(tmp_path: Path) -> Path:
    """Provide a temporary fleet home directory."""
    home = tmp_path / ".skfleet"
    (home / "config").mkdir(parents=True)
    return home


@pytest.fixture
def town_root(tmp_path: Path) -> Path:
    """A town with rigs ``gastown`` and ``beads-rig`` and a rig registry."""
    root = tmp_path / "gt"
    (root / "mayor").mkdir(parents=True)
    (root / "mayor" / "rigs.json").write_text("{}")
    (root / "gastown" / "polecats" / "nux").mkdir(parents=True)
    (root / "gastown" / "polecats" / "toast").mkdir(parents=True)
    (root / "beads-rig" / "crew").mkdir(parents=True)
    (root / "notes").mkdir()
    (root / ".beads" / "crew").mkdir(parents=True)
    return root
