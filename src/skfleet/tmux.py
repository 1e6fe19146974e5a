"""
Thin wrapper over the tmux command line.

Every call shells out to ``tmux`` and classifies stderr into a small
error hierarchy so callers can tell "no server" and "no such session"
apart from real failures. Nothing here decides policy; the health
classifier and lifecycle controller build on these primitives.
"""

from __future__ import annotations

import hashlib
import logging
import subprocess
import time
from typing import TYPE_CHECKING, Iterable

from .errors import FleetError
from .models import SessionTheme

if TYPE_CHECKING:
    from .health import HealthClassifier

logger = logging.getLogger("skfleet.tmux")

TMUX_BINARY = "tmux"
DEFAULT_TIMEOUT = 10
SUPPORTED_SHELLS = ("bash", "zsh", "sh", "fish", "tcsh", "ksh")

THEME_PALETTE = (
    SessionTheme(name="ocean", bg="colour24", fg="colour255"),
    SessionTheme(name="forest", bg="colour22", fg="colour255"),
    SessionTheme(name="rust", bg="colour130", fg="colour255"),
    SessionTheme(name="plum", bg="colour54", fg="colour255"),
    SessionTheme(name="slate", bg="colour238", fg="colour252"),
    SessionTheme(name="wine", bg="colour88", fg="colour255"),
)


class TmuxError(FleetError):
    """A tmux command failed."""


class NoServerError(TmuxError):
    """No tmux server is running."""


class SessionExistsError(TmuxError):
    """A session with that name already exists."""


class SessionNotFoundError(TmuxError):
    """No session with that name exists."""


def classify_error(stderr: str, args: Iterable[str] = ()) -> TmuxError:
    """Map tmux stderr text onto the error hierarchy.

    Args:
        stderr: Captured standard error from tmux.
        args: The tmux arguments, used in the generic message.

    Returns:
        The most specific TmuxError subclass instance.
    """
    text = stderr.strip()
    lowered = text.lower()
    if "no server running" in lowered or "error connecting to" in lowered:
        return NoServerError(text)
    if "duplicate session" in lowered:
        return SessionExistsError(text)
    if "session not found" in lowered or "can't find session" in lowered:
        return SessionNotFoundError(text)
    return TmuxError(f"tmux {' '.join(args)}: {text}")


def assign_theme(rig: str) -> SessionTheme:
    """Pick a stable palette entry for a rig name."""
    digest = hashlib.sha256(rig.encode("utf-8")).digest()
    return THEME_PALETTE[digest[0] % len(THEME_PALETTE)]


def session_target(session: str) -> str:
    """Exact-match target for ``session``; tmux otherwise matches prefixes."""
    return f"={session}"


def pane_target(session: str) -> str:
    """Exact-match target for the active pane of ``session``."""
    return f"={session}:"


class Tmux:
    """tmux command wrapper.

    Args:
        binary: tmux executable name or path.
        timeout: Per-command timeout in seconds.
    """

    def __init__(self, binary: str = TMUX_BINARY, timeout: int = DEFAULT_TIMEOUT) -> None:
        self._binary = binary
        self._timeout = timeout

    def _run(self, *args: str) -> str:
        """Run a tmux command and return its stdout.

        Raises:
            TmuxError: On non-zero exit, a missing binary, or a timeout.
        """
        try:
            result = subprocess.run(
                [self._binary, *args],
                capture_output=True, text=True, timeout=self._timeout,
            )
        except FileNotFoundError as exc:
            raise TmuxError(f"{self._binary} not found") from exc
        except subprocess.TimeoutExpired as exc:
            raise TmuxError(f"tmux {' '.join(args)}: timed out") from exc
        if result.returncode != 0:
            raise classify_error(result.stderr, args)
        return result.stdout

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def list_sessions(self) -> list[str]:
        """Names of all sessions; empty when no server is running."""
        try:
            out = self._run("list-sessions", "-F", "#{session_name}")
        except NoServerError:
            return []
        return [line for line in out.splitlines() if line]

    def has_session(self, session: str) -> bool:
        """Whether ``session`` exists (exact name match)."""
        try:
            self._run("has-session", "-t", session_target(session))
        except (NoServerError, SessionNotFoundError):
            return False
        return True

    def new_session(self, session: str, work_dir: str = "") -> None:
        """Create a detached session running the default shell."""
        args = ["new-session", "-d", "-s", session]
        if work_dir:
            args += ["-c", work_dir]
        self._run(*args)

    def new_session_with_command(self, session: str, work_dir: str, command: str) -> None:
        """Create a detached session whose first pane runs ``command``."""
        args = ["new-session", "-d", "-s", session]
        if work_dir:
            args += ["-c", work_dir]
        args.append(command)
        self._run(*args)

    def kill_session(self, session: str) -> None:
        """Kill ``session``."""
        self._run("kill-session", "-t", session_target(session))

    def ensure_session_fresh(
        self,
        session: str,
        work_dir: str,
        classifier: "HealthClassifier",
    ) -> None:
        """Create ``session``, first replacing it if it is a zombie.

        A live session whose workload is running is left untouched.
        """
        if self.has_session(session):
            if classifier.is_running(session):
                return
            logger.info("Replacing zombie session %s", session)
            self.kill_session(session)
        self.new_session(session, work_dir)

    # ------------------------------------------------------------------
    # Panes
    # ------------------------------------------------------------------

    def send_keys(self, session: str, text: str) -> None:
        """Type ``text`` literally into the session and press Enter."""
        self._run("send-keys", "-t", pane_target(session), "-l", text)
        self._run("send-keys", "-t", pane_target(session), "Enter")

    def set_environment(self, session: str, key: str, value: str) -> None:
        """Set a session environment variable (affects new panes only)."""
        self._run("set-environment", "-t", session_target(session), key, value)

    def get_pane_command(self, session: str) -> str:
        """The foreground command of the session's active pane."""
        out = self._run(
            "display-message", "-p", "-t", pane_target(session), "#{pane_current_command}",
        )
        return out.strip()

    def get_pane_pid(self, session: str) -> int:
        """PID of the process the active pane was started with."""
        out = self._run("display-message", "-p", "-t", pane_target(session), "#{pane_pid}")
        try:
            return int(out.strip())
        except ValueError as exc:
            raise TmuxError(f"unexpected pane pid {out.strip()!r}") from exc

    def list_pane_pids(self, session: str) -> list[int]:
        """Pane PIDs across every window of ``session``."""
        out = self._run("list-panes", "-s", "-t", session_target(session), "-F", "#{pane_pid}")
        pids = []
        for line in out.splitlines():
            line = line.strip()
            if line.isdigit():
                pids.append(int(line))
        return pids

    def wait_for_command(
        self,
        session: str,
        excluded: Iterable[str] = SUPPORTED_SHELLS,
        timeout: float = 60.0,
        poll_interval: float = 0.2,
    ) -> bool:
        """Wait until the pane runs something other than ``excluded``.

        Returns:
            True once a non-excluded command is in the foreground, False
            if ``timeout`` elapsed first.
        """
        excluded = set(excluded)
        deadline = time.monotonic() + timeout
        while True:
            try:
                if self.get_pane_command(session) not in excluded:
                    return True
            except TmuxError:
                pass
            if time.monotonic() >= deadline:
                return False
            time.sleep(poll_interval)

    def wait_until_ready(
        self,
        session: str,
        timeout: float = 5.0,
        shells: Iterable[str] = SUPPORTED_SHELLS,
        poll_interval: float = 0.1,
    ) -> bool:
        """Wait until the session's pane is sitting at a shell prompt.

        Returns:
            True if a shell took the foreground within ``timeout``.
        """
        shells = set(shells)
        deadline = time.monotonic() + timeout
        while True:
            try:
                if self.get_pane_command(session) in shells:
                    return True
            except TmuxError:
                pass
            if time.monotonic() >= deadline:
                return False
            time.sleep(poll_interval)

    # ------------------------------------------------------------------
    # Cosmetics
    # ------------------------------------------------------------------

    def configure_session(
        self,
        session: str,
        theme: SessionTheme,
        rig: str = "",
        role: str = "",
    ) -> None:
        """Apply status-bar colours and an agent label to ``session``."""
        label = "/".join(part for part in (rig, role) if part) or session
        target = session_target(session)
        self._run("set-option", "-t", target, "status-style", f"bg={theme.bg},fg={theme.fg}")
        self._run("set-option", "-t", target, "status-left", f" {label} ")
        self._run("set-option", "-t", target, "status-left-length", "40")
