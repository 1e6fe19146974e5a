"""
Agent lifecycle controller: start, stop, status, restart.

Each agent has two sources of truth that can disagree: the persisted
AgentRunState and what tmux shows right now. Start and Stop consult
both, and live observation wins:

- A session whose workload is dead (zombie) never blocks a start; it is
  torn down first.
- A stopped agent with no session cannot be stopped again.
- Running state is persisted before the workload is launched, so a
  crash mid-launch leaves a recoverable record.

Steps are either critical (state load/save, session create, workload
launch) and abort the operation with a LifecycleError, or best-effort
(environment, theming, readiness waits, startup message) and only add a
line to the returned diagnostics.

Usage:
    manager = AgentManager(definition, StateStore(path, definition.agent_id),
                           tmux, HealthClassifier(tmux))
    try:
        result = manager.start()
    except AlreadyRunningError:
        ...
"""

from __future__ import annotations

import logging
import os
import shlex
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from .errors import AlreadyRunningError, LifecycleError, NotRunningError, StateStoreError
from .health import HealthClassifier
from .models import AgentDefinition, AgentRunState, RunState
from .process import process_exists, send_interrupt
from .state import StateStore
from .tmux import SUPPORTED_SHELLS, Tmux, TmuxError, assign_theme
from .workspace import SESSION_PREFIX, extract_rig_name

logger = logging.getLogger("skfleet.lifecycle")

DEFAULT_READY_TIMEOUT = 5.0
DEFAULT_START_TIMEOUT = 60.0


def build_startup_command(env: dict[str, str], command: str) -> str:
    """Prefix ``command`` with exports of ``env``, sorted by key.

    tmux set-environment only reaches panes created afterwards, so the
    variables are exported inline for the pane that is already open.
    """
    if not env:
        return command
    exports = [f"export {key}={shlex.quote(env[key])}" for key in sorted(env)]
    return " && ".join([*exports, command])


@dataclass
class LifecycleResult:
    """Outcome of a successful lifecycle operation.

    Attributes:
        agent_id: The agent acted on.
        state: The state persisted by the operation.
        diagnostics: Best-effort steps that failed without aborting.
    """

    agent_id: str
    state: AgentRunState
    diagnostics: list[str] = field(default_factory=list)


class AgentManager:
    """Lifecycle state machine for one agent.

    At most one start/stop/status/restart runs at a time per manager.

    Args:
        definition: How to launch the agent.
        store: Persisted run state.
        tmux: Session primitives.
        classifier: Decides whether a live session is healthy.
        workers: Returns the live list of workers this agent monitors.
        ready_timeout: Seconds to wait for the new session's shell.
        start_timeout: Seconds to wait for the workload to take the pane.
        startup_delay: Pause before sending the startup message.
        shells: Foreground commands that mean "no workload yet".
        process_alive: PID liveness probe.
        interrupt: Graceful signal delivery.
        session_prefix: Prefix stripped when deriving the rig from the session.
    """

    def __init__(
        self,
        definition: AgentDefinition,
        store: StateStore,
        tmux: Tmux,
        classifier: HealthClassifier,
        workers: Optional[Callable[[], list[str]]] = None,
        ready_timeout: float = DEFAULT_READY_TIMEOUT,
        start_timeout: float = DEFAULT_START_TIMEOUT,
        startup_delay: float = 0.0,
        shells: Iterable[str] = SUPPORTED_SHELLS,
        process_alive: Callable[[int], bool] = process_exists,
        interrupt: Callable[[int], None] = send_interrupt,
        session_prefix: str = SESSION_PREFIX,
    ) -> None:
        self._definition = definition
        self._store = store
        self._tmux = tmux
        self._classifier = classifier
        self._workers = workers
        self._ready_timeout = ready_timeout
        self._start_timeout = start_timeout
        self._startup_delay = startup_delay
        self._shells = tuple(shells)
        self._process_alive = process_alive
        self._interrupt = interrupt
        self._session_prefix = session_prefix
        self._lock = threading.RLock()

    @property
    def agent_id(self) -> str:
        """The managed agent's identifier."""
        return self._definition.agent_id

    @property
    def session(self) -> str:
        """The tmux session hosting the agent."""
        return self._definition.session

    @property
    def rig(self) -> str:
        """Rig the agent belongs to, derived from the session when unset."""
        return self._definition.rig or extract_rig_name(self.session, prefix=self._session_prefix)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def start(self, foreground: bool = False) -> LifecycleResult:
        """Start the agent.

        Args:
            foreground: Record the calling process as the agent instead of
                creating a session (legacy direct-process mode).

        Returns:
            LifecycleResult with the persisted Running state.

        Raises:
            AlreadyRunningError: A healthy session or live agent PID exists.
            LifecycleError: A critical step failed.
        """
        with self._lock:
            state = self._load()
            if foreground:
                return self._start_foreground(state)

            diagnostics: list[str] = []
            session = self.session

            if self._has_session():
                if self._classifier.is_running(session):
                    raise AlreadyRunningError(self.agent_id)
                logger.info("Killing zombie session %s", session)
                self._critical("killing zombie session", self._tmux.kill_session, session)

            if self._pid_alive(state):
                raise AlreadyRunningError(self.agent_id)

            self._critical(
                "creating session", self._tmux.new_session,
                session, self._definition.work_dir,
            )
            for key, value in self._definition.env.items():
                self._best_effort(
                    diagnostics, f"setting {key}",
                    self._tmux.set_environment, session, key, value,
                )
            theme = self._definition.theme or assign_theme(self.rig)
            self._best_effort(
                diagnostics, "theming session", self._tmux.configure_session,
                session, theme, self.rig, self._definition.role,
            )

            state.state = RunState.RUNNING
            state.started_at = datetime.now(timezone.utc)
            state.controlling_pid = 0
            state.monitored_workers = self._current_workers(state)
            try:
                self._store.save(state)
            except StateStoreError as exc:
                self._teardown(session)
                raise LifecycleError("saving state", exc) from exc

            if not self._tmux.wait_until_ready(session, self._ready_timeout, self._shells):
                diagnostics.append(f"shell not ready after {self._ready_timeout:g}s")

            command = build_startup_command(
                self._definition.env, self._definition.start_command,
            )
            try:
                self._tmux.send_keys(session, command)
            except TmuxError as exc:
                self._teardown(session)
                raise LifecycleError("launching agent", exc) from exc

            self._deliver_startup_message(session, diagnostics)

            logger.info("Started %s in session %s", self.agent_id, session)
            return LifecycleResult(self.agent_id, state, diagnostics)

    def stop(self) -> LifecycleResult:
        """Stop the agent and persist the Stopped state.

        Raises:
            NotRunningError: Neither state nor a live session says running.
            LifecycleError: State could not be loaded or saved.
        """
        with self._lock:
            state = self._load()
            diagnostics: list[str] = []
            session_running = self._has_session()

            if not state.is_running and not session_running:
                raise NotRunningError(self.agent_id)

            if session_running:
                self._best_effort(
                    diagnostics, "killing session", self._tmux.kill_session, self.session,
                )

            pid = state.controlling_pid
            if pid > 0 and pid != os.getpid() and self._process_alive(pid):
                self._best_effort(
                    diagnostics, f"interrupting pid {pid}", self._interrupt, pid,
                )

            state.state = RunState.STOPPED
            state.controlling_pid = 0
            self._save(state)

            logger.info("Stopped %s", self.agent_id)
            return LifecycleResult(self.agent_id, state, diagnostics)

    def status(self) -> AgentRunState:
        """Persisted state merged with live worker membership.

        Does not save the merged worker list.
        """
        with self._lock:
            state = self._load()
            state.monitored_workers = self._current_workers(state)
            return state

    def restart(self) -> LifecycleResult:
        """Stop (tolerating NotRunningError), then start fresh."""
        with self._lock:
            try:
                self.stop()
            except NotRunningError:
                pass
            return self.start()

    def is_running(self) -> bool:
        """Live check: the session exists and its workload is running."""
        return self._classifier.is_running(self.session)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _start_foreground(self, state: AgentRunState) -> LifecycleResult:
        if self._pid_alive(state):
            raise AlreadyRunningError(self.agent_id)
        state.state = RunState.RUNNING
        state.started_at = datetime.now(timezone.utc)
        state.controlling_pid = os.getpid()
        state.monitored_workers = self._current_workers(state)
        self._save(state)
        logger.info("Started %s in foreground (pid %d)", self.agent_id, os.getpid())
        return LifecycleResult(self.agent_id, state)

    def _deliver_startup_message(self, session: str, diagnostics: list[str]) -> None:
        if not self._tmux.wait_for_command(session, self._shells, self._start_timeout):
            diagnostics.append(f"agent did not start within {self._start_timeout:g}s")
        message = self._definition.startup_message
        if not message:
            return
        if self._startup_delay > 0:
            time.sleep(self._startup_delay)
        self._best_effort(
            diagnostics, "sending startup message", self._tmux.send_keys, session, message,
        )

    def _pid_alive(self, state: AgentRunState) -> bool:
        pid = state.controlling_pid
        return state.is_running and pid > 0 and self._process_alive(pid)

    def _has_session(self) -> bool:
        try:
            return self._tmux.has_session(self.session)
        except TmuxError as exc:
            logger.debug("has_session(%s) failed: %s", self.session, exc)
            return False

    def _current_workers(self, state: AgentRunState) -> list[str]:
        if self._workers is None:
            return state.monitored_workers
        return list(self._workers())

    def _load(self) -> AgentRunState:
        try:
            return self._store.load()
        except StateStoreError as exc:
            raise LifecycleError("loading state", exc) from exc

    def _save(self, state: AgentRunState) -> None:
        try:
            self._store.save(state)
        except StateStoreError as exc:
            raise LifecycleError("saving state", exc) from exc

    def _teardown(self, session: str) -> None:
        try:
            self._tmux.kill_session(session)
        except TmuxError as exc:
            logger.debug("Cleanup kill of %s failed: %s", session, exc)

    @staticmethod
    def _critical(step: str, func: Callable[..., object], *args: object) -> None:
        try:
            func(*args)
        except TmuxError as exc:
            raise LifecycleError(step, exc) from exc

    def _best_effort(
        self,
        diagnostics: list[str],
        step: str,
        func: Callable[..., object],
        *args: object,
    ) -> None:
        try:
            func(*args)
        except (TmuxError, OSError) as exc:
            logger.debug("%s: %s failed: %s", self.agent_id, step, exc)
            diagnostics.append(f"{step}: {exc}")
