"""
Atomic JSON persistence for agent run state.

Each agent owns one state file. Saves go through a temp file in the
same directory followed by os.replace(), so a reader sees either the
previous record or the new one, never a partial write.

Usage:
    store = StateStore(rig_path / "witness.json", agent_id="gastown/witness")
    state = store.load()          # created as Stopped if absent
    state.state = RunState.RUNNING
    store.save(state)
"""

from __future__ import annotations

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator

from pydantic import ValidationError

from .errors import StateStoreError
from .models import AgentRunState

logger = logging.getLogger("skfleet.state")


@contextmanager
def atomic_writer(path: Path) -> Iterator[IO[str]]:
    """Open a temp file beside ``path`` and atomically replace ``path`` on exit.

    If the body raises, the temp file is removed and ``path`` is untouched.

    Args:
        path: Final destination.

    Yields:
        A text file handle to write the new content into.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp",
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            yield fh
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class StateStore:
    """Load and save one agent's AgentRunState.

    Args:
        path: Location of the JSON state file.
        agent_id: Identifier stamped on the default record.
    """

    def __init__(self, path: Path, agent_id: str = "") -> None:
        self._path = Path(path)
        self._agent_id = agent_id

    @property
    def path(self) -> Path:
        """Canonical path of the state file."""
        return self._path

    def default(self) -> AgentRunState:
        """The record used when nothing has been persisted yet."""
        return AgentRunState(agent_id=self._agent_id)

    def load(self) -> AgentRunState:
        """Read the persisted record, creating a Stopped default if absent.

        Creating the default is best-effort: if it cannot be written the
        default is still returned.

        Returns:
            The persisted AgentRunState.

        Raises:
            StateStoreError: If the file exists but cannot be read or parsed.
        """
        if not self._path.exists():
            state = self.default()
            try:
                self.save(state)
            except StateStoreError as exc:
                logger.warning("Could not create default state: %s", exc)
            return state
        try:
            raw = self._path.read_text(encoding="utf-8")
            state = AgentRunState.model_validate_json(raw)
        except (OSError, ValidationError) as exc:
            raise StateStoreError(f"reading {self._path}: {exc}") from exc
        if not state.agent_id:
            state.agent_id = self._agent_id
        return state

    def save(self, state: AgentRunState) -> None:
        """Persist ``state`` with atomic-replace semantics.

        Args:
            state: The record to write.

        Raises:
            StateStoreError: If the write or the replace fails.
        """
        try:
            with atomic_writer(self._path) as fh:
                fh.write(state.model_dump_json(indent=2))
        except OSError as exc:
            raise StateStoreError(f"writing {self._path}: {exc}") from exc
        logger.debug("Saved state %s: %s", self._path.name, state.state.value)
