"""
OS process inspection and signalling.

A ProcessTable is a point-in-time snapshot of the whole process table,
taken once per inspection pass and walked in memory. Snapshots are never
cached across polls; PIDs get reused.
"""

from __future__ import annotations

import logging
import os
import re
import signal
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

import psutil

logger = logging.getLogger("skfleet.process")


@dataclass(frozen=True)
class ProcessRecord:
    """One row of a process table snapshot."""

    pid: int
    ppid: int
    name: str
    command_line: str = ""

    @property
    def command(self) -> str:
        """The command line, falling back to the process name."""
        return self.command_line or self.name


class ProcessTable:
    """An in-memory process table snapshot.

    Args:
        records: The processes in the snapshot.
    """

    def __init__(self, records: Iterable[ProcessRecord] = ()) -> None:
        self._by_pid: dict[int, ProcessRecord] = {}
        self._children: dict[int, list[int]] = {}
        for record in records:
            self._by_pid[record.pid] = record
            self._children.setdefault(record.ppid, []).append(record.pid)

    @classmethod
    def snapshot(cls) -> "ProcessTable":
        """Capture the current OS process table via psutil.

        Processes that vanish or deny access mid-scan are skipped.
        """
        records = []
        for proc in psutil.process_iter(["pid", "ppid", "name", "cmdline"]):
            try:
                info = proc.info
                cmdline = info.get("cmdline") or []
                records.append(ProcessRecord(
                    pid=info["pid"],
                    ppid=info.get("ppid") or 0,
                    name=info.get("name") or "",
                    command_line=" ".join(cmdline),
                ))
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return cls(records)

    def __len__(self) -> int:
        return len(self._by_pid)

    def __iter__(self) -> Iterator[ProcessRecord]:
        return iter(self._by_pid.values())

    def __contains__(self, pid: object) -> bool:
        return pid in self._by_pid

    def get(self, pid: int) -> Optional[ProcessRecord]:
        """The record for ``pid``, or None if not in the snapshot."""
        return self._by_pid.get(pid)

    def parent_of(self, pid: int) -> Optional[int]:
        """Parent PID of ``pid``, or None if ``pid`` is unknown."""
        record = self._by_pid.get(pid)
        return record.ppid if record else None

    def children(self, pid: int) -> list[ProcessRecord]:
        """Direct children of ``pid``."""
        return [self._by_pid[c] for c in self._children.get(pid, []) if c != pid]

    def descendants(self, pid: int) -> list[ProcessRecord]:
        """Every process below ``pid`` in the tree, breadth first.

        A visited set keeps the walk finite if parent links form a cycle.
        """
        found: list[ProcessRecord] = []
        visited = {pid}
        queue = deque([pid])
        while queue:
            current = queue.popleft()
            for child in self._children.get(current, []):
                if child in visited:
                    continue
                visited.add(child)
                found.append(self._by_pid[child])
                queue.append(child)
        return found

    def matching(self, pattern: str) -> list[ProcessRecord]:
        """Processes whose command line matches ``pattern``, case-insensitively."""
        regex = re.compile(pattern, re.IGNORECASE)
        return [r for r in self._by_pid.values() if regex.search(r.command)]

    def named(self, *names: str) -> list[ProcessRecord]:
        """Processes whose name is exactly one of ``names``."""
        wanted = set(names)
        return [r for r in self._by_pid.values() if r.name in wanted]


def process_exists(pid: int) -> bool:
    """Whether a process with ``pid`` is currently alive."""
    if pid <= 0:
        return False
    return psutil.pid_exists(pid)


def find_process(pid: int) -> Optional[ProcessRecord]:
    """Look up a live process by PID.

    Returns:
        A fresh ProcessRecord, or None if the process is gone or hidden.
    """
    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            return ProcessRecord(
                pid=proc.pid,
                ppid=proc.ppid(),
                name=proc.name(),
                command_line=" ".join(proc.cmdline()),
            )
    except (psutil.NoSuchProcess, psutil.AccessDenied, ValueError):
        return None


def send_interrupt(pid: int) -> None:
    """Deliver SIGINT to ``pid``.

    Raises:
        OSError: If the signal cannot be delivered (including a vanished process).
    """
    os.kill(pid, signal.SIGINT)


def force_terminate(pid: int) -> None:
    """Deliver SIGKILL to ``pid``.

    Raises:
        OSError: If the signal cannot be delivered.
    """
    os.kill(pid, signal.SIGKILL)
