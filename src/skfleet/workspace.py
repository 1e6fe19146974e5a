"""
Workspace layout and the session naming grammar.

Session names follow ``gt-mayor``, ``gt-deacon`` or ``gt-<rig>-<role>``.
A rig is a directory under the town root that holds ``polecats/`` or
``crew/``; rigs only count once the town has ``mayor/rigs.json``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger("skfleet.workspace")

SESSION_PREFIX = "gt-"
SINGLETON_ROLES = ("mayor", "deacon")

_RIG_MARKERS = ("polecats", "crew")
_NON_RIG_DIRS = frozenset({"mayor", ".beads"})


def valid_rig_names(town_root: Path) -> set[str]:
    """Rig names found by scanning the town root.

    Args:
        town_root: The workspace root.

    Returns:
        Names of directories that look like rigs. Empty if the town has
        no ``mayor/rigs.json`` or cannot be read.
    """
    town_root = Path(town_root)
    try:
        if not (town_root / "mayor" / "rigs.json").exists():
            return set()
    except OSError as exc:
        logger.warning("Cannot read rig registry under %s: %s", town_root, exc)
        return set()

    rigs: set[str] = set()
    try:
        entries = list(town_root.iterdir())
    except OSError as exc:
        logger.warning("Cannot scan town root %s: %s", town_root, exc)
        return rigs

    for entry in entries:
        if entry.name in _NON_RIG_DIRS or entry.name.startswith("."):
            continue
        # An unreadable entry is not a rig.
        try:
            if entry.is_dir() and any((entry / marker).exists() for marker in _RIG_MARKERS):
                rigs.add(entry.name)
        except OSError as exc:
            logger.debug("Skipping %s: %s", entry, exc)
    return rigs


def singleton_sessions(prefix: str = SESSION_PREFIX) -> frozenset[str]:
    """Town-level session names (mayor, deacon) under ``prefix``."""
    return frozenset(f"{prefix}{role}" for role in SINGLETON_ROLES)


def rig_session(rig: str, role: str, prefix: str = SESSION_PREFIX) -> str:
    """Session name for a rig-level agent."""
    return f"{prefix}{rig}-{role}"


def parse_session(session: str, prefix: str = SESSION_PREFIX) -> Optional[tuple[str, str]]:
    """Split ``<prefix><rig>-<role>`` after the prefix, on the first separator.

    Returns:
        (rig, role), or None if the name is outside the ``prefix`` domain
        or has no role.
    """
    if not session.startswith(prefix):
        return None
    parts = session[len(prefix):].split("-", 1)
    if len(parts) < 2:
        return None
    return parts[0], parts[1]


def extract_rig_name(session: str, role: str = "witness", prefix: str = SESSION_PREFIX) -> str:
    """Rig name from a rig-level session, allowing hyphens in the rig.

    ``gt-my-rig-name-witness`` gives ``my-rig-name``.
    """
    name = session[len(prefix):] if session.startswith(prefix) else session
    suffix = f"-{role}"
    if name.endswith(suffix):
        name = name[: -len(suffix)]
    return name


def rig_workers(town_root: Path, rig: str) -> list[str]:
    """Worker (polecat) names under ``<town_root>/<rig>/polecats``, sorted."""
    polecats = Path(town_root) / rig / "polecats"
    try:
        return sorted(
            entry.name for entry in polecats.iterdir()
            if entry.is_dir() and not entry.name.startswith(".")
        )
    except OSError:
        return []
