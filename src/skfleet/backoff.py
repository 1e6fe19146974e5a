"""
Adaptive per-agent polling intervals.

Healthy agents are polled at the base interval. Each miss (a poll that
found no activity) grows the interval according to the policy strategy,
capped at the policy maximum. Confirmed activity snaps the interval
straight back to base; there is no gradual decay.

Usage:
    registry = BackoffRegistry(BackoffPolicy(strategy=BackoffStrategy.GEOMETRIC))
    if registry.should_poll("gastown/witness"):
        registry.record_poke("gastown/witness")
        ...
        registry.record_miss("gastown/witness")   # or record_activity()
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger("skfleet.backoff")

DEFAULT_BASE_INTERVAL = timedelta(seconds=60)
DEFAULT_MAX_INTERVAL = timedelta(minutes=10)
DEFAULT_FACTOR = 1.5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackoffStrategy(str, Enum):
    """How the poll interval grows on a miss."""

    FIXED = "fixed"
    GEOMETRIC = "geometric"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class BackoffPolicy:
    """Immutable backoff configuration shared by every agent in a registry.

    Attributes:
        strategy: Growth strategy applied on each miss.
        base_interval: Starting (and reset) interval.
        max_interval: Upper bound on the interval.
        factor: Multiplier for the geometric strategy.
    """

    strategy: BackoffStrategy = BackoffStrategy.GEOMETRIC
    base_interval: timedelta = DEFAULT_BASE_INTERVAL
    max_interval: timedelta = DEFAULT_MAX_INTERVAL
    factor: float = DEFAULT_FACTOR

    def __post_init__(self) -> None:
        if self.base_interval <= timedelta(0):
            raise ValueError("base_interval must be positive")
        if self.max_interval < self.base_interval:
            raise ValueError("max_interval must be >= base_interval")
        if self.factor < 1.0:
            raise ValueError("factor must be >= 1.0")

    def grow(self, interval: timedelta) -> timedelta:
        """Apply one miss worth of growth to ``interval``, clamped to max.

        Args:
            interval: The current interval.

        Returns:
            The next interval.
        """
        if self.strategy == BackoffStrategy.GEOMETRIC:
            interval = interval * self.factor
        elif self.strategy == BackoffStrategy.EXPONENTIAL:
            interval = interval * 2
        return min(interval, self.max_interval)


@dataclass
class AgentBackoffState:
    """Backoff bookkeeping for one agent.

    Attributes:
        agent_id: The agent this state belongs to.
        base_interval: Interval restored on activity.
        current_interval: Interval that must elapse between polls.
        max_interval: Cap on current_interval.
        consecutive_misses: Misses since the last recorded activity.
        last_poke_at: When the agent was last polled, or None.
        last_activity_at: When activity was last confirmed, or None.
    """

    agent_id: str
    base_interval: timedelta
    current_interval: timedelta
    max_interval: timedelta
    consecutive_misses: int = 0
    last_poke_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False,
    )

    @classmethod
    def for_policy(cls, agent_id: str, policy: BackoffPolicy) -> "AgentBackoffState":
        """Fresh state at the policy's base interval."""
        return cls(
            agent_id=agent_id,
            base_interval=policy.base_interval,
            current_interval=policy.base_interval,
            max_interval=policy.max_interval,
        )


class BackoffRegistry:
    """Thread-safe registry of per-agent backoff state.

    Entries are created lazily with the registry's policy on first
    reference, so no operation fails for an unknown agent. The map lock
    only guards lookup-or-create; each entry has its own lock for
    read-modify-write, so different agents never contend.

    Args:
        policy: Backoff policy; None selects the defaults
            (geometric, factor 1.5, base 60s, max 10m).
        clock: Returns the current time. Injected for tests.
    """

    def __init__(
        self,
        policy: Optional[BackoffPolicy] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._policy = policy or BackoffPolicy()
        self._clock = clock
        self._lock = threading.Lock()
        self._agents: dict[str, AgentBackoffState] = {}

    @property
    def policy(self) -> BackoffPolicy:
        """The policy applied to every agent."""
        return self._policy

    def get_or_create(self, agent_id: str) -> AgentBackoffState:
        """Return the state for ``agent_id``, creating it if needed."""
        with self._lock:
            state = self._agents.get(agent_id)
            if state is None:
                state = AgentBackoffState.for_policy(agent_id, self._policy)
                self._agents[agent_id] = state
            return state

    def should_poll(self, agent_id: str) -> bool:
        """Whether enough time has passed to poll ``agent_id`` again.

        True if the agent was never polled, or if at least the current
        interval has elapsed since the last poke.
        """
        state = self.get_or_create(agent_id)
        with state.lock:
            if state.last_poke_at is None:
                return True
            return self._clock() - state.last_poke_at >= state.current_interval

    def record_poke(self, agent_id: str) -> None:
        """Record that ``agent_id`` was just polled."""
        state = self.get_or_create(agent_id)
        with state.lock:
            state.last_poke_at = self._clock()

    def record_miss(self, agent_id: str) -> None:
        """Record a poll with no activity and grow the interval."""
        state = self.get_or_create(agent_id)
        with state.lock:
            state.consecutive_misses += 1
            state.current_interval = self._policy.grow(state.current_interval)
            misses, interval = state.consecutive_misses, state.current_interval
        logger.debug(
            "Backoff miss %s: misses=%d interval=%s", agent_id, misses, interval,
        )

    def record_activity(self, agent_id: str) -> None:
        """Record confirmed activity and reset the interval to base."""
        state = self.get_or_create(agent_id)
        with state.lock:
            state.consecutive_misses = 0
            state.current_interval = state.base_interval
            state.last_activity_at = self._clock()

    def misses_for(self, agent_id: str) -> int:
        """Consecutive misses recorded for ``agent_id``."""
        state = self.get_or_create(agent_id)
        with state.lock:
            return state.consecutive_misses

    def interval_for(self, agent_id: str) -> timedelta:
        """Current poll interval for ``agent_id``."""
        state = self.get_or_create(agent_id)
        with state.lock:
            return state.current_interval

    def snapshot_all(self) -> dict[str, timedelta]:
        """Map of agent ID to current interval, for logging and status."""
        with self._lock:
            states = list(self._agents.values())
        snapshot = {}
        for state in states:
            with state.lock:
                snapshot[state.agent_id] = state.current_interval
        return snapshot
