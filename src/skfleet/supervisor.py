"""
Fleet supervisor: polls agents on their backoff schedule.

Each pass walks every managed agent:

- Skip the agent if its backoff interval has not elapsed.
- Otherwise record the poke and ask whether the workload is running.
- Running resets the interval to base; not running grows it.
- With auto-restart on, an agent whose persisted state says Running but
  whose workload has been missing for ``restart_after_misses`` polls is
  restarted through its lifecycle manager.

Idle agents are polled less and less often, and a live agent is
checked at the base rate.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from .backoff import BackoffRegistry
from .errors import FleetError
from .lifecycle import AgentManager

logger = logging.getLogger("skfleet.supervisor")


@dataclass
class SupervisorConfig:
    """Supervisor thresholds and toggles.

    Attributes:
        auto_restart: Restart agents that stay missing.
        restart_after_misses: Consecutive misses before a restart.
    """

    auto_restart: bool = False
    restart_after_misses: int = 3


@dataclass
class PassReport:
    """Result of a single supervisor pass.

    Attributes:
        timestamp: When the pass ran.
        agents_checked: Agents actually polled this pass.
        agents_skipped: Agents still inside their backoff interval.
        agents_healthy: Polled agents with a running workload.
        agents_missing: Polled agents with no running workload.
        restarts_triggered: Agents restarted this pass.
        restart_failures: Agents whose restart raised.
        missing_by_rig: Missing agents counted per rig.
    """

    timestamp: str = ""
    agents_checked: int = 0
    agents_skipped: int = 0
    agents_healthy: int = 0
    agents_missing: int = 0
    restarts_triggered: list[str] = field(default_factory=list)
    restart_failures: list[str] = field(default_factory=list)
    missing_by_rig: dict[str, int] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        """Whether the pass took any corrective action."""
        return bool(self.restarts_triggered or self.restart_failures)


class FleetSupervisor:
    """Backoff-driven health loop over a set of agents.

    Args:
        managers: Lifecycle managers for the supervised agents.
        registry: Shared backoff registry.
        config: Restart policy.
        sleep: Called with the interval between passes.
    """

    def __init__(
        self,
        managers: Iterable[AgentManager],
        registry: Optional[BackoffRegistry] = None,
        config: Optional[SupervisorConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._managers = {m.agent_id: m for m in managers}
        self._registry = registry or BackoffRegistry()
        self._config = config or SupervisorConfig()
        self._sleep = sleep
        self._running = False

    @property
    def registry(self) -> BackoffRegistry:
        """The backoff registry driving the poll schedule."""
        return self._registry

    @property
    def agent_ids(self) -> list[str]:
        """Supervised agent identifiers, in registration order."""
        return list(self._managers)

    def check_agent(self, agent_id: str, report: PassReport) -> None:
        """Poll one agent if it is due and fold the outcome into ``report``."""
        manager = self._managers[agent_id]
        if not self._registry.should_poll(agent_id):
            report.agents_skipped += 1
            return

        self._registry.record_poke(agent_id)
        report.agents_checked += 1

        if manager.is_running():
            self._registry.record_activity(agent_id)
            report.agents_healthy += 1
            return

        self._registry.record_miss(agent_id)
        report.agents_missing += 1
        report.missing_by_rig[manager.rig] = report.missing_by_rig.get(manager.rig, 0) + 1
        self._maybe_restart(manager, report)

    def _maybe_restart(self, manager: AgentManager, report: PassReport) -> None:
        if not self._config.auto_restart:
            return
        agent_id = manager.agent_id
        if self._registry.misses_for(agent_id) < self._config.restart_after_misses:
            return

        try:
            if not manager.status().is_running:
                return
            result = manager.restart()
        except FleetError as exc:
            logger.error("Restart of %s failed: %s", agent_id, exc)
            report.restart_failures.append(agent_id)
            return

        self._registry.record_activity(agent_id)
        report.restarts_triggered.append(agent_id)
        logger.info("Auto-restarted %s", agent_id)
        for line in result.diagnostics:
            logger.warning("%s: %s", agent_id, line)

    def check_all(self) -> PassReport:
        """Run one pass over every supervised agent."""
        report = PassReport(timestamp=datetime.now(timezone.utc).isoformat())
        for agent_id in self._managers:
            self.check_agent(agent_id, report)
        return report

    def run(self, interval: float = 30.0, max_iterations: int = 0) -> None:
        """Run the supervision loop.

        Args:
            interval: Seconds between passes.
            max_iterations: Stop after N passes (0 = run until stopped).
        """
        self._running = True
        iteration = 0
        logger.info(
            "Supervisor started for %d agent(s) (interval=%.1fs)",
            len(self._managers), interval,
        )

        try:
            while self._running:
                iteration += 1
                report = self.check_all()

                if report.changed:
                    logger.info(
                        "Supervisor pass %d: %d checked, %d healthy, %d missing, "
                        "%d restarts, %d failed restarts",
                        iteration,
                        report.agents_checked,
                        report.agents_healthy,
                        report.agents_missing,
                        len(report.restarts_triggered),
                        len(report.restart_failures),
                    )

                if report.missing_by_rig:
                    logger.debug("Missing by rig: %s", report.missing_by_rig)

                if max_iterations and iteration >= max_iterations:
                    break

                self._sleep(interval)
        except KeyboardInterrupt:
            pass
        finally:
            self._running = False
            logger.info("Supervisor stopped after %d iterations", iteration)

    def stop(self) -> None:
        """Signal the loop to stop after the current pass."""
        self._running = False
