"""
Point-in-time health of the pipeline: PostgreSQL, the dedup ledger, each
pool runner and each provider's rate-limit gate.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, List, Mapping, Optional

if TYPE_CHECKING:
    from benchmark_pipeline.core.ledger import DedupLedger
    from benchmark_pipeline.core.scheduler import PoolRunner
    from benchmark_pipeline.ingestion import ProviderGate
    from benchmark_pipeline.storage import Database

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    WARNING = "warning"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """One probe result, named like "pool:VOLUME" or "provider:lichess"."""

    component: str
    status: HealthStatus
    message: str
    latency_ms: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "component": self.component,
            "status": self.status.value,
            "message": self.message,
            "latency_ms": round(self.latency_ms, 1) if self.latency_ms is not None else None,
        }


@dataclass
class AggregateHealth:
    status: HealthStatus
    components: List[ComponentHealth] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "components": [c.to_dict() for c in self.components],
            "checked_at": self.checked_at.isoformat(),
        }


class HealthChecker:
    """
    Probes pipeline components on demand.

    Usage:
        checker = HealthChecker(db, runners=scheduler.runners, gates=context.gates)
        overall = await checker.check_all()
    """

    def __init__(
        self,
        db: Optional["Database"] = None,
        runners: Optional[Mapping[str, "PoolRunner"]] = None,
        gates: Optional[Mapping[str, "ProviderGate"]] = None,
        ledger: Optional["DedupLedger"] = None,
    ) -> None:
        self.db = db
        self._runners = runners or {}
        self._gates = gates or {}
        self._ledger = ledger

    async def check_database(self) -> ComponentHealth:
        if self.db is None:
            return ComponentHealth("database", HealthStatus.UNHEALTHY, "No database configured")

        started = time.monotonic()
        try:
            await self.db.execute("SELECT 1")
        except Exception as e:
            logger.error(f"PostgreSQL probe failed: {e}")
            return ComponentHealth(
                "database",
                HealthStatus.UNHEALTHY,
                f"Query error: {e}",
                latency_ms=(time.monotonic() - started) * 1000,
            )
        return ComponentHealth(
            "database",
            HealthStatus.HEALTHY,
            "SELECT 1 ok",
            latency_ms=(time.monotonic() - started) * 1000,
        )

    def check_pool(self, runner: "PoolRunner") -> ComponentHealth:
        """State of one pool; no engine I/O, the scheduler's health loop probes."""
        from benchmark_pipeline.core.scheduler import PoolState

        component = f"pool:{runner.name}"
        if runner.state == PoolState.HALTED:
            return ComponentHealth(component, HealthStatus.UNHEALTHY, f"Halted: {runner.halted_reason}")
        if runner.state == PoolState.RECOVERING:
            return ComponentHealth(component, HealthStatus.DEGRADED, "Recovering engine")
        if not runner.worker.is_running:
            return ComponentHealth(component, HealthStatus.WARNING, "Engine not running")
        if runner.recent_failures > 0:
            return ComponentHealth(
                component,
                HealthStatus.DEGRADED,
                f"{runner.recent_failures} recent failure(s)",
            )
        if runner.state == PoolState.PAUSED:
            return ComponentHealth(component, HealthStatus.HEALTHY, "Paused")
        return ComponentHealth(component, HealthStatus.HEALTHY, f"State {runner.state.value}")

    def check_gate(self, gate: "ProviderGate") -> ComponentHealth:
        component = f"provider:{gate.name}"
        if gate.is_cooling_down:
            return ComponentHealth(
                component,
                HealthStatus.DEGRADED,
                f"Rate limited, {gate.cooldown_remaining:.0f}s cooldown remaining",
            )
        return ComponentHealth(component, HealthStatus.HEALTHY, "Accepting requests")

    def check_ledger(self) -> ComponentHealth:
        if self._ledger is None:
            return ComponentHealth("ledger", HealthStatus.WARNING, "No ledger configured")
        if not self._ledger.is_hydrated:
            return ComponentHealth("ledger", HealthStatus.UNHEALTHY, "Ledger not hydrated")
        counts = self._ledger.counts()
        return ComponentHealth(
            "ledger",
            HealthStatus.HEALTHY,
            f"{counts['accepted']} accepted, {counts['permanently_failed']} failed, "
            f"{counts['in_flight']} in flight",
        )

    async def check_all(self, timeout: float = 5.0) -> AggregateHealth:
        """Everything except the database is read from memory."""
        components = []

        try:
            components.append(await asyncio.wait_for(self.check_database(), timeout=timeout))
        except asyncio.TimeoutError:
            components.append(
                ComponentHealth("database", HealthStatus.UNHEALTHY, f"No answer within {timeout:.0f}s")
            )

        components.append(self.check_ledger())
        components.extend(self.check_pool(runner) for runner in self._runners.values())
        components.extend(self.check_gate(gate) for gate in self._gates.values())

        return AggregateHealth(
            status=self._calculate_overall_status(components),
            components=components,
        )

    def _calculate_overall_status(self, components: List[ComponentHealth]) -> HealthStatus:
        """Worst component wins; WARNING counts as DEGRADED overall."""
        statuses = {c.status for c in components}
        if HealthStatus.UNHEALTHY in statuses:
            return HealthStatus.UNHEALTHY
        if statuses & {HealthStatus.DEGRADED, HealthStatus.WARNING}:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY
