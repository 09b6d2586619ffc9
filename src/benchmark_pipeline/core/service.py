"""
BenchmarkService - the outbound API of the pipeline.

Thin layer over the scheduler, the tuner and the repositories that the
dashboard, the CLI and any external scheduler talk to.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping, Optional, Union

from benchmark_pipeline.config import PoolConfig
from benchmark_pipeline.evaluation import BenchmarkSummary, summarize_counts

from .context import PipelineContext
from .scheduler import BatchScheduler

if TYPE_CHECKING:
    from benchmark_pipeline.monitoring.health_checker import HealthChecker

logger = logging.getLogger(__name__)


class BenchmarkService:
    """
    Usage:
        service = BenchmarkService(context, scheduler, health_checker)
        summary = await service.run_benchmark_batch("DEEP")
        status = await service.get_status()
    """

    def __init__(
        self,
        context: PipelineContext,
        scheduler: BatchScheduler,
        health_checker: Optional["HealthChecker"] = None,
    ) -> None:
        self.context = context
        self.scheduler = scheduler
        self.health_checker = health_checker

    async def run_benchmark_batch(self, pool: str) -> BenchmarkSummary:
        """
        Run one batch for a pool right now and return the aggregate summary.

        Raises ValueError for an unknown pool and PoolHalted for a halted one.
        """
        outcome = await self.scheduler.run_once(pool)
        if outcome.summary is not None:
            return outcome.summary
        # Nothing new was accepted; report the current aggregate instead
        return await self.get_summary()

    async def get_summary(self, pool: Optional[str] = None) -> BenchmarkSummary:
        pool_name = self.scheduler.runner(pool).name if pool else None
        cells = await self.context.attempt_repo.agreement_counts(pool_name=pool_name)
        return summarize_counts(cells, pool_name=pool_name)

    async def get_status(self) -> dict[str, Any]:
        """Read-only snapshot for dashboards."""
        state = self.context.tuner.state
        snapshot = await self.context.evolution_repo.get_promotion(state.state_id)
        status: dict[str, Any] = {
            "pools": self.scheduler.status(),
            "evolution_state": state.model_dump(mode="json"),
            "promotion": snapshot.model_dump(mode="json") if snapshot else None,
            "recent_summaries": [o.to_dict() for o in self.scheduler.recent_summaries],
            "ledger": self.context.ledger.counts(),
            "providers": {name: gate.to_dict() for name, gate in self.context.gates.items()},
        }
        if self.health_checker is not None:
            health = await self.health_checker.check_all()
            status["health"] = health.to_dict()
        return status

    async def toggle_auto_deploy(self, enabled: bool) -> bool:
        state = await self.context.tuner.set_auto_deploy(enabled)
        return state.auto_deploy

    def set_pool_config(
        self, pool: str, config: Union[PoolConfig, Mapping[str, Any]]
    ) -> PoolConfig:
        """
        Replace a pool's config, or apply a partial update given as a mapping.

        Raises ValueError for unknown pools, unknown fields or invalid values.
        """
        runner = self.scheduler.runner(pool)
        if isinstance(config, PoolConfig):
            new_config = config
        else:
            changes = dict(config)
            if "name" in changes and changes["name"] != runner.name:
                raise ValueError("Pool name cannot be changed")
            new_config = runner.config.with_updates(**changes)
        runner.update_config(new_config)
        return new_config

    def pause_pool(self, pool: str) -> None:
        self.scheduler.pause(pool)

    def resume_pool(self, pool: str) -> None:
        self.scheduler.resume(pool)

    async def reset_pool(self, pool: str) -> bool:
        return await self.scheduler.runner(pool).reset()
