"""
Auto-tuner and promotion gate.

After each batch the tuner looks at the benchmark summary and either:
    - asks for more data (below min_samples, nothing changes)
    - decays the weights behind archetypes where the challenger loses to
      the baseline, then renormalises the vector to sum to 1
    - promotes the challenger when accuracy, improvement and significance
      all clear their thresholds

Promotion is one-way. Once the state is ENHANCED the weights are frozen
and further evaluations only refresh the fitness score.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

from benchmark_pipeline.evaluation.predictors import ARCHETYPE_FEATURES, DEFAULT_WEIGHTS
from benchmark_pipeline.evaluation.statistics import SIGNIFICANCE_LEVEL
from benchmark_pipeline.storage.models import DeploymentStatus, EvolutionState, PromotionSnapshot

if TYPE_CHECKING:
    from benchmark_pipeline.evaluation.summary import BenchmarkSummary
    from benchmark_pipeline.storage.repositories import EvolutionStateRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoTuneConfig:
    """Gate thresholds. Tunable constants, not derived from data."""

    min_samples: int = 100
    deployment_threshold: float = 0.76
    target_improvement: float = 0.15
    significance_level: float = SIGNIFICANCE_LEVEL
    subgroup_floor: int = 10
    decay_factor: float = 0.9


class TuningAction(str, Enum):
    INSUFFICIENT_DATA = "insufficient_data"
    MUTATED = "mutated"
    UNCHANGED = "unchanged"
    FROZEN = "frozen"


@dataclass
class TuningResult:
    action: TuningAction
    generation: int
    weights: dict[str, float]
    message: str
    samples_needed: int = 0
    underperforming: list[str] = field(default_factory=list)
    promoted: bool = False

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "generation": self.generation,
            "weights": {k: round(v, 6) for k, v in self.weights.items()},
            "message": self.message,
            "samples_needed": self.samples_needed,
            "underperforming": self.underperforming,
            "promoted": self.promoted,
        }


def renormalize(weights: Mapping[str, float]) -> dict[str, float]:
    """Scale a non-negative weight vector so it sums to 1."""
    total = math.fsum(weights.values())
    if total <= 0:
        raise ValueError("Cannot renormalise a weight vector with no mass")
    return {key: value / total for key, value in weights.items()}


def decay_weights(
    weights: Mapping[str, float],
    archetypes: Iterable[str],
    decay_factor: float,
) -> dict[str, float]:
    """Multiply the components behind each archetype by decay_factor, then renormalise."""
    mutated = dict(weights)
    touched: set[str] = set()
    for archetype in archetypes:
        touched.update(ARCHETYPE_FEATURES.get(archetype, ()))
    for key in touched:
        if key in mutated:
            mutated[key] *= decay_factor
    return renormalize(mutated)


class AutoTuner:
    """
    Owns the EvolutionState for one state_id.

    Usage:
        tuner = AutoTuner(evolution_repo)
        await tuner.load()
        result = await tuner.evaluate(summary)
    """

    def __init__(
        self,
        repo: "EvolutionStateRepository",
        config: Optional[AutoTuneConfig] = None,
        state_id: str = "default",
        auto_deploy: bool = True,
    ) -> None:
        self._repo = repo
        self.config = config or AutoTuneConfig()
        self.state_id = state_id
        self._default_auto_deploy = auto_deploy
        self._state: Optional[EvolutionState] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> EvolutionState:
        if self._state is None:
            raise RuntimeError("AutoTuner.load() has not been called")
        return self._state

    @property
    def weights(self) -> dict[str, float]:
        return dict(self.state.weights)

    async def load(self) -> EvolutionState:
        """Read the persisted state, creating the default one on first run."""
        state = await self._repo.get(self.state_id)
        if state is None:
            state = EvolutionState(
                state_id=self.state_id,
                weights=dict(DEFAULT_WEIGHTS),
                auto_deploy=self._default_auto_deploy,
            )
            await self._repo.upsert(state)
            logger.info(f"Created evolution state {self.state_id!r} with default weights")
        else:
            logger.info(
                f"Loaded evolution state {self.state_id!r}: generation {state.generation}, "
                f"{state.deployment_status.value}"
            )
        self._state = state
        return state

    async def set_auto_deploy(self, enabled: bool) -> EvolutionState:
        async with self._lock:
            state = self.state.model_copy(
                update={"auto_deploy": enabled, "updated_at": datetime.now(timezone.utc)}
            )
            await self._repo.upsert(state)
            self._state = state
        logger.info(f"Auto-deploy {'enabled' if enabled else 'disabled'}")
        return state

    # =========================================================================
    # Promotion gate
    # =========================================================================

    def should_promote(
        self, accuracy: float, improvement: float, p_value: float, sample_size: int
    ) -> bool:
        """All four conditions must hold at once."""
        cfg = self.config
        return (
            sample_size >= cfg.min_samples
            and accuracy >= cfg.deployment_threshold
            and improvement >= cfg.target_improvement
            and p_value < cfg.significance_level
        )

    async def maybe_promote(self, summary: "BenchmarkSummary") -> bool:
        """
        Promote the challenger if the summary clears the gate.

        Returns True only for the call that performs the promotion; every
        later call (or any call with auto-deploy off) returns False.
        """
        async with self._lock:
            return await self._maybe_promote(summary)

    async def _maybe_promote(self, summary: "BenchmarkSummary") -> bool:
        state = self.state
        if state.is_promoted or not state.auto_deploy:
            return False
        if not self.should_promote(
            summary.challenger_accuracy, summary.improvement, summary.p_value, summary.total
        ):
            return False

        now = datetime.now(timezone.utc)
        promoted = state.model_copy(
            update={
                "deployment_status": DeploymentStatus.ENHANCED,
                "fitness_score": summary.challenger_accuracy,
                "updated_at": now,
            }
        )
        snapshot = PromotionSnapshot(
            state_id=state.state_id,
            generation=state.generation,
            challenger_accuracy=summary.challenger_accuracy,
            baseline_accuracy=summary.baseline_accuracy,
            improvement=summary.improvement,
            p_value=summary.p_value,
            sample_size=summary.total,
            weights=dict(state.weights),
            promoted_at=now,
        )
        recorded = await self._repo.record_promotion(promoted, snapshot)
        self._state = promoted
        if recorded:
            logger.info(
                f"Challenger promoted at generation {state.generation}: "
                f"{summary.challenger_accuracy:.1%} vs {summary.baseline_accuracy:.1%} "
                f"(p={summary.p_value:.4f}, n={summary.total})"
            )
        return recorded

    # =========================================================================
    # Tuning
    # =========================================================================

    async def evaluate(self, summary: "BenchmarkSummary") -> TuningResult:
        """Run one tuning step against a summary."""
        async with self._lock:
            state = self.state
            cfg = self.config

            if summary.total < cfg.min_samples:
                needed = cfg.min_samples - summary.total
                return TuningResult(
                    action=TuningAction.INSUFFICIENT_DATA,
                    generation=state.generation,
                    weights=dict(state.weights),
                    message=f"need {needed} more samples",
                    samples_needed=needed,
                )

            promoted = await self._maybe_promote(summary)
            state = self.state

            if state.is_promoted:
                if not promoted:
                    state = state.model_copy(
                        update={
                            "fitness_score": summary.challenger_accuracy,
                            "updated_at": datetime.now(timezone.utc),
                        }
                    )
                    await self._repo.upsert(state)
                    self._state = state
                return TuningResult(
                    action=TuningAction.FROZEN,
                    generation=state.generation,
                    weights=dict(state.weights),
                    message="challenger promoted; weights frozen",
                    promoted=promoted,
                )

            losers = sorted(
                breakdown.archetype
                for breakdown in summary.archetypes.values()
                if breakdown.count >= cfg.subgroup_floor
                and breakdown.underperforming
                and ARCHETYPE_FEATURES.get(breakdown.archetype)
            )

            now = datetime.now(timezone.utc)
            if not losers:
                state = state.model_copy(
                    update={"fitness_score": summary.challenger_accuracy, "updated_at": now}
                )
                await self._repo.upsert(state)
                self._state = state
                return TuningResult(
                    action=TuningAction.UNCHANGED,
                    generation=state.generation,
                    weights=dict(state.weights),
                    message="no underperforming archetypes",
                )

            new_weights = decay_weights(state.weights, losers, cfg.decay_factor)
            state = state.model_copy(
                update={
                    "weights": new_weights,
                    "generation": state.generation + 1,
                    "fitness_score": summary.challenger_accuracy,
                    "deployment_status": DeploymentStatus.TESTING,
                    "last_mutation_at": now,
                    "updated_at": now,
                }
            )
            await self._repo.upsert(state)
            self._state = state
            logger.info(
                f"Generation {state.generation}: decayed weights for {', '.join(losers)}"
            )
            return TuningResult(
                action=TuningAction.MUTATED,
                generation=state.generation,
                weights=dict(new_weights),
                message=f"decayed {len(losers)} archetype(s)",
                underperforming=losers,
            )
