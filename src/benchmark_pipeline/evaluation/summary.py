"""
Benchmark summaries.

compute_summary() folds a set of PredictionAttempts into a BenchmarkSummary;
summarize_counts() does the same from pre-aggregated cells. Both only read
the archetype and correctness flags, so recomputing from the same set of
attempts always gives the same summary regardless of order.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from benchmark_pipeline.storage.models import PredictionAttempt

from .statistics import SIGNIFICANCE_LEVEL, cohens_d, two_proportion_z_test, wald_interval


@dataclass(frozen=True)
class ArchetypeBreakdown:
    archetype: str
    count: int
    challenger_correct: int
    baseline_correct: int

    @property
    def challenger_accuracy(self) -> float:
        return self.challenger_correct / self.count if self.count else 0.0

    @property
    def baseline_accuracy(self) -> float:
        return self.baseline_correct / self.count if self.count else 0.0

    @property
    def improvement(self) -> float:
        return self.challenger_accuracy - self.baseline_accuracy

    @property
    def underperforming(self) -> bool:
        return self.challenger_correct < self.baseline_correct

    def to_dict(self) -> dict:
        return {
            "archetype": self.archetype,
            "count": self.count,
            "challenger_accuracy": round(self.challenger_accuracy, 4),
            "baseline_accuracy": round(self.baseline_accuracy, 4),
            "improvement": round(self.improvement, 4),
        }


@dataclass(frozen=True)
class BenchmarkSummary:
    """Aggregate head-to-head result of challenger vs baseline."""

    total: int
    challenger_correct: int
    baseline_correct: int
    challenger_only: int
    baseline_only: int
    both_correct: int
    both_wrong: int
    z_score: float
    p_value: float
    significant: bool
    challenger_ci: tuple[float, float]
    baseline_ci: tuple[float, float]
    effect_size: float
    archetypes: dict[str, ArchetypeBreakdown] = field(default_factory=dict)
    pool_name: Optional[str] = None

    @property
    def challenger_accuracy(self) -> float:
        return self.challenger_correct / self.total if self.total else 0.0

    @property
    def baseline_accuracy(self) -> float:
        return self.baseline_correct / self.total if self.total else 0.0

    @property
    def improvement(self) -> float:
        return self.challenger_accuracy - self.baseline_accuracy

    def to_dict(self) -> dict:
        return {
            "pool": self.pool_name,
            "total": self.total,
            "challenger_accuracy": round(self.challenger_accuracy, 4),
            "baseline_accuracy": round(self.baseline_accuracy, 4),
            "improvement": round(self.improvement, 4),
            "challenger_only": self.challenger_only,
            "baseline_only": self.baseline_only,
            "both_correct": self.both_correct,
            "both_wrong": self.both_wrong,
            "z_score": round(self.z_score, 4),
            "p_value": round(self.p_value, 6),
            "significant": self.significant,
            "challenger_ci": [round(v, 4) for v in self.challenger_ci],
            "baseline_ci": [round(v, 4) for v in self.baseline_ci],
            "effect_size": round(self.effect_size, 4),
            "archetypes": {name: b.to_dict() for name, b in sorted(self.archetypes.items())},
        }


def compute_summary(
    attempts: Iterable[PredictionAttempt],
    pool_name: Optional[str] = None,
    alpha: float = SIGNIFICANCE_LEVEL,
) -> BenchmarkSummary:
    cells = ((a.archetype, a.challenger_correct, a.baseline_correct, 1) for a in attempts)
    return summarize_counts(cells, pool_name=pool_name, alpha=alpha)


def summarize_counts(
    cells: Iterable[tuple[str, bool, bool, int]],
    pool_name: Optional[str] = None,
    alpha: float = SIGNIFICANCE_LEVEL,
) -> BenchmarkSummary:
    """
    Build a summary from (archetype, challenger_correct, baseline_correct, count)
    cells, as returned by a GROUP BY over the attempts table. Cells may repeat.
    """
    total = 0
    challenger_correct = baseline_correct = 0
    challenger_only = baseline_only = both_correct = both_wrong = 0
    per_archetype: dict[str, list[int]] = {}

    for archetype, c, b, n in cells:
        total += n
        challenger_correct += n if c else 0
        baseline_correct += n if b else 0
        if c and b:
            both_correct += n
        elif c:
            challenger_only += n
        elif b:
            baseline_only += n
        else:
            both_wrong += n

        bucket = per_archetype.setdefault(archetype, [0, 0, 0])
        bucket[0] += n
        bucket[1] += n if c else 0
        bucket[2] += n if b else 0

    test = two_proportion_z_test(baseline_correct, challenger_correct, total, alpha=alpha)
    challenger_rate = challenger_correct / total if total else 0.0
    baseline_rate = baseline_correct / total if total else 0.0

    return BenchmarkSummary(
        total=total,
        challenger_correct=challenger_correct,
        baseline_correct=baseline_correct,
        challenger_only=challenger_only,
        baseline_only=baseline_only,
        both_correct=both_correct,
        both_wrong=both_wrong,
        z_score=test.z_score,
        p_value=test.p_value,
        significant=test.significant,
        challenger_ci=wald_interval(challenger_correct, total),
        baseline_ci=wald_interval(baseline_correct, total),
        effect_size=cohens_d(baseline_rate, challenger_rate),
        archetypes={
            name: ArchetypeBreakdown(name, count, c, b)
            for name, (count, c, b) in per_archetype.items()
        },
        pool_name=pool_name,
    )
