"""
Evaluation Layer - predictors, statistics and benchmark summaries.
"""

from .predictors import (
    ARCHETYPE_FEATURES,
    ARCHETYPE_PRIORS,
    DEFAULT_WEIGHTS,
    FEATURE_KEYS,
    ChallengerConfig,
    ChallengerPredictor,
    Comparison,
    Prediction,
    baseline_prediction,
    classify_archetype,
    compare,
    extract_features,
)
from .statistics import ZTestResult, cohens_d, normal_cdf, two_proportion_z_test, wald_interval
from .summary import ArchetypeBreakdown, BenchmarkSummary, compute_summary, summarize_counts

__all__ = [
    "ARCHETYPE_FEATURES",
    "ARCHETYPE_PRIORS",
    "DEFAULT_WEIGHTS",
    "FEATURE_KEYS",
    "ArchetypeBreakdown",
    "BenchmarkSummary",
    "ChallengerConfig",
    "ChallengerPredictor",
    "Comparison",
    "Prediction",
    "ZTestResult",
    "baseline_prediction",
    "classify_archetype",
    "cohens_d",
    "compare",
    "compute_summary",
    "extract_features",
    "normal_cdf",
    "summarize_counts",
    "two_proportion_z_test",
    "wald_interval",
]
