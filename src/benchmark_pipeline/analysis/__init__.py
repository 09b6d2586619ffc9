"""
Analysis Layer - position sampling and engine evaluation.

    - extract_sample: deterministic position sample per game
    - UciEngine / RemoteEvalEngine: scoring engines
    - AnalysisWorker: bounded-latency evaluation with retry and liveness probe
"""

from .engine import (
    EngineCrashed,
    Evaluation,
    EvaluationUnavailable,
    RemoteEvalEngine,
    ScoringEngine,
    UciEngine,
)
from .sampling import PositionSample, extract_sample, position_hash, position_key
from .worker import AnalysisWorker, EngineTimeout, PermanentFailure, RetryPolicy

__all__ = [
    "AnalysisWorker",
    "EngineCrashed",
    "EngineTimeout",
    "Evaluation",
    "EvaluationUnavailable",
    "PermanentFailure",
    "PositionSample",
    "RemoteEvalEngine",
    "RetryPolicy",
    "ScoringEngine",
    "UciEngine",
    "extract_sample",
    "position_hash",
    "position_key",
]
