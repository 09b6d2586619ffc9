"""
Core Layer - ledger, scheduler, auto-tuner and the service API.

    - DedupLedger: shared "already processed?" state for every pool
    - PipelineContext: explicit container for shared collaborators
    - BatchScheduler / PoolRunner: dual-pool fetch/process/recover cycle
    - AutoTuner: weight decay and the one-way promotion gate
    - BenchmarkService: outbound API for dashboards and manual runs
"""

from .auto_tuner import (
    AutoTuneConfig,
    AutoTuner,
    TuningAction,
    TuningResult,
    decay_weights,
    renormalize,
)
from .context import PipelineContext, make_engine_factory
from .ledger import DedupLedger, LedgerTransitionError
from .scheduler import BatchOutcome, BatchScheduler, PoolHalted, PoolRunner, PoolState
from .service import BenchmarkService

__all__ = [
    "AutoTuneConfig",
    "AutoTuner",
    "BatchOutcome",
    "BatchScheduler",
    "BenchmarkService",
    "DedupLedger",
    "LedgerTransitionError",
    "PipelineContext",
    "PoolHalted",
    "PoolRunner",
    "PoolState",
    "TuningAction",
    "TuningResult",
    "decay_weights",
    "make_engine_factory",
    "renormalize",
]
