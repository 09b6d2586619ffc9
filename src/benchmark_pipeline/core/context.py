"""
Shared pipeline context.

Everything both pools share (the ledger, provider gates and adapters, the
database and its repositories, the auto-tuner) lives on one explicit
object that the scheduler owns. Nothing here is a module-level singleton,
so tests build a context from fakes and pools stay independently testable.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from benchmark_pipeline.analysis.engine import RemoteEvalEngine, ScoringEngine, UciEngine
from benchmark_pipeline.config import PipelineConfig
from benchmark_pipeline.evaluation.predictors import ChallengerPredictor
from benchmark_pipeline.ingestion import ChessComAdapter, LichessAdapter, ProviderGate, SourceAdapter
from benchmark_pipeline.storage import (
    AttemptRepository,
    BatchRunRepository,
    Database,
    EvolutionStateRepository,
    LedgerRepository,
)

from .auto_tuner import AutoTuner
from .ledger import DedupLedger

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    config: PipelineConfig
    db: Database
    ledger: DedupLedger
    ledger_repo: LedgerRepository
    attempt_repo: AttemptRepository
    evolution_repo: EvolutionStateRepository
    batch_repo: BatchRunRepository
    tuner: AutoTuner
    adapters: dict[str, SourceAdapter]
    engine_factory: Callable[[], ScoringEngine]
    challenger: ChallengerPredictor = field(default_factory=ChallengerPredictor)
    gates: dict[str, ProviderGate] = field(default_factory=dict)

    @classmethod
    def build(cls, config: PipelineConfig, db: Database) -> "PipelineContext":
        """Wire the production collaborators for a config."""
        gates = {
            "lichess": ProviderGate("lichess", config.lichess_min_interval),
            "chesscom": ProviderGate("chesscom", config.chesscom_min_interval),
            "cloud_eval": ProviderGate("cloud_eval", config.cloud_eval_min_interval),
        }
        adapters: dict[str, SourceAdapter] = {
            "lichess": LichessAdapter(gates["lichess"], players=config.lichess_players),
            "chesscom": ChessComAdapter(gates["chesscom"], players=config.chesscom_players),
        }

        ledger_repo = LedgerRepository(db)
        evolution_repo = EvolutionStateRepository(db)
        return cls(
            config=config,
            db=db,
            ledger=DedupLedger(),
            ledger_repo=ledger_repo,
            attempt_repo=AttemptRepository(db, ledger_repo),
            evolution_repo=evolution_repo,
            batch_repo=BatchRunRepository(db),
            tuner=AutoTuner(evolution_repo, auto_deploy=config.auto_deploy),
            adapters=adapters,
            engine_factory=make_engine_factory(config, gates["cloud_eval"]),
            gates=gates,
        )

    async def open(self) -> None:
        """Open HTTP sessions, then rehydrate durable state. Call before any fetch."""
        for adapter in self.adapters.values():
            await adapter.__aenter__()
        await self.ledger.hydrate(self.ledger_repo)
        await self.tuner.load()

    async def close(self) -> None:
        for name, adapter in self.adapters.items():
            try:
                await adapter.close()
            except Exception as e:
                logger.warning(f"Error closing {name} adapter: {e}")


def make_engine_factory(
    config: PipelineConfig, gate: Optional[ProviderGate] = None
) -> Callable[[], ScoringEngine]:
    """Return a zero-argument factory producing a fresh engine per worker (re)start."""
    if config.engine_kind == "remote":
        remote_gate = gate or ProviderGate("cloud_eval", config.cloud_eval_min_interval)
        return lambda: RemoteEvalEngine(remote_gate)
    if config.engine_kind != "uci":
        raise ValueError(f"Unknown engine kind {config.engine_kind!r}; use 'uci' or 'remote'")
    return lambda: UciEngine(
        config.engine_path,
        threads=config.engine_threads,
        hash_mb=config.engine_hash_mb,
    )
