"""
Repository layer for async PostgreSQL access.
"""
from benchmark_pipeline.storage.repositories.attempt_repo import AttemptRepository
from benchmark_pipeline.storage.repositories.base import BaseRepository
from benchmark_pipeline.storage.repositories.batch_repo import BatchRunRepository
from benchmark_pipeline.storage.repositories.evolution_repo import EvolutionStateRepository
from benchmark_pipeline.storage.repositories.ledger_repo import LedgerRepository

__all__ = [
    "AttemptRepository",
    "BaseRepository",
    "BatchRunRepository",
    "EvolutionStateRepository",
    "LedgerRepository",
]
