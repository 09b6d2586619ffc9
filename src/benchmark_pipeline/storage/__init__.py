"""
Storage Layer - Async PostgreSQL database and repositories.

This is the foundation layer that all other components depend on.
Built on asyncpg for async database access.

Public API:
    Database, DatabaseConfig, PersistenceFailure - Connection pool management

    Models (matching storage/schema.py):
        DedupLedgerEntry, LedgerStatus
        PredictionAttempt
        EvolutionState, DeploymentStatus, PromotionSnapshot
        BatchRun, BatchRunStatus

    Repositories:
        LedgerRepository, AttemptRepository, EvolutionStateRepository,
        BatchRunRepository
"""
from benchmark_pipeline.storage.database import Database, DatabaseConfig, PersistenceFailure
from benchmark_pipeline.storage.models import (
    BatchRun,
    BatchRunStatus,
    DedupLedgerEntry,
    DeploymentStatus,
    EvolutionState,
    LedgerStatus,
    PredictionAttempt,
    PromotionSnapshot,
)
from benchmark_pipeline.storage.repositories import (
    AttemptRepository,
    BatchRunRepository,
    EvolutionStateRepository,
    LedgerRepository,
)

__all__ = [
    # Database
    "Database",
    "DatabaseConfig",
    "PersistenceFailure",
    # Models
    "BatchRun",
    "BatchRunStatus",
    "DedupLedgerEntry",
    "DeploymentStatus",
    "EvolutionState",
    "LedgerStatus",
    "PredictionAttempt",
    "PromotionSnapshot",
    # Repositories
    "AttemptRepository",
    "BatchRunRepository",
    "EvolutionStateRepository",
    "LedgerRepository",
]
