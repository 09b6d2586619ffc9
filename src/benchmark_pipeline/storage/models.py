"""
Pydantic models matching the PostgreSQL schema in storage/schema.py.

Table names and field names match the database columns so repositories
can build models straight from asyncpg records.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# DEDUP LEDGER
# =============================================================================


class LedgerStatus(str, Enum):
    """Lifecycle of a canonical game id."""

    UNSEEN = "unseen"
    IN_FLIGHT = "in_flight"
    ACCEPTED = "accepted"
    PERMANENTLY_FAILED = "permanently_failed"

    @property
    def is_terminal(self) -> bool:
        return self in (LedgerStatus.ACCEPTED, LedgerStatus.PERMANENTLY_FAILED)


class DedupLedgerEntry(BaseModel):
    """Durable ledger row. Only terminal statuses are ever persisted."""

    game_id: str
    status: LedgerStatus
    source: Optional[str] = None
    reason: Optional[str] = None
    first_seen_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# PREDICTION ATTEMPTS
# =============================================================================


class PredictionAttempt(BaseModel):
    """
    One scored position sample.

    Immutable once written; unique on both game_id and position_hash.
    """

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    game_id: str
    position_hash: str
    fen: str
    move_index: int

    challenger_prediction: str
    challenger_confidence: float
    challenger_correct: bool
    archetype: str

    baseline_prediction: str
    baseline_confidence: float
    baseline_correct: bool
    baseline_eval_cp: Optional[int] = None
    baseline_mate: Optional[int] = None
    baseline_depth: int

    actual_result: str
    pool_name: str
    data_source: str
    white_rating: Optional[int] = None
    black_rating: Optional[int] = None
    time_control: Optional[str] = None
    analysis_time_ms: Optional[int] = None
    run_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# EVOLUTION STATE
# =============================================================================


class DeploymentStatus(str, Enum):
    """Where the challenger configuration stands."""

    BASELINE = "baseline"
    TESTING = "testing"
    ENHANCED = "enhanced"


class EvolutionState(BaseModel):
    """Challenger weight vector plus its deployment lifecycle."""

    state_id: str = "default"
    generation: int = 0
    weights: dict[str, float]
    fitness_score: float = 0.0
    deployment_status: DeploymentStatus = DeploymentStatus.BASELINE
    auto_deploy: bool = True
    last_mutation_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("weights", mode="before")
    @classmethod
    def _decode_weights(cls, value):
        # JSONB comes back from asyncpg as text without a registered codec
        if isinstance(value, str):
            return json.loads(value)
        return value

    @property
    def is_promoted(self) -> bool:
        return self.deployment_status == DeploymentStatus.ENHANCED


class PromotionSnapshot(BaseModel):
    """Durable record of the numbers that justified a promotion."""

    id: Optional[int] = None
    state_id: str
    generation: int
    challenger_accuracy: float
    baseline_accuracy: float
    improvement: float
    p_value: float
    sample_size: int
    weights: dict[str, float]
    promoted_at: datetime = Field(default_factory=utc_now)

    @field_validator("weights", mode="before")
    @classmethod
    def _decode_weights(cls, value):
        if isinstance(value, str):
            return json.loads(value)
        return value


# =============================================================================
# BATCH RUNS
# =============================================================================


class BatchRunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    YIELDED = "yielded"


class BatchRun(BaseModel):
    """Per-batch bookkeeping for one pool cycle."""

    run_id: str
    pool_name: str
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    fetched_count: int = 0
    accepted_count: int = 0
    rejected_count: int = 0
    failed_count: int = 0
    malformed_count: int = 0
    status: BatchRunStatus = BatchRunStatus.RUNNING
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
