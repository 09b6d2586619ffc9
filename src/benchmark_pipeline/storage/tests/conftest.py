"""
Storage layer test fixtures.

Repository tests run against a mocked Database; no PostgreSQL needed.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from benchmark_pipeline.storage.models import (
    DedupLedgerEntry,
    LedgerStatus,
    PredictionAttempt,
)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def mock_conn():
    """Connection object handed to transactional operations."""
    conn = AsyncMock()
    conn.execute = AsyncMock(return_value="INSERT 0 1")
    conn.fetchrow = AsyncMock(return_value=None)
    return conn


@pytest.fixture
def mock_db(mock_conn):
    """Mock database for unit tests."""
    db = AsyncMock()
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetch = AsyncMock(return_value=[])
    db.fetchrow = AsyncMock(return_value=None)
    db.fetchval = AsyncMock(return_value=None)

    async def run_in_transaction(operation):
        return await operation(mock_conn)

    db.run_in_transaction = AsyncMock(side_effect=run_in_transaction)
    db._mock_conn = mock_conn
    return db


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def sample_attempt() -> PredictionAttempt:
    return PredictionAttempt(
        game_id="abcd1234",
        position_hash="0" * 32,
        fen="r1bqkbnr/pppp1ppp/2n5/4p3/4P3/5N2/PPPP1PPP/RNBQKB1R w KQkq - 2 3",
        move_index=16,
        challenger_prediction="white_wins",
        challenger_confidence=55.0,
        challenger_correct=True,
        archetype="balanced",
        baseline_prediction="draw",
        baseline_confidence=45.0,
        baseline_correct=False,
        baseline_eval_cp=10,
        baseline_depth=18,
        actual_result="white_wins",
        pool_name="VOLUME",
        data_source="lichess",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def accepted_entry() -> DedupLedgerEntry:
    return DedupLedgerEntry(game_id="abcd1234", status=LedgerStatus.ACCEPTED, source="lichess")
