"""
Prediction attempt repository.

Each attempt is committed together with its ledger entry in a single
transaction, so a crash between the two writes cannot leave an id that
is scored but still fetchable (or excluded but unscored).
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

import asyncpg

from benchmark_pipeline.storage.database import Database
from benchmark_pipeline.storage.models import DedupLedgerEntry, PredictionAttempt
from benchmark_pipeline.storage.repositories.base import BaseRepository
from benchmark_pipeline.storage.repositories.ledger_repo import LedgerRepository

SUMMARY_PAGE_SIZE = 5000


class AttemptRepository(BaseRepository[PredictionAttempt]):
    """Repository for prediction_attempts."""

    table_name = "prediction_attempts"
    model_class = PredictionAttempt

    def __init__(self, db: Database, ledger_repo: Optional[LedgerRepository] = None) -> None:
        super().__init__(db)
        self._ledger_repo = ledger_repo or LedgerRepository(db)

    async def insert(
        self,
        attempt: PredictionAttempt,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[int]:
        """
        Insert an attempt.

        Returns the new row id, or None if the game or position was already
        scored (unique on game_id and position_hash).
        """
        query = """
            INSERT INTO prediction_attempts
            (game_id, position_hash, fen, move_index,
             challenger_prediction, challenger_confidence, challenger_correct, archetype,
             baseline_prediction, baseline_confidence, baseline_correct,
             baseline_eval_cp, baseline_mate, baseline_depth,
             actual_result, pool_name, data_source,
             white_rating, black_rating, time_control, analysis_time_ms, run_id, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14,
                    $15, $16, $17, $18, $19, $20, $21, $22, $23)
            ON CONFLICT DO NOTHING
            RETURNING id
        """
        record = await self._fetchrow(
            conn,
            query,
            attempt.game_id,
            attempt.position_hash,
            attempt.fen,
            attempt.move_index,
            attempt.challenger_prediction,
            attempt.challenger_confidence,
            attempt.challenger_correct,
            attempt.archetype,
            attempt.baseline_prediction,
            attempt.baseline_confidence,
            attempt.baseline_correct,
            attempt.baseline_eval_cp,
            attempt.baseline_mate,
            attempt.baseline_depth,
            attempt.actual_result,
            attempt.pool_name,
            attempt.data_source,
            attempt.white_rating,
            attempt.black_rating,
            attempt.time_control,
            attempt.analysis_time_ms,
            attempt.run_id,
            attempt.created_at,
        )
        return record["id"] if record else None

    async def record_outcome(
        self, attempt: PredictionAttempt, ledger_entry: DedupLedgerEntry
    ) -> bool:
        """
        Commit an attempt and its accepted ledger entry atomically.

        Returns True if the attempt row was new. Retries transient failures
        and raises PersistenceFailure when they are exhausted.
        """
        async def _write(conn: asyncpg.Connection) -> bool:
            attempt_id = await self.insert(attempt, conn=conn)
            await self._ledger_repo.insert(ledger_entry, conn=conn)
            return attempt_id is not None

        return await self.db.run_in_transaction(_write)

    async def get_by_game(self, game_id: str) -> Optional[PredictionAttempt]:
        return await self.get_by_id(game_id, id_column="game_id")

    async def get_all(
        self,
        pool_name: Optional[str] = None,
        since: Optional[datetime] = None,
        page_size: int = SUMMARY_PAGE_SIZE,
    ) -> list[PredictionAttempt]:
        """Every attempt matching the filters, paged by id."""
        attempts: list[PredictionAttempt] = []
        last_id = 0
        while True:
            query = """
                SELECT * FROM prediction_attempts
                WHERE id > $1
                  AND ($2::text IS NULL OR pool_name = $2)
                  AND ($3::timestamptz IS NULL OR created_at >= $3)
                ORDER BY id
                LIMIT $4
            """
            records = await self.db.fetch(query, last_id, pool_name, since, page_size)
            page = self._records_to_models(records)
            attempts.extend(page)
            if len(page) < page_size:
                return attempts
            last_id = page[-1].id

    async def agreement_counts(
        self, pool_name: Optional[str] = None
    ) -> list[tuple[str, bool, bool, int]]:
        """
        Attempt counts grouped by archetype and both correctness flags.

        At most 4 rows per archetype however large the table grows; feed
        them to summarize_counts().
        """
        query = """
            SELECT archetype, challenger_correct, baseline_correct, COUNT(*) AS n
            FROM prediction_attempts
            WHERE ($1::text IS NULL OR pool_name = $1)
            GROUP BY archetype, challenger_correct, baseline_correct
        """
        records = await self.db.fetch(query, pool_name)
        return [
            (r["archetype"], r["challenger_correct"], r["baseline_correct"], r["n"])
            for r in records
        ]
