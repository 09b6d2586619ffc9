"""
Batch run repository.
"""
from __future__ import annotations

from typing import Optional

from benchmark_pipeline.storage.models import BatchRun
from benchmark_pipeline.storage.repositories.base import BaseRepository


class BatchRunRepository(BaseRepository[BatchRun]):
    """Repository for batch_runs."""

    table_name = "batch_runs"
    model_class = BatchRun

    async def save(self, run: BatchRun) -> None:
        """Insert a run or overwrite its counters and status."""
        query = """
            INSERT INTO batch_runs
            (run_id, pool_name, window_start, window_end, fetched_count,
             accepted_count, rejected_count, failed_count, malformed_count,
             status, error, started_at, completed_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            ON CONFLICT (run_id) DO UPDATE SET
                window_start = EXCLUDED.window_start,
                window_end = EXCLUDED.window_end,
                fetched_count = EXCLUDED.fetched_count,
                accepted_count = EXCLUDED.accepted_count,
                rejected_count = EXCLUDED.rejected_count,
                failed_count = EXCLUDED.failed_count,
                malformed_count = EXCLUDED.malformed_count,
                status = EXCLUDED.status,
                error = EXCLUDED.error,
                completed_at = EXCLUDED.completed_at
        """
        await self.db.execute(
            query,
            run.run_id,
            run.pool_name,
            run.window_start,
            run.window_end,
            run.fetched_count,
            run.accepted_count,
            run.rejected_count,
            run.failed_count,
            run.malformed_count,
            run.status.value,
            run.error,
            run.started_at,
            run.completed_at,
        )

    async def get_recent(self, limit: int = 20, pool_name: Optional[str] = None) -> list[BatchRun]:
        if pool_name:
            query = """
                SELECT * FROM batch_runs WHERE pool_name = $1
                ORDER BY started_at DESC LIMIT $2
            """
            records = await self.db.fetch(query, pool_name, limit)
        else:
            query = "SELECT * FROM batch_runs ORDER BY started_at DESC LIMIT $1"
            records = await self.db.fetch(query, limit)
        return self._records_to_models(records)
