"""
Evolution state and promotion snapshot repositories.
"""
from __future__ import annotations

import json
from typing import Optional

import asyncpg

from benchmark_pipeline.storage.models import (
    DeploymentStatus,
    EvolutionState,
    PromotionSnapshot,
)
from benchmark_pipeline.storage.repositories.base import BaseRepository


class EvolutionStateRepository(BaseRepository[EvolutionState]):
    """Repository for evolution_state, keyed by state_id."""

    table_name = "evolution_state"
    model_class = EvolutionState

    async def get(self, state_id: str = "default") -> Optional[EvolutionState]:
        return await self.get_by_id(state_id, id_column="state_id")

    async def upsert(
        self,
        state: EvolutionState,
        conn: Optional[asyncpg.Connection] = None,
    ) -> None:
        """Insert or replace the state row."""
        query = """
            INSERT INTO evolution_state
            (state_id, generation, weights, fitness_score, deployment_status,
             auto_deploy, last_mutation_at, updated_at)
            VALUES ($1, $2, $3::jsonb, $4, $5, $6, $7, $8)
            ON CONFLICT (state_id) DO UPDATE SET
                generation = EXCLUDED.generation,
                weights = EXCLUDED.weights,
                fitness_score = EXCLUDED.fitness_score,
                deployment_status = EXCLUDED.deployment_status,
                auto_deploy = EXCLUDED.auto_deploy,
                last_mutation_at = EXCLUDED.last_mutation_at,
                updated_at = EXCLUDED.updated_at
        """
        await self._execute(
            conn,
            query,
            state.state_id,
            state.generation,
            json.dumps(state.weights),
            state.fitness_score,
            state.deployment_status.value,
            state.auto_deploy,
            state.last_mutation_at,
            state.updated_at,
        )

    async def record_promotion(
        self, state: EvolutionState, snapshot: PromotionSnapshot
    ) -> bool:
        """
        Write the snapshot and the promoted state in one transaction.

        The snapshot table is unique per state_id, so a second promotion of
        the same state is a no-op and returns False.
        """
        if state.deployment_status != DeploymentStatus.ENHANCED:
            raise ValueError("record_promotion expects a state already marked enhanced")

        async def _write(conn: asyncpg.Connection) -> bool:
            query = """
                INSERT INTO promotion_snapshots
                (state_id, generation, challenger_accuracy, baseline_accuracy,
                 improvement, p_value, sample_size, weights, promoted_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9)
                ON CONFLICT (state_id) DO NOTHING
                RETURNING id
            """
            # Parent row must exist before the snapshot references it
            await self.upsert(state, conn=conn)
            record = await conn.fetchrow(
                query,
                snapshot.state_id,
                snapshot.generation,
                snapshot.challenger_accuracy,
                snapshot.baseline_accuracy,
                snapshot.improvement,
                snapshot.p_value,
                snapshot.sample_size,
                json.dumps(snapshot.weights),
                snapshot.promoted_at,
            )
            return record is not None

        return await self.db.run_in_transaction(_write)

    async def get_promotion(self, state_id: str = "default") -> Optional[PromotionSnapshot]:
        query = "SELECT * FROM promotion_snapshots WHERE state_id = $1"
        record = await self.db.fetchrow(query, state_id)
        return PromotionSnapshot(**dict(record)) if record else None
