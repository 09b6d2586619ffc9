"""
Dedup ledger repository.

The table is append-only: an id gets exactly one terminal row and later
writes for the same id are ignored. Reads page with a keyset cursor so
hydration never silently truncates.
"""
from __future__ import annotations

from typing import AsyncIterator, Optional

import asyncpg

from benchmark_pipeline.storage.models import DedupLedgerEntry
from benchmark_pipeline.storage.repositories.base import BaseRepository

DEFAULT_PAGE_SIZE = 1000


class LedgerRepository(BaseRepository[DedupLedgerEntry]):
    """Repository for terminal ledger entries."""

    table_name = "dedup_ledger"
    model_class = DedupLedgerEntry

    async def insert(
        self,
        entry: DedupLedgerEntry,
        conn: Optional[asyncpg.Connection] = None,
    ) -> bool:
        """
        Append a terminal entry.

        Returns False if the id already had a row (first write wins).
        """
        if not entry.status.is_terminal:
            raise ValueError(f"Only terminal statuses are persisted, got {entry.status.value}")

        query = """
            INSERT INTO dedup_ledger (game_id, status, source, reason, first_seen_at)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (game_id) DO NOTHING
            RETURNING game_id
        """
        record = await self._fetchrow(
            conn,
            query,
            entry.game_id,
            entry.status.value,
            entry.source,
            entry.reason,
            entry.first_seen_at,
        )
        return record is not None

    async def fetch_page(
        self, after_game_id: Optional[str], limit: int = DEFAULT_PAGE_SIZE
    ) -> list[DedupLedgerEntry]:
        """Fetch one page ordered by game_id, strictly after the cursor."""
        if after_game_id is None:
            query = """
                SELECT * FROM dedup_ledger
                ORDER BY game_id
                LIMIT $1
            """
            records = await self.db.fetch(query, limit)
        else:
            query = """
                SELECT * FROM dedup_ledger
                WHERE game_id > $1
                ORDER BY game_id
                LIMIT $2
            """
            records = await self.db.fetch(query, after_game_id, limit)
        return self._records_to_models(records)

    async def iter_all(
        self, page_size: int = DEFAULT_PAGE_SIZE
    ) -> AsyncIterator[DedupLedgerEntry]:
        """Yield every entry, paging until a short page comes back."""
        cursor: Optional[str] = None
        while True:
            page = await self.fetch_page(cursor, page_size)
            for entry in page:
                yield entry
            if len(page) < page_size:
                return
            cursor = page[-1].game_id
