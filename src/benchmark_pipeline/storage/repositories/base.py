"""
Base repository class for async PostgreSQL access.
"""
from __future__ import annotations

from typing import Any, Generic, Optional, Type, TypeVar

import asyncpg
from pydantic import BaseModel

from benchmark_pipeline.storage.database import Database

T = TypeVar("T", bound=BaseModel)


class BaseRepository(Generic[T]):
    """
    Base class for async repositories.

    Subclasses define table name and model type. Write methods accept an
    optional connection so several repositories can share one transaction.
    """

    table_name: str
    model_class: Type[T]

    def __init__(self, db: Database) -> None:
        self.db = db

    def _record_to_model(self, record) -> Optional[T]:
        """Convert asyncpg Record to Pydantic model."""
        if record is None:
            return None
        return self.model_class(**dict(record))

    def _records_to_models(self, records) -> list[T]:
        """Convert list of Records to list of models."""
        return [self._record_to_model(r) for r in records]

    async def _fetchrow(
        self, conn: Optional[asyncpg.Connection], query: str, *args: Any
    ) -> Optional[asyncpg.Record]:
        if conn is not None:
            return await conn.fetchrow(query, *args)
        return await self.db.fetchrow(query, *args)

    async def _execute(
        self, conn: Optional[asyncpg.Connection], query: str, *args: Any
    ) -> str:
        if conn is not None:
            return await conn.execute(query, *args)
        return await self.db.execute(query, *args)

    async def get_by_id(self, id_value, id_column: str = "id") -> Optional[T]:
        """Get a single record by ID."""
        query = f"SELECT * FROM {self.table_name} WHERE {id_column} = $1"
        record = await self.db.fetchrow(query, id_value)
        return self._record_to_model(record)

    async def exists(self, id_value, id_column: str = "id") -> bool:
        """Check if record exists."""
        query = f"SELECT 1 FROM {self.table_name} WHERE {id_column} = $1"
        result = await self.db.fetchval(query, id_value)
        return result is not None
