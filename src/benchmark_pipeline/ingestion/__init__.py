"""
Ingestion Layer - Game providers and their HTTP plumbing.

This module fetches finished games from rate-limited providers:
    - ProviderGate: per-provider request spacing and shared cooldown
    - LichessAdapter: per-user NDJSON export
    - ChessComAdapter: per-user monthly archives
    - WindowPlanner / MonthlyWindowPlanner: non-overlapping fetch windows
    - GameId: the single canonical game identity

Usage:
    from benchmark_pipeline.ingestion import LichessAdapter, ProviderGate

    gate = ProviderGate("lichess", min_interval=3.0)
    async with LichessAdapter(gate, players=["DrNykterstein"]) as lichess:
        result = await lichess.fetch_batch(pool_config, exclude_ids=ledger.exclusion_set())
        for game in result:
            ...
"""

from .adapters import FetchResult, MalformedEntry, SourceAdapter
from .chesscom import ChessComAdapter, pgn_to_san
from .client import (
    MalformedRecordError,
    NotFoundError,
    ProviderClient,
    ProviderError,
    ProviderGate,
    RateLimitedError,
    TransientNetworkError,
)
from .lichess import LichessAdapter, parse_ndjson
from .models import GameId, GameRecord, GameSource, Outcome, TimeWindow
from .windows import MonthlyWindowPlanner, WindowPlanner

__all__ = [
    # Models
    "GameId",
    "GameRecord",
    "GameSource",
    "Outcome",
    "TimeWindow",
    # Clients
    "ProviderClient",
    "ProviderGate",
    "SourceAdapter",
    "LichessAdapter",
    "ChessComAdapter",
    "FetchResult",
    "MalformedEntry",
    # Windows
    "WindowPlanner",
    "MonthlyWindowPlanner",
    # Errors
    "ProviderError",
    "TransientNetworkError",
    "RateLimitedError",
    "NotFoundError",
    "MalformedRecordError",
    # Helpers
    "parse_ndjson",
    "pgn_to_san",
]
