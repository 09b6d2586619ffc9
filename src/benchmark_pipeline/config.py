"""
Pipeline configuration.

PoolConfig describes one benchmark pool; VOLUME_POOL and DEEP_POOL are the
two built-in presets. PipelineConfig collects everything the entry point
needs and is loaded from environment variables.
"""
from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields, replace
from typing import Any

LICHESS_DEFAULT_PLAYERS = (
    "DrNykterstein", "nihalsarin2004", "LyonBeast", "Bombegansen", "GMWSO",
    "penguingim1", "DanielNaroditsky", "Fins", "Zhigalko_Sergei", "Alireza2003",
)
CHESSCOM_DEFAULT_PLAYERS = (
    "MagnusCarlsen", "Hikaru", "FabianoCaruana", "LevonAronian", "DanielNaroditsky",
    "AnishGiri", "WesleySo", "Firouzja2003", "NihalSarin", "GothamChess",
)


@dataclass(frozen=True)
class PoolConfig:
    """
    Configuration for one benchmark pool.

    The per-attempt engine timeout is base_timeout + per_depth_timeout * depth.
    """

    name: str
    depth: int
    batch_size: int
    interval_seconds: float
    delay_between_games: float

    # Engine timeouts and retry
    base_timeout: float = 3.0
    per_depth_timeout: float = 0.5
    max_attempts: int = 3
    retry_delay: float = 1.0

    # Fetch phase
    fetch_timeout: float = 90.0
    fetch_multiplier: int = 8
    window_span_hours: float = 6.0
    window_offset_days: float = 0.0
    max_lookback_days: float = 365.0
    providers: tuple[str, ...] = ("lichess", "chesscom")

    # Sample extraction (plies)
    min_move_index: int = 15
    max_move_index: int = 34
    min_game_plies: int = 20

    # Recovery
    failure_threshold: int = 2
    failure_window_seconds: float = 300.0
    recovery_delay: float = 10.0
    max_recovery_attempts: int = 3

    enabled: bool = True

    def __post_init__(self):
        if self.depth < 1:
            raise ValueError(f"{self.name}: depth must be >= 1")
        if self.batch_size < 1:
            raise ValueError(f"{self.name}: batch_size must be >= 1")
        if self.max_attempts < 1:
            raise ValueError(f"{self.name}: max_attempts must be >= 1")
        if not 0 < self.min_move_index <= self.max_move_index:
            raise ValueError(f"{self.name}: invalid move index range")
        if self.min_game_plies <= self.min_move_index:
            raise ValueError(f"{self.name}: min_game_plies must exceed min_move_index")

    @property
    def attempt_timeout(self) -> float:
        return self.base_timeout + self.per_depth_timeout * self.depth

    @property
    def fetch_limit(self) -> int:
        return self.batch_size * self.fetch_multiplier

    def with_updates(self, **changes: Any) -> "PoolConfig":
        """Copy with changes applied; unknown keys raise ValueError."""
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown pool config fields: {sorted(unknown)}")
        if "providers" in changes:
            changes["providers"] = tuple(changes["providers"])
        return replace(self, **changes)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["providers"] = list(self.providers)
        data["attempt_timeout"] = self.attempt_timeout
        return data


VOLUME_POOL = PoolConfig(
    name="VOLUME",
    depth=18,
    batch_size=5,
    interval_seconds=180.0,
    delay_between_games=0.3,
    base_timeout=3.0,
    per_depth_timeout=0.5,  # 12s at depth 18
    fetch_timeout=90.0,
    window_span_hours=6.0,
)

DEEP_POOL = PoolConfig(
    name="DEEP",
    depth=26,
    batch_size=1,
    interval_seconds=600.0,
    delay_between_games=0.5,
    base_timeout=14.0,
    per_depth_timeout=1.0,  # 40s at depth 26
    fetch_timeout=120.0,
    window_span_hours=24.0,
    window_offset_days=30.0,
)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.environ.get(name)
    if not value:
        return default
    return tuple(p.strip() for p in value.split(",") if p.strip())


@dataclass
class PipelineConfig:
    """Top-level configuration for the benchmark pipeline."""

    database_url: str = ""
    engine_path: str = "stockfish"
    engine_kind: str = "uci"  # "uci" or "remote"
    engine_threads: int = 1
    engine_hash_mb: int = 64

    volume_pool: PoolConfig = VOLUME_POOL
    deep_pool: PoolConfig = DEEP_POOL

    lichess_players: tuple[str, ...] = LICHESS_DEFAULT_PLAYERS
    chesscom_players: tuple[str, ...] = CHESSCOM_DEFAULT_PLAYERS
    lichess_min_interval: float = 3.0
    chesscom_min_interval: float = 1.0
    cloud_eval_min_interval: float = 1.0

    auto_deploy: bool = True
    health_check_interval_seconds: float = 120.0

    dashboard_enabled: bool = True
    dashboard_host: str = "0.0.0.0"
    dashboard_port: int = 9060

    @property
    def pools(self) -> dict[str, PoolConfig]:
        return {self.volume_pool.name: self.volume_pool, self.deep_pool.name: self.deep_pool}

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Load configuration from environment variables."""
        volume = VOLUME_POOL.with_updates(
            batch_size=int(os.environ.get("VOLUME_BATCH_SIZE", VOLUME_POOL.batch_size)),
            depth=int(os.environ.get("VOLUME_DEPTH", VOLUME_POOL.depth)),
        )
        deep = DEEP_POOL.with_updates(
            batch_size=int(os.environ.get("DEEP_BATCH_SIZE", DEEP_POOL.batch_size)),
            depth=int(os.environ.get("DEEP_DEPTH", DEEP_POOL.depth)),
        )
        return cls(
            database_url=os.environ.get("DATABASE_URL", ""),
            engine_path=os.environ.get("ENGINE_PATH", "stockfish"),
            engine_kind=os.environ.get("ENGINE_KIND", "uci").lower(),
            engine_threads=int(os.environ.get("ENGINE_THREADS", "1")),
            engine_hash_mb=int(os.environ.get("ENGINE_HASH_MB", "64")),
            volume_pool=volume,
            deep_pool=deep,
            lichess_players=_env_list("LICHESS_PLAYERS", LICHESS_DEFAULT_PLAYERS),
            chesscom_players=_env_list("CHESSCOM_PLAYERS", CHESSCOM_DEFAULT_PLAYERS),
            auto_deploy=_env_bool("AUTO_DEPLOY", "true"),
            health_check_interval_seconds=float(os.environ.get("HEALTH_CHECK_INTERVAL_SECONDS", "120")),
            dashboard_enabled=_env_bool("DASHBOARD_ENABLED", "true"),
            dashboard_host=os.environ.get("DASHBOARD_HOST", "0.0.0.0"),
            dashboard_port=int(os.environ.get("DASHBOARD_PORT", "9060")),
        )
