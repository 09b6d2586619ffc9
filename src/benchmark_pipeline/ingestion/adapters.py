"""
Source adapter base class.

An adapter turns one provider's API into batches of GameRecord for a pool.
It rotates through a roster of players inside the pool's current window,
filters purely by identity against the caller's exclusion set, and only
advances the window once every player has been scanned in it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Collection, Iterator, Optional, Sequence

from .client import (
    MalformedRecordError,
    NotFoundError,
    ProviderClient,
    ProviderGate,
    RateLimitedError,
    TransientNetworkError,
)
from .models import GameId, GameRecord, GameSource, TimeWindow
from .windows import WindowPlanner

if TYPE_CHECKING:
    import aiohttp

    from benchmark_pipeline.config import PoolConfig

logger = logging.getLogger(__name__)


@dataclass
class MalformedEntry:
    """A record that could not be used. game_id is None when even the id was unreadable."""
    game_id: Optional[GameId]
    reason: str


@dataclass
class FetchResult:
    """
    Outcome of one fetch_batch call.

    Iterating a FetchResult yields its games, so callers that only want
    the records can treat it as a sequence.
    """
    window: Optional[TimeWindow] = None
    games: list[GameRecord] = field(default_factory=list)
    malformed: list[MalformedEntry] = field(default_factory=list)
    fetched_count: int = 0
    excluded_count: int = 0
    rate_limited: bool = False
    errors: list[str] = field(default_factory=list)

    def __iter__(self) -> Iterator[GameRecord]:
        return iter(self.games)

    def __len__(self) -> int:
        return len(self.games)

    def merge(self, other: "FetchResult") -> None:
        self.games.extend(other.games)
        self.malformed.extend(other.malformed)
        self.fetched_count += other.fetched_count
        self.excluded_count += other.excluded_count
        self.rate_limited = self.rate_limited or other.rate_limited
        self.errors.extend(other.errors)


class SourceAdapter(ProviderClient):
    """
    Base class for provider adapters.

    Subclasses implement _fetch_player() (raw provider dicts for one player
    in one window) and _parse() (raw dict to GameRecord).
    """

    source: GameSource

    def __init__(
        self,
        gate: ProviderGate,
        players: Sequence[str],
        session: Optional["aiohttp.ClientSession"] = None,
        **client_kwargs: Any,
    ):
        super().__init__(gate, session=session, **client_kwargs)
        if not players:
            raise ValueError(f"{type(self).__name__} needs at least one player")
        self.players = tuple(players)
        self._planners: dict[str, WindowPlanner] = {}
        self._scanned: dict[str, tuple[TimeWindow, set[str]]] = {}
        self._player_offset: dict[str, int] = {}

    # =========================================================================
    # Subclass hooks
    # =========================================================================

    def _make_planner(self, pool_config: "PoolConfig") -> WindowPlanner:
        return WindowPlanner(
            span=timedelta(hours=pool_config.window_span_hours),
            max_lookback=timedelta(days=pool_config.max_lookback_days),
            anchor_offset=timedelta(days=pool_config.window_offset_days),
        )

    async def _fetch_player(
        self, player: str, window: TimeWindow, limit: int
    ) -> list[Any]:
        raise NotImplementedError

    def _parse(self, raw: Any, pool_config: "PoolConfig") -> GameRecord:
        raise NotImplementedError

    # =========================================================================
    # Window bookkeeping
    # =========================================================================

    def planner_for(self, pool_config: "PoolConfig") -> WindowPlanner:
        planner = self._planners.get(pool_config.name)
        if planner is None:
            planner = self._make_planner(pool_config)
            self._planners[pool_config.name] = planner
            # Pools start on different players so they do not race for the same games
            self._player_offset[pool_config.name] = (len(self._planners) - 1) * 3
        return planner

    def _scanned_in(self, pool_name: str, window: TimeWindow) -> set[str]:
        """Players already queried for this pool in window; empty for a new window."""
        scanned_window, players = self._scanned.get(pool_name, (None, set()))
        if scanned_window != window:
            players = set()
            self._scanned[pool_name] = (window, players)
        return players

    def _next_player(self, pool_name: str, skip: Collection[str]) -> Optional[str]:
        offset = self._player_offset[pool_name]
        for i in range(len(self.players)):
            player = self.players[(offset + i) % len(self.players)]
            if player not in skip:
                return player
        return None

    def _mark_player_scanned(
        self, pool_name: str, planner: WindowPlanner, window: TimeWindow, player: str
    ) -> bool:
        """Returns True when player completed the roster and the window moved on."""
        scanned = self._scanned_in(pool_name, window)
        scanned.add(player)
        if len(scanned) < len(self.players):
            return False
        planner.advance(window.since)
        logger.debug(f"{self.source.value}/{pool_name}: window exhausted, cursor now {planner.cursor}")
        return True

    # =========================================================================
    # Public API
    # =========================================================================

    async def fetch_batch(
        self,
        pool_config: "PoolConfig",
        exclude_ids: Collection[GameId],
        limit: Optional[int] = None,
    ) -> FetchResult:
        """
        Fetch up to `limit` (default batch_size) games not in exclude_ids.

        Requests at most batch_size * fetch_multiplier raw games per call.
        Rate limiting ends the call early with whatever was collected, and so
        does finishing the roster in the current window: one call never spans
        two windows, so no (player, window) pair is requested twice.
        Malformed records are returned separately, never raised.
        """
        wanted = limit if limit is not None else pool_config.batch_size
        planner = self.planner_for(pool_config)
        window = planner.current_window()
        result = FetchResult(window=window)
        seen_this_batch: set[GameId] = set()
        scanned = self._scanned_in(pool_config.name, window)
        tried: set[str] = set()

        while len(result.games) < wanted and result.fetched_count < pool_config.fetch_limit:
            player = self._next_player(pool_config.name, scanned | tried)
            if player is None:
                break
            tried.add(player)
            remaining = pool_config.fetch_limit - result.fetched_count

            try:
                raw_games = await self._fetch_player(player, window, remaining)
            except RateLimitedError as e:
                logger.warning(
                    f"{self.source.value}/{pool_config.name}: rate limited "
                    f"(retry after {e.retry_after:.0f}s), returning {len(result.games)} games"
                )
                result.rate_limited = True
                break
            except NotFoundError:
                logger.debug(f"{self.source.value}: no games for {player} in window")
                raw_games = []
            except TransientNetworkError as e:
                # Player is retried next cycle; window does not advance past it
                logger.warning(f"{self.source.value}: fetch failed for {player}: {e}")
                result.errors.append(f"{player}: {e}")
                continue

            window_done = self._mark_player_scanned(pool_config.name, planner, window, player)
            result.fetched_count += len(raw_games)

            for raw in raw_games:
                try:
                    game = self._parse(raw, pool_config)
                except MalformedRecordError as e:
                    game_id = _safe_game_id(e.game_id, self.source)
                    if game_id is not None and (game_id in exclude_ids or game_id in seen_this_batch):
                        continue
                    if game_id is not None:
                        seen_this_batch.add(game_id)
                    result.malformed.append(MalformedEntry(game_id=game_id, reason=e.reason))
                    continue

                if game.game_id in exclude_ids:
                    result.excluded_count += 1
                    continue
                if game.game_id in seen_this_batch:
                    continue
                seen_this_batch.add(game.game_id)

                if len(result.games) < wanted:
                    result.games.append(game)

            # Every player has seen this window; the next call starts on a fresh one
            if window_done:
                break

        logger.info(
            f"{self.source.value}/{pool_config.name}: {len(result.games)} fresh games "
            f"({result.fetched_count} fetched, {result.excluded_count} known, "
            f"{len(result.malformed)} malformed)"
        )
        return result


def _safe_game_id(value: Optional[str], source: GameSource) -> Optional[GameId]:
    if not value:
        return None
    try:
        return GameId.parse(value, source=source)
    except ValueError:
        return None
