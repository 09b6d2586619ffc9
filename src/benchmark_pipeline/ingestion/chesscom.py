"""
Chess.com monthly archive adapter.

Archives are whole months, so this adapter plans windows with a
MonthlyWindowPlanner and filters each archive down to the window.
Moves are recovered from the PGN with python-chess.
"""

from __future__ import annotations

import io
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional
from urllib.parse import quote

import chess.pgn

from .adapters import SourceAdapter
from .client import MalformedRecordError
from .models import GameId, GameRecord, GameSource, Outcome, TimeWindow
from .windows import MonthlyWindowPlanner, WindowPlanner

if TYPE_CHECKING:
    from benchmark_pipeline.config import PoolConfig

logger = logging.getLogger(__name__)

CHESSCOM_API = "https://api.chess.com/pub"

_DRAW_RESULTS = {
    "agreed",
    "repetition",
    "stalemate",
    "insufficient",
    "50move",
    "timevsinsufficient",
}


def pgn_to_san(pgn: str) -> tuple[str, ...]:
    """Mainline SAN moves of a PGN string. Raises ValueError on illegal or empty games."""
    game = chess.pgn.read_game(io.StringIO(pgn))
    if game is None:
        raise ValueError("no game in PGN")
    if game.errors:
        raise ValueError(f"PGN errors: {game.errors[0]}")

    board = game.board()
    moves: list[str] = []
    for move in game.mainline_moves():
        moves.append(board.san(move))
        board.push(move)
    return tuple(moves)


class ChessComAdapter(SourceAdapter):
    """
    Adapter for chess.com published archives.

    Usage:
        gate = ProviderGate("chesscom", min_interval=1.0)
        async with ChessComAdapter(gate, players=["Hikaru"]) as chesscom:
            result = await chesscom.fetch_batch(VOLUME_POOL, exclude_ids=known)
    """

    source = GameSource.CHESSCOM

    def __init__(self, *args, base_url: str = CHESSCOM_API, **kwargs):
        super().__init__(*args, **kwargs)
        self.base_url = base_url.rstrip("/")
        # Closed months never change, so one download per (player, month)
        self._archive_cache: dict[tuple[str, int, int], list[dict]] = {}

    def _make_planner(self, pool_config: "PoolConfig") -> WindowPlanner:
        return MonthlyWindowPlanner(
            max_lookback=timedelta(days=pool_config.max_lookback_days),
            anchor_offset=timedelta(days=pool_config.window_offset_days),
        )

    async def _fetch_archive(self, player: str, year: int, month: int) -> list[dict]:
        key = (player.lower(), year, month)
        if key in self._archive_cache:
            return self._archive_cache[key]

        url = f"{self.base_url}/player/{quote(player.lower())}/games/{year}/{month:02d}"
        data = await self._request("GET", url)
        games = data.get("games", []) if isinstance(data, dict) else []

        # The running month keeps growing; only closed months are cached
        now = datetime.now(timezone.utc)
        if (year, month) != (now.year, now.month):
            if len(self._archive_cache) > 64:
                self._archive_cache.clear()
            self._archive_cache[key] = games
        return games

    async def _fetch_player(self, player: str, window: TimeWindow, limit: int) -> list[dict]:
        archive = await self._fetch_archive(player, window.since.year, window.since.month)
        in_window = [
            g for g in archive
            if isinstance(g.get("end_time"), (int, float))
            and window.contains(datetime.fromtimestamp(g["end_time"], tz=timezone.utc))
        ]
        in_window.sort(key=lambda g: g["end_time"], reverse=True)
        return in_window[:limit]

    def _parse(self, raw: dict, pool_config: "PoolConfig") -> GameRecord:
        url = raw.get("url")
        if not url:
            raise MalformedRecordError("missing url")

        try:
            game_id = GameId.parse(url, source=self.source)
        except ValueError as e:
            raise MalformedRecordError(str(e))
        raw_id = game_id.raw

        rules = raw.get("rules", "chess")
        if rules != "chess":
            raise MalformedRecordError(f"unsupported rules {rules}", game_id=raw_id)

        white = raw.get("white") or {}
        black = raw.get("black") or {}
        result = _outcome(white.get("result"), black.get("result"))
        if result is None:
            raise MalformedRecordError(
                f"no usable result ({white.get('result')}/{black.get('result')})",
                game_id=raw_id,
            )

        pgn = raw.get("pgn")
        if not pgn:
            raise MalformedRecordError("missing pgn", game_id=raw_id)
        try:
            moves = pgn_to_san(pgn)
        except ValueError as e:
            raise MalformedRecordError(f"unreadable pgn: {e}", game_id=raw_id)

        if len(moves) < pool_config.min_game_plies:
            raise MalformedRecordError(
                f"too short ({len(moves)} plies < {pool_config.min_game_plies})",
                game_id=raw_id,
            )

        end_time = raw.get("end_time")
        played_at = (
            datetime.fromtimestamp(end_time, tz=timezone.utc)
            if isinstance(end_time, (int, float)) else None
        )

        return GameRecord(
            game_id=game_id,
            source=self.source,
            moves=moves,
            result=result,
            white_rating=white.get("rating"),
            black_rating=black.get("rating"),
            time_control=raw.get("time_class"),
            played_at=played_at,
            display_name=f"{white.get('username', 'Unknown')} vs {black.get('username', 'Unknown')}",
        )


def _outcome(white_result: Optional[str], black_result: Optional[str]) -> Optional[Outcome]:
    if white_result == "win":
        return Outcome.WHITE_WINS
    if black_result == "win":
        return Outcome.BLACK_WINS
    if white_result in _DRAW_RESULTS and black_result in _DRAW_RESULTS:
        return Outcome.DRAW
    return None
