"""
Lichess game export adapter.

Uses the per-user NDJSON export. Pages inside a window by moving `until`
to one millisecond before the oldest game of the previous page.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from urllib.parse import quote

from .adapters import SourceAdapter
from .client import MalformedRecordError
from .models import GameId, GameRecord, GameSource, Outcome, TimeWindow

if TYPE_CHECKING:
    from benchmark_pipeline.config import PoolConfig

logger = logging.getLogger(__name__)

LICHESS_API = "https://lichess.org"
PAGE_SIZE = 50

# Statuses that end a game without a winner; "outoftime" with no winner
# means the flagging side's opponent lacked mating material
_DRAW_STATUSES = {"draw", "stalemate", "outoftime"}


def parse_ndjson(text: str) -> tuple[list[dict], int]:
    """Split an NDJSON body into objects; returns (objects, unparseable_line_count)."""
    objects: list[dict] = []
    bad_lines = 0
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            value = json.loads(line)
        except json.JSONDecodeError:
            bad_lines += 1
            continue
        if isinstance(value, dict):
            objects.append(value)
        else:
            bad_lines += 1
    return objects, bad_lines


class LichessAdapter(SourceAdapter):
    """
    Adapter for lichess.org.

    Usage:
        gate = ProviderGate("lichess", min_interval=3.0)
        async with LichessAdapter(gate, players=["DrNykterstein"]) as lichess:
            result = await lichess.fetch_batch(VOLUME_POOL, exclude_ids=set())
    """

    source = GameSource.LICHESS

    def __init__(self, *args, base_url: str = LICHESS_API, page_size: int = PAGE_SIZE, **kwargs):
        super().__init__(*args, **kwargs)
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size

    async def _fetch_page(self, player: str, since_ms: int, until_ms: int, max_games: int) -> list[dict]:
        url = f"{self.base_url}/api/games/user/{quote(player)}"
        params = {
            "since": str(since_ms),
            "until": str(until_ms),
            "max": str(max_games),
            "rated": "true",
            "perfType": "bullet,blitz,rapid,classical",
            "moves": "true",
            "pgnInJson": "false",
            "sort": "dateDesc",
        }
        text = await self._request(
            "GET",
            url,
            as_text=True,
            params=params,
            headers={"Accept": "application/x-ndjson"},
        )
        objects, bad_lines = parse_ndjson(text)
        if bad_lines:
            logger.warning(f"lichess: {bad_lines} unparseable NDJSON lines for {player}")
        return objects

    async def _fetch_player(self, player: str, window: TimeWindow, limit: int) -> list[dict]:
        games: list[dict] = []
        until_ms = window.until_ms

        while len(games) < limit and until_ms > window.since_ms:
            page_max = min(self.page_size, limit - len(games))
            page = await self._fetch_page(player, window.since_ms, until_ms, page_max)
            games.extend(page)
            if len(page) < page_max:
                break
            created = [g.get("createdAt") for g in page if isinstance(g.get("createdAt"), int)]
            if not created:
                break
            until_ms = min(created) - 1

        return games

    def _parse(self, raw: dict, pool_config: "PoolConfig") -> GameRecord:
        raw_id = raw.get("id")
        if not raw_id:
            raise MalformedRecordError("missing id")

        try:
            game_id = GameId.parse(raw_id, source=self.source)
        except ValueError as e:
            raise MalformedRecordError(str(e))

        variant = raw.get("variant", "standard")
        if variant != "standard":
            raise MalformedRecordError(f"unsupported variant {variant}", game_id=raw_id)

        status = raw.get("status")
        winner = raw.get("winner")
        if winner == "white":
            result = Outcome.WHITE_WINS
        elif winner == "black":
            result = Outcome.BLACK_WINS
        elif status in _DRAW_STATUSES:
            result = Outcome.DRAW
        else:
            raise MalformedRecordError(f"no usable result (status={status})", game_id=raw_id)

        moves = tuple(str(raw.get("moves", "")).split())
        if len(moves) < pool_config.min_game_plies:
            raise MalformedRecordError(
                f"too short ({len(moves)} plies < {pool_config.min_game_plies})",
                game_id=raw_id,
            )

        players = raw.get("players") or {}
        white = players.get("white") or {}
        black = players.get("black") or {}

        played_ms = raw.get("lastMoveAt") or raw.get("createdAt")
        played_at = _ms_to_datetime(played_ms) if isinstance(played_ms, int) else None

        return GameRecord(
            game_id=game_id,
            source=self.source,
            moves=moves,
            result=result,
            white_rating=white.get("rating"),
            black_rating=black.get("rating"),
            time_control=raw.get("speed"),
            played_at=played_at,
            display_name=f"{_name(white)} vs {_name(black)}",
        )


def _name(side: dict) -> str:
    user = side.get("user") or {}
    return user.get("name") or user.get("id") or "Unknown"


def _ms_to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
