"""
Shared fixtures for ingestion tests.
"""
from datetime import datetime, timezone
from typing import Any

import pytest

from benchmark_pipeline.config import VOLUME_POOL
from benchmark_pipeline.ingestion.adapters import SourceAdapter
from benchmark_pipeline.ingestion.client import MalformedRecordError, ProviderGate
from benchmark_pipeline.ingestion.models import GameId, GameRecord, GameSource, Outcome

# Ruy Lopez, Breyer variation: 40 legal plies
RUY_LOPEZ = (
    "e4 e5 Nf3 Nc6 Bb5 a6 Ba4 Nf6 O-O Be7 Re1 b5 Bb3 d6 c3 O-O h3 Nb8 d4 Nbd7 "
    "Nbd2 Bb7 Bc2 Re8 Nf1 Bf8 Ng3 g6 a4 c5 d5 c4 Bg5 h6 Be3 Nc5 Qd2 h5 Bg5 Be7"
).split()


class FakeClock:
    """Monotonic clock whose sleep() just moves time forward."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeAdapter(SourceAdapter):
    """Adapter serving canned raw dicts per player."""

    source = GameSource.LICHESS

    def __init__(self, gate, players, games_by_player=None, errors=None):
        super().__init__(gate, players=players)
        self.games_by_player = games_by_player or {}
        self.errors = errors or {}
        self.calls: list[tuple[str, Any, int]] = []

    async def _fetch_player(self, player, window, limit):
        self.calls.append((player, window, limit))
        error = self.errors.get(player)
        if error is not None:
            raise error
        return list(self.games_by_player.get(player, []))[:limit]

    def _parse(self, raw, pool_config):
        if raw.get("bad"):
            raise MalformedRecordError("bad record", game_id=raw.get("id"))
        return GameRecord(
            game_id=GameId.parse(raw["id"], source=self.source),
            source=self.source,
            moves=tuple(RUY_LOPEZ),
            result=Outcome.WHITE_WINS,
        )


def raw_games(*ids: str) -> list[dict]:
    return [{"id": game_id} for game_id in ids]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def gate(fake_clock):
    return ProviderGate("test", min_interval=3.0, clock=fake_clock, sleep=fake_clock.sleep)


@pytest.fixture
def small_pool():
    """VOLUME preset with a 3-game batch and a 24-game fetch cap."""
    return VOLUME_POOL.with_updates(batch_size=3, fetch_multiplier=8)


@pytest.fixture
def ruy_lopez():
    return list(RUY_LOPEZ)


@pytest.fixture
def fixed_now():
    return datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_adapter(gate):
    def _make(players=("p1",), games_by_player=None, errors=None):
        return FakeAdapter(gate, list(players), games_by_player=games_by_player, errors=errors)
    return _make


@pytest.fixture
def make_raw_games():
    return raw_games


@pytest.fixture
def lichess_raw(ruy_lopez):
    return {
        "id": "AbCd1234",
        "rated": True,
        "variant": "standard",
        "speed": "blitz",
        "status": "mate",
        "winner": "white",
        "createdAt": 1_700_000_000_000,
        "lastMoveAt": 1_700_000_300_000,
        "moves": " ".join(ruy_lopez),
        "players": {
            "white": {"user": {"name": "Alice"}, "rating": 2710},
            "black": {"user": {"name": "Bob"}, "rating": 2650},
        },
    }


@pytest.fixture
def ruy_lopez_pgn(ruy_lopez):
    numbered = []
    for i in range(0, len(ruy_lopez), 2):
        numbered.append(f"{i // 2 + 1}. {' '.join(ruy_lopez[i:i + 2])}")
    return (
        '[Event "Live Chess"]\n'
        '[White "alice"]\n'
        '[Black "bob"]\n'
        '[Result "1/2-1/2"]\n'
        "\n"
        f"{' '.join(numbered)} 1/2-1/2\n"
    )


@pytest.fixture
def chesscom_raw(ruy_lopez_pgn):
    return {
        "url": "https://www.chess.com/game/live/123456789",
        "rules": "chess",
        "time_class": "rapid",
        "end_time": 1_700_000_300,
        "pgn": ruy_lopez_pgn,
        "white": {"username": "alice", "rating": 2700, "result": "agreed"},
        "black": {"username": "bob", "rating": 2690, "result": "agreed"},
    }
