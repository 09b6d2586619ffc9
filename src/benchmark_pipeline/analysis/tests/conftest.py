"""
Shared fixtures for analysis tests.
"""
import asyncio

import pytest

from benchmark_pipeline.analysis.engine import EngineCrashed, Evaluation
from benchmark_pipeline.analysis.worker import AnalysisWorker, RetryPolicy
from benchmark_pipeline.ingestion.models import GameId, GameRecord, GameSource, Outcome

RUY_LOPEZ = (
    "e4 e5 Nf3 Nc6 Bb5 a6 Ba4 Nf6 O-O Be7 Re1 b5 Bb3 d6 c3 O-O h3 Nb8 d4 Nbd7 "
    "Nbd2 Bb7 Bc2 Re8 Nf1 Bf8 Ng3 g6 a4 c5 d5 c4 Bg5 h6 Be3 Nc5 Qd2 h5 Bg5 Be7"
).split()


class FakeEngine:
    """
    Scripted scoring engine.

    Each evaluate() call consumes one step: "ok" answers, "hang" never
    answers, an exception instance is raised. Once the script runs out
    every call answers.
    """

    name = "fake"

    def __init__(self, script=(), evaluation=None, ping_ok=True, start_error=None):
        self.script = list(script)
        self.evaluation = evaluation or Evaluation(cp=35, mate=None, depth=18)
        self.ping_ok = ping_ok
        self.start_error = start_error
        self.evaluate_calls = 0
        self.started = False
        self.closed = False

    async def start(self):
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def evaluate(self, fen, depth):
        self.evaluate_calls += 1
        step = self.script.pop(0) if self.script else "ok"
        if step == "hang":
            await asyncio.Event().wait()
        if isinstance(step, BaseException):
            raise step
        return self.evaluation

    async def ping(self):
        if not self.ping_ok:
            raise EngineCrashed("no readyok")

    async def close(self):
        self.closed = True


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def fast_policy():
    """Attempts time out after 10ms so hung engines fail quickly."""
    return RetryPolicy(
        base_timeout=0.01,
        per_depth_timeout=0.0,
        max_attempts=3,
        retry_delay=1.0,
        probe_timeout=0.5,
    )


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def make_worker(fast_policy, sleep_recorder):
    """Build a started worker around one FakeEngine; returns (worker, engine)."""
    async def _make(**engine_kwargs):
        engine = FakeEngine(**engine_kwargs)
        worker = AnalysisWorker(lambda: engine, fast_policy, name="test", sleep=sleep_recorder)
        await worker.start()
        return worker, engine
    return _make


@pytest.fixture
def ruy_lopez_game():
    return GameRecord(
        game_id=GameId("AbCd1234"),
        source=GameSource.LICHESS,
        moves=tuple(RUY_LOPEZ),
        result=Outcome.WHITE_WINS,
    )


class EngineFactory:
    """Callable factory that remembers every engine it built."""

    def __init__(self):
        self.created = []

    def __call__(self):
        engine = FakeEngine()
        self.created.append(engine)
        return engine


@pytest.fixture
def engine_factory():
    return EngineFactory()
