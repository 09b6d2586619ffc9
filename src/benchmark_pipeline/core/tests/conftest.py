"""
Shared fixtures for core tests.

The pipeline context is assembled from in-memory fakes: repositories that
keep rows in dicts, adapters that serve scripted games, and engines that
follow a per-engine script.
"""
import asyncio
from collections import Counter
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from benchmark_pipeline.analysis.engine import EngineCrashed, Evaluation
from benchmark_pipeline.analysis.worker import AnalysisWorker, RetryPolicy
from benchmark_pipeline.config import PipelineConfig, VOLUME_POOL
from benchmark_pipeline.core.auto_tuner import AutoTuner
from benchmark_pipeline.core.context import PipelineContext
from benchmark_pipeline.core.ledger import DedupLedger
from benchmark_pipeline.core.scheduler import PoolRunner
from benchmark_pipeline.evaluation.predictors import ChallengerPredictor
from benchmark_pipeline.ingestion.adapters import FetchResult
from benchmark_pipeline.ingestion.models import GameId, GameRecord, GameSource, Outcome
from benchmark_pipeline.storage.models import PredictionAttempt

RUY_LOPEZ = tuple(
    "e4 e5 Nf3 Nc6 Bb5 a6 Ba4 Nf6 O-O Be7 Re1 b5 Bb3 d6 c3 O-O h3 Nb8 d4 Nbd7 "
    "Nbd2 Bb7 Bc2 Re8 Nf1 Bf8 Ng3 g6 a4 c5 d5 c4 Bg5 h6 Be3 Nc5 Qd2 h5 Bg5 Be7".split()
)


# =============================================================================
# Fake repositories
# =============================================================================


class FakeLedgerRepo:
    def __init__(self, entries=()):
        self.rows = {entry.game_id: entry for entry in entries}
        self.inserts = []

    async def insert(self, entry, conn=None):
        self.inserts.append(entry)
        if entry.game_id in self.rows:
            return False
        self.rows[entry.game_id] = entry
        return True

    async def iter_all(self, page_size=1000):
        for entry in list(self.rows.values()):
            yield entry


class FakeAttemptRepo:
    """
    Attempts keyed by game id.

    With dedupe_positions set, a second attempt for an already-scored
    position hash is dropped, like the unique index in PostgreSQL.
    """

    def __init__(self, ledger_repo, dedupe_positions=False):
        self.ledger_repo = ledger_repo
        self.dedupe_positions = dedupe_positions
        self.attempts = {}
        self.fail_with = None

    async def record_outcome(self, attempt, entry):
        if self.fail_with is not None:
            raise self.fail_with
        await self.ledger_repo.insert(entry)
        if attempt.game_id in self.attempts:
            return False
        if self.dedupe_positions and any(
            a.position_hash == attempt.position_hash for a in self.attempts.values()
        ):
            return False
        self.attempts[attempt.game_id] = attempt
        return True

    async def get_all(self, pool_name=None, page_size=1000):
        return [a for a in self.attempts.values() if pool_name is None or a.pool_name == pool_name]

    async def agreement_counts(self, pool_name=None):
        cells = Counter(
            (a.archetype, a.challenger_correct, a.baseline_correct)
            for a in self.attempts.values()
            if pool_name is None or a.pool_name == pool_name
        )
        return [(*key, n) for key, n in cells.items()]


class FakeEvolutionRepo:
    def __init__(self, state=None):
        self.state = state
        self.upserts = []
        self.promotions = []

    async def get(self, state_id="default"):
        return self.state

    async def upsert(self, state, conn=None):
        self.upserts.append(state)
        self.state = state

    async def record_promotion(self, state, snapshot):
        self.state = state
        if self.promotions:
            return False
        self.promotions.append(snapshot)
        return True

    async def get_promotion(self, state_id="default"):
        return self.promotions[0] if self.promotions else None


class FakeBatchRepo:
    def __init__(self):
        self.saved = []

    async def save(self, run):
        self.saved.append(run.model_copy())

    @property
    def last(self):
        return self.saved[-1] if self.saved else None


# =============================================================================
# Fake providers and engines
# =============================================================================


class FakeProvider:
    """Serves a fixed list of games, honouring the exclusion set like a real adapter."""

    def __init__(self, games=(), malformed=(), hang=False):
        self.games = list(games)
        self.malformed = list(malformed)
        self.hang = hang
        self.calls = 0

    async def fetch_batch(self, pool_config, exclude_ids, limit=None):
        self.calls += 1
        if self.hang:
            await asyncio.Event().wait()
        wanted = limit if limit is not None else pool_config.batch_size
        fresh = [g for g in self.games if g.game_id not in exclude_ids]
        return FetchResult(
            games=fresh[:wanted],
            malformed=list(self.malformed),
            fetched_count=len(self.games),
            excluded_count=len(self.games) - len(fresh),
        )


class FakeEngine:
    name = "fake"

    def __init__(self, script=(), start_error=None, cp=80):
        self.script = list(script)
        self.start_error = start_error
        self.cp = cp
        self.ping_error = None
        self.closed = False

    async def start(self):
        if self.start_error is not None:
            raise self.start_error

    async def evaluate(self, fen, depth):
        step = self.script.pop(0) if self.script else "ok"
        if step == "hang":
            await asyncio.Event().wait()
        if isinstance(step, BaseException):
            raise step
        return Evaluation(cp=self.cp, mate=None, depth=depth)

    async def ping(self):
        if self.ping_error is not None:
            raise self.ping_error

    async def close(self):
        self.closed = True


class EngineFactory:
    """
    Builds FakeEngines. scripts[i] drives the i-th engine built; once
    broken is set every new engine fails to start.
    """

    def __init__(self, scripts=()):
        self.scripts = list(scripts)
        self.broken = False
        self.created = []

    def __call__(self):
        script = self.scripts.pop(0) if self.scripts else ()
        start_error = EngineCrashed("binary missing") if self.broken else None
        engine = FakeEngine(script=script, start_error=start_error)
        self.created.append(engine)
        return engine


# =============================================================================
# Builders
# =============================================================================


def make_game(raw_id, result=Outcome.WHITE_WINS, moves=RUY_LOPEZ):
    return GameRecord(
        game_id=GameId(raw_id),
        source=GameSource.LICHESS,
        moves=tuple(moves),
        result=result,
    )


def build_attempt(index, challenger_correct, baseline_correct, archetype="balanced"):
    return PredictionAttempt(
        game_id=f"g{index}",
        position_hash=f"{index:032x}",
        fen="rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1",
        move_index=20,
        challenger_prediction="white_wins",
        challenger_confidence=60.0,
        challenger_correct=challenger_correct,
        archetype=archetype,
        baseline_prediction="draw",
        baseline_confidence=55.0,
        baseline_correct=baseline_correct,
        baseline_depth=18,
        actual_result="white_wins",
        pool_name="VOLUME",
        data_source="lichess",
    )


@pytest.fixture
def make_attempts():
    """Attempts from the 2x2 agreement cells for one archetype."""
    def _make(both_correct=0, challenger_only=0, baseline_only=0, both_wrong=0,
              archetype="balanced", start=0):
        attempts = []
        cells = [
            (both_correct, True, True),
            (challenger_only, True, False),
            (baseline_only, False, True),
            (both_wrong, False, False),
        ]
        for count, c, b in cells:
            for _ in range(count):
                attempts.append(build_attempt(start + len(attempts), c, b, archetype))
        return attempts
    return _make


@pytest.fixture
def games():
    return [make_game(f"g{i}") for i in range(1, 4)]


@pytest.fixture
def test_pool():
    return VOLUME_POOL.with_updates(
        batch_size=3,
        delay_between_games=0.0,
        base_timeout=0.05,
        per_depth_timeout=0.0,
        retry_delay=0.0,
        recovery_delay=0.0,
        failure_threshold=2,
        max_recovery_attempts=2,
        fetch_timeout=5.0,
        interval_seconds=3600.0,
        providers=("lichess",),
    )


@pytest.fixture
def engine_factory():
    return EngineFactory()


@pytest.fixture
def provider(games):
    return FakeProvider(games)


@pytest.fixture
def evolution_repo():
    return FakeEvolutionRepo()


@pytest.fixture
def context(test_pool, provider, engine_factory, evolution_repo):
    ledger_repo = FakeLedgerRepo()
    config = PipelineConfig(database_url="postgresql://fake", volume_pool=test_pool)
    return PipelineContext(
        config=config,
        db=MagicMock(),
        ledger=DedupLedger(),
        ledger_repo=ledger_repo,
        attempt_repo=FakeAttemptRepo(ledger_repo),
        evolution_repo=evolution_repo,
        batch_repo=FakeBatchRepo(),
        tuner=AutoTuner(evolution_repo),
        adapters={"lichess": provider},
        engine_factory=engine_factory,
        challenger=ChallengerPredictor(),
    )


@pytest_asyncio.fixture
async def opened_context(context):
    await context.ledger.hydrate(context.ledger_repo)
    await context.tuner.load()
    return context


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def make_runner(test_pool, engine_factory):
    """Started PoolRunner over the opened context with an instant sleep."""
    async def _make(context, config=None):
        config = config or test_pool
        sleep = SleepRecorder()
        worker = AnalysisWorker(engine_factory, RetryPolicy.from_pool(config), name="test", sleep=sleep)
        runner = PoolRunner(config, context, worker=worker, sleep=sleep)
        await runner.start()
        return runner
    return _make


@pytest.fixture
def game_factory():
    return make_game


@pytest.fixture
def provider_factory():
    return FakeProvider


@pytest.fixture
def opening_moves():
    return RUY_LOPEZ
