"""
Monitoring layer test fixtures.

Tests health checks and dashboard endpoints.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from benchmark_pipeline.config import DEEP_POOL, VOLUME_POOL
from benchmark_pipeline.core.scheduler import PoolState
from benchmark_pipeline.core.ledger import DedupLedger
from benchmark_pipeline.ingestion.client import ProviderGate


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def mock_db():
    """Mock database for unit tests."""
    db = MagicMock()
    db.execute = AsyncMock(return_value=None)
    return db


# =============================================================================
# Pool and Gate Fixtures
# =============================================================================

def build_runner(name="VOLUME", state=PoolState.IDLE, running=True, recent_failures=0, config=VOLUME_POOL):
    runner = MagicMock()
    runner.name = name
    runner.state = state
    runner.halted_reason = "recovery failed" if state == PoolState.HALTED else None
    runner.worker.is_running = running
    runner.recent_failures = recent_failures
    runner.config = config
    return runner


@pytest.fixture
def make_runner():
    return build_runner


@pytest.fixture
def healthy_runners():
    return {
        "VOLUME": build_runner("VOLUME"),
        "DEEP": build_runner("DEEP", config=DEEP_POOL),
    }


class ManualClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def gate(clock):
    return ProviderGate("lichess", 3.0, clock=clock)


@pytest.fixture
def hydrated_ledger():
    ledger = DedupLedger()
    ledger._hydrated = True
    return ledger


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def mock_summary():
    summary = MagicMock()
    summary.to_dict.return_value = {"total": 12, "challenger_accuracy": 0.75}
    return summary


@pytest.fixture
def mock_service(mock_summary, healthy_runners):
    """BenchmarkService stand-in with a scheduler that knows VOLUME and DEEP."""
    service = MagicMock()
    service.health_checker = None
    service.get_status = AsyncMock(return_value={"pools": {}, "ledger": {"accepted": 12}})
    service.get_summary = AsyncMock(return_value=mock_summary)
    service.run_benchmark_batch = AsyncMock(return_value=mock_summary)
    service.reset_pool = AsyncMock(return_value=True)
    service.toggle_auto_deploy = AsyncMock(side_effect=lambda enabled: enabled)

    def runner(pool):
        try:
            return healthy_runners[pool.upper()]
        except KeyError:
            raise ValueError(f"Unknown pool {pool!r}") from None

    service.scheduler.runner = MagicMock(side_effect=runner)
    service.pause_pool = MagicMock(side_effect=lambda pool: runner(pool))
    service.resume_pool = MagicMock(side_effect=lambda pool: runner(pool))
    service.set_pool_config = MagicMock(
        side_effect=lambda pool, changes: runner(pool).config.with_updates(**changes)
    )
    return service


@pytest.fixture
def client(mock_service):
    from fastapi.testclient import TestClient

    from benchmark_pipeline.monitoring.dashboard import create_dashboard_app

    return TestClient(create_dashboard_app(mock_service))
