"""
Analysis worker.

Wraps one scoring engine with bounded latency:
    - every attempt runs under base_timeout + per_depth_timeout * depth
    - a timed-out position is retried up to max_attempts in total, waiting
      retry_delay * n before retry n, and the engine is probed before each
      retry; a failed probe raises EngineCrashed
    - exhausting the attempts raises PermanentFailure

consecutive_failures counts positions that ended in failure, not retries.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from benchmark_pipeline.ingestion.client import RateLimitedError, TransientNetworkError

from .engine import EngineCrashed, Evaluation, EvaluationUnavailable, ScoringEngine

logger = logging.getLogger(__name__)


class EngineTimeout(Exception):
    """A single evaluation attempt exceeded its timeout."""
    pass


class PermanentFailure(Exception):
    """A position could not be evaluated; its game should not be retried."""

    def __init__(self, message: str, attempts: int, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.attempts = attempts
        self.cause = cause


@dataclass(frozen=True)
class RetryPolicy:
    """Timeout and retry settings for one pool."""

    base_timeout: float = 3.0
    per_depth_timeout: float = 0.5
    max_attempts: int = 3
    retry_delay: float = 1.0
    probe_timeout: float = 5.0

    @classmethod
    def from_pool(cls, pool_config: Any) -> "RetryPolicy":
        return cls(
            base_timeout=pool_config.base_timeout,
            per_depth_timeout=pool_config.per_depth_timeout,
            max_attempts=pool_config.max_attempts,
            retry_delay=pool_config.retry_delay,
        )

    def timeout_for(self, depth: int) -> float:
        return self.base_timeout + self.per_depth_timeout * depth

    def delay_before(self, attempt: int) -> float:
        """Delay before the given attempt number (attempt 1 has none)."""
        return self.retry_delay * (attempt - 1)


class AnalysisWorker:
    """
    One engine plus its retry, probe and restart logic.

    Usage:
        worker = AnalysisWorker(lambda: UciEngine("stockfish"), RetryPolicy.from_pool(VOLUME_POOL))
        await worker.start()
        evaluation = await worker.evaluate(sample.fen, depth=18)
        await worker.stop()
    """

    def __init__(
        self,
        engine_factory: Callable[[], ScoringEngine],
        policy: Optional[RetryPolicy] = None,
        name: str = "worker",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._engine_factory = engine_factory
        self.policy = policy or RetryPolicy()
        self.name = name
        self._sleep = sleep
        self._engine: Optional[ScoringEngine] = None

        self.consecutive_failures = 0
        self.total_evaluations = 0
        self.total_failures = 0
        self.restarts = 0
        self.last_success_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._engine is not None

    async def start(self) -> None:
        """Create and start the engine. Raises EngineCrashed if it will not come up."""
        if self._engine is not None:
            return
        engine = self._engine_factory()
        try:
            await engine.start()
        except EngineCrashed:
            raise
        except Exception as e:
            raise EngineCrashed(f"{self.name}: engine failed to start: {e}") from e
        self._engine = engine
        logger.info(f"{self.name}: engine {engine.name} ready")

    async def stop(self) -> None:
        engine, self._engine = self._engine, None
        if engine is None:
            return
        try:
            await engine.close()
        except Exception as e:
            logger.warning(f"{self.name}: error closing engine: {e}")

    async def restart(self) -> None:
        """Tear down and recreate the engine, then reset failure counters."""
        logger.warning(f"{self.name}: restarting engine")
        await self.stop()
        await self.start()
        self.restarts += 1
        self.consecutive_failures = 0

    async def probe(self) -> bool:
        """Liveness check with its own timeout. Never raises."""
        if self._engine is None:
            return False
        try:
            await asyncio.wait_for(self._engine.ping(), timeout=self.policy.probe_timeout)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"{self.name}: liveness probe failed: {e}")
            return False

    def _record_failure(self, reason: str) -> None:
        self.consecutive_failures += 1
        self.total_failures += 1
        self.last_error = reason

    async def evaluate(self, fen: str, depth: int) -> Evaluation:
        """
        Evaluate a position.

        Raises:
            EngineCrashed: engine died or failed its liveness probe
            PermanentFailure: attempts exhausted, or no evaluation exists
        """
        if self._engine is None:
            self._record_failure("engine not running")
            raise EngineCrashed(f"{self.name}: engine not running")

        timeout = self.policy.timeout_for(depth)
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.policy.max_attempts + 1):
            if attempt > 1:
                delay = self.policy.delay_before(attempt)
                logger.warning(
                    f"{self.name}: retry {attempt}/{self.policy.max_attempts} "
                    f"in {delay:.1f}s ({last_error})"
                )
                await self._sleep(delay)
                if not await self.probe():
                    self._record_failure("liveness probe failed")
                    raise EngineCrashed(f"{self.name}: engine failed liveness probe")

            started = time.monotonic()
            try:
                evaluation = await asyncio.wait_for(
                    self._engine.evaluate(fen, depth), timeout=timeout
                )
            except asyncio.TimeoutError:
                last_error = EngineTimeout(f"no answer within {timeout:.1f}s at depth {depth}")
                continue
            except (TransientNetworkError, RateLimitedError) as e:
                last_error = e
                continue
            except EvaluationUnavailable as e:
                # Engine is healthy; this position just has no answer
                raise PermanentFailure(str(e), attempts=attempt, cause=e) from e
            except EngineCrashed as e:
                self._record_failure(str(e))
                raise

            self.consecutive_failures = 0
            self.total_evaluations += 1
            self.last_success_at = datetime.now(timezone.utc)
            logger.debug(
                f"{self.name}: evaluated at depth {evaluation.depth} "
                f"in {time.monotonic() - started:.2f}s"
            )
            return evaluation

        self._record_failure(str(last_error))
        raise PermanentFailure(
            f"{self.name}: gave up after {self.policy.max_attempts} attempts: {last_error}",
            attempts=self.policy.max_attempts,
            cause=last_error,
        ) from last_error

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "running": self.is_running,
            "engine": self._engine.name if self._engine else None,
            "consecutive_failures": self.consecutive_failures,
            "total_evaluations": self.total_evaluations,
            "total_failures": self.total_failures,
            "restarts": self.restarts,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_error": self.last_error,
        }
