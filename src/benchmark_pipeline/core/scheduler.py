"""
Dual-pool batch scheduler.

Each pool runs its own strictly sequential cycle in its own task:

    IDLE -> FETCHING -> PROCESSING -> IDLE
                                   -> RECOVERING -> IDLE | HALTED

plus PAUSED (set externally, honoured before the next fetch) and HALTED
(recovery failed or persistence was exhausted; cleared only by reset()).

Fetching happens only when the local queue is empty, and the queue index
moves past an item before any skip decision is made about it. Pools run
concurrently and share the ledger, gates and tuner through the context.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

from benchmark_pipeline.analysis import (
    AnalysisWorker,
    EngineCrashed,
    Evaluation,
    EvaluationUnavailable,
    PermanentFailure,
    RetryPolicy,
    extract_sample,
)
from benchmark_pipeline.analysis.sampling import PositionSample
from benchmark_pipeline.config import PoolConfig
from benchmark_pipeline.evaluation import baseline_prediction, compare, summarize_counts
from benchmark_pipeline.evaluation.summary import BenchmarkSummary
from benchmark_pipeline.ingestion import FetchResult, GameId, GameRecord, MalformedRecordError
from benchmark_pipeline.storage import (
    BatchRun,
    BatchRunStatus,
    DedupLedgerEntry,
    LedgerStatus,
    PersistenceFailure,
    PredictionAttempt,
)

from .auto_tuner import TuningResult
from .context import PipelineContext

logger = logging.getLogger(__name__)


class PoolState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PROCESSING = "processing"
    RECOVERING = "recovering"
    PAUSED = "paused"
    HALTED = "halted"


class PoolHalted(Exception):
    """The pool is halted and will not run until reset()."""
    pass


@dataclass
class BatchOutcome:
    """What one batch did, plus the aggregate it fed to the tuner."""

    run: BatchRun
    summary: Optional[BenchmarkSummary] = None
    tuning: Optional[TuningResult] = None
    duplicate_positions: int = 0

    def to_dict(self) -> dict:
        return {
            "run": self.run.model_dump(mode="json"),
            "summary": self.summary.to_dict() if self.summary else None,
            "tuning": self.tuning.to_dict() if self.tuning else None,
            "duplicate_positions": self.duplicate_positions,
        }


class PoolRunner:
    """
    One pool: its config, its worker, its queue and its state machine.

    Usage:
        runner = PoolRunner(VOLUME_POOL, context)
        await runner.start()
        outcome = await runner.run_batch()
        await runner.stop()
    """

    def __init__(
        self,
        config: PoolConfig,
        context: PipelineContext,
        worker: Optional[AnalysisWorker] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.context = context
        self.worker = worker or AnalysisWorker(
            context.engine_factory,
            RetryPolicy.from_pool(config),
            name=f"{config.name.lower()}-worker",
        )
        self._clock = clock
        self._sleep = sleep

        self.state = PoolState.IDLE
        self.halted_reason: Optional[str] = None
        self._paused = False
        self._batch_lock = asyncio.Lock()

        self._queue: list[GameRecord] = []
        self._queue_index = 0
        self._failure_times: deque[float] = deque()
        self._needs_recovery = False
        self._provider_cursor = 0

        self.batches_run = 0
        self.recoveries = 0
        self.last_run: Optional[BatchRun] = None
        self.last_batch_at: Optional[datetime] = None

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def is_busy(self) -> bool:
        return self._batch_lock.locked()

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def queue_remaining(self) -> int:
        return len(self._queue) - self._queue_index

    # =========================================================================
    # Lifecycle and admin controls
    # =========================================================================

    async def start(self) -> None:
        try:
            await self.worker.start()
        except EngineCrashed as e:
            logger.error(f"{self.name}: engine failed to start: {e}")
            await self.recover(str(e))

    async def stop(self) -> None:
        await self.worker.stop()

    def pause(self) -> None:
        """Stop before the next fetch. An in-flight analysis is left to finish."""
        self._paused = True
        if self.state == PoolState.IDLE:
            self.state = PoolState.PAUSED
        logger.info(f"{self.name}: paused")

    def resume(self) -> None:
        self._paused = False
        if self.state == PoolState.PAUSED:
            self.state = PoolState.IDLE
        logger.info(f"{self.name}: resumed")

    def halt(self, reason: str) -> None:
        self.state = PoolState.HALTED
        self.halted_reason = reason
        logger.error(f"{self.name}: HALTED: {reason}")

    async def reset(self) -> bool:
        """External restart of a halted pool."""
        async with self._batch_lock:
            if self.state != PoolState.HALTED:
                return True
            self.halted_reason = None
            logger.info(f"{self.name}: reset requested")
            return await self.recover("manual reset")

    def update_config(self, config: PoolConfig) -> None:
        """Swap the pool config; takes effect from the next batch."""
        if config.name != self.name:
            raise ValueError(f"Config for {config.name} cannot replace {self.name}")
        self.config = config
        self.worker.policy = RetryPolicy.from_pool(config)
        logger.info(f"{self.name}: config updated")

    # =========================================================================
    # Failure tracking and recovery
    # =========================================================================

    def _record_failure(self) -> None:
        now = self._clock()
        self._failure_times.append(now)
        cutoff = now - self.config.failure_window_seconds
        while self._failure_times and self._failure_times[0] < cutoff:
            self._failure_times.popleft()
        if len(self._failure_times) >= self.config.failure_threshold:
            self._needs_recovery = True

    @property
    def recent_failures(self) -> int:
        cutoff = self._clock() - self.config.failure_window_seconds
        return sum(1 for t in self._failure_times if t >= cutoff)

    async def recover(self, reason: str) -> bool:
        """
        Restart the worker. Halts the pool if every attempt fails.

        The caller must have drained in-flight work first.
        """
        self.state = PoolState.RECOVERING
        logger.warning(f"{self.name}: recovering ({reason})")

        for attempt in range(1, self.config.max_recovery_attempts + 1):
            await self._sleep(self.config.recovery_delay)
            try:
                await self.worker.restart()
            except Exception as e:
                logger.error(
                    f"{self.name}: recovery attempt {attempt}/{self.config.max_recovery_attempts} failed: {e}"
                )
                continue
            if await self.worker.probe():
                self._failure_times.clear()
                self._needs_recovery = False
                self.recoveries += 1
                self.state = PoolState.PAUSED if self._paused else PoolState.IDLE
                logger.info(f"{self.name}: recovered after {attempt} attempt(s)")
                return True
            logger.error(f"{self.name}: engine restarted but failed its probe")

        self.halt(f"recovery failed after {self.config.max_recovery_attempts} attempts ({reason})")
        return False

    async def check_health(self) -> bool:
        """
        Probe the worker between batches and recover proactively.

        Skipped while a batch is running; returns True if the pool is usable.
        """
        if self.state == PoolState.HALTED:
            return False
        if self.is_busy:
            return True
        async with self._batch_lock:
            if self.worker.is_running and await self.worker.probe() and not self._needs_recovery:
                return True
            return await self.recover("health check failed")

    # =========================================================================
    # Batch cycle
    # =========================================================================

    async def run_batch(self, ignore_pause: bool = False) -> BatchOutcome:
        """
        Run one fetch/process cycle.

        Raises PoolHalted if the pool is halted or halts during the batch.
        """
        async with self._batch_lock:
            if self.state == PoolState.HALTED:
                raise PoolHalted(f"{self.name} is halted: {self.halted_reason}")

            run = BatchRun(run_id=uuid.uuid4().hex, pool_name=self.name)
            if self._paused and not ignore_pause:
                self.state = PoolState.PAUSED
                run.status = BatchRunStatus.YIELDED
                run.completed_at = datetime.now(timezone.utc)
                logger.info(f"{self.name}: paused, yielding batch")
                return BatchOutcome(run=run)

            try:
                return await self._run_batch(run)
            except PersistenceFailure as e:
                run.status = BatchRunStatus.FAILED
                run.error = str(e)
                run.completed_at = datetime.now(timezone.utc)
                self.last_run = run
                self.halt(f"persistence failure: {e}")
                raise PoolHalted(str(e)) from e
            finally:
                self.batches_run += 1
                self.last_batch_at = datetime.now(timezone.utc)

    async def _run_batch(self, run: BatchRun) -> BatchOutcome:
        if self._needs_recovery:
            if not await self.recover("failure threshold reached"):
                raise PoolHalted(self.halted_reason or "recovery failed")

        await self.context.batch_repo.save(run)

        if self.queue_remaining <= 0:
            await self._fetch(run)

        self.state = PoolState.PROCESSING
        duplicate_positions, crashed = await self._process_queue(run)

        if crashed or self._needs_recovery:
            # Queue processing has stopped, nothing is in flight
            if not await self.recover(crashed or "failure threshold reached"):
                run.status = BatchRunStatus.FAILED
                run.error = self.halted_reason
                run.completed_at = datetime.now(timezone.utc)
                await self.context.batch_repo.save(run)
                self.last_run = run
                raise PoolHalted(self.halted_reason or "recovery failed")
        else:
            self.state = PoolState.PAUSED if self._paused else PoolState.IDLE

        run.status = BatchRunStatus.COMPLETED
        run.completed_at = datetime.now(timezone.utc)
        await self.context.batch_repo.save(run)
        self.last_run = run

        outcome = BatchOutcome(run=run, duplicate_positions=duplicate_positions)
        if run.accepted_count > 0:
            cells = await self.context.attempt_repo.agreement_counts()
            outcome.summary = summarize_counts(cells)
            outcome.tuning = await self.context.tuner.evaluate(outcome.summary)

        logger.info(
            f"{self.name}: batch {run.run_id[:8]} done: {run.accepted_count} accepted, "
            f"{run.rejected_count} duplicates, {run.failed_count} failed, "
            f"{run.malformed_count} malformed"
        )
        return outcome

    # =========================================================================
    # Fetch phase
    # =========================================================================

    def _provider_order(self) -> list[str]:
        providers = [p for p in self.config.providers if p in self.context.adapters]
        if not providers:
            return []
        start = self._provider_cursor % len(providers)
        self._provider_cursor += 1
        return providers[start:] + providers[:start]

    async def _fetch(self, run: BatchRun) -> None:
        """Fill the queue with fresh games. Only called with an empty queue."""
        self.state = PoolState.FETCHING
        self._queue = []
        self._queue_index = 0
        collected = FetchResult()

        try:
            await asyncio.wait_for(
                self._fetch_into(collected), timeout=self.config.fetch_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"{self.name}: fetch timed out after {self.config.fetch_timeout:.0f}s "
                f"with {len(collected.games)} games"
            )

        run.fetched_count = collected.fetched_count
        if collected.window is not None:
            run.window_start = collected.window.since
            run.window_end = collected.window.until

        for entry in collected.malformed:
            run.malformed_count += 1
            if entry.game_id is not None and await self.context.ledger.claim(entry.game_id):
                try:
                    await self._persist_failure(entry.game_id, None, f"malformed: {entry.reason}")
                except PersistenceFailure:
                    await self.context.ledger.release(entry.game_id)
                    raise

        self._queue = collected.games[: self.config.batch_size]

    async def _fetch_into(self, collected: FetchResult) -> None:
        exclude = self.context.ledger.exclusion_set()
        for provider in self._provider_order():
            wanted = self.config.batch_size - len(collected.games)
            if wanted <= 0:
                return
            adapter = self.context.adapters[provider]
            try:
                result = await adapter.fetch_batch(self.config, exclude, limit=wanted)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{self.name}: {provider} fetch failed: {e}")
                continue
            if collected.window is None:
                collected.window = result.window
            collected.merge(result)

    # =========================================================================
    # Process phase
    # =========================================================================

    async def _process_queue(self, run: BatchRun) -> tuple[int, Optional[str]]:
        """
        Work through the queue.

        Returns (duplicate position count, crash reason or None). Stops early
        on an engine crash or when the failure threshold is reached.
        """
        duplicates = 0
        while self._queue_index < len(self._queue):
            game = self._queue[self._queue_index]
            self._queue_index += 1

            if not await self.context.ledger.claim(game.game_id):
                run.rejected_count += 1
                continue

            try:
                status = await self._process_game(game, run)
            except EngineCrashed as e:
                await self.context.ledger.release(game.game_id)
                self._record_failure()
                logger.error(f"{self.name}: engine crashed on {game.game_id}: {e}")
                return duplicates, str(e)
            except PersistenceFailure:
                await self.context.ledger.release(game.game_id)
                raise
            except asyncio.CancelledError:
                await self.context.ledger.release(game.game_id)
                raise
            except Exception as e:
                await self.context.ledger.release(game.game_id)
                logger.exception(f"{self.name}: unexpected error on {game.game_id}: {e}")
                continue

            if status == "duplicate_position":
                duplicates += 1
            if self._needs_recovery:
                return duplicates, None

            if self._queue_index < len(self._queue) and self.config.delay_between_games > 0:
                await self._sleep(self.config.delay_between_games)

        return duplicates, None

    async def _process_game(self, game: GameRecord, run: BatchRun) -> str:
        """Score one claimed game and commit the result. Returns a short status."""
        try:
            sample = extract_sample(game, self.config.min_move_index, self.config.max_move_index)
        except MalformedRecordError as e:
            run.malformed_count += 1
            await self._persist_failure(game.game_id, game.source.value, f"malformed: {e.reason}")
            return "malformed"

        started = time.monotonic()
        try:
            evaluation = await self.worker.evaluate(sample.fen, self.config.depth)
        except PermanentFailure as e:
            run.failed_count += 1
            await self._persist_failure(game.game_id, game.source.value, str(e))
            # A missing evaluation says nothing about engine health
            if not isinstance(e.cause, EvaluationUnavailable):
                self._record_failure()
            return "failed"
        elapsed_ms = int((time.monotonic() - started) * 1000)

        attempt = self._build_attempt(game, sample, evaluation, run.run_id, elapsed_ms)
        entry = DedupLedgerEntry(
            game_id=game.game_id.raw,
            status=LedgerStatus.ACCEPTED,
            source=game.source.value,
        )
        inserted = await self.context.attempt_repo.record_outcome(attempt, entry)
        await self.context.ledger.mark_accepted(game.game_id)
        run.accepted_count += 1
        # Failures only count while consecutive
        self._failure_times.clear()

        if not inserted:
            logger.debug(f"{self.name}: position of {game.game_id} already scored")
            return "duplicate_position"
        return "accepted"

    def _build_attempt(
        self,
        game: GameRecord,
        sample: PositionSample,
        evaluation: Evaluation,
        run_id: str,
        elapsed_ms: int,
    ) -> PredictionAttempt:
        baseline = baseline_prediction(evaluation)
        challenger = self.context.challenger.predict(sample.moves_played, self.context.tuner.weights)
        comparison = compare(challenger, baseline, game.result)
        return PredictionAttempt(
            game_id=game.game_id.raw,
            position_hash=sample.position_hash,
            fen=sample.fen,
            move_index=sample.move_index,
            challenger_prediction=challenger.outcome.value,
            challenger_confidence=challenger.confidence,
            challenger_correct=comparison.challenger_correct,
            archetype=challenger.archetype or "unknown",
            baseline_prediction=baseline.outcome.value,
            baseline_confidence=baseline.confidence,
            baseline_correct=comparison.baseline_correct,
            baseline_eval_cp=evaluation.cp,
            baseline_mate=evaluation.mate,
            baseline_depth=evaluation.depth,
            actual_result=game.result.value,
            pool_name=self.name,
            data_source=game.source.value,
            white_rating=game.white_rating,
            black_rating=game.black_rating,
            time_control=game.time_control,
            analysis_time_ms=elapsed_ms,
            run_id=run_id,
        )

    async def _persist_failure(self, game_id: GameId, source: Optional[str], reason: str) -> None:
        entry = DedupLedgerEntry(
            game_id=game_id.raw,
            status=LedgerStatus.PERMANENTLY_FAILED,
            source=source,
            reason=reason[:500],
        )
        await self.context.ledger_repo.insert(entry)
        await self.context.ledger.mark_failed(game_id)
        logger.info(f"{self.name}: {game_id} permanently failed: {reason}")

    # =========================================================================
    # Background loop
    # =========================================================================

    async def run_forever(
        self,
        stop_event: asyncio.Event,
        on_outcome: Optional[Callable[[BatchOutcome], None]] = None,
    ) -> None:
        logger.info(f"{self.name}: pool loop started (interval={self.config.interval_seconds}s)")
        while not stop_event.is_set():
            if self.state != PoolState.HALTED and self.config.enabled:
                try:
                    outcome = await self.run_batch()
                    if on_outcome is not None:
                        on_outcome(outcome)
                except PoolHalted as e:
                    logger.error(f"{self.name}: batch aborted, pool halted: {e}")
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.exception(f"{self.name}: batch error: {e}")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.config.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "paused": self._paused,
            "halted_reason": self.halted_reason,
            "queue_remaining": max(0, self.queue_remaining),
            "recent_failures": self.recent_failures,
            "batches_run": self.batches_run,
            "recoveries": self.recoveries,
            "last_batch_at": self.last_batch_at.isoformat() if self.last_batch_at else None,
            "last_run": self.last_run.model_dump(mode="json") if self.last_run else None,
            "worker": self.worker.to_dict(),
            "config": self.config.to_dict(),
        }


class BatchScheduler:
    """
    Drives every pool concurrently plus a fixed-period health loop.

    Usage:
        scheduler = BatchScheduler(context)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        context: PipelineContext,
        pools: Optional[Sequence[PoolConfig]] = None,
        runners: Optional[Sequence[PoolRunner]] = None,
        summary_history: int = 20,
    ) -> None:
        self.context = context
        if runners is None:
            configs = pools if pools is not None else tuple(context.config.pools.values())
            runners = [PoolRunner(cfg, context) for cfg in configs]
        self.runners: dict[str, PoolRunner] = {r.name: r for r in runners}
        self.recent_summaries: deque[BatchOutcome] = deque(maxlen=summary_history)

        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    def runner(self, pool_name: str) -> PoolRunner:
        try:
            return self.runners[pool_name.upper()]
        except KeyError:
            raise ValueError(f"Unknown pool {pool_name!r}; known: {sorted(self.runners)}") from None

    async def start_workers(self) -> None:
        for runner in self.runners.values():
            await runner.start()

    async def start(self) -> None:
        """Start every enabled pool loop and the health loop."""
        if self._running:
            logger.warning("BatchScheduler already running")
            return
        if not self.context.ledger.is_hydrated:
            raise RuntimeError("Ledger must be hydrated before the scheduler starts fetching")

        self._running = True
        self._stop_event.clear()
        await self.start_workers()

        for runner in self.runners.values():
            if not runner.config.enabled:
                logger.info(f"{runner.name}: disabled, not scheduling")
                continue
            self._tasks.append(
                asyncio.create_task(
                    runner.run_forever(self._stop_event, self._remember),
                    name=f"pool_{runner.name.lower()}",
                )
            )
        self._tasks.append(asyncio.create_task(self._health_loop(), name="pool_health"))
        logger.info(f"Scheduler started: {len(self._tasks)} tasks")

    async def stop(self) -> None:
        if not self._running:
            return
        logger.info("Stopping scheduler...")
        self._running = False
        self._stop_event.set()

        for task in self._tasks:
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        for runner in self.runners.values():
            await runner.stop()
        logger.info("Scheduler stopped")

    def _remember(self, outcome: BatchOutcome) -> None:
        if outcome.summary is not None:
            self.recent_summaries.append(outcome)

    async def run_once(self, pool_name: str, ignore_pause: bool = True) -> BatchOutcome:
        """Run one batch for a pool now, e.g. a manual run. Waits for any running batch."""
        runner = self.runner(pool_name)
        if not runner.worker.is_running and runner.state != PoolState.HALTED:
            await runner.start()
        outcome = await runner.run_batch(ignore_pause=ignore_pause)
        self._remember(outcome)
        return outcome

    def pause(self, pool_name: str) -> None:
        self.runner(pool_name).pause()

    def resume(self, pool_name: str) -> None:
        self.runner(pool_name).resume()

    async def check_health(self) -> dict[str, bool]:
        results = {}
        for name, runner in self.runners.items():
            try:
                results[name] = await runner.check_health()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{name}: health check error: {e}")
                results[name] = False
        return results

    async def _health_loop(self) -> None:
        interval = self.context.config.health_check_interval_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                results = await self.check_health()
                unhealthy = [name for name, ok in results.items() if not ok]
                if unhealthy:
                    logger.warning(f"Health loop: unhealthy pools {unhealthy}")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Health loop error: {e}")

    def status(self) -> dict:
        return {name: runner.to_dict() for name, runner in self.runners.items()}
