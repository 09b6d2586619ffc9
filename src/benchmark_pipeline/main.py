"""
Benchmark Pipeline - Main Entry Point

Runs the dual-pool game ingestion and benchmark pipeline.

Usage:
    python -m benchmark_pipeline.main                      # Run both pools (default)
    python -m benchmark_pipeline.main --mode once --pool DEEP   # One batch, then exit

Environment Variables:
    DATABASE_URL                   PostgreSQL connection string (required)
    LOG_LEVEL                      Logging level (DEBUG/INFO/WARNING/ERROR)
    ENGINE_KIND                    "uci" for a local engine, "remote" for cloud eval
    ENGINE_PATH                    Path to the UCI engine binary (default: stockfish)
    ENGINE_THREADS / ENGINE_HASH_MB  UCI engine options
    VOLUME_BATCH_SIZE / VOLUME_DEPTH  VOLUME pool overrides (default: 5 / 18)
    DEEP_BATCH_SIZE / DEEP_DEPTH      DEEP pool overrides (default: 1 / 26)
    LICHESS_PLAYERS / CHESSCOM_PLAYERS  Comma-separated player rosters
    AUTO_DEPLOY                    Allow automatic challenger promotion (default: true)
    HEALTH_CHECK_INTERVAL_SECONDS  Pool health loop period (default: 120)
    DASHBOARD_ENABLED / DASHBOARD_HOST / DASHBOARD_PORT  FastAPI dashboard

Services:
    - scheduler: VOLUME and DEEP pool loops plus the pool health loop
    - monitor: health checks and the FastAPI dashboard
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

from benchmark_pipeline.config import PipelineConfig

# Root logging is set before the pipeline modules are imported
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


class BenchmarkPipeline:
    """
    Owns startup and shutdown order for the pipeline:
    - Database connection and schema
    - Shared context (ledger, provider gates, adapters, tuner)
    - Batch scheduler (both pools and the health loop)
    - Monitoring (health checker, dashboard)
    """

    def __init__(self, config: PipelineConfig):
        self.config = config
        self._running = False
        self._shutdown_event = asyncio.Event()

        self._db = None
        self._context = None
        self._scheduler = None
        self._health_checker = None
        self._service = None
        self._dashboard_task: Optional[asyncio.Task] = None

    @property
    def service(self):
        return self._service

    async def setup(self) -> None:
        """Connect, rehydrate durable state and wire every component."""
        from benchmark_pipeline.core import BatchScheduler, BenchmarkService, PipelineContext
        from benchmark_pipeline.monitoring import HealthChecker
        from benchmark_pipeline.storage import Database, DatabaseConfig

        if not self.config.database_url:
            raise ValueError("database_url is not configured")

        self._db = Database(DatabaseConfig(url=self.config.database_url))
        await self._db.initialize()
        if not await self._db.health_check():
            raise RuntimeError("PostgreSQL pool opened but SELECT 1 failed")
        await self._db.apply_schema()
        logger.info("PostgreSQL ready, schema applied")

        self._context = PipelineContext.build(self.config, self._db)
        # Ledger and evolution state are loaded before any fetch
        await self._context.open()

        self._scheduler = BatchScheduler(self._context)
        self._health_checker = HealthChecker(
            db=self._db,
            runners=self._scheduler.runners,
            gates=self._context.gates,
            ledger=self._context.ledger,
        )
        self._service = BenchmarkService(self._context, self._scheduler, self._health_checker)

    async def start(self, mode: str = "all", pool: Optional[str] = None) -> int:
        """
        Run the pipeline.

        Args:
            mode: "all" to run until a signal arrives, "once" for a single batch
            pool: Pool for "once" mode
        """
        logger.info("=" * 60)
        logger.info("BENCHMARK PIPELINE")
        logger.info("=" * 60)
        logger.info(f"Run mode: {mode}")
        logger.info(f"Engine: {self.config.engine_kind} ({self.config.engine_path})")
        logger.info(f"Auto-deploy: {'ON' if self.config.auto_deploy else 'OFF'}")
        logger.info("=" * 60)

        self._running = True
        self._shutdown_event.clear()
        self._setup_signal_handlers()

        try:
            await self.setup()

            if self._shutdown_event.is_set():
                logger.info("Signal arrived before pools started; exiting")
                return 0

            if mode == "once":
                summary = await self._service.run_benchmark_batch(pool or "VOLUME")
                print(json.dumps(summary.to_dict(), indent=2))
                return 0

            await self._scheduler.start()
            if self.config.dashboard_enabled:
                self._start_dashboard()

            logger.info(f"Pools running: {', '.join(self._scheduler.runners)} (Ctrl+C stops)")
            await self._shutdown_event.wait()
            return 0

        except Exception as e:
            logger.exception(f"Pipeline aborted: {e}")
            raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if not self._running:
            return

        logger.info("Stopping pools and closing connections")
        self._running = False
        self._shutdown_event.set()

        if self._scheduler:
            try:
                await self._scheduler.stop()
            except Exception as e:
                logger.warning(f"Error stopping scheduler: {e}")
            # "once" mode starts workers without starting the scheduler
            for runner in self._scheduler.runners.values():
                try:
                    await runner.stop()
                except Exception as e:
                    logger.warning(f"Error stopping {runner.name} worker: {e}")

        if self._dashboard_task:
            self._dashboard_task.cancel()
            await asyncio.gather(self._dashboard_task, return_exceptions=True)

        if self._context:
            await self._context.close()

        if self._db:
            try:
                await self._db.close()
            except Exception as e:
                logger.warning(f"PostgreSQL pool did not close cleanly: {e}")

        logger.info("Pipeline stopped")

    def _start_dashboard(self) -> None:
        from benchmark_pipeline.monitoring import run_dashboard

        self._dashboard_task = asyncio.create_task(
            run_dashboard(
                self._service,
                host=self.config.dashboard_host,
                port=self.config.dashboard_port,
            ),
            name="dashboard",
        )
        logger.info(f"Dashboard: http://{self.config.dashboard_host}:{self.config.dashboard_port}")

    def _setup_signal_handlers(self) -> None:
        """SIGTERM and SIGINT set the shutdown event."""
        loop = asyncio.get_event_loop()

        def handle_signal(sig):
            logger.info(f"{signal.Signals(sig).name} received, shutting down")
            self._shutdown_event.set()

        try:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # no loop signal handlers on Windows
            pass


def load_env_file(path: str = ".env") -> None:
    """Seed os.environ from a KEY=VALUE file; variables already set win."""
    env_path = Path(path)
    if env_path.exists():
        logger.info(f"Reading settings from {env_path}")
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    value = value.strip().strip('"').strip("'")
                    os.environ.setdefault(key.strip(), value)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Dual-pool game benchmark pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--mode",
        choices=["all", "once"],
        default="all",
        help="Run continuously (all) or a single batch (once)",
    )
    parser.add_argument(
        "--pool",
        type=str.upper,
        choices=["VOLUME", "DEEP"],
        default="VOLUME",
        help="Pool for --mode once (default: VOLUME)",
    )
    parser.add_argument(
        "--no-auto-deploy",
        action="store_true",
        help="Never promote the challenger automatically",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    config = PipelineConfig.from_env()
    if args.no_auto_deploy:
        config.auto_deploy = False

    if not config.database_url:
        logger.error("DATABASE_URL is not set; nothing to persist to")
        return 1

    pipeline = BenchmarkPipeline(config)
    try:
        return await pipeline.start(mode=args.mode, pool=args.pool)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0
    except Exception as e:
        logger.exception(f"Pipeline exited with error: {e}")
        return 1


def main() -> int:
    load_env_file()
    args = parse_args()

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
