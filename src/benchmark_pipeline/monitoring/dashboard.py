"""
FastAPI dashboard for the benchmark pipeline.

Provides:
    - REST API endpoints for status, health and summaries
    - Administrative controls: manual batch runs, pool config, pause/resume,
      auto-deploy toggle
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from benchmark_pipeline.core.scheduler import PoolHalted

if TYPE_CHECKING:
    from benchmark_pipeline.core.service import BenchmarkService

logger = logging.getLogger(__name__)


class AutoDeployRequest(BaseModel):
    enabled: bool


class PoolConfigUpdate(BaseModel):
    """Partial pool config; only the fields given are changed."""

    depth: Optional[int] = None
    batch_size: Optional[int] = None
    interval_seconds: Optional[float] = None
    delay_between_games: Optional[float] = None
    base_timeout: Optional[float] = None
    per_depth_timeout: Optional[float] = None
    max_attempts: Optional[int] = None
    retry_delay: Optional[float] = None
    fetch_timeout: Optional[float] = None
    fetch_multiplier: Optional[int] = None
    providers: Optional[list[str]] = None
    enabled: Optional[bool] = None


def create_dashboard_app(service: "BenchmarkService") -> FastAPI:
    """
    Create the FastAPI dashboard application.

    Args:
        service: The benchmark service to expose

    Returns:
        FastAPI application instance
    """
    app = FastAPI(
        title="Benchmark Pipeline Monitor",
        description="Status and controls for the dual-pool benchmark pipeline",
        version="0.1.0",
    )

    @app.get("/api/status")
    async def get_status():
        """Pools, evolution state, recent summaries and health."""
        return await service.get_status()

    @app.get("/api/health")
    async def get_health():
        if service.health_checker is None:
            return {"status": "unknown", "components": []}
        health = await service.health_checker.check_all()
        return health.to_dict()

    @app.get("/api/summary")
    async def get_summary(pool: Optional[str] = None):
        try:
            summary = await service.get_summary(pool)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return summary.to_dict()

    @app.post("/api/pools/{pool}/run")
    async def run_pool(pool: str):
        """Run one batch now, waiting for any batch already in progress."""
        try:
            summary = await service.run_benchmark_batch(pool)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except PoolHalted as e:
            raise HTTPException(status_code=409, detail=f"Pool halted: {e}")
        return summary.to_dict()

    @app.get("/api/pools/{pool}/config")
    async def get_pool_config(pool: str):
        try:
            return service.scheduler.runner(pool).config.to_dict()
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.put("/api/pools/{pool}/config")
    async def update_pool_config(pool: str, update: PoolConfigUpdate):
        changes: dict[str, Any] = update.model_dump(exclude_none=True)
        try:
            service.scheduler.runner(pool)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))
        try:
            config = service.set_pool_config(pool, changes)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return config.to_dict()

    @app.post("/api/pools/{pool}/pause")
    async def pause_pool(pool: str):
        try:
            service.pause_pool(pool)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"pool": pool.upper(), "paused": True}

    @app.post("/api/pools/{pool}/resume")
    async def resume_pool(pool: str):
        try:
            service.resume_pool(pool)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"pool": pool.upper(), "paused": False}

    @app.post("/api/pools/{pool}/reset")
    async def reset_pool(pool: str):
        """Restart a halted pool."""
        try:
            recovered = await service.reset_pool(pool)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {"pool": pool.upper(), "recovered": recovered}

    @app.post("/api/auto-deploy")
    async def set_auto_deploy(request: AutoDeployRequest):
        enabled = await service.toggle_auto_deploy(request.enabled)
        return {"auto_deploy": enabled}

    @app.get("/health")
    async def health_check():
        """Liveness endpoint for Docker/Kubernetes."""
        return {"status": "ok"}

    return app


async def run_dashboard(
    service: "BenchmarkService",
    host: str = "0.0.0.0",
    port: int = 9060,
) -> None:
    """
    Run the dashboard server.

    Args:
        service: The benchmark service to expose
        host: Host to bind to
        port: Port to listen on
    """
    import uvicorn

    app = create_dashboard_app(service)
    config = uvicorn.Config(app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)
    logger.info(f"Dashboard listening on http://{host}:{port}")
    await server.serve()
