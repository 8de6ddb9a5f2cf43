"""
Health endpoint — lightweight FastAPI app for monitoring the daemon.

GET /health returns scheduler state, the last run of each job and the
totals of the last completed sweep.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import cloudwarden

if TYPE_CHECKING:
    from cloudwarden.config import Config
    from cloudwarden.scheduler import SweepScheduler
    from cloudwarden.service import CloudwardenService

logger = logging.getLogger(__name__)


def create_health_app(service: CloudwardenService, scheduler: SweepScheduler | None = None):
    from fastapi import FastAPI

    app = FastAPI(title="Cloudwarden", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health():
        scheduler_running = scheduler is not None and scheduler.running
        last_sweep = service.last_sweep.to_dict() if service.last_sweep is not None else None
        return {
            "status": "healthy" if scheduler_running else "degraded",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": cloudwarden.__version__,
            "scheduler_running": scheduler_running,
            "jobs": scheduler.last_runs if scheduler is not None else {},
            "next_runs": scheduler.next_runs() if scheduler_running else {},
            "operator_notifications": service.dispatcher.operator is not None,
            "last_sweep": last_sweep,
        }

    return app


async def serve_health(
    config: Config, service: CloudwardenService, scheduler: SweepScheduler | None = None
) -> None:
    import uvicorn

    app = create_health_app(service, scheduler)
    server = uvicorn.Server(
        uvicorn.Config(app, host="127.0.0.1", port=config.health_port, log_level="warning")
    )
    logger.info("Health endpoint on 127.0.0.1:%d", config.health_port)
    await server.serve()
