"""
Main daemon entry point.

Runs as: python -m cloudwarden.daemon   (or the ``cloudwarden-daemon`` script)

Subsystems:
- Sweep scheduler (APScheduler: health sweep + replenish monitor)
- Health endpoint (FastAPI on CLOUDWARDEN_HEALTH_PORT, default 18810)
"""

from __future__ import annotations

import asyncio
import logging
import sys

from cloudwarden.config import get_config
from cloudwarden.db.connection import close_pool
from cloudwarden.health import serve_health
from cloudwarden.scheduler import SweepScheduler
from cloudwarden.service import CloudwardenService

logger = logging.getLogger(__name__)


async def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    config = get_config()
    logger.info("Starting Cloudwarden daemon...")
    logger.info("Workspace: %s", config.workspace)
    logger.info("Sweep: %s (%s), batch width %d", config.sweep.cron, config.sweep.timezone, config.sweep.batch_width)
    logger.info("Operator Telegram: %s", "configured" if config.telegram.operator_enabled else "disabled")

    service = CloudwardenService.from_config(config)
    scheduler = SweepScheduler(config, service)

    tasks = [
        asyncio.create_task(scheduler.start(), name="scheduler"),
        asyncio.create_task(serve_health(config, service, scheduler), name="health"),
    ]

    # Either task finishing (uvicorn handles SIGTERM) is the shutdown trigger
    done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    for task in done:
        if task.exception():
            logger.error("Task %s failed: %s", task.get_name(), task.exception())
        else:
            logger.info("Task %s completed", task.get_name())

    logger.info("Shutting down...")
    await scheduler.stop()
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    notifier = service.dispatcher.notifier
    close = getattr(notifier, "close", None)
    if close is not None:
        await close()
    close_pool()
    logger.info("Cloudwarden stopped")


def run() -> None:
    """Entry point for python -m cloudwarden.daemon"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.error("Cloudwarden crashed: %s", e, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    run()
