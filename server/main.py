"""Engine process entry point.

Starts the trace store and the scheduler, then runs until interrupted.
Scheduled workflows fire from the schedule manager; on-demand runs go
through container.workflow_service().
"""

import asyncio
from contextlib import asynccontextmanager

from core.container import Container, container
from core.logging import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app_container: Container = container):
    """Engine lifespan management."""
    settings = app_container.settings()
    configure_logging(settings)

    database = app_container.database()
    registry = app_container.scheduler_registry()
    schedule_manager = app_container.schedule_manager()

    await database.startup()
    registry.init()
    await schedule_manager.start()
    logger.info("Workflow engine started")

    try:
        yield app_container
    finally:
        await schedule_manager.stop()
        registry.shutdown()
        await schedule_manager.wait_for_running()
        await app_container.workflow_service().wait_for_running()
        await database.shutdown()
        logger.info("Workflow engine stopped")


async def main() -> None:
    async with lifespan():
        await asyncio.Event().wait()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
