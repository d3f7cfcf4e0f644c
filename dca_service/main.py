"""Service entry point: run the tick scheduler until interrupted."""

import asyncio
import logging
import signal

from dca_service.config import Settings, get_settings
from dca_service.engine.app import build_service
from dca_service.utils.logging import setup_logging

logger = logging.getLogger(__name__)


async def serve(settings: Settings):
    """Startup and shutdown around the scheduler loop."""
    service = build_service(settings)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # Windows
            pass

    await service.startup()
    logger.info(
        f"Service running (dca every {settings.dca_schedule_interval}, "
        f"trailing stop every {settings.trailing_stop_schedule_interval}, dry_run={settings.dry_run})"
    )
    try:
        await stop.wait()
    finally:
        await service.shutdown()


def run():
    settings = get_settings()
    setup_logging(settings.log_level)
    asyncio.run(serve(settings))


if __name__ == "__main__":
    run()
