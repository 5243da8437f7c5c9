"""Run the background job scheduler as a standalone process."""
import asyncio
import logging
import signal

from fulfillment.config import settings
from fulfillment.database import engine
from fulfillment.jobs.scheduler import get_job_status, shutdown_scheduler, start_scheduler


async def main():
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    print(f"{settings.APP_NAME} {settings.APP_VERSION} reservation sweeper starting")
    start_scheduler()
    for job in get_job_status():
        print(f"{job['name']}: every {settings.RESERVATION_SWEEP_INTERVAL_MINUTES} min, next {job['next_run_time']}")

    await stop.wait()
    shutdown_scheduler()
    await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(main())
