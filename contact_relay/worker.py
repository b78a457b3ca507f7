"""
Queue consumer process.

Pulls batches of contact envelopes from the dispatch queue and hands them to the delivery worker until interrupted.
"""

import asyncio
import signal

from .logger import get_logger
from .redis import redis
from .services.delivery import DeliveryWorker
from .services.dispatch import RedisDispatchQueue
from .settings import settings
from .utils.email import SMTPMailSender


logger = get_logger(__name__)


async def run_worker(stop: asyncio.Event | None = None) -> None:
    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    queue = RedisDispatchQueue(redis, settings.queue_name, max_retries=settings.queue_max_retries)
    worker = DeliveryWorker(settings, SMTPMailSender(settings))

    try:
        await queue.consume(
            worker.handle_batch,
            batch_size=settings.queue_batch_size,
            poll_interval=settings.queue_poll_interval,
            stop=stop,
        )
    finally:
        await redis.aclose()
        logger.info("Delivery worker stopped")


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
