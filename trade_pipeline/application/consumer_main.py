"""
Trade notification consumer process.

Runs independently of the API: its own connection, its own failure
domain. Stop it with SIGINT / SIGTERM.
"""

import asyncio
import logging
import logging.config
import signal
import sys

from dependency_injector import providers

from trade_pipeline.application.container import container
from trade_pipeline.domain.notifications.consumer import TradeNotificationConsumer
from trade_pipeline.domain.notifications.notifications_module import NotificationsModule

logger = logging.getLogger(__name__)


def build_consumer() -> TradeNotificationConsumer:
    notifications_module = NotificationsModule(
        root=providers.DependenciesContainer(
            config=container.config,
        ),
    )
    return notifications_module.consumer()


async def run_consumer(consumer: TradeNotificationConsumer) -> None:
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers, Ctrl+C still raises
            pass

    await consumer.start()
    logger.info("Trading Consumer started successfully. Press Ctrl+C to exit.")

    consume_task = asyncio.create_task(consumer.run())
    stop_task = asyncio.create_task(stop_requested.wait())

    try:
        done, _ = await asyncio.wait(
            {consume_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if consume_task in done:
            # surfaces a crash of the consume loop
            consume_task.result()
    finally:
        stop_task.cancel()
        await consumer.stop()
        if not consume_task.done():
            consume_task.cancel()
        logger.info(
            f"Trading Consumer stopped: {consumer.acked} acked, "
            f"{consumer.requeued} requeued, {consumer.dead_lettered} dead-lettered"
        )


def main() -> None:
    config = container.config()
    logging.config.dictConfig(config.get_logging_config())
    logger.info("Starting Trading Consumer Application")

    try:
        asyncio.run(run_consumer(build_consumer()))
    except Exception:
        logger.exception("Trading Consumer terminated unexpectedly")
        sys.exit(1)


if __name__ == "__main__":
    main()
