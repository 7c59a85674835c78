import hashlib
import logging
from collections import OrderedDict
from typing import Awaitable, Optional

import aio_pika
from aio_pika.abc import (
    AbstractChannel,
    AbstractIncomingMessage,
    AbstractQueue,
    AbstractQueueIterator,
    AbstractRobustConnection,
)

from trade_pipeline.domain.notifications.dtos.notification_dto import TradeNotificationDTO
from trade_pipeline.domain.notifications.errors import ProcessingError
from trade_pipeline.domain.notifications.handlers import TradeNotificationHandler
from trade_pipeline.infrastructure.config.settings import Settings
from trade_pipeline.infrastructure.messaging.topology import TradeTopology, declare_topology

logger = logging.getLogger(__name__)

MAX_TRACKED_MESSAGES = 10_000


class TradeNotificationConsumer:
    """
    Drains the trade notification queue, one delivery at a time.

    Every delivery is acknowledged manually:
    - handled -> ack;
    - failed -> nack + requeue, until the message has failed
      `max_redeliveries` + 1 times, then reject without requeue so the
      broker dead-letters it. `max_redeliveries = 0` requeues forever.

    Failure counts are kept per message id (a body hash for messages
    published without one) in this process only; a message
    bouncing between several consumers can exceed the bound.
    """

    def __init__(
        self,
        config: Settings,
        handler: TradeNotificationHandler,
        max_redeliveries: Optional[int] = None,
        prefetch_count: Optional[int] = None,
    ):
        self.config = config
        self.handler = handler
        self.topology = TradeTopology.from_settings(config)
        self.max_redeliveries = (
            config.consumer_max_redeliveries if max_redeliveries is None else max_redeliveries)
        self.prefetch_count = prefetch_count or config.consumer_prefetch_count

        self._connection: Optional[AbstractRobustConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._queue: Optional[AbstractQueue] = None
        self._iterator: Optional[AbstractQueueIterator] = None
        self._failures: "OrderedDict[str, int]" = OrderedDict()

        self.acked = 0
        self.requeued = 0
        self.dead_lettered = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        try:
            self._connection = await aio_pika.connect_robust(
                self.config.rabbitmq_url,
                timeout=self.config.rabbitmq_connect_timeout,
            )
            self._channel = await self._connection.channel()
            await self._channel.set_qos(prefetch_count=self.prefetch_count)
            _, self._queue = await declare_topology(self._channel, self.topology)
        except Exception as e:
            logger.error(f"Failed to connect to RabbitMQ: {e}")
            await self.stop()
            raise

        logger.info(f"Connected to RabbitMQ. Queue: {self.topology.queue}")

    async def run(self) -> None:
        """Consume until `stop()` is called or the queue iterator closes."""
        if self._queue is None:
            await self.start()

        logger.info(f"Started consuming messages from queue: {self.topology.queue}")

        async with self._queue.iterator() as queue_iter:
            self._iterator = queue_iter
            async for message in queue_iter:
                await self.on_message(message)

    async def stop(self) -> None:
        try:
            if self._iterator is not None:
                await self._iterator.close()
            if self._connection is not None and not self._connection.is_closed:
                await self._connection.close()
                logger.info("RabbitMQ connection closed")
        except Exception as e:
            logger.error(f"Error closing RabbitMQ connection: {e}")
        finally:
            self._iterator = None
            self._queue = None
            self._channel = None
            self._connection = None

    # ------------------------------------------------------------------
    # Delivery handling
    # ------------------------------------------------------------------
    async def on_message(self, message: AbstractIncomingMessage) -> None:
        message_id = message.message_id or _body_key(message.body)

        try:
            notification = self._parse(message, message_id)
            await self.handler.handle(notification)
        except Exception as e:
            error = e if isinstance(e, ProcessingError) else ProcessingError(
                f"Handler failed: {e}", message_id=message_id)
            await self._on_failure(message, message_id, error)
            return

        self._failures.pop(message_id, None)
        if await self._settle(message.ack(), message_id):
            self.acked += 1

    def _parse(self, message: AbstractIncomingMessage, message_id: str) -> TradeNotificationDTO:
        logger.info(f"Received trade message {message_id}: {message.body[:512]!r}")
        try:
            return TradeNotificationDTO.from_json(message.body)
        except ValueError as e:
            raise ProcessingError(
                f"Malformed trade message: {e}", message_id=message_id) from e

    async def _on_failure(
        self,
        message: AbstractIncomingMessage,
        message_id: str,
        error: ProcessingError,
    ) -> None:
        failures = self._record_failure(message_id)

        if self.max_redeliveries and failures > self.max_redeliveries:
            logger.error(
                f"Error processing trade message {message_id} "
                f"({failures} failures), dead-lettering: {error}"
            )
            if await self._settle(message.reject(requeue=False), message_id):
                self._failures.pop(message_id, None)
                self.dead_lettered += 1
            return

        logger.error(
            f"Error processing trade message {message_id} "
            f"({failures} failures), requeueing: {error}"
        )
        if await self._settle(message.nack(requeue=True), message_id):
            self.requeued += 1

    async def _settle(self, outcome: Awaitable[None], message_id: str) -> bool:
        """
        Await an ack / nack / reject. A closed channel is logged, not raised:
        the broker redelivers the unsettled message once the connection recovers.
        """
        try:
            await outcome
        except Exception as e:
            logger.error(f"Failed to settle trade message {message_id}: {e}")
            return False
        return True

    def _record_failure(self, message_id: str) -> int:
        failures = self._failures.pop(message_id, 0) + 1
        self._failures[message_id] = failures
        while len(self._failures) > MAX_TRACKED_MESSAGES:
            self._failures.popitem(last=False)
        return failures


def _body_key(body: bytes) -> str:
    # stable across redeliveries, unlike the delivery tag
    return f"body-{hashlib.sha256(body).hexdigest()}"
