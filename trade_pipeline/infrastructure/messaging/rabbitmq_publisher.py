import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractRobustConnection

from trade_pipeline.domain.notifications.dtos.notification_dto import TradeNotificationDTO
from trade_pipeline.domain.trades.dtos.trade_dto import TradeDTO
from trade_pipeline.domain.trades.errors import PublishError, PublisherConnectionError
from trade_pipeline.infrastructure.config.settings import Settings
from trade_pipeline.infrastructure.messaging.publisher_base import TradePublisher
from trade_pipeline.infrastructure.messaging.topology import TradeTopology, declare_topology

logger = logging.getLogger(__name__)


class RabbitMQPublisher(TradePublisher):
    """
    Publishes one persistent message per executed trade.

    The connection is robust: once established, aio-pika reconnects and
    redeclares the topology on its own. The first connection is not
    retried, `connect()` fails fast so the application can fall back
    to a no-op publisher.
    """

    def __init__(self, config: Settings):
        self.config = config
        self.topology = TradeTopology.from_settings(config)
        self._connection: Optional[AbstractRobustConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._exchange: Optional[AbstractExchange] = None
        # one channel shared by every request handler
        self._publish_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------
    async def connect(self) -> None:
        if self.is_connected:
            return

        logger.info(
            f"Connecting to RabbitMQ at {self.config.rabbitmq_host}:{self.config.rabbitmq_port}")

        try:
            self._connection = await aio_pika.connect_robust(
                self.config.rabbitmq_url,
                timeout=self.config.rabbitmq_connect_timeout,
            )
            self._channel = await self._connection.channel()
            self._exchange, _ = await declare_topology(self._channel, self.topology)
        except Exception as e:
            logger.error(
                f"Failed to establish RabbitMQ connection to "
                f"{self.config.rabbitmq_host}:{self.config.rabbitmq_port}: {e}"
            )
            await self.close()
            raise PublisherConnectionError(
                f"RabbitMQ unavailable: {e}") from e

        logger.info(
            f"RabbitMQ connection established. Exchange: {self.topology.exchange}, "
            f"Queue: {self.topology.queue}"
        )

    async def close(self) -> None:
        try:
            if self._channel is not None and not self._channel.is_closed:
                await self._channel.close()
            if self._connection is not None and not self._connection.is_closed:
                await self._connection.close()
                logger.info("RabbitMQ connection closed successfully")
        except Exception as e:
            logger.error(f"Error closing RabbitMQ connection: {e}")
        finally:
            self._channel = None
            self._exchange = None
            self._connection = None

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------
    async def publish(self, trade: TradeDTO) -> None:
        if self._exchange is None:
            raise PublishError(
                "RabbitMQ publisher is not connected", trade=trade)

        published_at = datetime.now(timezone.utc)
        notification = TradeNotificationDTO.from_trade(trade, published_at=published_at)
        message = aio_pika.Message(
            body=notification.to_json_bytes(),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            message_id=uuid4().hex,
            timestamp=published_at,
        )

        try:
            async with self._publish_lock:
                await self._exchange.publish(
                    message, routing_key=self.topology.routing_key)
        except Exception as e:
            logger.error(
                f"Failed to publish trade message. TradeId: {trade.id}: {e}")
            raise PublishError(
                f"Failed to publish trade {trade.id}: {e}", trade=trade) from e

        logger.info(
            f"Trade message published. TradeId: {trade.id}, Symbol: {trade.symbol}, "
            f"MessageId: {message.message_id}, Exchange: {self.topology.exchange}"
        )
