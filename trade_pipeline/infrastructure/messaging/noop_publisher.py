import asyncio
import logging

from trade_pipeline.domain.trades.dtos.trade_dto import TradeDTO
from trade_pipeline.infrastructure.messaging.publisher_base import TradePublisher

logger = logging.getLogger(__name__)


class NoOpPublisher(TradePublisher):
    """
    Stand-in used when RabbitMQ is disabled or unreachable at startup.

    Trades keep executing; their notifications are only logged and
    never reach a consumer.
    """

    def __init__(self) -> None:
        self.dropped = 0

    @property
    def is_connected(self) -> bool:
        return False

    async def connect(self) -> None:
        await asyncio.sleep(0)

    async def publish(self, trade: TradeDTO) -> None:
        self.dropped += 1
        logger.warning(
            f"⚠️ RabbitMQ not available - trade message would be published: "
            f"TradeId={trade.id}, Symbol={trade.symbol}, User={trade.user_id}, "
            f"Type={trade.side.value}, Amount={trade.total_value}"
        )

    async def close(self) -> None:
        await asyncio.sleep(0)
