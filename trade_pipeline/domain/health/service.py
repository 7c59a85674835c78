import logging
from trade_pipeline.infrastructure.database.client import DatabaseClient
from trade_pipeline.infrastructure.messaging.publisher_base import TradePublisher

logger = logging.getLogger(__name__)


class HealthService:
    def __init__(self, db_client: DatabaseClient, publisher: TradePublisher):
        self.db_client = db_client
        self.publisher = publisher

    async def check_database_health(self) -> bool:
        try:
            return await self.db_client.health_check()
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def check_broker_health(self) -> bool:
        # the no-op fallback always reports False
        return self.publisher.is_connected
