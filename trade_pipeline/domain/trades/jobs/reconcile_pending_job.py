import logging
from datetime import datetime, timedelta

from ..trade_service import TradeService


logger = logging.getLogger(__name__)


class ReconcilePendingTradesJob:
    """
    Fails trades left in Pending by a status update that never committed.
    """

    def __init__(self, trade_service: TradeService, pending_timeout_minutes: int = 15) -> None:
        self.trade_service = trade_service
        self.pending_timeout = timedelta(minutes=pending_timeout_minutes)

    async def run(self) -> int:
        logger.info("Starting ReconcilePendingTradesJob at %s",
                    datetime.now().isoformat())

        failed = await self.trade_service.reconcile_pending(self.pending_timeout)

        logger.info("Finished ReconcilePendingTradesJob: %d trades marked as failed", failed)
        return failed
