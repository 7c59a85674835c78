import logging
from typing import Protocol

from trade_pipeline.domain.notifications.dtos.notification_dto import TradeNotificationDTO

logger = logging.getLogger(__name__)


class TradeNotificationHandler(Protocol):
    """
    Side effect run for every delivered notification.

    Deliveries are at-least-once: the same notification can arrive more
    than once, implementations must be idempotent.
    """

    async def handle(self, notification: TradeNotificationDTO) -> None: ...


class LoggingNotificationHandler(TradeNotificationHandler):
    async def handle(self, notification: TradeNotificationDTO) -> None:
        logger.info(
            "\n===== TRADE EXECUTED =====\n"
            f"Trade ID: {notification.id}\n"
            f"Symbol: {notification.symbol}\n"
            f"Quantity: {notification.quantity}\n"
            f"Price: ${notification.price:,.2f}\n"
            f"Trade Type: {notification.trade_type.value}\n"
            f"Total Value: ${notification.total_value:,.2f}\n"
            f"User ID: {notification.user_id}\n"
            f"Status: {notification.status.value}\n"
            f"Executed At: {notification.executed_at.isoformat()}\n"
            f"Published At: {notification.published_at.isoformat()}\n"
            "=========================="
        )
