from typing import Optional

from trade_pipeline.domain.trades.dtos.trade_dto import TradeDTO


class TradeError(Exception):
    """Base class for trade pipeline errors."""
    pass


class TradeValidationError(TradeError):
    """Malformed trade request, rejected before anything is persisted."""
    pass


class PersistenceError(TradeError):
    """
    Store failure while executing a trade.

    `persisted` tells whether the trade row had already been committed
    (only the status update failed, the row stays Pending).
    """

    def __init__(self, message: str, persisted: bool = False, trade_id: Optional[int] = None):
        super().__init__(message)
        self.persisted = persisted
        self.trade_id = trade_id


class InvalidStatusTransition(TradeError):
    pass


class PublishError(TradeError):
    """
    Notification could not be published. When `trade` is set, the trade is
    already committed: the error does not mean the trade did not happen.
    """

    def __init__(self, message: str, trade: Optional[TradeDTO] = None):
        super().__init__(message)
        self.trade = trade


class PublisherConnectionError(PublishError):
    """Broker unreachable when the publisher connects."""
    pass
