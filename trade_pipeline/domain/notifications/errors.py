from typing import Optional

from trade_pipeline.domain.trades.errors import TradeError


class ProcessingError(TradeError):
    """Consumer failed to parse or handle a notification. Never dropped silently."""

    def __init__(self, message: str, message_id: Optional[str] = None):
        super().__init__(message)
        self.message_id = message_id
