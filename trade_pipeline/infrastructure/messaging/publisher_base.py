from typing import Protocol

from trade_pipeline.domain.trades.dtos.trade_dto import TradeDTO


class TradePublisher(Protocol):
    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> None: ...
    async def publish(self, trade: TradeDTO) -> None: ...
    async def close(self) -> None: ...
