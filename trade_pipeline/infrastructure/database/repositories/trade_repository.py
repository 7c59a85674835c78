import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trade_pipeline.commons.enums.trade_enums import TradeSide, TradeStatus
from trade_pipeline.domain.trades.dtos.trade_dto import TradeDTO, TradeQueryDTO
from trade_pipeline.infrastructure.database.models.trade_model import TradeModel

logger = logging.getLogger(__name__)


class TradeRepository:
    """
    Repository for trade persistence.

    Every command commits on its own: callers decide how many
    transactions a use case spans.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ==========================
    #        COMMANDS
    # ==========================

    async def add(self, trade: TradeDTO) -> TradeDTO:
        """
        Insert a new trade and return it with the store-assigned id.

        Args:
            trade: Trade to insert (id is ignored)

        Returns:
            Copy of the trade carrying its generated id
        """
        model = TradeModel(
            symbol=trade.symbol,
            quantity=trade.quantity,
            price=trade.price,
            side=trade.side,
            executed_at=_as_utc(trade.executed_at),
            user_id=trade.user_id,
            status=trade.status,
        )

        self.session.add(model)
        await self.session.commit()

        return trade.model_copy(update={"id": model.id})

    async def update_status(
        self,
        trade_id: int,
        status: TradeStatus,
        expected: TradeStatus = TradeStatus.PENDING,
    ) -> bool:
        """
        Move a trade from `expected` to `status`.

        The update only matches rows still in `expected`, so a row that a
        concurrent writer already moved on is left untouched.

        Returns:
            True when the row was updated
        """
        stmt = (
            update(TradeModel)
            .where(TradeModel.id == trade_id, TradeModel.status == expected)
            .values(status=status)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()

        return result.rowcount == 1

    async def fail_stale_pending(self, executed_before: datetime) -> int:
        """Mark trades stuck in Pending since before `executed_before` as Failed."""
        stmt = (
            update(TradeModel)
            .where(
                TradeModel.status == TradeStatus.PENDING,
                TradeModel.executed_at < _as_utc(executed_before),
            )
            .values(status=TradeStatus.FAILED)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()

        return result.rowcount

    # ==========================
    #        QUERIES
    # ==========================

    async def get_by_id(self, trade_id: int) -> Optional[TradeDTO]:
        model = await self.session.get(TradeModel, trade_id)

        if not model:
            return None

        return self._model_to_dto(model)

    async def search(self, query: TradeQueryDTO) -> Tuple[List[TradeDTO], int]:
        """
        Filtered, paginated listing, newest first.

        The total count only depends on the filters, never on the page.
        """
        conditions = []

        if query.user_id:
            conditions.append(TradeModel.user_id == query.user_id)
        if query.symbol:
            conditions.append(TradeModel.symbol == query.symbol.strip().upper())
        if query.side is not None:
            conditions.append(TradeModel.side == query.side)
        if query.from_date is not None:
            conditions.append(TradeModel.executed_at >= _as_utc(query.from_date))
        if query.to_date is not None:
            conditions.append(TradeModel.executed_at <= _as_utc(query.to_date))

        count_stmt = select(func.count()).select_from(TradeModel).where(*conditions)
        total_count = (await self.session.execute(count_stmt)).scalar_one()

        stmt = (
            select(TradeModel)
            .where(*conditions)
            .order_by(TradeModel.executed_at.desc(), TradeModel.id.desc())
            .offset(query.offset)
            .limit(query.page_size)
        )
        result = await self.session.execute(stmt)
        trades = [self._model_to_dto(m) for m in result.scalars().all()]

        return trades, total_count

    async def get_executed_for_user(self, user_id: str) -> List[TradeDTO]:
        stmt = select(TradeModel).where(
            TradeModel.user_id == user_id,
            TradeModel.status == TradeStatus.EXECUTED,
        )
        result = await self.session.execute(stmt)
        return [self._model_to_dto(m) for m in result.scalars().all()]

    def _model_to_dto(self, model: TradeModel) -> TradeDTO:
        return TradeDTO(
            id=model.id,
            symbol=model.symbol,
            quantity=model.quantity,
            price=model.price,
            side=TradeSide(model.side),
            executed_at=_as_utc(model.executed_at),
            user_id=model.user_id,
            status=TradeStatus(model.status),
        )


def _as_utc(value: datetime) -> datetime:
    """
    Normalize to UTC. SQLite keeps only the wall-clock part of a timestamp,
    so every value written or compared must share one offset; naive values
    are taken as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
