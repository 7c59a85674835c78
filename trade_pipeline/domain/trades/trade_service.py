import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from trade_pipeline.commons.enums.trade_enums import TradeSide, TradeStatus
from trade_pipeline.domain.trades.dtos.trade_dto import (
    CreateTradeDTO,
    TradeDTO,
    TradePageDTO,
    TradeQueryDTO,
    TradeStatisticsDTO,
)
from trade_pipeline.domain.trades.errors import (
    InvalidStatusTransition,
    PersistenceError,
    PublishError,
    TradeValidationError,
)
from trade_pipeline.infrastructure.database.client import DatabaseClient
from trade_pipeline.infrastructure.database.repositories.trade_repository import TradeRepository
from trade_pipeline.infrastructure.messaging.publisher_base import TradePublisher


logger = logging.getLogger(__name__)


class TradeService:
    """
    Executes trades and answers trade queries.

    Execution is insert (Pending) -> update (Executed) -> publish. The two
    writes are separate transactions and the publish is not transactional
    with either of them:

    - insert fails: nothing was stored, PersistenceError(persisted=False);
    - update fails: the row stays Pending, PersistenceError(persisted=True)
      and `reconcile_pending` later marks it Failed;
    - publish fails: the trade is committed as Executed, PublishError
      carries it back to the caller.
    """

    def __init__(self, db_client: DatabaseClient, publisher: TradePublisher):
        self.db_client = db_client
        self.publisher = publisher

    async def execute_trade(self, request: CreateTradeDTO) -> TradeDTO:
        logger.info(
            f"Executing trade for user {request.user_id}, Symbol: {request.symbol}, "
            f"Quantity: {request.quantity}"
        )

        if not request.symbol or not request.symbol.strip():
            raise TradeValidationError("Symbol is required")
        if not request.user_id or not request.user_id.strip():
            raise TradeValidationError("UserId is required")

        trade = TradeDTO(
            symbol=request.symbol.strip().upper(),
            quantity=request.quantity,
            price=request.price,
            side=request.side,
            executed_at=datetime.now(timezone.utc),
            user_id=request.user_id.strip(),
            status=TradeStatus.PENDING,
        )

        # 1) Insert as Pending
        try:
            async with self.db_client.get_session() as session:
                trade = await TradeRepository(session).add(trade)
        except Exception as e:
            logger.error(
                f"Trade for user {request.user_id} was not persisted: {e}")
            raise PersistenceError(
                f"Failed to persist trade: {e}", persisted=False) from e

        # 2) Pending -> Executed
        trade = await self._transition(trade, TradeStatus.EXECUTED)

        # 3) Notify
        try:
            await self.publisher.publish(trade)
        except Exception as e:
            logger.error(
                f"Trade {trade.id} is committed as {trade.status.value} "
                f"but its notification failed: {e}"
            )
            if isinstance(e, PublishError) and e.trade is not None:
                raise
            raise PublishError(
                f"Failed to publish trade {trade.id}: {e}", trade=trade) from e

        logger.info(f"Trade executed successfully. TradeId: {trade.id}")
        return trade

    async def _transition(self, trade: TradeDTO, target: TradeStatus) -> TradeDTO:
        if not trade.status.can_transition_to(target):
            raise InvalidStatusTransition(
                f"Trade {trade.id} cannot move from {trade.status.value} to {target.value}")

        try:
            async with self.db_client.get_session() as session:
                updated = await TradeRepository(session).update_status(
                    trade.id, target, expected=trade.status)
        except Exception as e:
            logger.error(
                f"Trade {trade.id} persisted but stuck in {trade.status.value}: {e}")
            raise PersistenceError(
                f"Failed to mark trade {trade.id} as {target.value}: {e}",
                persisted=True,
                trade_id=trade.id,
            ) from e

        if not updated:
            logger.error(
                f"Trade {trade.id} was no longer {trade.status.value}, status not changed")
            raise PersistenceError(
                f"Trade {trade.id} is no longer {trade.status.value}",
                persisted=True,
                trade_id=trade.id,
            )

        return trade.model_copy(update={"status": target})

    async def get_trade(self, trade_id: int) -> Optional[TradeDTO]:
        logger.info(f"Retrieving trade with ID: {trade_id}")

        async with self.db_client.get_session() as session:
            trade = await TradeRepository(session).get_by_id(trade_id)

        if trade is None:
            logger.warning(f"Trade with ID {trade_id} not found")

        return trade

    async def list_trades(self, query: TradeQueryDTO) -> TradePageDTO:
        async with self.db_client.get_session() as session:
            trades, total_count = await TradeRepository(session).search(query)

        logger.info(
            f"Retrieved {len(trades)} trades out of {total_count} total "
            f"(page {query.page}, size {query.page_size})"
        )

        return TradePageDTO(
            items=trades,
            total_count=total_count,
            page=query.page,
            page_size=query.page_size,
        )

    async def get_statistics(self, user_id: str) -> TradeStatisticsDTO:
        logger.info(f"Calculating trade statistics for user: {user_id}")

        async with self.db_client.get_session() as session:
            trades = await TradeRepository(session).get_executed_for_user(user_id)

        total_trades = len(trades)
        total_volume = sum((t.total_value for t in trades), Decimal("0"))

        statistics = TradeStatisticsDTO(
            total_trades=total_trades,
            total_volume=total_volume,
            buy_count=sum(1 for t in trades if t.side == TradeSide.BUY),
            sell_count=sum(1 for t in trades if t.side == TradeSide.SELL),
            average_trade_value=(
                total_volume / total_trades if total_trades else Decimal("0")
            ),
        )

        logger.info(
            f"Statistics calculated for user {user_id}: {statistics.total_trades} trades, "
            f"{statistics.total_volume} total volume"
        )
        return statistics

    async def reconcile_pending(self, older_than: timedelta) -> int:
        """
        Resolve trades whose Executed update never landed: anything still
        Pending after `older_than` becomes Failed.
        """
        cutoff = datetime.now(timezone.utc) - older_than

        async with self.db_client.get_session() as session:
            failed = await TradeRepository(session).fail_stale_pending(cutoff)

        if failed:
            logger.warning(
                f"Marked {failed} trades stuck in Pending before {cutoff.isoformat()} as Failed")

        return failed
