import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

from sqlalchemy.exc import SQLAlchemyError

from trade_pipeline.commons.enums.trade_enums import TradeSide, TradeStatus
from trade_pipeline.domain.trades.dtos.trade_dto import CreateTradeDTO, TradeDTO, TradeQueryDTO
from trade_pipeline.domain.trades.errors import (
    PersistenceError,
    PublishError,
    TradeValidationError,
)
from trade_pipeline.domain.trades.trade_service import TradeService
from trade_pipeline.infrastructure.config.settings import IN_MEMORY_DATABASE_URL
from trade_pipeline.infrastructure.database.client import DatabaseClient
from trade_pipeline.infrastructure.database.repositories.trade_repository import TradeRepository


@pytest_asyncio.fixture
async def db_client():
    """In-memory SQLite store, fresh for every test."""
    client = DatabaseClient(db_url=IN_MEMORY_DATABASE_URL)
    await client.init()
    yield client
    await client.close()


@pytest.fixture
def mock_publisher():
    publisher = MagicMock()
    publisher.publish = AsyncMock()
    return publisher


@pytest.fixture
def trade_service(db_client, mock_publisher):
    return TradeService(db_client=db_client, publisher=mock_publisher)


def create_request(
    symbol: str = "AAPL",
    quantity: int = 100,
    price: str = "150.50",
    side: TradeSide = TradeSide.BUY,
    user_id: str = "u1",
) -> CreateTradeDTO:
    return CreateTradeDTO(
        symbol=symbol,
        quantity=quantity,
        price=Decimal(price),
        side=side,
        user_id=user_id,
    )


async def insert_trade(db_client, status=TradeStatus.EXECUTED, executed_at=None, **kwargs) -> TradeDTO:
    """Store a trade directly, bypassing the execution flow."""
    trade = TradeDTO(
        symbol=kwargs.get("symbol", "MSFT"),
        quantity=kwargs.get("quantity", 10),
        price=Decimal(kwargs.get("price", "300.00")),
        side=kwargs.get("side", TradeSide.BUY),
        executed_at=executed_at or datetime.now(timezone.utc),
        user_id=kwargs.get("user_id", "u1"),
        status=status,
    )
    async with db_client.get_session() as session:
        return await TradeRepository(session).add(trade)


# ==================== EXECUTE TRADE ====================


@pytest.mark.asyncio
async def test_execute_trade_returns_executed_trade(trade_service, mock_publisher):
    trade = await trade_service.execute_trade(create_request())

    assert trade.id is not None and trade.id > 0
    assert trade.status == TradeStatus.EXECUTED
    assert trade.total_value == Decimal("15050.00")
    mock_publisher.publish.assert_called_once()
    published = mock_publisher.publish.call_args[0][0]
    assert published.id == trade.id
    assert published.status == TradeStatus.EXECUTED


@pytest.mark.asyncio
async def test_symbol_is_normalized_to_uppercase(trade_service):
    trade = await trade_service.execute_trade(create_request(symbol=" aapl "))

    assert trade.symbol == "AAPL"
    stored = await trade_service.get_trade(trade.id)
    assert stored.symbol == "AAPL"


@pytest.mark.asyncio
async def test_execute_trade_persists_executed_row(trade_service):
    trade = await trade_service.execute_trade(create_request(side=TradeSide.SELL))

    stored = await trade_service.get_trade(trade.id)

    assert stored.status == TradeStatus.EXECUTED
    assert stored.side == TradeSide.SELL
    assert stored.quantity == 100
    assert stored.price == Decimal("150.50")
    assert stored.total_value == stored.quantity * stored.price


@pytest.mark.asyncio
async def test_ids_are_assigned_by_the_store(trade_service):
    first = await trade_service.execute_trade(create_request())
    second = await trade_service.execute_trade(create_request(symbol="GOOGL"))

    assert first.id != second.id


@pytest.mark.asyncio
@pytest.mark.parametrize("symbol", ["", "   "])
async def test_blank_symbol_is_rejected_without_persisting(trade_service, mock_publisher, symbol):
    with pytest.raises(TradeValidationError, match="Symbol is required"):
        await trade_service.execute_trade(create_request(symbol=symbol))

    page = await trade_service.list_trades(TradeQueryDTO())
    assert page.total_count == 0
    mock_publisher.publish.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("user_id", ["", "  \t"])
async def test_blank_user_id_is_rejected_without_persisting(trade_service, mock_publisher, user_id):
    with pytest.raises(TradeValidationError, match="UserId is required"):
        await trade_service.execute_trade(create_request(user_id=user_id))

    page = await trade_service.list_trades(TradeQueryDTO())
    assert page.total_count == 0
    mock_publisher.publish.assert_not_called()


# ==================== FAILURE HANDLING ====================


@pytest.mark.asyncio
async def test_insert_failure_raises_persistence_error(trade_service, mock_publisher):
    with patch.object(
        TradeRepository, "add", AsyncMock(side_effect=SQLAlchemyError("db down"))
    ):
        with pytest.raises(PersistenceError) as exc_info:
            await trade_service.execute_trade(create_request())

    assert exc_info.value.persisted is False
    assert exc_info.value.trade_id is None
    mock_publisher.publish.assert_not_called()

    page = await trade_service.list_trades(TradeQueryDTO())
    assert page.total_count == 0


@pytest.mark.asyncio
async def test_crash_between_writes_leaves_trade_pending(trade_service, mock_publisher):
    """
    The insert commits, the status update fails: the trade stays Pending
    and no notification is sent.
    """
    with patch.object(
        TradeRepository, "update_status", AsyncMock(side_effect=SQLAlchemyError("connection lost"))
    ):
        with pytest.raises(PersistenceError) as exc_info:
            await trade_service.execute_trade(create_request())

    error = exc_info.value
    assert error.persisted is True
    assert error.trade_id is not None

    stored = await trade_service.get_trade(error.trade_id)
    assert stored.status == TradeStatus.PENDING
    mock_publisher.publish.assert_not_called()


@pytest.mark.asyncio
async def test_status_update_that_matches_no_row_is_an_error(trade_service, mock_publisher):
    with patch.object(TradeRepository, "update_status", AsyncMock(return_value=False)):
        with pytest.raises(PersistenceError, match="no longer Pending") as exc_info:
            await trade_service.execute_trade(create_request())

    assert exc_info.value.persisted is True
    mock_publisher.publish.assert_not_called()


@pytest.mark.asyncio
async def test_publish_failure_keeps_trade_executed(trade_service, mock_publisher):
    mock_publisher.publish = AsyncMock(side_effect=RuntimeError("Broker connection error"))

    with pytest.raises(PublishError) as exc_info:
        await trade_service.execute_trade(create_request())

    committed = exc_info.value.trade
    assert committed is not None
    assert committed.status == TradeStatus.EXECUTED

    stored = await trade_service.get_trade(committed.id)
    assert stored is not None
    assert stored.status == TradeStatus.EXECUTED


@pytest.mark.asyncio
async def test_publish_error_from_publisher_is_propagated_as_is(trade_service, mock_publisher):
    async def failing_publish(trade):
        raise PublishError("exchange rejected", trade=trade)

    mock_publisher.publish = AsyncMock(side_effect=failing_publish)

    with pytest.raises(PublishError, match="exchange rejected") as exc_info:
        await trade_service.execute_trade(create_request())

    assert exc_info.value.trade.status == TradeStatus.EXECUTED


# ==================== QUERIES ====================


@pytest.mark.asyncio
async def test_get_trade_not_found_returns_none(trade_service):
    assert await trade_service.get_trade(999) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("total,page_size", [(7, 3), (9, 3), (1, 10), (10, 10)])
async def test_last_page_holds_the_remainder(trade_service, total, page_size):
    for i in range(total):
        await trade_service.execute_trade(create_request(quantity=i + 1))

    last_page = -(-total // page_size)
    expected_remainder = total % page_size or page_size

    page = await trade_service.list_trades(
        TradeQueryDTO(page=last_page, page_size=page_size))

    assert len(page.items) == expected_remainder
    assert page.total_count == total
    assert page.total_pages == last_page


@pytest.mark.asyncio
async def test_total_count_does_not_depend_on_page(trade_service):
    for i in range(5):
        await trade_service.execute_trade(create_request(quantity=i + 1))

    beyond = await trade_service.list_trades(TradeQueryDTO(page=4, page_size=2))

    assert beyond.items == []
    assert beyond.total_count == 5


@pytest.mark.asyncio
async def test_list_is_ordered_newest_first(trade_service, db_client):
    now = datetime.now(timezone.utc)
    old = await insert_trade(db_client, executed_at=now - timedelta(days=2), symbol="OLD")
    new = await insert_trade(db_client, executed_at=now, symbol="NEW")
    mid = await insert_trade(db_client, executed_at=now - timedelta(days=1), symbol="MID")

    page = await trade_service.list_trades(TradeQueryDTO())

    assert [t.id for t in page.items] == [new.id, mid.id, old.id]


@pytest.mark.asyncio
async def test_list_filters(trade_service, db_client):
    now = datetime.now(timezone.utc)
    await insert_trade(db_client, user_id="u1", symbol="AAPL", side=TradeSide.BUY,
                       executed_at=now - timedelta(days=10))
    await insert_trade(db_client, user_id="u1", symbol="GOOGL", side=TradeSide.SELL,
                       executed_at=now - timedelta(days=3))
    await insert_trade(db_client, user_id="u2", symbol="AAPL", side=TradeSide.SELL,
                       executed_at=now - timedelta(days=1))

    by_user = await trade_service.list_trades(TradeQueryDTO(user_id="u1"))
    assert by_user.total_count == 2

    by_symbol = await trade_service.list_trades(TradeQueryDTO(symbol="aapl"))
    assert by_symbol.total_count == 2
    assert {t.symbol for t in by_symbol.items} == {"AAPL"}

    by_side = await trade_service.list_trades(TradeQueryDTO(side=TradeSide.SELL))
    assert by_side.total_count == 2

    by_range = await trade_service.list_trades(TradeQueryDTO(
        from_date=now - timedelta(days=5),
        to_date=now - timedelta(days=2),
    ))
    assert by_range.total_count == 1
    assert by_range.items[0].symbol == "GOOGL"

    combined = await trade_service.list_trades(
        TradeQueryDTO(user_id="u2", side=TradeSide.SELL, page_size=1))
    assert combined.total_count == 1


@pytest.mark.asyncio
async def test_date_filters_respect_utc_offsets(trade_service, db_client):
    executed_at = datetime(2024, 1, 15, 10, 59, 31, tzinfo=timezone.utc)
    trade = await insert_trade(db_client, executed_at=executed_at)
    plus_five = timezone(timedelta(hours=5))

    one_second_before = datetime(2024, 1, 15, 15, 59, 30, tzinfo=plus_five)
    one_second_after = datetime(2024, 1, 15, 15, 59, 32, tzinfo=plus_five)

    assert (await trade_service.list_trades(
        TradeQueryDTO(from_date=one_second_before))).total_count == 1
    assert (await trade_service.list_trades(
        TradeQueryDTO(from_date=one_second_after))).total_count == 0
    assert (await trade_service.list_trades(
        TradeQueryDTO(to_date=one_second_before))).total_count == 0
    assert (await trade_service.list_trades(
        TradeQueryDTO(from_date=one_second_before, to_date=one_second_after))).total_count == 1

    stored = await trade_service.get_trade(trade.id)
    assert stored.executed_at.tzinfo is not None
    assert stored.executed_at == executed_at


@pytest.mark.asyncio
async def test_offset_timestamps_are_stored_as_utc(trade_service, db_client):
    local = datetime(2024, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=-3)))
    trade = await insert_trade(db_client, executed_at=local)

    stored = await trade_service.get_trade(trade.id)

    assert stored.executed_at == local
    assert stored.executed_at.utcoffset() == timedelta(0)


# ==================== STATISTICS ====================


@pytest.mark.asyncio
async def test_statistics_for_user_without_trades(trade_service):
    stats = await trade_service.get_statistics("nobody")

    assert stats.total_trades == 0
    assert stats.total_volume == Decimal("0")
    assert stats.buy_count == 0
    assert stats.sell_count == 0
    assert stats.average_trade_value == Decimal("0")


@pytest.mark.asyncio
async def test_statistics_scenario(trade_service):
    aapl = await trade_service.execute_trade(
        create_request(symbol="aapl", quantity=100, price="150.50", side=TradeSide.BUY))
    await trade_service.execute_trade(
        create_request(symbol="GOOGL", quantity=50, price="2800.75", side=TradeSide.SELL))

    assert aapl.symbol == "AAPL"
    assert aapl.total_value == Decimal("15050.00")

    stats = await trade_service.get_statistics("u1")

    assert stats.total_trades == 2
    assert stats.buy_count == 1
    assert stats.sell_count == 1
    assert stats.total_volume == Decimal("155087.50")
    assert stats.average_trade_value == Decimal("77543.75")


@pytest.mark.asyncio
async def test_statistics_average_is_not_rounded(trade_service):
    for price in ("100.00", "100.00", "100.01"):
        await trade_service.execute_trade(create_request(quantity=1, price=price))

    stats = await trade_service.get_statistics("u1")

    assert stats.total_volume == Decimal("300.01")
    assert stats.average_trade_value == Decimal("300.01") / 3
    assert stats.average_trade_value > Decimal("100.00")


@pytest.mark.asyncio
async def test_statistics_only_count_executed_trades(trade_service, db_client):
    await trade_service.execute_trade(create_request())
    await insert_trade(db_client, status=TradeStatus.PENDING)
    await insert_trade(db_client, status=TradeStatus.FAILED)
    await insert_trade(db_client, user_id="u2")

    stats = await trade_service.get_statistics("u1")

    assert stats.total_trades == 1
    assert stats.total_volume == Decimal("15050.00")


# ==================== RECONCILIATION ====================


@pytest.mark.asyncio
async def test_reconcile_pending_fails_only_stale_trades(trade_service, db_client):
    now = datetime.now(timezone.utc)
    stale = await insert_trade(db_client, status=TradeStatus.PENDING,
                               executed_at=now - timedelta(hours=1))
    fresh = await insert_trade(db_client, status=TradeStatus.PENDING, executed_at=now)
    executed = await insert_trade(db_client, status=TradeStatus.EXECUTED,
                                  executed_at=now - timedelta(hours=2))

    failed = await trade_service.reconcile_pending(timedelta(minutes=15))

    assert failed == 1
    assert (await trade_service.get_trade(stale.id)).status == TradeStatus.FAILED
    assert (await trade_service.get_trade(fresh.id)).status == TradeStatus.PENDING
    assert (await trade_service.get_trade(executed.id)).status == TradeStatus.EXECUTED


@pytest.mark.asyncio
async def test_terminal_status_is_never_overwritten(db_client):
    trade = await insert_trade(db_client, status=TradeStatus.EXECUTED)

    async with db_client.get_session() as session:
        updated = await TradeRepository(session).update_status(trade.id, TradeStatus.FAILED)

    assert updated is False
    async with db_client.get_session() as session:
        stored = await TradeRepository(session).get_by_id(trade.id)
    assert stored.status == TradeStatus.EXECUTED


def test_status_transitions_only_move_forward():
    assert TradeStatus.PENDING.can_transition_to(TradeStatus.EXECUTED)
    assert TradeStatus.PENDING.can_transition_to(TradeStatus.FAILED)
    assert not TradeStatus.PENDING.can_transition_to(TradeStatus.CANCELLED)
    for terminal in (TradeStatus.EXECUTED, TradeStatus.FAILED, TradeStatus.CANCELLED):
        assert terminal.is_terminal
        assert not any(terminal.can_transition_to(s) for s in TradeStatus)


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
