import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from dependency_injector.wiring import inject, Provide

from trade_pipeline.commons.enums.trade_enums import TradeSide
from trade_pipeline.domain.trades.dtos.trade_dto import (
    CreateTradeDTO,
    TradeDTO,
    TradeQueryDTO,
    TradeStatisticsDTO,
)
from trade_pipeline.domain.trades.errors import (
    PersistenceError,
    PublishError,
    TradeValidationError,
)
from trade_pipeline.domain.trades.trade_service import TradeService
from trade_pipeline.domain.trades.trades_module import TradesModule

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/trades", tags=["trades"])


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=TradeDTO,
    summary="Execute a new trade",
)
@inject
async def execute_trade(
    request: CreateTradeDTO,
    service: TradeService = Depends(Provide[TradesModule.service]),
):
    logger.info(f"Received trade execution request for user {request.user_id}")

    try:
        return await service.execute_trade(request)
    except TradeValidationError as e:
        logger.warning(f"Trade validation failed for user {request.user_id}: {e}")
        return JSONResponse(status_code=400, content={"message": str(e)})
    except PersistenceError as e:
        if e.persisted:
            logger.error(f"Trade {e.trade_id} persisted but not executed: {e}")
        else:
            logger.error(f"Trade for user {request.user_id} was never persisted: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "message": "An error occurred while executing the trade",
                "persisted": e.persisted,
                "tradeId": e.trade_id,
            },
        )
    except PublishError as e:
        trade_id = e.trade.id if e.trade else None
        logger.error(f"Trade {trade_id} executed but its notification failed: {e}")
        return JSONResponse(
            status_code=502,
            content={
                "message": "Trade executed but the notification could not be published",
                "persisted": True,
                "tradeId": trade_id,
            },
        )


@router.get("", summary="List trades with filters and pagination")
@inject
async def list_trades(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    symbol: Optional[str] = Query(default=None),
    side: Optional[TradeSide] = Query(default=None, alias="tradeType"),
    from_date: Optional[datetime] = Query(default=None, alias="fromDate"),
    to_date: Optional[datetime] = Query(default=None, alias="toDate"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=100, alias="pageSize"),
    service: TradeService = Depends(Provide[TradesModule.service]),
) -> dict:
    query = TradeQueryDTO(
        user_id=user_id,
        symbol=symbol,
        side=side,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    result = await service.list_trades(query)

    return {
        "data": [t.model_dump(mode="json", by_alias=True) for t in result.items],
        "pagination": {
            "currentPage": result.page,
            "pageSize": result.page_size,
            "totalCount": result.total_count,
            "totalPages": result.total_pages,
        },
    }


@router.get(
    "/statistics/{user_id}",
    response_model=TradeStatisticsDTO,
    summary="Trade statistics for a user",
)
@inject
async def get_statistics(
    user_id: str,
    service: TradeService = Depends(Provide[TradesModule.service]),
):
    if not user_id.strip():
        return JSONResponse(status_code=400, content={"message": "User ID is required"})

    return await service.get_statistics(user_id.strip())


@router.get("/{trade_id}", response_model=TradeDTO, summary="Get a trade by id")
@inject
async def get_trade(
    trade_id: int,
    service: TradeService = Depends(Provide[TradesModule.service]),
):
    trade = await service.get_trade(trade_id)

    if trade is None:
        return JSONResponse(
            status_code=404,
            content={"message": f"Trade with ID {trade_id} not found"},
        )

    return trade
