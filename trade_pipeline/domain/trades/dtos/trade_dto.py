import math
from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from trade_pipeline.commons.enums.trade_enums import TradeSide, TradeStatus

MAX_QUANTITY = 1_000_000
MAX_PRICE = Decimal("100000")
MAX_TRADE_VALUE = Decimal("1000000")

# JSON clients expect numbers, not the decimal strings pydantic emits by default
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(v), return_type=float, when_used="json"),
]

_API_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    from_attributes=True,
)


class CreateTradeDTO(BaseModel):
    """
    Trade execution request.

    Strings are stripped before the length checks. Blank symbol / user id
    are rejected by TradeService, not here, so that the service keeps its
    own guard regardless of the caller.
    """

    model_config = ConfigDict(**_API_CONFIG, str_strip_whitespace=True)

    symbol: str = Field(..., max_length=10)
    quantity: int = Field(..., gt=0, le=MAX_QUANTITY)
    price: Decimal = Field(..., gt=0, le=MAX_PRICE, decimal_places=2)
    side: TradeSide = Field(..., alias="tradeType")
    user_id: str = Field(..., max_length=50)

    @field_validator("side", mode="before")
    @classmethod
    def parse_side(cls, v):
        if isinstance(v, str):
            return TradeSide(v)
        return v

    @model_validator(mode="after")
    def check_trade_value(self) -> "CreateTradeDTO":
        if self.quantity * self.price > MAX_TRADE_VALUE:
            raise ValueError(
                f"Total trade value cannot exceed {MAX_TRADE_VALUE:,}")
        return self


class TradeDTO(BaseModel):
    """
    Trade entity as seen by the service and the API.
    """

    model_config = _API_CONFIG

    id: Optional[int] = None
    symbol: str
    quantity: int = Field(..., gt=0)
    price: Money = Field(..., gt=0)
    side: TradeSide = Field(..., alias="tradeType")
    executed_at: datetime
    user_id: str
    status: TradeStatus = TradeStatus.PENDING

    @computed_field(alias="totalValue")
    @property
    def total_value(self) -> Money:
        return self.quantity * self.price

    @property
    def is_executed(self) -> bool:
        return self.status == TradeStatus.EXECUTED


class TradeQueryDTO(BaseModel):
    """Filter + offset pagination for trade listings (page is 1-indexed)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: Optional[str] = None
    symbol: Optional[str] = None
    side: Optional[TradeSide] = Field(default=None, alias="tradeType")
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class TradePageDTO(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    items: List[TradeDTO]
    total_count: int
    page: int
    page_size: int

    @computed_field(alias="totalPages")
    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size)


class TradeStatisticsDTO(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_trades: int = 0
    total_volume: Money = Decimal("0")
    buy_count: int = 0
    sell_count: int = 0
    average_trade_value: Money = Decimal("0")
