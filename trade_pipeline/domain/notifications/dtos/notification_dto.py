import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from trade_pipeline.commons.enums.trade_enums import TradeSide, TradeStatus
from trade_pipeline.domain.trades.dtos.trade_dto import Money, TradeDTO


class TradeNotificationDTO(BaseModel):
    """
    Flat, immutable snapshot of a trade at publish time.

    Wire format is camelCase JSON. Parsing ignores key casing so that
    producers using other naming conventions (PascalCase, snake_case)
    are accepted.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    id: int
    symbol: str
    quantity: int
    price: Money
    trade_type: TradeSide
    executed_at: datetime
    user_id: str
    status: TradeStatus
    total_value: Money
    published_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("trade_type", "status", mode="before")
    @classmethod
    def parse_enum(cls, v, info: ValidationInfo):
        if isinstance(v, str):
            return cls.model_fields[info.field_name].annotation(v)
        return v

    @classmethod
    def from_trade(cls, trade: TradeDTO, published_at: Optional[datetime] = None) -> "TradeNotificationDTO":
        return cls(
            id=trade.id,
            symbol=trade.symbol,
            quantity=trade.quantity,
            price=trade.price,
            trade_type=trade.side,
            executed_at=trade.executed_at,
            user_id=trade.user_id,
            status=trade.status,
            total_value=trade.total_value,
            published_at=published_at or datetime.now(timezone.utc),
        )

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_json(cls, body: Union[bytes, str]) -> "TradeNotificationDTO":
        """Raises ValueError (or pydantic.ValidationError) on a malformed payload."""
        raw = json.loads(body)
        if not isinstance(raw, dict):
            raise ValueError(
                f"Notification payload must be a JSON object, got {type(raw).__name__}")
        return cls.model_validate(_normalize_keys(raw))


def _key(name: str) -> str:
    return name.replace("_", "").lower()


_FIELD_BY_KEY = {_key(name): name for name in TradeNotificationDTO.model_fields}


def _normalize_keys(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {_FIELD_BY_KEY.get(_key(str(k)), k): v for k, v in raw.items()}
