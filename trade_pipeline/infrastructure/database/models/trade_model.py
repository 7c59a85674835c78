"""
Trade Database Model

SQLAlchemy model for executed trades. The total value is never stored,
it is always recomputed from quantity and price.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Index, Enum as SQLEnum

from trade_pipeline.commons.enums.trade_enums import TradeSide, TradeStatus
from trade_pipeline.infrastructure.database.models.base import BaseModel, utc_now


class TradeModel(BaseModel):
    """Trade database model."""

    __tablename__ = 'trades'

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(10), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(18, 2), nullable=False)
    side = Column(SQLEnum(TradeSide, name="trade_side"), nullable=False)
    executed_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    user_id = Column(String(50), nullable=False)
    status = Column(
        SQLEnum(TradeStatus, name="trade_status"),
        nullable=False,
        default=TradeStatus.PENDING,
    )

    __table_args__ = (
        Index("ix_trades_user_id", "user_id"),
        Index("ix_trades_symbol", "symbol"),
        Index("ix_trades_executed_at", "executed_at"),
    )
