from .base import Base, BaseModel
from .trade_model import TradeModel


__all__ = [
    "Base",
    "BaseModel",
    "TradeModel",
]
