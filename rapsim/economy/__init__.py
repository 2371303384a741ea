"""Market economics: valuation, RAP, transfers, trades and events."""

from .valuation import is_projected, effective_value, reference_value
from .rap import record_sale
from .events import EventBus, MarketEvent, PurchaseEvent, SaleEvent, TradeAcceptedEvent, ProjectionChanged

__all__ = [
    "is_projected",
    "effective_value",
    "reference_value",
    "record_sale",
    "EventBus",
    "MarketEvent",
    "PurchaseEvent",
    "SaleEvent",
    "TradeAcceptedEvent",
    "ProjectionChanged"
]
