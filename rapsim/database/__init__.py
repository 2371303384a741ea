"""Database models and operations."""

from .models import (
    Base,
    User,
    Item,
    Holding,
    TradeOffer,
    TradeOfferItem,
    RapSnapshot,
    Transaction,
    RapChangeLog
)
from .operations import get_engine, get_session_factory, init_database, unit_of_work, queue_event

__all__ = [
    "Base",
    "User",
    "Item",
    "Holding",
    "TradeOffer",
    "TradeOfferItem",
    "RapSnapshot",
    "Transaction",
    "RapChangeLog",
    "get_engine",
    "get_session_factory",
    "init_database",
    "unit_of_work",
    "queue_event"
]
