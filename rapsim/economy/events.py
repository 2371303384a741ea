"""Domain events emitted by the market for downstream consumers."""

import logging
from datetime import datetime
from typing import Callable, List, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_PROOF_THRESHOLD = 10_000


class MarketEvent(BaseModel):
    """Base class for market events."""

    kind: str = "market_event"
    occurred_at: datetime = Field(default_factory=datetime.now)


class PurchaseEvent(MarketEvent):
    """A new copy bought from the shop."""

    kind: Literal["purchase"] = "purchase"
    buyer_id: int
    item_id: int
    holding_id: int
    serial_number: int
    price: int = Field(ge=0)


class SaleEvent(MarketEvent):
    """A listing bought from another owner."""

    kind: Literal["sale"] = "sale"
    buyer_id: int
    seller_id: int
    item_id: int
    holding_id: int
    price: int = Field(ge=0)
    seller_proceeds: int = Field(ge=0)
    fee: int = Field(ge=0)
    old_rap: int
    new_rap: int


class TradeAcceptedEvent(MarketEvent):
    """A trade offer completed; holdings and cash have been swapped."""

    kind: Literal["trade_accepted"] = "trade_accepted"
    trade_id: int
    sender_id: int
    recipient_id: int
    sender_value: int = Field(description="Effective value the sender gave up")
    recipient_value: int = Field(description="Effective value the recipient gave up")
    offered_item_ids: List[int] = Field(default_factory=list)
    requested_item_ids: List[int] = Field(default_factory=list)

    def is_proof_worthy(self, threshold: int = DEFAULT_PROOF_THRESHOLD) -> bool:
        """Only trades where both sides clear ``threshold`` are forwarded as proofs."""
        return self.sender_value >= threshold and self.recipient_value >= threshold


class ProjectionChanged(MarketEvent):
    """An item moved into or out of the projected state after a sale."""

    kind: Literal["projection_changed"] = "projection_changed"
    item_id: int
    is_projected: bool
    value: int
    rap: int


EventHandler = Callable[[MarketEvent], None]


class EventBus:
    """
    In-process fan-out of market events.

    Handlers belong to other subsystems (transaction history, badges,
    webhooks); a failing handler is logged and does not affect the others.
    """

    def __init__(self):
        self._handlers: List[EventHandler] = []

    def subscribe(self, handler: EventHandler):
        self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler):
        if handler in self._handlers:
            self._handlers.remove(handler)

    def publish(self, event: MarketEvent):
        logger.debug(f"Publishing {event.kind}: {event.model_dump(exclude={'kind'})}")
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler {handler!r} failed for {event.kind}: {e}", exc_info=True)
