"""
Money and ownership movements for shop purchases and resales.

Every transfer runs inside the caller's unit of work and re-verifies its
preconditions with conditional updates right before mutating. When another
buyer (agent or real user) got there first, a StaleStateError is raised and
the caller's transaction is rolled back as a whole: no half-applied debit,
credit or ownership change survives.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from rapsim.database.models import Item, Holding, Transaction, SALE_STOCK
from rapsim.database.operations import (
    debit_cash, credit_cash, next_serial_number, owned_count, queue_event
)
from rapsim.economy.events import PurchaseEvent, SaleEvent
from rapsim.economy.rap import record_sale
from rapsim.errors import StaleStateError

logger = logging.getLogger(__name__)

DEFAULT_SELLER_SHARE = 0.6


@dataclass
class SaleResult:
    """Outcome of a completed resale."""
    holding_id: int
    item_id: int
    seller_id: int
    price: int
    seller_proceeds: int
    fee: int
    old_rap: int
    new_rap: int


def purchase_new_copy(session: Session, buyer_id: int, item_id: int,
                      now: Optional[datetime] = None) -> Holding:
    """
    Buy one new copy of a shop item.

    Shop purchases do not move RAP; only resales do.

    Raises:
        StaleStateError: item sold out, went limited/off-sale, buy limit reached
            or the buyer can no longer afford it
    """
    now = now or datetime.now()

    item = session.get(Item, item_id, with_for_update=True, populate_existing=True)
    if item is None:
        raise StaleStateError(f"Item {item_id} no longer exists")
    if item.is_off_sale or item.is_limited:
        raise StaleStateError(f"Item {item_id} is no longer sold in the shop")
    if item.sale_end_time is not None and item.sale_end_time < now:
        raise StaleStateError(f"Sale of item {item_id} ended")
    if item.sale_type == SALE_STOCK and (item.remaining_stock or 0) <= 0:
        raise StaleStateError(f"Item {item_id} is out of stock")
    if item.buy_limit and owned_count(session, buyer_id, item_id) >= item.buy_limit:
        raise StaleStateError(f"User {buyer_id} reached the buy limit for item {item_id}")

    price = item.price
    debit_cash(session, buyer_id, price)

    serial = next_serial_number(session, item_id)
    holding = Holding(
        owner_id=buyer_id,
        item_id=item_id,
        serial_number=serial,
        is_listed=False,
        purchase_price=price,
        acquired_at=now
    )
    session.add(holding)

    if item.sale_type == SALE_STOCK:
        item.remaining_stock = item.remaining_stock - 1
        # Sold-out stock items become tradeable limiteds
        if item.remaining_stock <= 0:
            item.is_limited = True

    session.add(Transaction(
        user_id=buyer_id, type="buy", amount=price, item_id=item_id,
        related_user_id=None, created_at=now
    ))
    session.flush()

    queue_event(session, PurchaseEvent(
        buyer_id=buyer_id,
        item_id=item_id,
        holding_id=holding.id,
        serial_number=serial,
        price=price,
        occurred_at=now
    ))
    return holding


def purchase_listing(session: Session, buyer_id: int, holding_id: int, expected_price: int,
                     seller_share: float = DEFAULT_SELLER_SHARE,
                     now: Optional[datetime] = None) -> SaleResult:
    """
    Buy a listed holding from its owner.

    The seller receives ``seller_share`` of the price; the rest is a fee that
    leaves the economy. Feeds the sale into the RAP engine exactly once.

    Raises:
        StaleStateError: listing gone, repriced, owned by the buyer, or the
            buyer can no longer afford it
    """
    now = now or datetime.now()

    holding = session.get(Holding, holding_id, with_for_update=True, populate_existing=True)
    if holding is None or not holding.is_listed:
        raise StaleStateError(f"Listing {holding_id} is no longer available")
    if holding.list_price != expected_price:
        raise StaleStateError(
            f"Listing {holding_id} repriced from {expected_price} to {holding.list_price}"
        )
    if holding.owner_id == buyer_id:
        raise StaleStateError(f"User {buyer_id} cannot buy their own listing {holding_id}")

    seller_id = holding.owner_id
    item_id = holding.item_id
    price = expected_price

    debit_cash(session, buyer_id, price)

    moved = (
        session.query(Holding)
        .filter(
            Holding.id == holding_id,
            Holding.owner_id == seller_id,
            Holding.is_listed.is_(True),
            Holding.list_price == price
        )
        .update({
            Holding.owner_id: buyer_id,
            Holding.is_listed: False,
            Holding.list_price: None,
            Holding.purchase_price: price,
            Holding.acquired_at: now
        }, synchronize_session="fetch")
    )
    if moved != 1:
        raise StaleStateError(f"Listing {holding_id} changed hands during purchase")

    seller_proceeds = int(price * seller_share)
    fee = price - seller_proceeds
    credit_cash(session, seller_id, seller_proceeds)

    old_rap = holding.item.rap or 0
    new_rap = record_sale(session, item_id, price, now=now)

    session.add_all([
        Transaction(user_id=buyer_id, type="buy", amount=price, item_id=item_id,
                    related_user_id=seller_id, created_at=now),
        Transaction(user_id=seller_id, type="sell", amount=price, item_id=item_id,
                    related_user_id=buyer_id, created_at=now),
    ])
    session.flush()

    queue_event(session, SaleEvent(
        buyer_id=buyer_id,
        seller_id=seller_id,
        item_id=item_id,
        holding_id=holding_id,
        price=price,
        seller_proceeds=seller_proceeds,
        fee=fee,
        old_rap=old_rap,
        new_rap=new_rap,
        occurred_at=now
    ))

    return SaleResult(
        holding_id=holding_id,
        item_id=item_id,
        seller_id=seller_id,
        price=price,
        seller_proceeds=seller_proceeds,
        fee=fee,
        old_rap=old_rap,
        new_rap=new_rap
    )


def set_listing(session: Session, owner_id: int, holding_id: int, price: Optional[int]):
    """
    List a holding at ``price``, reprice it, or delist it when ``price`` is None.

    Raises:
        StaleStateError: the holding is no longer owned by ``owner_id``
        ValueError: ``price`` is not positive
    """
    if price is not None and price <= 0:
        raise ValueError(f"List price must be positive, got {price}")

    updated = (
        session.query(Holding)
        .filter(Holding.id == holding_id, Holding.owner_id == owner_id)
        .update({
            Holding.is_listed: price is not None,
            Holding.list_price: price
        }, synchronize_session="fetch")
    )
    if updated != 1:
        raise StaleStateError(f"Holding {holding_id} is no longer owned by user {owner_id}")
