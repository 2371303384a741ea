"""
Trade offer lifecycle.

    pending --accept--> accepted   (recipient only; swaps holdings and cash)
    pending --decline-> declined   (recipient only)
    pending --cancel--> cancelled  (sender only)

Terminal states are final.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from rapsim.database.models import (
    Holding, TradeOffer, TradeOfferItem, User,
    TRADE_PENDING, TRADE_ACCEPTED, TRADE_DECLINED, TRADE_CANCELLED,
    SIDE_OFFERED, SIDE_REQUESTED
)
from rapsim.database.operations import debit_cash, credit_cash, queue_event
from rapsim.economy.events import TradeAcceptedEvent
from rapsim.economy.valuation import holdings_value
from rapsim.errors import StaleStateError, InvalidTransitionError

logger = logging.getLogger(__name__)


def create_trade_offer(session: Session, sender_id: int, recipient_id: int,
                       offered: Iterable[Holding], requested: Iterable[Holding],
                       offered_cash: int = 0, requested_cash: int = 0,
                       now: Optional[datetime] = None) -> TradeOffer:
    """
    Insert a pending trade offer.

    Raises:
        ValueError: the offer is empty, addressed to the sender, lists a holding
            twice or has a holding on the wrong side
    """
    offered = list(offered)
    requested = list(requested)

    if sender_id == recipient_id:
        raise ValueError("Cannot send a trade offer to yourself")
    if not (offered or offered_cash) or not (requested or requested_cash):
        raise ValueError("Both sides of a trade offer must contain something")
    if offered_cash < 0 or requested_cash < 0:
        raise ValueError("Cash legs must be non-negative")

    ids = [h.id for h in offered + requested]
    if len(ids) != len(set(ids)):
        raise ValueError("A holding may appear only once in a trade offer")
    if any(h.owner_id != sender_id for h in offered):
        raise ValueError("Offered holdings must belong to the sender")
    if any(h.owner_id != recipient_id for h in requested):
        raise ValueError("Requested holdings must belong to the recipient")

    trade = TradeOffer(
        sender_id=sender_id,
        recipient_id=recipient_id,
        status=TRADE_PENDING,
        offered_cash=offered_cash,
        requested_cash=requested_cash,
        created_at=now or datetime.now()
    )
    trade.entries = (
        [TradeOfferItem(holding=h, side=SIDE_OFFERED) for h in offered]
        + [TradeOfferItem(holding=h, side=SIDE_REQUESTED) for h in requested]
    )
    session.add(trade)
    session.flush()
    return trade


def _transition(trade: TradeOffer, status: str, now: Optional[datetime] = None):
    if trade.status != TRADE_PENDING:
        raise InvalidTransitionError(
            f"Trade {trade.id} is {trade.status}; cannot move to {status}"
        )
    trade.status = status
    trade.completed_at = now or datetime.now()


def decline_trade(session: Session, trade: TradeOffer, actor_id: int,
                  now: Optional[datetime] = None):
    """Decline a pending offer on behalf of its recipient."""
    if actor_id != trade.recipient_id:
        raise PermissionError(f"User {actor_id} cannot decline trade {trade.id}")
    _transition(trade, TRADE_DECLINED, now)
    session.flush()


def cancel_trade(session: Session, trade: TradeOffer, actor_id: int,
                 now: Optional[datetime] = None):
    """Withdraw a pending offer on behalf of its sender."""
    if actor_id != trade.sender_id:
        raise PermissionError(f"Only the sender can cancel trade {trade.id}")
    _transition(trade, TRADE_CANCELLED, now)
    session.flush()


def _move_holdings(session: Session, holdings, from_id: int, to_id: int, now: datetime):
    for holding in holdings:
        moved = (
            session.query(Holding)
            .filter(Holding.id == holding.id, Holding.owner_id == from_id)
            .update({
                Holding.owner_id: to_id,
                Holding.is_listed: False,
                Holding.list_price: None,
                Holding.acquired_at: now
            }, synchronize_session="fetch")
        )
        if moved != 1:
            raise StaleStateError(f"Holding {holding.id} left user {from_id} mid-trade")


def verify_trade(session: Session, trade: TradeOffer):
    """
    Check that every holding is still with the party offering it and that
    cash legs are covered.

    Raises:
        StaleStateError: a precondition no longer holds
    """
    for holding in trade.offered_holdings:
        session.refresh(holding)
        if holding.owner_id != trade.sender_id:
            raise StaleStateError(
                f"Trade {trade.id}: holding {holding.id} no longer owned by sender {trade.sender_id}"
            )
    for holding in trade.requested_holdings:
        session.refresh(holding)
        if holding.owner_id != trade.recipient_id:
            raise StaleStateError(
                f"Trade {trade.id}: holding {holding.id} no longer owned by recipient {trade.recipient_id}"
            )

    sender = session.get(User, trade.sender_id, populate_existing=True)
    recipient = session.get(User, trade.recipient_id, populate_existing=True)
    if sender is None or recipient is None:
        raise StaleStateError(f"Trade {trade.id}: a participant no longer exists")
    if trade.offered_cash and sender.cash < trade.offered_cash:
        raise StaleStateError(f"Trade {trade.id}: sender cannot cover {trade.offered_cash}")
    if trade.requested_cash and recipient.cash < trade.requested_cash:
        raise StaleStateError(f"Trade {trade.id}: recipient cannot cover {trade.requested_cash}")


def accept_trade(session: Session, trade: TradeOffer, actor_id: int,
                 now: Optional[datetime] = None) -> TradeAcceptedEvent:
    """
    Accept a pending offer: swap holdings and cash, then mark it accepted.

    All preconditions are verified before anything is written; a failure
    part-way through raises and the caller's unit of work rolls back.

    Raises:
        PermissionError: ``actor_id`` is not the recipient
        InvalidTransitionError: the offer is no longer pending
        StaleStateError: holdings or balances changed since the offer was made
    """
    now = now or datetime.now()

    if actor_id != trade.recipient_id:
        raise PermissionError(f"User {actor_id} cannot accept trade {trade.id}")
    session.refresh(trade)
    if trade.status != TRADE_PENDING:
        raise InvalidTransitionError(f"Trade {trade.id} is {trade.status}; cannot accept")

    verify_trade(session, trade)

    offered = trade.offered_holdings
    requested = trade.requested_holdings
    sender_value = holdings_value(offered) + (trade.offered_cash or 0)
    recipient_value = holdings_value(requested) + (trade.requested_cash or 0)

    _move_holdings(session, offered, trade.sender_id, trade.recipient_id, now)
    _move_holdings(session, requested, trade.recipient_id, trade.sender_id, now)

    if trade.offered_cash:
        debit_cash(session, trade.sender_id, trade.offered_cash)
        credit_cash(session, trade.recipient_id, trade.offered_cash)
    if trade.requested_cash:
        debit_cash(session, trade.recipient_id, trade.requested_cash)
        credit_cash(session, trade.sender_id, trade.requested_cash)

    _transition(trade, TRADE_ACCEPTED, now)
    session.flush()

    event = TradeAcceptedEvent(
        trade_id=trade.id,
        sender_id=trade.sender_id,
        recipient_id=trade.recipient_id,
        sender_value=sender_value,
        recipient_value=recipient_value,
        offered_item_ids=[h.item_id for h in offered],
        requested_item_ids=[h.item_id for h in requested],
        occurred_at=now
    )
    queue_event(session, event)
    logger.info(f"Trade {trade.id} accepted: {trade.sender_id} gave {sender_value}, "
                f"{trade.recipient_id} gave {recipient_value}")
    return event
