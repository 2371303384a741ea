"""Database operations: engine/session handling, unit of work and market queries."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional, Iterator

from sqlalchemy import create_engine, func, or_, and_
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from rapsim.database.models import (
    Base, User, Item, Holding, TradeOffer, TradeOfferItem,
    TRADE_PENDING, SIDE_OFFERED, SALE_STOCK, SALE_TIMER
)
from rapsim.errors import StaleStateError

logger = logging.getLogger(__name__)

EVENTS_KEY = "pending_events"


# Create engine and session
def get_engine(database_url: Optional[str] = None) -> Engine:
    """Get database engine. Defaults to ``DATABASE_URL`` from the app config."""
    if database_url is None:
        from rapsim.config import get_config
        database_url = get_config().database_url

    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection so every session sees the same in-memory database
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool
        )
    return create_engine(database_url)


def get_session_factory(engine: Engine) -> sessionmaker:
    """Get a session factory bound to ``engine``."""
    return sessionmaker(bind=engine)


def init_database(engine: Engine):
    """Initialize database tables."""
    Base.metadata.create_all(engine)


@contextmanager
def unit_of_work(session_factory: sessionmaker, event_bus=None) -> Iterator[Session]:
    """
    Run a block inside one database transaction.

    Commits on success and rolls back on any error. Domain events queued with
    :func:`queue_event` are published to ``event_bus`` only after the commit
    succeeded; a rolled back unit publishes nothing.
    """
    session = session_factory()
    session.info[EVENTS_KEY] = []

    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    else:
        events = session.info.get(EVENTS_KEY, [])
        if event_bus is not None:
            for event in events:
                event_bus.publish(event)
    finally:
        session.info.pop(EVENTS_KEY, None)
        session.close()


def queue_event(session: Session, event):
    """Queue a domain event for publication after the session commits."""
    session.info.setdefault(EVENTS_KEY, []).append(event)


def pending_events(session: Session) -> list:
    """Events queued on ``session`` and not yet published."""
    return list(session.info.get(EVENTS_KEY, []))


# ----------------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------------

def get_agents(session: Session) -> List[User]:
    """All autonomous agents ordered by id."""
    return session.query(User).filter(User.is_ai.is_(True)).order_by(User.id).all()


def get_online_agents(session: Session) -> List[User]:
    """Agents whose persisted online flag is set, ordered by id."""
    return (
        session.query(User)
        .filter(User.is_ai.is_(True), User.is_online.is_(True))
        .order_by(User.id)
        .all()
    )


def set_online(session: Session, user_ids, online: bool) -> int:
    """Persist the online flag for ``user_ids``; returns rows changed."""
    user_ids = list(user_ids)
    if not user_ids:
        return 0
    return (
        session.query(User)
        .filter(User.id.in_(user_ids), User.is_online != online)
        .update({User.is_online: online}, synchronize_session="fetch")
    )


def debit_cash(session: Session, user_id: int, amount: int):
    """
    Remove ``amount`` from a balance only if it is still covered.

    Raises:
        StaleStateError: the balance no longer covers ``amount``
    """
    if amount <= 0:
        return
    updated = (
        session.query(User)
        .filter(User.id == user_id, User.cash >= amount)
        .update({User.cash: User.cash - amount}, synchronize_session="fetch")
    )
    if updated != 1:
        raise StaleStateError(f"User {user_id} can no longer cover {amount}")


def credit_cash(session: Session, user_id: int, amount: int):
    """Add ``amount`` to a balance."""
    if amount <= 0:
        return
    updated = (
        session.query(User)
        .filter(User.id == user_id)
        .update({User.cash: User.cash + amount}, synchronize_session="fetch")
    )
    if updated != 1:
        raise StaleStateError(f"User {user_id} no longer exists")


# ----------------------------------------------------------------------------
# Items and holdings
# ----------------------------------------------------------------------------

def count_copies(session: Session, item_id: int) -> int:
    """Number of copies of an item in circulation."""
    return session.query(func.count(Holding.id)).filter(Holding.item_id == item_id).scalar() or 0


def next_serial_number(session: Session, item_id: int) -> int:
    return count_copies(session, item_id) + 1


def owned_count(session: Session, user_id: int, item_id: int) -> int:
    """How many copies of an item a user owns."""
    return (
        session.query(func.count(Holding.id))
        .filter(Holding.owner_id == user_id, Holding.item_id == item_id)
        .scalar()
    ) or 0


def expire_timed_sales(session: Session, now: datetime) -> int:
    """Flip timer items whose sale window closed to limited; returns rows changed."""
    return (
        session.query(Item)
        .filter(
            Item.sale_type == SALE_TIMER,
            Item.is_limited.is_(False),
            Item.sale_end_time.isnot(None),
            Item.sale_end_time < now
        )
        .update({Item.is_limited: True}, synchronize_session="fetch")
    )


def get_purchasable_items(session: Session, max_price: int, now: datetime) -> List[Item]:
    """Shop items that are on sale, not limited, in stock and within ``max_price``."""
    return (
        session.query(Item)
        .filter(
            Item.is_off_sale.is_(False),
            Item.is_limited.is_(False),
            Item.price > 0,
            Item.price <= max_price,
            or_(Item.sale_type != SALE_STOCK, Item.remaining_stock > 0),
            or_(Item.sale_end_time.is_(None), Item.sale_end_time >= now)
        )
        .order_by(Item.id)
        .all()
    )


def get_resale_listings(session: Session, buyer_id: int, max_price: int, limit: int) -> List[Holding]:
    """Active listings by other owners priced within ``max_price``."""
    return (
        session.query(Holding)
        .join(Item, Holding.item_id == Item.id)
        .filter(
            Holding.is_listed.is_(True),
            Holding.list_price.isnot(None),
            Holding.list_price <= max_price,
            Holding.owner_id != buyer_id
        )
        .order_by(Holding.id)
        .limit(limit)
        .all()
    )


def get_unlisted_limited_holdings(session: Session, user_id: int) -> List[Holding]:
    """Holdings of limited items a user owns and has not listed."""
    return (
        session.query(Holding)
        .join(Item, Holding.item_id == Item.id)
        .filter(
            Holding.owner_id == user_id,
            Holding.is_listed.is_(False),
            Item.is_limited.is_(True)
        )
        .order_by(Holding.id)
        .all()
    )


def get_active_listings(session: Session, user_id: int) -> List[Holding]:
    """Holdings a user currently has listed."""
    return (
        session.query(Holding)
        .filter(Holding.owner_id == user_id, Holding.is_listed.is_(True))
        .order_by(Holding.id)
        .all()
    )


def get_trade_candidates(session: Session, agent_id: int) -> List[Holding]:
    """Limited holdings owned by anyone other than ``agent_id``, in id order."""
    return (
        session.query(Holding)
        .join(Item, Holding.item_id == Item.id)
        .filter(Holding.owner_id != agent_id, Item.is_limited.is_(True))
        .order_by(Holding.id)
        .all()
    )


def get_holdings_in_pending_trades(session: Session, user_id: int) -> set:
    """Ids of a user's holdings already offered in a pending trade."""
    rows = (
        session.query(TradeOfferItem.holding_id)
        .join(TradeOffer, TradeOfferItem.trade_id == TradeOffer.id)
        .filter(
            TradeOffer.status == TRADE_PENDING,
            TradeOffer.sender_id == user_id,
            TradeOfferItem.side == SIDE_OFFERED
        )
        .all()
    )
    return {row[0] for row in rows}


# ----------------------------------------------------------------------------
# Trades
# ----------------------------------------------------------------------------

def get_pending_inbound_trades(session: Session, user_id: int) -> List[TradeOffer]:
    """Pending offers addressed to ``user_id``, oldest first."""
    return (
        session.query(TradeOffer)
        .filter(TradeOffer.recipient_id == user_id, TradeOffer.status == TRADE_PENDING)
        .order_by(TradeOffer.created_at, TradeOffer.id)
        .all()
    )


def has_pending_trade_between(session: Session, user_a: int, user_b: int) -> bool:
    """Whether a pending offer exists between two users in either direction."""
    return session.query(
        session.query(TradeOffer)
        .filter(
            TradeOffer.status == TRADE_PENDING,
            or_(
                and_(TradeOffer.sender_id == user_a, TradeOffer.recipient_id == user_b),
                and_(TradeOffer.sender_id == user_b, TradeOffer.recipient_id == user_a)
            )
        )
        .exists()
    ).scalar()
