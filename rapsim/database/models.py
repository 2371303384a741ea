"""Database models for the market: users, items, holdings, trades and RAP history."""

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Boolean, ForeignKey,
    UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


# Trade offer statuses
TRADE_PENDING = "pending"
TRADE_ACCEPTED = "accepted"
TRADE_DECLINED = "declined"
TRADE_CANCELLED = "cancelled"
TERMINAL_TRADE_STATUSES = (TRADE_ACCEPTED, TRADE_DECLINED, TRADE_CANCELLED)

# Trade item sides
SIDE_OFFERED = "offered"
SIDE_REQUESTED = "requested"

# Item sale types
SALE_STOCK = "stock"
SALE_TIMER = "timer"
SALE_UNLIMITED = "unlimited"


class User(Base):
    """A market participant: a real user or an autonomous agent (``is_ai``)."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), nullable=False, unique=True)
    cash = Column(Integer, nullable=False, default=0)

    is_ai = Column(Boolean, nullable=False, default=False)
    personality = Column(String(32), nullable=True)
    is_online = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=func.now())

    holdings = relationship("Holding", back_populates="owner")

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', is_ai={self.is_ai})>"


class Item(Base):
    """A catalog entry with a curated value and a market-derived RAP."""
    __tablename__ = "items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)

    value = Column(Integer, nullable=False, default=0)
    rap = Column(Integer, nullable=False, default=0)
    price = Column(Integer, nullable=False, default=0)

    is_limited = Column(Boolean, nullable=False, default=False)
    is_off_sale = Column(Boolean, nullable=False, default=False)
    is_high_tier = Column(Boolean, nullable=False, default=False)

    sale_type = Column(String(16), nullable=False, default=SALE_UNLIMITED)
    remaining_stock = Column(Integer, nullable=True)
    total_stock = Column(Integer, nullable=True)
    sale_end_time = Column(DateTime, nullable=True)
    buy_limit = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=func.now())

    holdings = relationship("Holding", back_populates="item")

    def __repr__(self):
        return f"<Item(id={self.id}, name='{self.name}', value={self.value}, rap={self.rap})>"


class Holding(Base):
    """Ownership of one serialised copy of an item."""
    __tablename__ = "holdings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False, index=True)
    serial_number = Column(Integer, nullable=False)

    is_listed = Column(Boolean, nullable=False, default=False)
    list_price = Column(Integer, nullable=True)
    purchase_price = Column(Integer, nullable=True)

    acquired_at = Column(DateTime, default=func.now())

    owner = relationship("User", back_populates="holdings")
    item = relationship("Item", back_populates="holdings")

    def __repr__(self):
        return (f"<Holding(id={self.id}, item_id={self.item_id}, owner_id={self.owner_id}, "
                f"serial={self.serial_number}, listed={self.is_listed})>")


class TradeOfferItem(Base):
    """A holding placed on one side of a trade offer."""
    __tablename__ = "trade_offer_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trade_id = Column(Integer, ForeignKey("trade_offers.id"), nullable=False, index=True)
    holding_id = Column(Integer, ForeignKey("holdings.id"), nullable=False)
    side = Column(String(16), nullable=False)

    trade = relationship("TradeOffer", back_populates="entries")
    holding = relationship("Holding")


class TradeOffer(Base):
    """A proposed exchange of holdings (and optional cash) between two users."""
    __tablename__ = "trade_offers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=TRADE_PENDING)

    offered_cash = Column(Integer, nullable=False, default=0)
    requested_cash = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=func.now())
    completed_at = Column(DateTime, nullable=True)

    sender = relationship("User", foreign_keys=[sender_id])
    recipient = relationship("User", foreign_keys=[recipient_id])
    entries = relationship(
        "TradeOfferItem", back_populates="trade", cascade="all, delete-orphan"
    )

    @property
    def offered_holdings(self):
        """Holdings the sender gives up."""
        return [e.holding for e in self.entries if e.side == SIDE_OFFERED]

    @property
    def requested_holdings(self):
        """Holdings the recipient gives up."""
        return [e.holding for e in self.entries if e.side == SIDE_REQUESTED]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TRADE_STATUSES

    def __repr__(self):
        return (f"<TradeOffer(id={self.id}, sender_id={self.sender_id}, "
                f"recipient_id={self.recipient_id}, status='{self.status}')>")


class RapSnapshot(Base):
    """Per-item, per-day RAP aggregate."""
    __tablename__ = "rap_snapshots"
    __table_args__ = (
        UniqueConstraint("item_id", "snapshot_date", name="uq_rap_snapshot_item_day"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    snapshot_date = Column(Date, nullable=False)

    rap_value = Column(Integer, nullable=False)
    sales_count = Column(Integer, nullable=False, default=0)
    sales_volume = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return (f"<RapSnapshot(item_id={self.item_id}, date={self.snapshot_date}, "
                f"rap={self.rap_value}, sales={self.sales_count})>")


class Transaction(Base):
    """Purchase/sale history row."""
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_created", "user_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String(16), nullable=False)  # "buy" or "sell"
    amount = Column(Integer, nullable=False)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False)
    related_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, default=func.now())


class RapChangeLog(Base):
    """Audit row written for every RAP-moving sale."""
    __tablename__ = "rap_change_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(Integer, ForeignKey("items.id"), nullable=False, index=True)
    old_rap = Column(Integer, nullable=False)
    new_rap = Column(Integer, nullable=False)
    purchase_price = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=func.now())
