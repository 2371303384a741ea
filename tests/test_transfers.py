"""Tests for shop purchases, resales and listings."""

from datetime import timedelta

import pytest

from rapsim.database.models import Holding, Transaction, SALE_STOCK, SALE_TIMER
from rapsim.database.operations import pending_events
from rapsim.economy.events import PurchaseEvent, SaleEvent
from rapsim.economy.transfers import purchase_new_copy, purchase_listing, set_listing
from rapsim.errors import StaleStateError


class TestPurchaseNewCopy:
    """Buying from the shop."""

    def test_buys_copy_and_decrements_stock(self, session, make_user, make_item, now):
        buyer = make_user(cash=1_000)
        item = make_item(price=100, is_limited=False, sale_type=SALE_STOCK,
                         remaining_stock=2, total_stock=2)

        holding = purchase_new_copy(session, buyer.id, item.id, now=now)
        session.commit()
        session.expire_all()

        assert holding.owner_id == buyer.id
        assert holding.serial_number == 1
        assert buyer.cash == 900
        assert item.remaining_stock == 1
        assert not item.is_limited

    def test_last_copy_turns_item_limited(self, session, make_user, make_item, now):
        buyer = make_user(cash=1_000)
        item = make_item(price=100, is_limited=False, sale_type=SALE_STOCK,
                         remaining_stock=1, total_stock=1)

        purchase_new_copy(session, buyer.id, item.id, now=now)

        assert item.remaining_stock == 0
        assert item.is_limited
        with pytest.raises(StaleStateError):
            purchase_new_copy(session, buyer.id, item.id, now=now)

    def test_serial_numbers_increase(self, session, make_user, make_item, now):
        buyer = make_user(cash=1_000)
        item = make_item(price=10, is_limited=False)

        first = purchase_new_copy(session, buyer.id, item.id, now=now)
        second = purchase_new_copy(session, buyer.id, item.id, now=now)
        assert (first.serial_number, second.serial_number) == (1, 2)

    def test_buy_limit(self, session, make_user, make_item, now):
        buyer = make_user(cash=1_000)
        item = make_item(price=10, is_limited=False, buy_limit=1)

        purchase_new_copy(session, buyer.id, item.id, now=now)
        with pytest.raises(StaleStateError):
            purchase_new_copy(session, buyer.id, item.id, now=now)

    def test_ended_sale(self, session, make_user, make_item, now):
        buyer = make_user(cash=1_000)
        item = make_item(price=10, is_limited=False, sale_type=SALE_TIMER,
                         sale_end_time=now - timedelta(minutes=1))
        with pytest.raises(StaleStateError):
            purchase_new_copy(session, buyer.id, item.id, now=now)

    def test_insufficient_cash(self, session, make_user, make_item, now):
        buyer = make_user(cash=50)
        item = make_item(price=100, is_limited=False)
        with pytest.raises(StaleStateError):
            purchase_new_copy(session, buyer.id, item.id, now=now)

    def test_records_event_and_transaction(self, session, make_user, make_item, now):
        buyer = make_user(cash=1_000)
        item = make_item(price=100, is_limited=False)
        holding = purchase_new_copy(session, buyer.id, item.id, now=now)

        events = pending_events(session)
        assert len(events) == 1
        assert isinstance(events[0], PurchaseEvent)
        assert events[0].holding_id == holding.id
        assert session.query(Transaction).filter_by(user_id=buyer.id, type="buy").count() == 1


class TestPurchaseListing:
    """Buying another owner's listing."""

    @pytest.fixture
    def listing(self, session, make_user, make_item, make_holding):
        seller = make_user("seller", cash=0)
        buyer = make_user("buyer", cash=5_000)
        item = make_item(value=1_000, rap=0)
        holding = make_holding(seller, item, is_listed=True, list_price=1_000)
        return seller, buyer, item, holding

    def test_splits_proceeds_and_moves_ownership(self, session, listing, now):
        seller, buyer, item, holding = listing

        result = purchase_listing(session, buyer.id, holding.id, 1_000, now=now)
        session.commit()
        session.expire_all()

        assert (result.seller_proceeds, result.fee) == (600, 400)
        assert buyer.cash == 4_000
        assert seller.cash == 600
        assert holding.owner_id == buyer.id
        assert not holding.is_listed
        assert holding.list_price is None

    def test_feeds_rap_engine(self, session, listing, now):
        seller, buyer, item, holding = listing
        result = purchase_listing(session, buyer.id, holding.id, 1_000, now=now)

        assert (result.old_rap, result.new_rap) == (0, 1_000)
        assert item.rap == 1_000
        sale_events = [e for e in pending_events(session) if isinstance(e, SaleEvent)]
        assert len(sale_events) == 1

    def test_repriced_listing_is_stale(self, session, listing, now):
        seller, buyer, item, holding = listing
        with pytest.raises(StaleStateError):
            purchase_listing(session, buyer.id, holding.id, 900, now=now)

    def test_cannot_buy_own_listing(self, session, listing, now):
        seller, buyer, item, holding = listing
        with pytest.raises(StaleStateError):
            purchase_listing(session, seller.id, holding.id, 1_000, now=now)

    def test_overdrawn_buyer_changes_nothing(self, session, listing, make_user, now):
        seller, buyer, item, holding = listing
        poor = make_user("poor", cash=10)

        with pytest.raises(StaleStateError):
            purchase_listing(session, poor.id, holding.id, 1_000, now=now)
        session.rollback()

        holding = session.get(Holding, holding.id)
        assert holding.owner_id == seller.id
        assert holding.is_listed
        assert session.query(Transaction).count() == 0


class TestSetListing:

    def test_list_and_delist(self, session, make_user, make_item, make_holding):
        owner = make_user()
        holding = make_holding(owner, make_item())

        set_listing(session, owner.id, holding.id, 500)
        assert (holding.is_listed, holding.list_price) == (True, 500)

        set_listing(session, owner.id, holding.id, None)
        assert (holding.is_listed, holding.list_price) == (False, None)

    def test_rejects_non_owner(self, session, make_user, make_item, make_holding):
        owner = make_user()
        other = make_user()
        holding = make_holding(owner, make_item())
        with pytest.raises(StaleStateError):
            set_listing(session, other.id, holding.id, 500)

    def test_rejects_non_positive_price(self, session, make_user, make_item, make_holding):
        owner = make_user()
        holding = make_holding(owner, make_item())
        with pytest.raises(ValueError):
            set_listing(session, owner.id, holding.id, 0)
