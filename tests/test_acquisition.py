"""Tests for the acquisition policy."""

import random
from datetime import timedelta

from rapsim.agents.acquisition import (
    score_new_item, purchase_quantity, buy_new, buy_resale, select_resale_target
)
from rapsim.agents.personalities import PROFILES, Personality
from rapsim.database.models import Holding, SALE_STOCK

CASUAL = PROFILES[Personality.CASUAL]
SNIPER = PROFILES[Personality.SNIPER]
WHALE = PROFILES[Personality.WHALE]


class TestScoring:
    """score_new_item components."""

    def test_profit_boost_tiers(self, session, make_item, now):
        cheap = make_item(value=2_500, price=1_000, is_limited=False)
        fair = make_item(value=1_150, price=1_000, is_limited=False)
        overpriced = make_item(value=900, price=1_000, is_limited=False)

        assert score_new_item(cheap, CASUAL, now) == 40
        assert score_new_item(fair, CASUAL, now) == 8
        assert score_new_item(overpriced, CASUAL, now) == 0

    def test_recent_items_score_higher(self, session, make_item, now):
        old = make_item(price=100, is_limited=False, created_at=now - timedelta(days=30))
        new = make_item(price=100, is_limited=False, created_at=now - timedelta(days=1))
        assert score_new_item(new, CASUAL, now) > score_new_item(old, CASUAL, now)

    def test_whales_favour_expensive_items(self, session, make_item, now):
        cheap = make_item(price=100, is_limited=False)
        pricey = make_item(price=100_000, is_limited=False)
        assert score_new_item(pricey, WHALE, now) > score_new_item(cheap, WHALE, now)

    def test_snipers_favour_scarce_stock(self, session, make_item, now):
        scarce = make_item(price=100, is_limited=False, sale_type=SALE_STOCK, remaining_stock=5)
        plenty = make_item(price=100, is_limited=False, sale_type=SALE_STOCK, remaining_stock=500)
        assert score_new_item(scarce, SNIPER, now) > score_new_item(plenty, SNIPER, now)


class TestPurchaseQuantity:

    def test_unaffordable(self, session, make_item, rng):
        item = make_item(price=500, is_limited=False)
        assert purchase_quantity(100, item, 0, CASUAL, rng) == 0

    def test_buy_limit_reached(self, session, make_item, rng):
        item = make_item(price=10, is_limited=False, buy_limit=2)
        assert purchase_quantity(1_000, item, 2, CASUAL, rng) == 0

    def test_single_copy_without_bulk_propensity(self, session, make_item, rng):
        item = make_item(price=10, is_limited=False)
        profile = CASUAL.model_copy(update={"bulk_propensity": 0.0})
        assert purchase_quantity(1_000, item, 0, profile, rng) == 1

    def test_bulk_bounded_by_stock(self, session, make_item, rng):
        item = make_item(price=10, is_limited=False, sale_type=SALE_STOCK, remaining_stock=3)
        profile = CASUAL.model_copy(update={"bulk_propensity": 1.0})
        for _ in range(20):
            assert 2 <= purchase_quantity(1_000, item, 0, profile, rng) <= 3


class TestBuyNew:

    def test_buys_best_affordable_item(self, session, make_user, make_item, rng, now):
        agent = make_user(cash=1_000)
        make_item(price=5_000, value=50_000, is_limited=False)
        bargain = make_item(price=100, value=300, is_limited=False,
                            sale_type=SALE_STOCK, remaining_stock=1, total_stock=1)

        bought = buy_new(session, agent, CASUAL, rng, now)
        session.commit()

        assert len(bought) == 1
        assert bought[0].item_id == bargain.id
        assert agent.cash == 900
        assert bargain.is_limited

    def test_nothing_to_buy(self, session, make_user, make_item, rng, now):
        agent = make_user(cash=10)
        make_item(price=100, is_limited=False)
        assert buy_new(session, agent, CASUAL, rng, now) == []

    def test_expired_timed_sale_is_flipped_and_skipped(self, session, make_user, make_item, rng, now):
        agent = make_user(cash=1_000)
        item = make_item(price=10, is_limited=False, sale_type="timer",
                         sale_end_time=now - timedelta(hours=1))

        assert buy_new(session, agent, CASUAL, rng, now) == []
        session.refresh(item)
        assert item.is_limited


class TestResale:

    def _listing(self, make_user, make_item, make_holding, price, value=1_000):
        seller = make_user(cash=0)
        item = make_item(value=value, rap=value)
        return make_holding(seller, item, is_listed=True, list_price=price)

    def test_sniper_needs_a_deal(self, session, make_user, make_item, make_holding, rng):
        listing = self._listing(make_user, make_item, make_holding, 900)
        assert select_resale_target([listing], SNIPER, rng) is None

        deal = self._listing(make_user, make_item, make_holding, 800)
        assert select_resale_target([listing, deal], SNIPER, rng) is deal

    def test_whale_tolerates_markup(self, session, make_user, make_item, make_holding, rng):
        listing = self._listing(make_user, make_item, make_holding, 1_250)
        assert select_resale_target([listing], WHALE, rng) is listing

    def test_non_sniper_falls_back_to_random_candidate(self, session, make_user, make_item,
                                                       make_holding, rng):
        listing = self._listing(make_user, make_item, make_holding, 5_000)
        assert select_resale_target([listing], CASUAL, rng) is listing

    def test_buy_resale_pays_seller_share(self, session, make_user, make_item, make_holding, now):
        buyer = make_user(cash=5_000)
        listing = self._listing(make_user, make_item, make_holding, 1_000)
        seller = listing.owner
        profile = CASUAL.model_copy(update={"resale_skip_chance": 0.0})

        result = buy_resale(session, buyer, profile, random.Random(1), now)
        session.commit()
        session.expire_all()

        assert result.price == 1_000
        assert buyer.cash == 4_000
        assert seller.cash == 600
        assert session.get(Holding, listing.id).owner_id == buyer.id

    def test_never_buys_own_listing(self, session, make_user, make_item, make_holding, now):
        owner = make_user(cash=5_000)
        item = make_item(value=1_000, rap=1_000)
        make_holding(owner, item, is_listed=True, list_price=500)
        profile = CASUAL.model_copy(update={"resale_skip_chance": 0.0})

        assert buy_resale(session, owner, profile, random.Random(1), now) is None
