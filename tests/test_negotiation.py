"""Tests for the negotiation engine."""

import random
from types import SimpleNamespace

from rapsim.agents.negotiation import (
    decide_incoming, evaluate_incoming, trade_bands, build_trade_bundle, initiate_trade,
    TradeBands, ACCEPT, DECLINE, PENDING, CANDIDATE_BATCH
)
from rapsim.agents.personalities import PROFILES, Personality
from rapsim.database.models import TradeOffer, TRADE_ACCEPTED, TRADE_DECLINED, TRADE_PENDING
from rapsim.economy.trades import create_trade_offer

TRADER = PROFILES[Personality.TRADER]
HOARDER = PROFILES[Personality.HOARDER]
TRADER_BANDS = TradeBands(target_ratio=1.0, min_overpay=0.95, max_overpay=1.05)


def _holding(item_id):
    return SimpleNamespace(item_id=item_id)


class TestDecideIncoming:

    def test_trader_accepts_favourable_offer(self, rng):
        # 10,000 / 9,000 = 1.11 >= 1.05
        assert decide_incoming(10_000, 9_000, TRADER, rng) == ACCEPT

    def test_trader_declines_lopsided_offer(self, rng):
        # 10,000 / 12,000 = 0.83 < 0.9
        assert decide_incoming(10_000, 12_000, TRADER, rng) == DECLINE

    def test_middle_band(self, scripted):
        assert decide_incoming(1_000, 1_000, TRADER, scripted([0.99])) == PENDING
        assert decide_incoming(1_000, 1_000, TRADER, scripted([0.0])) == DECLINE

    def test_nothing_given(self, rng):
        assert decide_incoming(500, 0, TRADER, rng) == ACCEPT
        assert decide_incoming(0, 0, TRADER, rng) == DECLINE


class TestEvaluateIncoming:

    def _offer(self, session, make_user, make_item, make_holding, now, offered_value, requested_value):
        sender = make_user("sender", is_ai=False)
        agent = make_user("agent", personality="trader")
        offered = make_holding(sender, make_item(value=offered_value))
        requested = make_holding(agent, make_item(value=requested_value))
        trade = create_trade_offer(session, sender.id, agent.id, [offered], [requested], now=now)
        session.commit()
        return agent, trade, offered, requested

    def test_accepts_and_swaps(self, session, make_user, make_item, make_holding, rng, now):
        agent, trade, offered, requested = self._offer(
            session, make_user, make_item, make_holding, now, 10_000, 9_000
        )
        assert evaluate_incoming(session, agent, TRADER, rng, now) == ACCEPT
        assert trade.status == TRADE_ACCEPTED
        assert offered.owner_id == agent.id
        assert requested.owner_id == trade.sender_id

    def test_declines_lopsided(self, session, make_user, make_item, make_holding, rng, now):
        agent, trade, offered, requested = self._offer(
            session, make_user, make_item, make_holding, now, 10_000, 12_000
        )
        assert evaluate_incoming(session, agent, TRADER, rng, now) == DECLINE
        assert trade.status == TRADE_DECLINED
        assert requested.owner_id == agent.id

    def test_cash_counts_toward_value(self, session, make_user, make_item, make_holding, rng, now):
        sender = make_user("sender", cash=5_000)
        agent = make_user("agent", personality="trader")
        offered = make_holding(sender, make_item(value=8_000))
        requested = make_holding(agent, make_item(value=9_000))
        trade = create_trade_offer(session, sender.id, agent.id, [offered], [requested],
                                   offered_cash=2_000, now=now)
        session.commit()

        assert evaluate_incoming(session, agent, TRADER, rng, now) == ACCEPT
        assert trade.status == TRADE_ACCEPTED

    def test_stale_offer_is_declined(self, session, make_user, make_item, make_holding, rng, now):
        agent, trade, offered, requested = self._offer(
            session, make_user, make_item, make_holding, now, 10_000, 9_000
        )
        third = make_user("third")
        offered.owner_id = third.id
        session.commit()

        assert evaluate_incoming(session, agent, TRADER, rng, now) == DECLINE
        assert trade.status == TRADE_DECLINED
        assert requested.owner_id == agent.id

    def test_nothing_pending(self, session, make_user, rng, now):
        agent = make_user()
        assert evaluate_incoming(session, agent, TRADER, rng, now) is None


class TestBundles:

    def test_bands_relax_for_scarce_targets(self):
        assert trade_bands(TRADER).max_overpay == 1.05
        assert trade_bands(TRADER, scarce=True).max_overpay == 1.5

    def test_single_close_match(self):
        near = _holding(1)
        far = _holding(2)
        bundle = build_trade_bundle([(far, 960), (near, 1_010)], 1_000, TRADER_BANDS)
        assert bundle == [near]

    def test_greedy_then_bridge(self):
        big = _holding(1)
        small = _holding(2)
        # 900 alone falls short; 120 overshoots the goal but lands in band
        bundle = build_trade_bundle([(small, 120), (big, 900)], 1_000, TRADER_BANDS)
        assert bundle == [big, small]

    def test_out_of_band_rejected(self):
        assert build_trade_bundle([(_holding(1), 500)], 1_000, TRADER_BANDS) is None
        assert build_trade_bundle([], 1_000, TRADER_BANDS) is None

    def test_duplicates_only_when_allowed(self):
        a, b = _holding(7), _holding(7)
        candidates = [(a, 500), (b, 500)]
        assert build_trade_bundle(candidates, 1_000, TRADER_BANDS, allow_duplicates=False) is None
        assert build_trade_bundle(candidates, 1_000, TRADER_BANDS, allow_duplicates=True) == [a, b]

    def test_bundle_always_within_band(self):
        rng = random.Random(3)
        for profile in PROFILES.values():
            for scarce in (False, True):
                bands = trade_bands(profile, scarce)
                for _ in range(200):
                    target = rng.randint(1_500, 50_000)
                    candidates = [
                        (_holding(rng.randint(1, 8)), rng.randint(100, 40_000))
                        for _ in range(rng.randint(0, 12))
                    ]
                    values = {id(h): v for h, v in candidates}
                    bundle = build_trade_bundle(candidates, target, bands,
                                                profile.allow_duplicate_items)
                    if bundle is None:
                        continue
                    total = sum(values[id(h)] for h in bundle)
                    assert target * bands.min_overpay <= total <= target * bands.max_overpay
                    assert len(bundle) <= 4
                    if not profile.allow_duplicate_items:
                        assert len({h.item_id for h in bundle}) == len(bundle)


class TestInitiateTrade:

    def test_sends_offer_for_real_users_item(self, session, make_user, make_item, make_holding, now):
        agent = make_user("agent", personality="trader")
        player = make_user("player", is_ai=False)
        mine = make_holding(agent, make_item(value=2_000))
        theirs = make_holding(player, make_item(value=2_000))

        trade = initiate_trade(session, agent, TRADER, random.Random(3), now)

        assert trade is not None
        assert trade.status == TRADE_PENDING
        assert trade.offered_holdings == [mine]
        assert trade.requested_holdings == [theirs]

    def test_ignores_targets_below_floor(self, session, make_user, make_item, make_holding, now):
        agent = make_user()
        player = make_user(is_ai=False)
        make_holding(agent, make_item(value=1_000))
        make_holding(player, make_item(value=1_000))

        assert initiate_trade(session, agent, TRADER, random.Random(3), now) is None

    def test_ignores_projected_targets(self, session, make_user, make_item, make_holding, now):
        agent = make_user()
        player = make_user(is_ai=False)
        make_holding(agent, make_item(value=2_000))
        # rap / value = 1.5, above the trader's tolerance
        make_holding(player, make_item(value=2_000, rap=3_000))

        assert initiate_trade(session, agent, TRADER, random.Random(3), now) is None

    def test_never_offers_the_requested_item(self, session, make_user, make_item, make_holding, now):
        agent = make_user()
        player = make_user(is_ai=False)
        item = make_item(value=2_000)
        make_holding(agent, item)
        make_holding(player, item)

        assert initiate_trade(session, agent, TRADER, random.Random(3), now) is None

    def test_no_duplicate_pending_trade(self, session, make_user, make_item, make_holding, now):
        agent = make_user("agent")
        player = make_user("player", is_ai=False)
        make_holding(agent, make_item(value=2_000))
        agent_other = make_holding(agent, make_item(value=2_000))
        player_item = make_holding(player, make_item(value=2_000))
        make_holding(player, make_item(value=2_000))
        create_trade_offer(session, player.id, agent.id, [player_item], [agent_other], now=now)
        session.commit()

        assert initiate_trade(session, agent, TRADER, random.Random(3), now) is None
        assert session.query(TradeOffer).count() == 1

    def test_same_seed_picks_same_target(self, session, make_user, make_item, make_holding, now):
        agent = make_user("agent", personality="trader")
        player = make_user("player", is_ai=False)
        make_holding(agent, make_item(value=2_000))
        for _ in range(CANDIDATE_BATCH + 20):
            make_holding(player, make_item(value=2_000))

        picked = set()
        for _ in range(8):
            trade = initiate_trade(session, agent, TRADER, random.Random(7), now)
            picked.add(trade.requested_holdings[0].id)
            session.rollback()

        assert len(picked) == 1
