"""
Negotiation engine: answering inbound trade offers and composing outbound ones.

Outbound offers are bundles of the agent's own limited holdings whose total
effective value lands inside a personality-specific band around the target's
value. Bundles are built greedily: a single close match if one exists,
otherwise the most valuable holdings first, topped up with one small
bridging item when the running total falls just short.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple, Any

from sqlalchemy.orm import Session

from rapsim.agents.listing import RARE_COPIES
from rapsim.agents.personalities import PersonalityProfile
from rapsim.database.models import User, Holding, TradeOffer
from rapsim.database.operations import (
    count_copies, get_pending_inbound_trades, get_trade_candidates,
    get_unlisted_limited_holdings, get_holdings_in_pending_trades,
    has_pending_trade_between
)
from rapsim.economy.trades import accept_trade, decline_trade, create_trade_offer, verify_trade
from rapsim.economy.valuation import item_effective_value, holdings_value, projection_ratio
from rapsim.errors import StaleStateError

logger = logging.getLogger(__name__)

DEFAULT_VALUE_FLOOR = 1500
REAL_USER_BIAS = 0.7
MAX_BUNDLE_ITEMS = 4
CANDIDATE_BATCH = 100

ACCEPT = "accept"
DECLINE = "decline"
PENDING = "pending"


# ----------------------------------------------------------------------------
# Inbound offers
# ----------------------------------------------------------------------------

def decide_incoming(received_value: int, given_value: int,
                    profile: PersonalityProfile, rng: random.Random) -> str:
    """
    Decide on an inbound offer from the ratio of value received to value given.

    Accept at or above ``accept_threshold``, decline below
    ``decline_threshold``; in between, decline with a small residual chance
    and otherwise leave the offer pending.
    """
    if given_value <= 0:
        return ACCEPT if received_value > 0 else DECLINE

    ratio = received_value / given_value
    if ratio >= profile.accept_threshold:
        return ACCEPT
    if ratio < profile.decline_threshold:
        return DECLINE
    if rng.random() < profile.residual_decline_chance:
        return DECLINE
    return PENDING


def trade_values(trade: TradeOffer) -> Tuple[int, int]:
    """(value the recipient receives, value the recipient gives) including cash legs."""
    received = holdings_value(trade.offered_holdings) + (trade.offered_cash or 0)
    given = holdings_value(trade.requested_holdings) + (trade.requested_cash or 0)
    return received, given


def evaluate_incoming(session: Session, agent: User, profile: PersonalityProfile,
                      rng: random.Random, now: Optional[datetime] = None) -> Optional[str]:
    """
    Process the oldest pending offer addressed to ``agent``.

    Returns the decision taken, or None when there was nothing to review.
    Offers that can no longer be honoured are declined.
    """
    trades = get_pending_inbound_trades(session, agent.id)
    if not trades:
        return None

    trade = trades[0]
    received, given = trade_values(trade)
    decision = decide_incoming(received, given, profile, rng)

    if decision == ACCEPT:
        try:
            verify_trade(session, trade)
        except StaleStateError as e:
            logger.info(f"[AI] {agent.username} declining stale trade {trade.id}: {e}")
            decline_trade(session, trade, agent.id, now)
            return DECLINE
        accept_trade(session, trade, agent.id, now)
        logger.info(f"[AI] {agent.username} accepted trade {trade.id} "
                    f"(receives {received}, gives {given})")
    elif decision == DECLINE:
        decline_trade(session, trade, agent.id, now)
        logger.info(f"[AI] {agent.username} declined trade {trade.id} "
                    f"(receives {received}, gives {given})")
    else:
        logger.debug(f"{agent.username} left trade {trade.id} pending")

    return decision


# ----------------------------------------------------------------------------
# Outbound offers
# ----------------------------------------------------------------------------

@dataclass
class TradeBands:
    """Bundle value bounds as multiples of the target's value."""
    target_ratio: float
    min_overpay: float
    max_overpay: float


def trade_bands(profile: PersonalityProfile, scarce: bool = False) -> TradeBands:
    """Bands for a personality; scarce targets relax the overpay ceiling."""
    max_overpay = profile.rare_overpay_cap if scarce else profile.max_overpay
    return TradeBands(
        target_ratio=profile.trade_target_ratio,
        min_overpay=profile.min_overpay,
        max_overpay=max_overpay
    )


def build_trade_bundle(candidates: Sequence[Tuple[Any, int]], target_value: int,
                       bands: TradeBands, allow_duplicates: bool = False,
                       max_items: int = MAX_BUNDLE_ITEMS) -> Optional[List[Any]]:
    """
    Choose holdings whose combined value approximates the target.

    Args:
        candidates: (holding, effective value) pairs; holdings need ``item_id``
        target_value: Effective value of the requested holding
        bands: Goal ratio and acceptable bounds
        allow_duplicates: Whether several copies of one item may be bundled
        max_items: Largest bundle size

    Returns:
        The bundle, or None when nothing lands within
        [target_value * min_overpay, target_value * max_overpay]
    """
    if target_value <= 0:
        return None

    goal = target_value * bands.target_ratio
    low = target_value * bands.min_overpay
    high = target_value * bands.max_overpay
    usable = [(h, v) for h, v in candidates if v > 0]

    # 1. a single holding inside the band, closest to the goal
    singles = [(h, v) for h, v in usable if low <= v <= high]
    if singles:
        holding, _ = min(singles, key=lambda pair: abs(pair[1] - goal))
        return [holding]

    # 2. greedy accumulation, most valuable first, without passing the goal
    ordered = sorted(usable, key=lambda pair: pair[1], reverse=True)
    bundle: List[Any] = []
    used_ids = set()
    used_items = set()
    total = 0

    def allowed(holding) -> bool:
        return id(holding) not in used_ids and (allow_duplicates or holding.item_id not in used_items)

    for holding, value in ordered:
        if len(bundle) >= max_items or total >= goal:
            break
        if not allowed(holding) or total + value > goal:
            continue
        bundle.append(holding)
        used_ids.add(id(holding))
        used_items.add(holding.item_id)
        total += value

    # 3. one small bridging item may overshoot the goal to reach the band
    if total < low and len(bundle) < max_items:
        bridges = [
            (h, v) for h, v in ordered
            if allowed(h) and low <= total + v <= high
        ]
        if bridges:
            holding, value = min(bridges, key=lambda pair: pair[1])
            bundle.append(holding)
            total += value

    if not bundle or not low <= total <= high:
        return None
    return bundle


def _pick_target(candidates: List[Holding], profile: PersonalityProfile,
                 rng: random.Random, value_floor: int) -> Optional[Holding]:
    eligible = []
    for holding in candidates:
        item = holding.item
        ev = item_effective_value(item)
        if ev < value_floor:
            continue
        if item.value and projection_ratio(item.value, item.rap) > profile.projection_tolerance:
            continue
        eligible.append((holding, ev))

    if not eligible:
        return None

    # Keep the economy circulating with real users where possible
    real = [pair for pair in eligible if not pair[0].owner.is_ai]
    if real and rng.random() < REAL_USER_BIAS:
        eligible = real

    holdings = [h for h, _ in eligible]
    weights = [ev for _, ev in eligible]
    return rng.choices(holdings, weights=weights, k=1)[0]


def initiate_trade(session: Session, agent: User, profile: PersonalityProfile,
                   rng: random.Random, now: Optional[datetime] = None,
                   value_floor: int = DEFAULT_VALUE_FLOOR) -> Optional[TradeOffer]:
    """Send one trade offer for another owner's holding; returns it or None."""
    candidates = get_trade_candidates(session, agent.id)
    if len(candidates) > CANDIDATE_BATCH:
        candidates = rng.sample(candidates, CANDIDATE_BATCH)
    target = _pick_target(candidates, profile, rng, value_floor)
    if target is None:
        return None

    if has_pending_trade_between(session, agent.id, target.owner_id):
        logger.debug(f"{agent.username} already has a pending trade with user {target.owner_id}")
        return None

    target_item = target.item
    target_value = item_effective_value(target_item)
    scarce = target_item.is_high_tier or count_copies(session, target_item.id) < RARE_COPIES
    bands = trade_bands(profile, scarce)

    in_trades = get_holdings_in_pending_trades(session, agent.id)
    own = [
        (h, item_effective_value(h.item))
        for h in get_unlisted_limited_holdings(session, agent.id)
        if h.id not in in_trades and h.item_id != target.item_id
    ]

    bundle = build_trade_bundle(own, target_value, bands, profile.allow_duplicate_items)
    if not bundle:
        logger.debug(f"{agent.username} has nothing that matches {target_item.name} ({target_value})")
        return None
    if any(h.item_id == target.item_id for h in bundle):
        return None

    trade = create_trade_offer(
        session, agent.id, target.owner_id, offered=bundle, requested=[target], now=now
    )
    logger.info(f"[AI] {agent.username} offered {len(bundle)} item(s) worth "
                f"{holdings_value(bundle)} for {target_item.name} ({target_value}) "
                f"to user {target.owner_id}")
    return trade
