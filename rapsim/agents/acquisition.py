"""Acquisition policy: buying new shop items and resale listings."""

import logging
import math
import random
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from rapsim.agents.personalities import PersonalityProfile
from rapsim.database.models import User, Item, Holding, SALE_STOCK, SALE_TIMER
from rapsim.database.operations import (
    expire_timed_sales, get_purchasable_items, get_resale_listings, owned_count
)
from rapsim.economy.transfers import purchase_new_copy, purchase_listing, DEFAULT_SELLER_SHARE
from rapsim.economy.valuation import item_effective_value

logger = logging.getLogger(__name__)

# Profit ratio (effective value / price) -> score boost, highest first
PROFIT_BOOSTS = ((2.0, 40.0), (1.5, 25.0), (1.2, 15.0), (1.1, 8.0))

RECENCY_WINDOW_DAYS = 14
RECENCY_BONUS = 10.0
MAX_BULK_QUANTITY = 5


def _price_affinity(profile: PersonalityProfile, price: int) -> float:
    magnitude = math.log10(max(price, 1))
    if profile.price_affinity == "expensive":
        return magnitude * 10
    if profile.price_affinity == "cheap":
        return max(0.0, 30 - magnitude * 6)
    return 0.0


def _profit_boost(item: Item) -> float:
    if item.price <= 0:
        return 0.0
    ratio = item_effective_value(item) / item.price
    for threshold, boost in PROFIT_BOOSTS:
        if ratio > threshold:
            return boost
    return 0.0


def _stock_urgency(profile: PersonalityProfile, item: Item) -> float:
    if item.sale_type != SALE_STOCK or item.remaining_stock is None:
        return 0.0
    remaining = max(item.remaining_stock, 0)

    if profile.stock_preference == "abundant":
        return min(remaining, 100) / 10
    if profile.stock_preference == "scarce":
        if remaining <= 10:
            return 15.0
        if remaining <= 50:
            return 7.0
    return 0.0


def _sale_end_urgency(item: Item, now: datetime) -> float:
    if item.sale_type != SALE_TIMER or item.sale_end_time is None:
        return 0.0
    hours_left = (item.sale_end_time - now).total_seconds() / 3600
    if hours_left <= 1:
        return 12.0
    if hours_left <= 24:
        return 5.0
    return 0.0


def _recency_bonus(item: Item, now: datetime) -> float:
    if item.created_at is None:
        return 0.0
    age_days = (now - item.created_at).total_seconds() / 86400
    if age_days < 0 or age_days >= RECENCY_WINDOW_DAYS:
        return 0.0
    return RECENCY_BONUS * (1 - age_days / RECENCY_WINDOW_DAYS)


def score_new_item(item: Item, profile: PersonalityProfile, now: datetime) -> float:
    """
    Desirability of a shop item for an agent.

    Sum of price affinity, profit potential, stock urgency, timed-sale urgency
    and a bonus for recently released items.
    """
    return (
        _price_affinity(profile, item.price)
        + _profit_boost(item)
        + _stock_urgency(profile, item)
        + _sale_end_urgency(item, now)
        + _recency_bonus(item, now)
    )


def purchase_quantity(cash: int, item: Item, already_owned: int,
                      profile: PersonalityProfile, rng: random.Random) -> int:
    """How many copies to buy, bounded by cash, buy limit, stock and bulk propensity."""
    if item.price <= 0:
        return 0

    cap = cash // item.price
    if item.buy_limit:
        cap = min(cap, item.buy_limit - already_owned)
    if item.sale_type == SALE_STOCK and item.remaining_stock is not None:
        cap = min(cap, item.remaining_stock)
    if cap <= 0:
        return 0

    if cap > 1 and rng.random() < profile.bulk_propensity:
        return rng.randint(2, min(cap, MAX_BULK_QUANTITY))
    return 1


def buy_new(session: Session, agent: User, profile: PersonalityProfile,
            rng: random.Random, now: Optional[datetime] = None) -> List[Holding]:
    """Buy the best-scoring shop item; returns the holdings acquired."""
    now = now or datetime.now()
    expire_timed_sales(session, now)

    candidates = [
        item for item in get_purchasable_items(session, agent.cash, now)
        if not item.buy_limit or owned_count(session, agent.id, item.id) < item.buy_limit
    ]
    if not candidates:
        logger.debug(f"{agent.username}: nothing to buy in the shop")
        return []

    best = max(candidates, key=lambda item: score_new_item(item, profile, now))
    quantity = purchase_quantity(
        agent.cash, best, owned_count(session, agent.id, best.id), profile, rng
    )

    bought = []
    for _ in range(quantity):
        # Real users buy concurrently; re-check before every unit
        session.refresh(best)
        if best.is_limited or (best.sale_type == SALE_STOCK and (best.remaining_stock or 0) <= 0):
            logger.debug(f"{agent.username}: {best.name} sold out after {len(bought)} copies")
            break
        bought.append(purchase_new_copy(session, agent.id, best.id, now=now))

    if bought:
        logger.info(f"[AI] {agent.username} bought {len(bought)}x new {best.name} "
                    f"for R${best.price} each")
    return bought


def _deal_ratio(listing: Holding) -> float:
    ev = item_effective_value(listing.item)
    return listing.list_price / ev if ev > 0 else math.inf


def select_resale_target(listings: List[Holding], profile: PersonalityProfile,
                         rng: random.Random) -> Optional[Holding]:
    """
    Pick a listing to buy.

    Snipers only take listings at or below ``deal_ratio`` of effective value.
    Everyone else accepts up to ``resale_max_value_ratio`` and otherwise falls
    back to a uniformly random candidate.
    """
    if not listings:
        return None

    ordered = sorted(listings, key=_deal_ratio)
    for listing in ordered:
        ev = item_effective_value(listing.item)
        if profile.requires_deal:
            if ev > 0 and listing.list_price <= ev * profile.deal_ratio:
                return listing
        elif ev > 0 and listing.list_price <= ev * profile.resale_max_value_ratio:
            return listing

    if profile.requires_deal:
        return None
    return rng.choice(listings)


def buy_resale(session: Session, agent: User, profile: PersonalityProfile,
               rng: random.Random, now: Optional[datetime] = None,
               seller_share: float = DEFAULT_SELLER_SHARE, batch_size: int = 20):
    """Buy one listing from another owner; returns the SaleResult or None."""
    now = now or datetime.now()

    if rng.random() < profile.resale_skip_chance:
        return None

    listings = get_resale_listings(session, agent.id, agent.cash, batch_size * 2)
    # Favour listings priced under effective value
    listings = sorted(listings, key=_deal_ratio)[:batch_size]

    target = select_resale_target(listings, profile, rng)
    if target is None or target.owner_id == agent.id:
        return None

    item_name = target.item.name
    result = purchase_listing(
        session, agent.id, target.id, target.list_price,
        seller_share=seller_share, now=now
    )

    logger.info(f"[AI] {agent.username} bought resale: {item_name} for R${result.price} "
                f"(RAP {result.old_rap} -> {result.new_rap})")
    return result
