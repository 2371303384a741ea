"""
Listing policy: putting limited holdings up for sale and tending active listings.

Pricing branches, in precedence order:

1. projection correction: projected items list within +/-10% of value,
   pulling an inflated RAP back toward the curated value;
2. scarcity tiers: very rare items list as 5x-15x "joke" listings, moderately
   rare ones on a multiplier sliding from 5x down to 1.5x;
3. high-tier catalog items: large flat multipliers scaled by value;
4. ordinary items: tiered by value magnitude.

HODL suppression (withholding scarce or valuable items) applies first and
regardless of personality.
"""

import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from rapsim.agents.personalities import PersonalityProfile
from rapsim.database.models import User, Item
from rapsim.database.operations import (
    count_copies, get_active_listings, get_unlisted_limited_holdings,
    get_holdings_in_pending_trades
)
from rapsim.economy.transfers import set_listing
from rapsim.economy.valuation import item_is_projected, item_reference_value

logger = logging.getLogger(__name__)

# Scarcity thresholds (copies in circulation)
RARE_COPIES = 10
MID_COPIES = 50

# Value tiers
HIGH_VALUE = 50_000
MID_VALUE = 5_000

RARE_HODL_CHANCE = 0.9
HIGH_TIER_HODL_CHANCE = 0.8
HIGH_VALUE_HODL_CHANCE = 0.8

DEFAULT_REFERENCE = 100

# Listing management
DELIST_RAP_RATIO = 1.5
BASELINE_DELIST_CHANCE = 0.3
MARKDOWN_CHANCE = 0.4
HIGH_VALUE_MARKDOWN_CHANCE = 0.15
MARKDOWN_MIN = 0.01
MARKDOWN_MAX = 0.05
RAP_FLOOR_RATIO = 0.9


def scarcity_multiplier(copies: int) -> float:
    """Multiplier for moderately rare items: 5x at RARE_COPIES sliding to 1.5x at MID_COPIES."""
    if copies <= RARE_COPIES:
        return 5.0
    if copies >= MID_COPIES:
        return 1.5
    progress = (copies - RARE_COPIES) / (MID_COPIES - RARE_COPIES)
    return 5.0 - progress * 3.5


def _high_tier_multiplier(reference: int, copies: int, rng: random.Random) -> float:
    if reference < 10_000:
        upper = 30.0
    elif reference < 100_000:
        upper = 15.0
    else:
        upper = 8.0
    rarity_bonus = 1.0 + max(0, 100 - copies) / 100 * 0.5
    return rng.uniform(5.0, upper) * rarity_bonus


def compute_list_price(item: Item, copies: int, rng: random.Random) -> Optional[int]:
    """
    Asking price for one copy of ``item``, or None when it is withheld (HODL).

    Args:
        item: Item being listed
        copies: Copies of the item in circulation
        rng: Random source
    """
    if copies < RARE_COPIES and rng.random() < RARE_HODL_CHANCE:
        return None
    if item.is_high_tier and rng.random() < HIGH_TIER_HODL_CHANCE:
        return None

    value = item.value or 0
    reference = item_reference_value(item) or DEFAULT_REFERENCE

    if item_is_projected(item):
        price = value * rng.uniform(0.9, 1.1)
    elif copies < RARE_COPIES:
        price = reference * rng.uniform(5.0, 15.0)
    elif copies < MID_COPIES:
        multiplier = scarcity_multiplier(copies) * rng.uniform(0.95, 1.05)
        price = reference * min(max(multiplier, 1.5), 5.0)
    elif item.is_high_tier:
        price = reference * _high_tier_multiplier(reference, copies, rng)
    elif reference >= HIGH_VALUE:
        if rng.random() < HIGH_VALUE_HODL_CHANCE:
            return None
        price = reference * rng.uniform(1.5, 3.0)
    elif reference >= MID_VALUE:
        price = reference * rng.uniform(0.98, 1.3)
    else:
        price = reference * rng.uniform(0.95, 1.15)

    return max(1, int(price))


@dataclass
class ListingAdjustment:
    """What to do with an active listing."""
    action: str  # "delist", "reprice" or "hold"
    price: Optional[int] = None


def decide_listing_adjustment(price: int, item: Item, rng: random.Random) -> ListingAdjustment:
    """
    Review an active listing.

    Listings above 1.5x RAP are always pulled. Otherwise a listing may be
    pulled anyway, or marked down 1-5% but never below 90% of RAP.
    """
    rap = item.rap or 0

    if rap > 0 and price > rap * DELIST_RAP_RATIO:
        return ListingAdjustment("delist")
    if rng.random() < BASELINE_DELIST_CHANCE:
        return ListingAdjustment("delist")

    reference = item_reference_value(item)
    chance = HIGH_VALUE_MARKDOWN_CHANCE if reference >= HIGH_VALUE else MARKDOWN_CHANCE
    if rng.random() < chance:
        new_price = int(price * (1 - rng.uniform(MARKDOWN_MIN, MARKDOWN_MAX)))
        if rap > 0:
            new_price = max(new_price, math.ceil(rap * RAP_FLOOR_RATIO))
        if 0 < new_price < price:
            return ListingAdjustment("reprice", new_price)

    return ListingAdjustment("hold")


def list_item(session: Session, agent: User, profile: PersonalityProfile,
              rng: random.Random, now: Optional[datetime] = None) -> Optional[int]:
    """List one random unlisted limited holding; returns the price or None."""
    in_trades = get_holdings_in_pending_trades(session, agent.id)
    holdings = [
        h for h in get_unlisted_limited_holdings(session, agent.id)
        if h.id not in in_trades
    ]
    if not holdings:
        return None

    holding = rng.choice(holdings)
    item = holding.item
    price = compute_list_price(item, count_copies(session, item.id), rng)
    if price is None:
        logger.debug(f"{agent.username} ({profile.personality.value}) is holding {item.name}")
        return None

    set_listing(session, agent.id, holding.id, price)
    logger.info(f"[AI] {agent.username} listed {item.name} #{holding.serial_number} for R${price}")
    return price


def manage_listings(session: Session, agent: User, profile: PersonalityProfile,
                    rng: random.Random, now: Optional[datetime] = None) -> Optional[ListingAdjustment]:
    """Review one active listing; returns the adjustment applied."""
    listings = get_active_listings(session, agent.id)
    if not listings:
        return None

    listing = rng.choice(listings)
    adjustment = decide_listing_adjustment(listing.list_price, listing.item, rng)

    old_price = listing.list_price
    if adjustment.action == "delist":
        set_listing(session, agent.id, listing.id, None)
        logger.info(f"[AI] {agent.username} delisted {listing.item.name} (was R${old_price})")
    elif adjustment.action == "reprice":
        set_listing(session, agent.id, listing.id, adjustment.price)
        logger.info(f"[AI] {agent.username} repriced {listing.item.name} "
                    f"R${old_price} -> R${adjustment.price}")
    return adjustment
