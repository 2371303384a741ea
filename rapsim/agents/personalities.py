"""Personality archetypes and their behaviour tables."""

import logging
from enum import Enum
from typing import Dict, Any, Optional, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from rapsim.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Personality(str, Enum):
    HOARDER = "hoarder"  # buys often, rarely sells
    TRADER = "trader"    # active in trades and listings, strict about fairness
    SNIPER = "sniper"    # hunts under-priced listings
    WHALE = "whale"      # deep pockets, buys expensive items, overpays in trades
    CASUAL = "casual"    # a bit of everything


class ActionType(str, Enum):
    BUY_NEW = "buy_new"
    BUY_RESALE = "buy_resale"
    LIST_ITEM = "list_item"
    MANAGE_LISTINGS = "manage_listings"
    TRADE_SEND = "trade_send"
    TRADE_CHECK = "trade_check"


DEFAULT_PERSONALITY = Personality.CASUAL


class PersonalityProfile(BaseModel):
    """Immutable behaviour parameters for one archetype."""

    model_config = ConfigDict(frozen=True)

    personality: Personality
    weights: Dict[ActionType, float] = Field(
        description="Relative likelihood of each action when the agent acts"
    )

    # Inbound trade evaluation (received / given value ratio)
    accept_threshold: float = Field(gt=0)
    decline_threshold: float = Field(gt=0)
    residual_decline_chance: float = Field(default=0.1, ge=0, le=1)

    # Acquisition
    price_affinity: Literal["expensive", "cheap", "neutral"] = "neutral"
    stock_preference: Literal["abundant", "scarce", "neutral"] = "neutral"
    bulk_propensity: float = Field(default=0.1, ge=0, le=1)
    resale_skip_chance: float = Field(default=0.5, ge=0, le=1)
    resale_max_value_ratio: float = Field(
        default=1.1, gt=0, description="Highest price / effective value accepted on resale"
    )
    requires_deal: bool = Field(
        default=False, description="Only buy listings at or below deal_ratio of effective value"
    )
    deal_ratio: float = Field(default=0.85, gt=0)

    # Trade initiation (bundle value / target value)
    trade_target_ratio: float = Field(gt=0)
    min_overpay: float = Field(gt=0)
    max_overpay: float = Field(gt=0)
    rare_overpay_cap: float = Field(gt=0, description="Overpay ceiling for scarce targets")
    projection_tolerance: float = Field(
        default=1.25, gt=0, description="Highest RAP/value ratio accepted on a trade target"
    )
    allow_duplicate_items: bool = False

    @model_validator(mode="after")
    def _check_bands(self):
        if self.decline_threshold > self.accept_threshold:
            raise ValueError("decline_threshold must not exceed accept_threshold")
        if self.min_overpay > self.max_overpay:
            raise ValueError("min_overpay must not exceed max_overpay")
        if not self.min_overpay <= self.trade_target_ratio <= self.max_overpay:
            raise ValueError("trade_target_ratio must lie within [min_overpay, max_overpay]")
        if self.rare_overpay_cap < self.max_overpay:
            raise ValueError("rare_overpay_cap must be at least max_overpay")
        if any(w < 0 for w in self.weights.values()):
            raise ValueError("action weights must be non-negative")
        return self

    @property
    def total_weight(self) -> float:
        return sum(self.weights.values())


def _weights(buy_new, buy_resale, list_item, manage_listings, trade_send, trade_check):
    return {
        ActionType.BUY_NEW: buy_new,
        ActionType.BUY_RESALE: buy_resale,
        ActionType.LIST_ITEM: list_item,
        ActionType.MANAGE_LISTINGS: manage_listings,
        ActionType.TRADE_SEND: trade_send,
        ActionType.TRADE_CHECK: trade_check,
    }


PROFILES: Dict[Personality, PersonalityProfile] = {
    Personality.HOARDER: PersonalityProfile(
        personality=Personality.HOARDER,
        weights=_weights(3, 3, 0.1, 0.2, 1, 0.5),
        accept_threshold=1.1,
        decline_threshold=0.9,
        price_affinity="neutral",
        stock_preference="abundant",
        bulk_propensity=0.6,
        resale_skip_chance=0.5,
        trade_target_ratio=1.05,
        min_overpay=0.95,
        max_overpay=1.2,
        rare_overpay_cap=1.8,
        projection_tolerance=1.25,
        allow_duplicate_items=True,
    ),
    Personality.TRADER: PersonalityProfile(
        personality=Personality.TRADER,
        weights=_weights(1, 3, 3, 2, 4, 1),
        accept_threshold=1.05,
        decline_threshold=0.9,
        residual_decline_chance=0.15,
        price_affinity="cheap",
        stock_preference="scarce",
        bulk_propensity=0.2,
        resale_skip_chance=0.3,
        trade_target_ratio=1.0,
        min_overpay=0.95,
        max_overpay=1.05,
        rare_overpay_cap=1.5,
        projection_tolerance=1.15,
    ),
    Personality.SNIPER: PersonalityProfile(
        personality=Personality.SNIPER,
        weights=_weights(0.5, 5, 1, 1, 3, 1),
        accept_threshold=1.15,
        decline_threshold=0.95,
        residual_decline_chance=0.2,
        price_affinity="cheap",
        stock_preference="scarce",
        bulk_propensity=0.3,
        resale_skip_chance=0.2,
        requires_deal=True,
        deal_ratio=0.85,
        trade_target_ratio=0.85,
        min_overpay=0.75,
        max_overpay=0.95,
        rare_overpay_cap=1.5,
        projection_tolerance=1.1,
    ),
    Personality.WHALE: PersonalityProfile(
        personality=Personality.WHALE,
        weights=_weights(5, 5, 0.5, 0.5, 2, 0.5),
        accept_threshold=0.95,
        decline_threshold=0.75,
        residual_decline_chance=0.05,
        price_affinity="expensive",
        stock_preference="neutral",
        bulk_propensity=0.5,
        resale_skip_chance=0.4,
        resale_max_value_ratio=1.3,
        trade_target_ratio=1.1,
        min_overpay=0.95,
        max_overpay=1.3,
        rare_overpay_cap=2.0,
        projection_tolerance=1.5,
    ),
    Personality.CASUAL: PersonalityProfile(
        personality=Personality.CASUAL,
        weights=_weights(1, 1, 1, 1, 1, 1),
        accept_threshold=1.0,
        decline_threshold=0.85,
        bulk_propensity=0.1,
        resale_skip_chance=0.6,
        trade_target_ratio=1.0,
        min_overpay=0.9,
        max_overpay=1.15,
        rare_overpay_cap=1.5,
        projection_tolerance=1.25,
    ),
}


def build_profiles(overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[Personality, PersonalityProfile]:
    """
    Return the profile table with per-personality overrides applied.

    Raises:
        ConfigurationError: an override names an unknown personality or
            produces an invalid profile
    """
    profiles = dict(PROFILES)
    for tag, changes in (overrides or {}).items():
        try:
            personality = Personality(tag)
        except ValueError as e:
            raise ConfigurationError(f"Unknown personality in overrides: {tag!r}") from e

        data = profiles[personality].model_dump()
        if "weights" in changes:
            data["weights"] = {**data["weights"], **{ActionType(k): v for k, v in changes["weights"].items()}}
        data.update({k: v for k, v in changes.items() if k != "weights"})
        try:
            profiles[personality] = PersonalityProfile.model_validate(data)
        except (ValidationError, ValueError) as e:
            raise ConfigurationError(f"Invalid overrides for {tag}: {e}") from e
    return profiles


def get_profile(tag: Optional[str],
                profiles: Optional[Dict[Personality, PersonalityProfile]] = None) -> PersonalityProfile:
    """Look up a profile by tag; unknown or missing tags degrade to the casual profile."""
    profiles = profiles or PROFILES
    try:
        return profiles[Personality(tag)]
    except ValueError:
        logger.warning(f"Unknown personality {tag!r}; using {DEFAULT_PERSONALITY.value}")
        return profiles[DEFAULT_PERSONALITY]
