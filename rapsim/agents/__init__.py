"""Agent personalities and behaviour policies."""

from .personalities import Personality, ActionType, PersonalityProfile, PROFILES, build_profiles, get_profile
from .acquisition import buy_new, buy_resale
from .listing import list_item, manage_listings
from .negotiation import evaluate_incoming, initiate_trade

__all__ = [
    "Personality",
    "ActionType",
    "PersonalityProfile",
    "PROFILES",
    "build_profiles",
    "get_profile",
    "buy_new",
    "buy_resale",
    "list_item",
    "manage_listings",
    "evaluate_incoming",
    "initiate_trade"
]
