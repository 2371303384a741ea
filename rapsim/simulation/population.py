"""Agent population bootstrap."""

import logging
import random
from typing import List, Optional

from sqlalchemy.orm import Session

from rapsim.agents.personalities import Personality
from rapsim.database.models import User
from rapsim.simulation.config import SimulationConfig

logger = logging.getLogger(__name__)

NAMES = [
    "CoolGamer", "TradeMaster", "BloxLegend", "BrickBuilder", "NoobSlayer", "ProTraderX",
    "RichieRich", "ItemCollector", "MarketMogul", "SpeedRunner", "PixelWarrior", "ShadowNinja",
    "GoldenCrown", "ValkyrieQueen", "BrickSmith", "LuaCoder", "RedValkFan", "BlueSteel",
    "NeonKnight", "VoidWalker", "GalaxyGamer", "StarDust", "CloudHopper", "WindWalker",
    "FireMage", "IceQueen", "StormBringer", "ThunderGod", "EarthQuake", "TornadoAlly",
    "SunChaser", "MoonWalker", "StarGazer", "PlanetHopper", "CometRider", "MeteorMan",
    "AsteroidAce", "NebulaNinja", "CosmicKing", "GalacticHero", "DimensionDiver",
    "TimeTraveler", "SpaceCadet", "RocketMan", "AlienHunter", "UFOSpotter", "MartianMan",
    "VenusVisitor", "JupiterJumper",
]

MAX_NAME_ATTEMPTS = 50


def generate_username(rng: random.Random, taken: set) -> str:
    """Pick an unused ``<Name><0-999>`` username, widening the suffix on collisions."""
    for _ in range(MAX_NAME_ATTEMPTS):
        name = f"{rng.choice(NAMES)}{rng.randint(0, 999)}"
        if name not in taken:
            return name

    suffix = len(taken)
    while f"Agent{suffix}" in taken:
        suffix += 1
    return f"Agent{suffix}"


def starting_cash(personality: Personality, config: SimulationConfig, rng: random.Random) -> int:
    """Whales start rich; everyone else gets a uniform draw."""
    if personality == Personality.WHALE:
        return config.whale_starting_cash
    return rng.randint(config.starting_cash_min, config.starting_cash_max)


def bootstrap_population(session: Session, config: SimulationConfig,
                         rng: Optional[random.Random] = None) -> List[User]:
    """
    Top the agent population up to ``population_size`` and mark everyone offline.

    Existing agents keep their identity, cash and personality; only the
    deficit is created. Returns the agents created.

    Args:
        session: Database session (caller commits)
        config: Simulation configuration
        rng: Random source

    Returns:
        Newly created agents
    """
    rng = rng or random.Random(config.seed)

    existing = session.query(User).filter(User.is_ai.is_(True)).count()
    needed = config.population_size - existing

    created = []
    if needed > 0:
        logger.info(f"Creating {needed} new agents ({existing} already exist)")
        taken = {name for (name,) in session.query(User.username).all()}
        personalities = list(Personality)

        for _ in range(needed):
            personality = rng.choice(personalities)
            username = generate_username(rng, taken)
            taken.add(username)

            agent = User(
                username=username,
                cash=starting_cash(personality, config, rng),
                is_ai=True,
                personality=personality.value,
                is_online=False
            )
            session.add(agent)
            created.append(agent)

    # Sessions do not survive a restart
    session.query(User).filter(User.is_ai.is_(True)).update(
        {User.is_online: False}, synchronize_session="fetch"
    )
    session.flush()

    logger.info(f"Agent population ready: {existing + len(created)} agents, all offline")
    return created
