"""
Per-tick action dispatch for online agents.

Each online agent gets an optional inbound trade check followed by an
optional action drawn by weighted roulette from its personality profile.
The two steps run in separate units of work, so a failed action never undoes
a trade decision. A failure is logged and the tick moves on.
"""

import logging
import random
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from rapsim.agents.acquisition import buy_new, buy_resale
from rapsim.agents.listing import list_item, manage_listings
from rapsim.agents.negotiation import evaluate_incoming, initiate_trade
from rapsim.agents.personalities import (
    ActionType, Personality, PersonalityProfile, PROFILES, get_profile
)
from rapsim.database.models import User
from rapsim.database.operations import unit_of_work, get_online_agents
from rapsim.economy.events import EventBus
from rapsim.errors import StaleStateError, InvalidTransitionError
from rapsim.simulation.config import SimulationConfig

logger = logging.getLogger(__name__)

ActionHandler = Callable[..., object]


def choose_action(weights: Dict[ActionType, float], rng: random.Random) -> Optional[ActionType]:
    """
    Cumulative-weight roulette over ``weights``.

    Draws uniformly from [0, total) and walks the table subtracting weights
    until the draw is used up. Zero-weight actions are never chosen.
    """
    total = sum(w for w in weights.values() if w > 0)
    if total <= 0:
        return None

    draw = rng.uniform(0, total)
    chosen = None
    for action, weight in weights.items():
        if weight <= 0:
            continue
        chosen = action
        draw -= weight
        if draw <= 0:
            return action
    # float rounding left a sliver; the last positive entry absorbs it
    return chosen


def _check_trades_only(session, agent, profile, rng, now):
    """TRADE_CHECK as an action is a no-op; inbound trades have their own gate."""
    return None


@dataclass
class DispatchReport:
    """Outcome counts for one dispatcher tick."""
    agents: int = 0
    actions: Counter = field(default_factory=Counter)
    trade_decisions: Counter = field(default_factory=Counter)
    stale: int = 0
    errors: int = 0


class ActionDispatcher:
    """Runs one round of agent behaviour per tick."""

    def __init__(self, session_factory: sessionmaker, config: SimulationConfig,
                 profiles: Optional[Dict[Personality, PersonalityProfile]] = None,
                 rng: Optional[random.Random] = None,
                 event_bus: Optional[EventBus] = None):
        self.session_factory = session_factory
        self.config = config
        self.profiles = profiles or PROFILES
        self.rng = rng or random.Random(config.seed)
        self.event_bus = event_bus

        self.handlers: Dict[ActionType, ActionHandler] = {
            ActionType.BUY_NEW: buy_new,
            ActionType.BUY_RESALE: self._buy_resale,
            ActionType.LIST_ITEM: list_item,
            ActionType.MANAGE_LISTINGS: manage_listings,
            ActionType.TRADE_SEND: self._initiate_trade,
            ActionType.TRADE_CHECK: _check_trades_only,
        }

    def _buy_resale(self, session, agent, profile, rng, now):
        return buy_resale(
            session, agent, profile, rng, now,
            seller_share=self.config.seller_share,
            batch_size=self.config.resale_batch_size
        )

    def _initiate_trade(self, session, agent, profile, rng, now):
        return initiate_trade(
            session, agent, profile, rng, now, value_floor=self.config.trade_value_floor
        )

    def tick(self, now: Optional[datetime] = None) -> DispatchReport:
        """Process every online agent once, in id order."""
        now = now or datetime.now()
        report = DispatchReport()

        with unit_of_work(self.session_factory) as session:
            agent_ids = [agent.id for agent in get_online_agents(session)]

        for agent_id in agent_ids:
            report.agents += 1
            self._run_agent(agent_id, now, report)

        logger.debug(
            f"Dispatch tick: {report.agents} agents, actions={dict(report.actions)}, "
            f"trades={dict(report.trade_decisions)}, stale={report.stale}, errors={report.errors}"
        )
        return report

    def _run_agent(self, agent_id: int, now: datetime, report: DispatchReport):
        if self.rng.random() < self.config.trade_check_probability:
            decision = self._run_step(agent_id, "trade check", self._check_inbound, now, report)
            if decision is not None:
                report.trade_decisions[decision] += 1

        if self.rng.random() < self.config.action_probability:
            action = self._run_step(agent_id, "action", self._act, now, report)
            if action is not None:
                report.actions[action.value] += 1

    def _check_inbound(self, session, agent, profile, now):
        return evaluate_incoming(session, agent, profile, self.rng, now)

    def _act(self, session, agent, profile, now):
        action = choose_action(profile.weights, self.rng)
        if action is not None:
            self.handlers[action](session, agent, profile, self.rng, now)
        return action

    def _run_step(self, agent_id: int, step: str, work, now: datetime, report: DispatchReport):
        """
        Run one step for an agent in its own unit of work.

        Returns the step's result only once its unit has committed; a failed
        step is rolled back on its own and counted in ``report``.
        """
        try:
            with unit_of_work(self.session_factory, self.event_bus) as session:
                agent = session.get(User, agent_id)
                if agent is None or not agent.is_online:
                    return None
                profile = get_profile(agent.personality, self.profiles)
                return work(session, agent, profile, now)

        except (StaleStateError, InvalidTransitionError) as e:
            report.stale += 1
            logger.info(f"Agent {agent_id}: {step} abandoned, market moved: {e}")
        except SQLAlchemyError as e:
            report.errors += 1
            logger.warning(f"Agent {agent_id}: database error during {step}, skipping: {e}")
        except Exception as e:
            report.errors += 1
            logger.error(f"Agent {agent_id}: unexpected error during {step}: {e}", exc_info=True)
        return None
