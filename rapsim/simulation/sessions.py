"""
Agent online sessions.

The SessionStore is the in-process view of who is online and until when; the
persisted ``User.is_online`` flag is what the rest of the platform reads.
SessionManager.tick keeps the two in line and holds the online count at
``floor(population_size * online_fraction)``.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

from sqlalchemy.orm import sessionmaker

from rapsim.database.operations import unit_of_work, get_agents, set_online
from rapsim.simulation.config import SimulationConfig

logger = logging.getLogger(__name__)


class SessionStore:
    """Map of agent id to session end time. Mutated only by SessionManager."""

    def __init__(self):
        self._sessions: Dict[int, datetime] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, agent_id: int) -> bool:
        return agent_id in self._sessions

    def session_end(self, agent_id: int) -> Optional[datetime]:
        return self._sessions.get(agent_id)

    def is_live(self, agent_id: int, now: datetime) -> bool:
        end = self._sessions.get(agent_id)
        return end is not None and end >= now

    def live_ids(self, now: datetime) -> Set[int]:
        return {agent_id for agent_id, end in self._sessions.items() if end >= now}

    def start(self, agent_id: int, end: datetime, now: datetime):
        if self.is_live(agent_id, now):
            raise ValueError(f"Agent {agent_id} already has a live session")
        self._sessions[agent_id] = end

    def expire(self, now: datetime) -> List[int]:
        """Drop sessions that ended before ``now``; returns their agent ids."""
        expired = sorted(agent_id for agent_id, end in self._sessions.items() if end < now)
        for agent_id in expired:
            del self._sessions[agent_id]
        return expired

    def clear(self):
        self._sessions.clear()


@dataclass
class SessionTickResult:
    """What one session tick changed."""
    expired: List[int] = field(default_factory=list)
    repaired_online: List[int] = field(default_factory=list)
    repaired_offline: List[int] = field(default_factory=list)
    activated: List[int] = field(default_factory=list)
    online: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.expired or self.repaired_online or self.repaired_offline or self.activated)


class SessionManager:
    """Maintains target online occupancy across ticks."""

    def __init__(self, session_factory: sessionmaker, config: SimulationConfig,
                 store: Optional[SessionStore] = None, rng: Optional[random.Random] = None):
        self.session_factory = session_factory
        self.config = config
        self.store = store if store is not None else SessionStore()
        self.rng = rng or random.Random(config.seed)

    def _session_length(self) -> timedelta:
        minutes = self.rng.uniform(self.config.session_min_minutes, self.config.session_max_minutes)
        return timedelta(minutes=minutes)

    def tick(self, now: Optional[datetime] = None) -> SessionTickResult:
        """
        Expire, repair and top up sessions.

        Level-triggered: running it twice with the same ``now`` changes
        nothing the second time.
        """
        now = now or datetime.now()
        result = SessionTickResult()

        with unit_of_work(self.session_factory) as session:
            result.expired = self.store.expire(now)
            set_online(session, result.expired, False)

            agents = get_agents(session)
            live = self.store.live_ids(now)

            # Persisted flag drifted from the in-process view
            result.repaired_online = [a.id for a in agents if a.id in live and not a.is_online]
            result.repaired_offline = [a.id for a in agents if a.id not in live and a.is_online]
            set_online(session, result.repaired_online, True)
            set_online(session, result.repaired_offline, False)

            deficit = self.config.target_online - len(live)
            if deficit > 0:
                pool = [a.id for a in agents if a.id not in live]
                chosen = sorted(self.rng.sample(pool, min(deficit, len(pool))))
                for agent_id in chosen:
                    self.store.start(agent_id, now + self._session_length(), now)
                set_online(session, chosen, True)
                result.activated = chosen

            result.online = len(self.store.live_ids(now))

        if result.changed:
            logger.info(
                f"Sessions: {result.online} online "
                f"(+{len(result.activated)} started, -{len(result.expired)} expired, "
                f"{len(result.repaired_online) + len(result.repaired_offline)} repaired)"
            )
        return result
