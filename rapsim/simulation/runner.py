"""Simulation runner and orchestration."""

import json
import logging
import random
import threading
from collections import Counter
from datetime import datetime
from typing import Callable, Dict, Any, Optional

from sqlalchemy.engine import Engine

from rapsim.agents.personalities import build_profiles
from rapsim.database.models import User, Item
from rapsim.database.operations import (
    get_engine, get_session_factory, init_database, unit_of_work
)
from rapsim.economy.events import EventBus, MarketEvent, SaleEvent, TradeAcceptedEvent
from rapsim.simulation.config import SimulationConfig
from rapsim.simulation.dispatcher import ActionDispatcher
from rapsim.simulation.population import bootstrap_population
from rapsim.simulation.sessions import SessionManager, SessionStore
from rapsim.utils import setup_logger


class Ticker:
    """
    Fixed-interval scheduler decoupled from the work it drives.

    ``callback`` receives the tick time. Errors raised by the callback are
    logged and the ticker keeps going.
    """

    def __init__(self, interval: float, callback: Callable[[datetime], Any]):
        self.interval = interval
        self.callback = callback
        self.ticks = 0
        self._stop = threading.Event()
        self._logger = logging.getLogger(__name__)

    def run(self, max_ticks: Optional[int] = None):
        """Tick until stopped, or until ``max_ticks`` ticks have run."""
        self._stop.clear()
        while not self._stop.is_set():
            try:
                self.callback(datetime.now())
            except Exception as e:
                self._logger.error(f"Tick {self.ticks + 1} failed: {e}", exc_info=True)
            self.ticks += 1

            if max_ticks is not None and self.ticks >= max_ticks:
                break
            self._stop.wait(self.interval)

    def stop(self):
        self._stop.set()


class SimulationRunner:
    """Orchestrates a complete simulation run."""

    def __init__(self, config: SimulationConfig, database_url: Optional[str] = None,
                 log_level: int = logging.INFO, log_to_file: bool = True,
                 engine: Optional[Engine] = None):
        """
        Initialize simulation runner.

        Args:
            config: Simulation configuration
            database_url: Database to run against (defaults to DATABASE_URL)
            log_level: Logging level (DEBUG for detailed, INFO for summary)
            log_to_file: Whether to also log to a timestamped file
            engine: Pre-built engine, mainly for tests
        """
        self.config = config
        self.logger = setup_logger(level=log_level, log_to_file=log_to_file)
        self.rng = random.Random(config.seed)

        self.engine = engine or get_engine(database_url)
        init_database(self.engine)
        self.session_factory = get_session_factory(self.engine)

        self.profiles = build_profiles(config.personality_overrides)
        self.event_bus = EventBus()
        self.event_bus.subscribe(self._record_event)

        self.store = SessionStore()
        self.sessions = SessionManager(self.session_factory, config, self.store, self.rng)
        self.dispatcher = ActionDispatcher(
            self.session_factory, config, self.profiles, self.rng, self.event_bus
        )

        self.ticker: Optional[Ticker] = None
        self.tick_count = 0
        self.event_counts: Counter = Counter()
        self.sales_volume = 0
        self.proof_trades = []

    def _record_event(self, event: MarketEvent):
        self.event_counts[event.kind] += 1
        if isinstance(event, SaleEvent):
            self.sales_volume += event.price
        elif isinstance(event, TradeAcceptedEvent) and event.is_proof_worthy(self.config.proof_value_threshold):
            self.proof_trades.append(event.trade_id)
            self.logger.info(f"  Trade proof: trade {event.trade_id} "
                             f"({event.sender_value} for {event.recipient_value})")

    def bootstrap(self):
        """Create missing agents and reset online state."""
        with unit_of_work(self.session_factory) as session:
            created = bootstrap_population(session, self.config, self.rng)
        self.store.clear()
        return created

    def run_tick(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Run one session tick and one dispatch tick."""
        now = now or datetime.now()
        self.tick_count += 1

        session_result = self.sessions.tick(now)
        report = self.dispatcher.tick(now)

        self.logger.debug(f"--- Tick {self.tick_count} ---")
        if report.actions or report.trade_decisions:
            self.logger.info(f"Tick {self.tick_count}: {session_result.online} online, "
                             f"actions={dict(report.actions)}, trades={dict(report.trade_decisions)}")
        if self.tick_count % 10 == 0:
            self.logger.info(f"Progress: {self.tick_count} ticks completed")

        return {"sessions": session_result, "dispatch": report}

    def run(self, num_ticks: Optional[int] = None) -> Dict[str, Any]:
        """
        Run the simulation.

        Args:
            num_ticks: Stop after this many ticks (None runs until stop())

        Returns:
            Simulation results including configuration and summary
        """
        start_time = datetime.now()

        self.logger.info("=" * 80)
        self.logger.info(f"Starting Simulation: {self.config.name}")
        self.logger.info(f"Description: {self.config.description}")
        self.logger.info(f"Population: {self.config.population_size} agents, "
                         f"target online: {self.config.target_online}")
        self.logger.info(f"Tick interval: {self.config.tick_interval_seconds}s")
        self.logger.info("=" * 80)

        self.bootstrap()

        self.ticker = Ticker(self.config.tick_interval_seconds, self.run_tick)
        try:
            self.ticker.run(max_ticks=num_ticks)
        except KeyboardInterrupt:
            self.logger.info("Interrupted, shutting down")

        end_time = datetime.now()
        duration = (end_time - start_time).total_seconds()

        self.logger.info("")
        self.logger.info("=" * 80)
        self.logger.info("Simulation Complete!")
        self.logger.info(f"Duration: {duration:.2f} seconds")
        self.logger.info("=" * 80)

        results = {
            "config": self.config.to_dict(),
            "start_time": start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "duration_seconds": duration,
            "summary": self.summary()
        }
        self._log_summary(results["summary"])
        return results

    def stop(self):
        if self.ticker is not None:
            self.ticker.stop()

    def summary(self) -> Dict[str, Any]:
        """Summary statistics from the event stream and the database."""
        with unit_of_work(self.session_factory) as session:
            agents = session.query(User).filter(User.is_ai.is_(True)).all()
            agent_cash = {a.username: a.cash for a in agents}
            by_personality = Counter(a.personality for a in agents)
            limiteds = session.query(Item).filter(Item.is_limited.is_(True)).count()

        return {
            "ticks": self.tick_count,
            "events": dict(self.event_counts),
            "total_purchases": self.event_counts.get("purchase", 0),
            "total_resales": self.event_counts.get("sale", 0),
            "total_resale_volume": self.sales_volume,
            "total_trades": self.event_counts.get("trade_accepted", 0),
            "proof_trades": list(self.proof_trades),
            "limited_items": limiteds,
            "agents_by_personality": dict(by_personality),
            "agent_cash": agent_cash
        }

    def _log_summary(self, summary: Dict[str, Any]):
        """Log final summary statistics."""
        self.logger.info("")
        self.logger.info("=" * 80)
        self.logger.info("FINAL SIMULATION SUMMARY")
        self.logger.info("=" * 80)
        self.logger.info(f"  Ticks: {summary['ticks']}")
        self.logger.info(f"  Shop Purchases: {summary['total_purchases']}")
        self.logger.info(f"  Resales: {summary['total_resales']} (volume R${summary['total_resale_volume']})")
        self.logger.info(f"  Trades Accepted: {summary['total_trades']} "
                         f"({len(summary['proof_trades'])} proof-worthy)")
        self.logger.info(f"  Limited Items: {summary['limited_items']}")
        self.logger.info("")
        self.logger.info("AGENTS BY PERSONALITY:")
        for personality, count in sorted(summary["agents_by_personality"].items(), key=lambda kv: str(kv[0])):
            self.logger.info(f"  {personality}: {count}")
        self.logger.info("=" * 80)

    def save_results(self, results: Dict[str, Any], filepath: str):
        """
        Save simulation results to file.

        Args:
            results: Simulation results
            filepath: Path to save file
        """
        with open(filepath, 'w') as f:
            json.dump(results, f, indent=2, default=str)
