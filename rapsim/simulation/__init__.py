"""Simulation orchestration and configuration."""

from .config import SimulationConfig
from .runner import SimulationRunner, Ticker
from .sessions import SessionManager, SessionStore
from .dispatcher import ActionDispatcher, choose_action
from .population import bootstrap_population

__all__ = [
    "SimulationConfig",
    "SimulationRunner",
    "Ticker",
    "SessionManager",
    "SessionStore",
    "ActionDispatcher",
    "choose_action",
    "bootstrap_population"
]
