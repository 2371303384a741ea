"""Configuration management for the simulation."""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from dotenv import load_dotenv

from rapsim.errors import ConfigurationError
from rapsim.simulation.config import SimulationConfig

# Load environment variables
load_dotenv()

# Environment variable -> (SimulationConfig field, converter)
_SIMULATION_ENV = {
    "MARKET_POPULATION_SIZE": ("population_size", int),
    "MARKET_ONLINE_FRACTION": ("online_fraction", float),
    "MARKET_TICK_INTERVAL": ("tick_interval_seconds", float),
    "MARKET_ACTION_PROBABILITY": ("action_probability", float),
    "MARKET_TRADE_CHECK_PROBABILITY": ("trade_check_probability", float),
    "MARKET_SESSION_MIN_MINUTES": ("session_min_minutes", float),
    "MARKET_SESSION_MAX_MINUTES": ("session_max_minutes", float),
    "MARKET_SEED": ("seed", int),
}


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def simulation_config_from_env(environ: Optional[Dict[str, str]] = None) -> SimulationConfig:
    """
    Build a SimulationConfig from ``MARKET_*`` environment variables.

    ``MARKET_PERSONALITIES`` may hold a JSON object of per-personality
    overrides, e.g. ``{"trader": {"accept_threshold": 1.1}}``.
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}

    for env_name, (field_name, convert) in _SIMULATION_ENV.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            values[field_name] = convert(raw)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {env_name}: {raw!r}") from e

    raw_personalities = environ.get("MARKET_PERSONALITIES")
    if raw_personalities:
        try:
            overrides = json.loads(raw_personalities)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"MARKET_PERSONALITIES is not valid JSON: {e}") from e
        if not isinstance(overrides, dict):
            raise ConfigurationError("MARKET_PERSONALITIES must be a JSON object")
        values["personality_overrides"] = overrides

    return SimulationConfig(**values)


@dataclass
class AppConfig:
    """Application-wide configuration."""

    # Database
    database_url: str

    # Logging
    log_level: int = logging.INFO
    log_to_file: bool = True

    simulation: SimulationConfig = field(default_factory=SimulationConfig)

    @classmethod
    def load(cls) -> "AppConfig":
        """Load configuration from environment variables."""
        level_name = os.getenv("LOG_LEVEL", "INFO").upper()
        log_level = logging.getLevelName(level_name)
        if not isinstance(log_level, int):
            raise ConfigurationError(f"Unknown LOG_LEVEL: {level_name}")

        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./market.db"),
            log_level=log_level,
            log_to_file=_env_flag("LOG_TO_FILE", "True"),
            simulation=simulation_config_from_env()
        )


# Global configuration instance
config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global config
    if config is None:
        config = AppConfig.load()
    return config
