"""Simulation configuration parameters."""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any, Optional

from rapsim.errors import ConfigurationError


@dataclass
class SimulationConfig:
    """Configuration for a market simulation run."""

    # Simulation metadata
    name: Optional[str] = None
    description: Optional[str] = None
    seed: Optional[int] = None

    # Population
    population_size: int = 50
    online_fraction: float = 0.3
    whale_starting_cash: int = 1_000_000
    starting_cash_min: int = 1_000
    starting_cash_max: int = 51_000

    # Sessions (minutes)
    session_min_minutes: float = 2.0
    session_max_minutes: float = 15.0

    # Scheduling
    tick_interval_seconds: float = 5.0
    action_probability: float = 0.5
    trade_check_probability: float = 0.5

    # Market economics
    seller_share: float = 0.6  # remainder is the platform fee sink
    resale_batch_size: int = 20
    trade_value_floor: int = 1500
    proof_value_threshold: int = 10_000

    # Per-personality overrides, e.g. {"trader": {"accept_threshold": 1.1}}
    personality_overrides: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.population_size < 0:
            raise ConfigurationError(
                f"population_size must be non-negative, got {self.population_size}"
            )

        for name in ("online_fraction", "action_probability",
                     "trade_check_probability", "seller_share"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")

        if self.session_min_minutes <= 0:
            raise ConfigurationError(
                f"session_min_minutes must be positive, got {self.session_min_minutes}"
            )
        if self.session_min_minutes > self.session_max_minutes:
            raise ConfigurationError(
                f"session_min_minutes ({self.session_min_minutes}) > "
                f"session_max_minutes ({self.session_max_minutes})"
            )
        if self.starting_cash_min > self.starting_cash_max:
            raise ConfigurationError(
                f"starting_cash_min ({self.starting_cash_min}) > "
                f"starting_cash_max ({self.starting_cash_max})"
            )
        if self.tick_interval_seconds <= 0:
            raise ConfigurationError(
                f"tick_interval_seconds must be positive, got {self.tick_interval_seconds}"
            )
        if self.resale_batch_size < 1:
            raise ConfigurationError(
                f"resale_batch_size must be at least 1, got {self.resale_batch_size}"
            )

    @property
    def target_online(self) -> int:
        """Number of agents the session manager keeps online."""
        return int(self.population_size * self.online_fraction)

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SimulationConfig":
        """Create configuration from dictionary."""
        return cls(**data)
