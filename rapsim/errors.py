"""Exceptions raised by the market simulation."""


class MarketError(Exception):
    """Base class for market simulation errors."""


class StaleStateError(MarketError):
    """
    Raised when shared state changed between a read and the write that
    depended on it (listing sold, holding moved, balance spent).

    Recoverable: the surrounding unit of work is rolled back and the next
    tick re-evaluates from fresh state.
    """


class InvalidTransitionError(MarketError):
    """Raised when a trade offer is moved out of a terminal state."""


class ConfigurationError(MarketError, ValueError):
    """Raised when configuration values are invalid at load time."""
