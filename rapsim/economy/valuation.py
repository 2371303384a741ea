"""
Item valuation.

Agents never price off raw RAP: a handful of outlier sales can inflate it
("projection"), so decisions go through :func:`effective_value`, which
falls back to the curated value whenever RAP looks artificially high.

All functions are pure and deterministic.
"""

# Projected when rap > value * PROJECTION_RATIO + PROJECTION_MARGIN (and value > 0)
PROJECTION_RATIO = 1.25
PROJECTION_MARGIN = 50

# Applied to the curated value of a projected item. 1.0 means "trust value,
# ignore RAP"; it must stay within (0, 1] to keep effective_value <= max(value, rap).
PROJECTED_VALUE_FACTOR = 1.0

# Listing reference valuation switches to value above this RAP/value ratio
REFERENCE_INFLATION_RATIO = 1.5


def is_projected(value: int, rap: int) -> bool:
    """Whether RAP is artificially inflated relative to the curated value."""
    value = value or 0
    rap = rap or 0
    return value > 0 and rap > value * PROJECTION_RATIO + PROJECTION_MARGIN


def effective_value(value: int, rap: int) -> int:
    """
    Valuation used in agent decisions.

    Projected items are valued from ``value`` (scaled by
    PROJECTED_VALUE_FACTOR). Otherwise ``value`` if set, else ``rap``,
    else 0.
    """
    value = max(value or 0, 0)
    rap = max(rap or 0, 0)

    if is_projected(value, rap):
        return int(value * PROJECTED_VALUE_FACTOR)
    if value > 0:
        return value
    return rap


def reference_value(value: int, rap: int) -> int:
    """
    Listing reference: the higher of value and RAP, unless RAP is inflated
    beyond REFERENCE_INFLATION_RATIO of value, in which case value.
    """
    value = max(value or 0, 0)
    rap = max(rap or 0, 0)

    if value > 0 and rap > value * REFERENCE_INFLATION_RATIO:
        return value
    return max(value, rap)


def projection_ratio(value: int, rap: int) -> float:
    """RAP as a multiple of value; 0.0 when value is unset."""
    if not value or value <= 0:
        return 0.0
    return (rap or 0) / value


def item_is_projected(item) -> bool:
    return is_projected(item.value, item.rap)


def item_effective_value(item) -> int:
    return effective_value(item.value, item.rap)


def item_reference_value(item) -> int:
    return reference_value(item.value, item.rap)


def holdings_value(holdings) -> int:
    """Total effective value of a collection of holdings."""
    return sum(item_effective_value(h.item) for h in holdings)
