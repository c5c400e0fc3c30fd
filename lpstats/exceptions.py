"""
Exceptions raised by the position analytics engine.
"""


class PositionStatsError(Exception):
    """Base class for errors raised by lpstats itself."""


class InconsistentInputError(PositionStatsError, ValueError):
    """
    Raised when inputs violate a domain invariant, e.g. combining amounts of
    different tokens or pricing an amount pair in a currency it does not hold.
    """
