"""
lpstats - economic history and current state of a Uniswap V3 liquidity position.

Reconstructs deposits, withdrawals and fee collections from on-chain events
and derives average entry/exit prices, yield and APR.
"""
from lpstats.exceptions import InconsistentInputError, PositionStatsError
from lpstats.models import PositionStats, Price, Token, TokenAmount, TokenAmountPair
from lpstats.services.stats import PositionStatsService

__all__ = [
    "InconsistentInputError",
    "PositionStatsError",
    "PositionStats",
    "PositionStatsService",
    "Price",
    "Token",
    "TokenAmount",
    "TokenAmountPair",
]
