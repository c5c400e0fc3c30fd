"""
Position analytics: combines current on-chain state with the aggregated
event history of a position into a PositionStats record.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from fractions import Fraction
from typing import Callable, Optional, Tuple

from lpstats.exceptions import InconsistentInputError
from lpstats.models import (
    EventKind,
    PositionStats,
    Price,
    TokenAmount,
    TokenAmountPair,
    WeightedAggregate,
)
from lpstats.repositories.chain import (
    BlockReader,
    PoolPriceReader,
    PoolResolver,
    PositionReader,
    TokenReader,
    Web3ChainData,
)
from lpstats.services.active_blocks import ActiveBlockFinder
from lpstats.services.aggregator import EventAggregator, average_price
from lpstats.services.events import PositionEventHistory
from lpstats.utils.env import MAX_CONCURRENT_REQUESTS
from lpstats.utils.math import UniswapV3Math, amounts_for_liquidity

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)
DAYS_PER_YEAR = 365


def to_quote_amount(amounts: TokenAmountPair, price: Price) -> TokenAmount:
    """
    Value of both amounts in the price's quote token.

    Raises:
        InconsistentInputError: If the pair does not hold the quote token, or
            holds a token that the price cannot convert
    """
    tokens = (amounts.amount0.token, amounts.amount1.token)
    if price.quote not in tokens:
        raise InconsistentInputError(
            f"Quote token {price.quote.symbol} is not part of the amount pair"
        )

    total = TokenAmount(token=price.quote, raw=0)
    for amount in amounts.as_tuple():
        if amount.token == price.quote:
            total = total + amount
        else:
            total = total + price.quote_amount(amount)
    return total


def blend_yield_price(
    collected: TokenAmountPair,
    avg_collected_price: Optional[Price],
    uncollected: TokenAmountPair,
    current_price: Price,
) -> Price:
    """
    Average price of the position's yield.

    Collected fees are priced at their average collection price, uncollected
    fees at the current price; each price is weighted by its leg's value in
    the quote token. Falls back to the current price when nothing was ever
    collected.
    """
    if avg_collected_price is None:
        return current_price

    collected_quote = to_quote_amount(collected, avg_collected_price)
    uncollected_quote = to_quote_amount(uncollected, current_price)
    total_quote = collected_quote + uncollected_quote
    if total_quote.raw == 0:
        return current_price

    raw = (
        avg_collected_price.raw * collected_quote.raw
        + current_price.raw * uncollected_quote.raw
    ) / total_quote.raw
    return Price(base=current_price.base, quote=current_price.quote, raw=raw)


def yield_per_day(
    total_yield: TokenAmountPair, duration: Optional[timedelta]
) -> Optional[TokenAmountPair]:
    if duration is None or duration <= timedelta(0):
        return None
    microsecond = timedelta(microseconds=1)
    return total_yield.scale(Fraction(ONE_DAY // microsecond, duration // microsecond))


def annual_percentage_rate(
    daily_yield: Optional[TokenAmountPair], deposited: TokenAmountPair
) -> Tuple[Optional[Fraction], Optional[Fraction]]:
    """Per-token APR: daily yield / deposited * 365, absent for zero deposits."""
    if daily_yield is None:
        return None, None

    aprs = []
    for daily, principal in zip(daily_yield.as_tuple(), deposited.as_tuple()):
        if principal.raw == 0:
            aprs.append(None)
        else:
            aprs.append(daily.raw / principal.raw * DAYS_PER_YEAR)
    return aprs[0], aprs[1]


class PositionStatsService:
    """
    Computes PositionStats for a position id.

    All collaborators are injected; any failure while gathering data aborts
    the whole computation.
    """

    def __init__(
        self,
        position_reader: PositionReader,
        pool_resolver: PoolResolver,
        price_reader: PoolPriceReader,
        token_reader: TokenReader,
        block_reader: BlockReader,
        event_history: PositionEventHistory,
        max_concurrency: int = MAX_CONCURRENT_REQUESTS,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.position_reader = position_reader
        self.pool_resolver = pool_resolver
        self.price_reader = price_reader
        self.token_reader = token_reader
        self.block_reader = block_reader
        self.event_history = event_history
        self.max_concurrency = max_concurrency
        self.now = now or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_chain(
        cls,
        chain: Web3ChainData,
        max_concurrency: int = MAX_CONCURRENT_REQUESTS,
    ) -> "PositionStatsService":
        """Wire every collaborator to a single Web3ChainData."""
        block_finder = ActiveBlockFinder(chain, chain, max_concurrency)
        event_history = PositionEventHistory(chain, chain, block_finder, max_concurrency)
        return cls(
            position_reader=chain,
            pool_resolver=chain,
            price_reader=chain,
            token_reader=chain,
            block_reader=chain,
            event_history=event_history,
            max_concurrency=max_concurrency,
        )

    async def get_position_stats(self, position_id: int) -> PositionStats:
        position = await self.position_reader.get_position(position_id)
        token0, token1, pool_address = await asyncio.gather(
            self.token_reader.get_token(position.token0),
            self.token_reader.get_token(position.token1),
            self.pool_resolver.get_pool_address(position.token0, position.token1, position.fee),
        )

        sqrt_price_x96, history = await asyncio.gather(
            self.price_reader.get_sqrt_price(pool_address),
            self.event_history.get_history(position_id),
        )

        lower_tick_price = UniswapV3Math.tick_to_price(token0, token1, position.tick_lower)
        upper_tick_price = UniswapV3Math.tick_to_price(token0, token1, position.tick_upper)
        current_price = UniswapV3Math.sqrt_price_x96_to_price(sqrt_price_x96, token0, token1)

        current = amounts_for_liquidity(
            position.liquidity,
            sqrt_price_x96,
            position.tick_lower,
            position.tick_upper,
            token0,
            token1,
        )
        uncollected = TokenAmountPair.from_raw(
            token0, position.uncollected0, token1, position.uncollected1
        )

        aggregator = EventAggregator(
            self.price_reader, self.block_reader, pool_address, self.max_concurrency
        )
        deposited_agg, withdrawn_agg, collected_agg = await asyncio.gather(
            aggregator.deposited(history[EventKind.INCREASE]),
            aggregator.withdrawn(history[EventKind.DECREASE]),
            aggregator.collected(
                history[EventKind.COLLECT],
                history[EventKind.DECREASE],
                position.tick_lower,
                position.tick_upper,
            ),
        )

        def amounts(aggregate: WeightedAggregate) -> TokenAmountPair:
            return TokenAmountPair.from_raw(token0, aggregate.amount0, token1, aggregate.amount1)

        deposited = amounts(deposited_agg)
        withdrawn = amounts(withdrawn_agg)
        collected = amounts(collected_agg)
        avg_collected_price = average_price(collected_agg, token0, token1)

        total_yield = collected + uncollected
        date_opened = deposited_agg.first_timestamp
        date_closed = withdrawn_agg.last_timestamp
        duration = None
        if date_opened is not None:
            duration = (date_closed or self.now()) - date_opened
        daily_yield = yield_per_day(total_yield, duration)

        stats = PositionStats(
            position_id=position_id,
            owner=position.owner,
            token0=token0,
            token1=token1,
            pool_address=pool_address,
            lower_tick_price=lower_tick_price,
            upper_tick_price=upper_tick_price,
            current_price=current_price,
            in_range=UniswapV3Math.in_range(sqrt_price_x96, position.tick_lower, position.tick_upper),
            current=current,
            uncollected=uncollected,
            deposited=deposited,
            avg_deposit_price=average_price(deposited_agg, token0, token1),
            withdrawn=withdrawn,
            avg_withdrawn_price=average_price(withdrawn_agg, token0, token1),
            collected=collected,
            avg_collected_price=avg_collected_price,
            date_opened=date_opened,
            date_closed=date_closed,
            duration_position_held=duration,
            total_yield=total_yield,
            avg_yield_price=blend_yield_price(
                collected, avg_collected_price, uncollected, current_price
            ),
            yield_per_day=daily_yield,
            apr=annual_percentage_rate(daily_yield, deposited),
        )

        logger.info(
            f"Position {position_id} ({token0.symbol}/{token1.symbol}): "
            f"{deposited_agg.event_count} deposits, {withdrawn_agg.event_count} withdrawals, "
            f"{collected_agg.event_count} collects"
        )
        return stats
