"""
Folds position events into liquidity-weighted totals.

Every event is weighted by its liquidity and priced at the pool's
sqrtPriceX96 in the block it was emitted in, so the average price of an
aggregate is sum(sqrtPrice * liquidity) / sum(liquidity).
"""
import asyncio
import logging
from fractions import Fraction
from typing import Callable, Dict, List, Optional, Sequence

from lpstats.models import PositionEvent, Price, Token, WeightedAggregate
from lpstats.repositories.chain import BlockReader, PoolPriceReader
from lpstats.utils.math import UniswapV3Math, liquidity_for_amounts

logger = logging.getLogger(__name__)

LiquidityOf = Callable[[PositionEvent, int], Fraction]


def event_liquidity(event: PositionEvent, sqrt_price_x96: int) -> Fraction:
    """Liquidity delta carried by an Increase/Decrease event."""
    if event.liquidity is None:
        raise ValueError(f"{event.kind.value} event at block {event.block_number} has no liquidity")
    return Fraction(event.liquidity)


def average_price(aggregate: WeightedAggregate, token0: Token, token1: Token) -> Optional[Price]:
    """Liquidity-weighted average price of token0 in token1, or None without liquidity."""
    avg_sqrt_price = aggregate.avg_sqrt_price_x96
    if avg_sqrt_price is None:
        return None
    return UniswapV3Math.sqrt_price_x96_to_price(avg_sqrt_price, token0, token1)


class EventAggregator:
    """
    Computes the deposited, withdrawn and collected aggregates of one position.

    Prices are looked up concurrently (one lookup per distinct block), but the
    fold itself always runs in ascending (block, log index) order.
    """

    def __init__(
        self,
        price_reader: PoolPriceReader,
        block_reader: BlockReader,
        pool_address: str,
        max_concurrency: int = 8,
    ):
        self.price_reader = price_reader
        self.block_reader = block_reader
        self.pool_address = pool_address
        self.max_concurrency = max_concurrency

    async def _prices_at_blocks(self, blocks: Sequence[int]) -> Dict[int, int]:
        unique_blocks = sorted(set(blocks))
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def price_at(block: int) -> int:
            async with semaphore:
                return await self.price_reader.get_sqrt_price(self.pool_address, block)

        prices = await asyncio.gather(*(price_at(block) for block in unique_blocks))
        return dict(zip(unique_blocks, prices))

    async def fold(
        self,
        events: Sequence[PositionEvent],
        liquidity_of: LiquidityOf = event_liquidity,
    ) -> WeightedAggregate:
        """
        Sum amounts and liquidity over `events`, weighting each event's
        sqrtPriceX96 by its liquidity.

        Args:
            events: Events to fold, in any order
            liquidity_of: Liquidity of an event given the sqrtPriceX96 at its block

        Returns:
            WeightedAggregate (empty when there are no events)
        """
        if not events:
            return WeightedAggregate()

        ordered = sorted(events, key=lambda e: e.sort_key)
        prices = await self._prices_at_blocks([e.block_number for e in ordered])

        amount0 = 0
        amount1 = 0
        total_liquidity = Fraction(0)
        total_weighted_sqrt_price = Fraction(0)
        for event in ordered:
            sqrt_price_x96 = prices[event.block_number]
            liquidity = liquidity_of(event, sqrt_price_x96)
            amount0 += event.amount0
            amount1 += event.amount1
            total_liquidity += liquidity
            total_weighted_sqrt_price += sqrt_price_x96 * liquidity

        return WeightedAggregate(
            amount0=amount0,
            amount1=amount1,
            total_liquidity=total_liquidity,
            total_weighted_sqrt_price=total_weighted_sqrt_price,
            event_count=len(ordered),
            first_block=ordered[0].block_number,
            last_block=ordered[-1].block_number,
        )

    async def deposited(self, increase_events: Sequence[PositionEvent]) -> WeightedAggregate:
        """Fold of IncreaseLiquidity events, stamped with the first deposit's time."""
        aggregate = await self.fold(increase_events)
        if aggregate.first_block is None:
            logger.info("No deposit history")
            return aggregate

        first_timestamp = await self.block_reader.get_block_timestamp(aggregate.first_block)
        return aggregate.model_copy(update={"first_timestamp": first_timestamp})

    async def withdrawn(self, decrease_events: Sequence[PositionEvent]) -> WeightedAggregate:
        """Fold of DecreaseLiquidity events, stamped with the last withdrawal's time."""
        aggregate = await self.fold(decrease_events)
        if aggregate.last_block is None:
            return aggregate

        last_timestamp = await self.block_reader.get_block_timestamp(aggregate.last_block)
        return aggregate.model_copy(update={"last_timestamp": last_timestamp})

    async def collected(
        self,
        collect_events: Sequence[PositionEvent],
        decrease_events: Sequence[PositionEvent],
        tick_lower: int,
        tick_upper: int,
    ) -> WeightedAggregate:
        """
        Fees collected: Collect events minus the principal returned by
        DecreaseLiquidity events.

        Collect events report principal and fees together, so each one is
        converted to an equivalent liquidity with the inverse amount formula
        (price clamped to the position's range), and the decrease fold is
        subtracted from the result.
        """

        def collect_liquidity(event: PositionEvent, sqrt_price_x96: int) -> Fraction:
            return liquidity_for_amounts(
                event.amount0, event.amount1, sqrt_price_x96, tick_lower, tick_upper
            )

        collects, decreases = await asyncio.gather(
            self.fold(collect_events, collect_liquidity),
            self.fold(decrease_events),
        )

        return WeightedAggregate(
            amount0=collects.amount0 - decreases.amount0,
            amount1=collects.amount1 - decreases.amount1,
            total_liquidity=collects.total_liquidity - decreases.total_liquidity,
            total_weighted_sqrt_price=(
                collects.total_weighted_sqrt_price - decreases.total_weighted_sqrt_price
            ),
            event_count=collects.event_count,
            first_block=collects.first_block,
            last_block=collects.last_block,
        )
