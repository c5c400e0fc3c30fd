"""
Retrieval of a position's IncreaseLiquidity / DecreaseLiquidity / Collect events.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from lpstats.models import EventKind, PositionEvent
from lpstats.repositories.chain import EventSource, PositionReader
from lpstats.services.active_blocks import ActiveBlockFinder

logger = logging.getLogger(__name__)


def parse_events(raw_events: Iterable[Dict[str, Any]]) -> List[PositionEvent]:
    """
    Parse raw events and return them in ascending (block, log index) order,
    dropping duplicates of the same log.
    """
    events: Dict[tuple, PositionEvent] = {}
    for raw in raw_events:
        event = PositionEvent(**raw)
        key = (event.block_number, event.log_index, event.transaction_hash)
        events.setdefault(key, event)
    return sorted(events.values(), key=lambda e: e.sort_key)


class PositionEventHistory:
    """
    Fetches position events using one of two strategies:

    1. Direct range query, when the event source supports it.
    2. Otherwise: find the blocks where the position owner transacted and
       query each of those blocks individually.
    """

    def __init__(
        self,
        event_source: EventSource,
        position_reader: PositionReader,
        block_finder: ActiveBlockFinder,
        max_concurrency: int = 8,
    ):
        self.event_source = event_source
        self.position_reader = position_reader
        self.block_finder = block_finder
        self.max_concurrency = max_concurrency

    async def get_events(
        self,
        kind: EventKind,
        token_id: int,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
    ) -> List[PositionEvent]:
        history = await self.get_history(token_id, from_block, to_block, kinds=[kind])
        return history[kind]

    async def get_history(
        self,
        token_id: int,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
        kinds: Optional[Sequence[EventKind]] = None,
    ) -> Dict[EventKind, List[PositionEvent]]:
        """
        Events of each requested kind (all kinds by default), fetched
        concurrently and sorted by (block, log index).
        """
        kinds = list(kinds) if kinds is not None else list(EventKind)

        if self.event_source.supports_range_queries:
            results = await asyncio.gather(
                *(self._query_range(kind, token_id, from_block, to_block) for kind in kinds)
            )
        else:
            blocks = await self._find_blocks(token_id, from_block, to_block)
            results = await asyncio.gather(
                *(self._query_blocks(kind, token_id, blocks) for kind in kinds)
            )

        history = {}
        for kind, raw_events in zip(kinds, results):
            history[kind] = parse_events(raw_events)
            logger.debug(f"Position {token_id}: {len(history[kind])} {kind.value} events")
        return history

    async def _query_range(
        self,
        kind: EventKind,
        token_id: int,
        from_block: Optional[int],
        to_block: Optional[int],
    ) -> List[Dict[str, Any]]:
        return await self.event_source.query_events(
            kind,
            token_id,
            from_block if from_block is not None else 0,
            to_block if to_block is not None else "latest",
        )

    async def _find_blocks(
        self,
        token_id: int,
        from_block: Optional[int],
        to_block: Optional[int],
    ) -> List[int]:
        account = await self.position_reader.owner_of(token_id)
        return await self.block_finder.find_active_blocks(
            account, from_block=from_block, to_block=to_block
        )

    async def _query_blocks(
        self,
        kind: EventKind,
        token_id: int,
        blocks: Sequence[int],
    ) -> List[Dict[str, Any]]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def query_block(block: int) -> List[Dict[str, Any]]:
            async with semaphore:
                return await self.event_source.query_events(kind, token_id, block, block)

        per_block = await asyncio.gather(*(query_block(block) for block in blocks))
        return [raw for block_events in per_block for raw in block_events]
