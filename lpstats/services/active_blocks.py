"""
Discovery of the blocks in which an account transacted.

Used when the event source cannot scan an unbounded block range: the
account's transaction count is monotonic in the block number, so the block
holding its i-th transaction is the first block whose count reaches i.
"""
import asyncio
import logging
from typing import Callable, List, Optional

from lpstats.repositories.chain import BlockReader, TransactionCountOracle

logger = logging.getLogger(__name__)

BlockPredicate = Callable[[int], bool]


def next_power_of_two(n: int) -> int:
    """Smallest power of two >= n (1 for n <= 1)."""
    if n <= 1:
        return 1
    return 1 << (n - 1).bit_length()


class ActiveBlockFinder:
    """
    Finds every block in a range where an account's transaction count increased.

    Costs O(log(range)) count lookups per transaction; searches for different
    transactions run concurrently, bounded by `max_concurrency`.
    """

    def __init__(
        self,
        tx_count_oracle: TransactionCountOracle,
        block_reader: BlockReader,
        max_concurrency: int = 8,
    ):
        self.tx_count_oracle = tx_count_oracle
        self.block_reader = block_reader
        self.max_concurrency = max_concurrency

    async def _get_transaction_count(self, account: str, block: int, head: Optional[int]) -> int:
        # Blocks past the chain head report the count at the head.
        if head is not None:
            block = min(block, head)
        return await self.tx_count_oracle.get_transaction_count(account, block)

    async def first_block_with_count(
        self,
        account: str,
        tx_index: int,
        low: int,
        high: int,
        head: Optional[int] = None,
    ) -> Optional[int]:
        """
        Binary search [low, high] for the minimal block with count >= tx_index.

        Returns None when even `high` has fewer transactions.
        """
        block_with_tx = None
        while low <= high:
            mid = (low + high) // 2
            tx_count = await self._get_transaction_count(account, mid, head)
            if tx_count >= tx_index:
                block_with_tx = mid
                high = mid - 1
            else:
                low = mid + 1
        return block_with_tx

    async def find_active_blocks(
        self,
        account: str,
        predicate: Optional[BlockPredicate] = None,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
    ) -> List[int]:
        """
        Blocks in [from_block, to_block] where `account` sent a transaction.

        Args:
            account: Account address
            predicate: Optional filter applied to each candidate block
            from_block: Lower bound (default 0)
            to_block: Upper bound (default: next power of two >= chain head)

        Returns:
            Ascending, duplicate-free list of block numbers
        """
        head = await self.block_reader.get_block_number()
        earliest_block = from_block if from_block is not None else 0
        latest_block = to_block if to_block is not None else next_power_of_two(head)

        if earliest_block > latest_block:
            return []

        start_count, total_tx = await asyncio.gather(
            self._get_transaction_count(account, earliest_block, head),
            self._get_transaction_count(account, latest_block, head),
        )
        start_tx = max(1, start_count)

        logger.debug(
            f"Searching blocks [{earliest_block}, {latest_block}] for transactions "
            f"{start_tx}..{total_tx} of {account}"
        )

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def search(tx_index: int) -> Optional[int]:
            async with semaphore:
                return await self.first_block_with_count(
                    account, tx_index, earliest_block, latest_block, head
                )

        blocks = await asyncio.gather(
            *(search(tx_index) for tx_index in range(start_tx, total_tx + 1))
        )

        active_blocks = sorted(
            {
                block
                for block in blocks
                if block is not None and (predicate is None or predicate(block))
            }
        )
        logger.info(f"Found {len(active_blocks)} active blocks for {account}")
        return active_blocks
