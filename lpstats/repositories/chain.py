"""
Read-only access to on-chain state for a single liquidity position.

Each capability the analytics engine needs is a narrow abstract class, so
services depend only on the calls they make. `Web3ChainData` implements all
of them against a JSON-RPC endpoint.

Includes retry logic for transient transport failures.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Tuple, Union

import aiohttp
from web3 import Web3

from lpstats.models import EventKind, LiquidityPosition, Token
from lpstats.utils.cache import RequestCache
from lpstats.utils.env import POOL_FACTORY_ADDRESS, POSITION_MANAGER_ADDRESS, SUPPORTS_RANGE_LOGS
from lpstats.utils.web3 import MAX_UINT128, ZERO_ADDRESS, AsyncWeb3Helper

logger = logging.getLogger(__name__)

BlockIdentifier = Union[int, str]


class PositionReader(ABC):
    """Reads position NFT state."""

    @abstractmethod
    async def get_position(self, token_id: int) -> LiquidityPosition:
        """Fetch the position's range, liquidity and uncollected amounts."""
        pass

    @abstractmethod
    async def owner_of(self, token_id: int) -> str:
        """Current owner of the position NFT."""
        pass


class PoolResolver(ABC):
    @abstractmethod
    async def get_pool_address(self, token0: str, token1: str, fee: int) -> str:
        pass


class PoolPriceReader(ABC):
    @abstractmethod
    async def get_sqrt_price(self, pool_address: str, block_number: Optional[int] = None) -> int:
        """sqrtPriceX96 of the pool at `block_number`, or at the latest block."""
        pass


class TokenReader(ABC):
    @abstractmethod
    async def get_token(self, address: str) -> Token:
        pass


class EventSource(ABC):
    """
    Source of raw position manager events.

    Raw events are dictionaries with the keys `kind`, `block_number`,
    `log_index`, `transaction_hash`, `token_id`, `liquidity`, `amount0` and
    `amount1` (`liquidity` is None for Collect events).
    """

    @property
    @abstractmethod
    def supports_range_queries(self) -> bool:
        """Whether `query_events` accepts an arbitrary (unbounded) block range."""
        pass

    @abstractmethod
    async def query_events(
        self,
        kind: EventKind,
        token_id: int,
        from_block: int,
        to_block: BlockIdentifier,
    ) -> List[Dict[str, Any]]:
        pass


class TransactionCountOracle(ABC):
    @abstractmethod
    async def get_transaction_count(self, account: str, block_number: int) -> int:
        """Number of transactions sent by `account` as of `block_number`."""
        pass


class BlockReader(ABC):
    @abstractmethod
    async def get_block_number(self) -> int:
        pass

    @abstractmethod
    async def get_block_timestamp(self, block_number: int) -> datetime:
        pass


# Retry configuration
MAX_RETRIES = 3
RETRY_DELAY_BASE = 1.0  # Base delay in seconds (exponential backoff)
RETRYABLE_ERRORS = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    ConnectionError,
    TimeoutError,
)


def retry_on_rpc_error(func):
    """
    Decorator that retries async RPC operations on transient failures.
    Uses exponential backoff.
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        last_exception = None
        for attempt in range(MAX_RETRIES):
            try:
                return await func(*args, **kwargs)
            except RETRYABLE_ERRORS as e:
                last_exception = e
                delay = RETRY_DELAY_BASE * (2**attempt)
                logger.warning(
                    f"RPC call {func.__name__} failed (attempt {attempt + 1}/{MAX_RETRIES}): {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)
        # All retries exhausted
        logger.error(f"RPC call {func.__name__} failed after {MAX_RETRIES} attempts")
        raise last_exception

    return wrapper


class Web3ChainData(
    PositionReader,
    PoolResolver,
    PoolPriceReader,
    TokenReader,
    EventSource,
    TransactionCountOracle,
    BlockReader,
):
    """
    web3.py implementation of every chain capability.

    Immutable reads (token metadata, pool addresses) and reads pinned to an
    explicit block number go through the optional RequestCache; reads of the
    latest state are always fetched.
    """

    def __init__(
        self,
        helper: AsyncWeb3Helper,
        position_manager_address: str = POSITION_MANAGER_ADDRESS,
        factory_address: str = POOL_FACTORY_ADDRESS,
        supports_range_queries: bool = SUPPORTS_RANGE_LOGS,
        cache: Optional[RequestCache] = None,
    ):
        self.helper = helper
        self.position_manager = helper.make_contract_by_name(
            name="NonfungiblePositionManager",
            addr=position_manager_address,
        )
        self.factory = helper.make_contract_by_name(
            name="UniswapV3Factory",
            addr=factory_address,
        )
        self._supports_range_queries = supports_range_queries
        self.cache = cache

    @property
    def supports_range_queries(self) -> bool:
        return self._supports_range_queries

    async def _cached(
        self,
        method: str,
        params: Tuple[Hashable, ...],
        fetch: Callable[[], Awaitable[Any]],
    ) -> Any:
        if self.cache is None:
            return await fetch()
        return await self.cache.get_or_fetch(method, params, fetch)

    # -----------------------------
    # Position manager
    # -----------------------------

    @retry_on_rpc_error
    async def owner_of(self, token_id: int) -> str:
        return await self.position_manager.functions.ownerOf(token_id).call()

    @retry_on_rpc_error
    async def get_position(self, token_id: int) -> LiquidityPosition:
        """
        Read the position and simulate a full `collect` from its owner.

        The simulated collect returns the fees accrued up to now plus any
        tokens owed from earlier decreases, without moving funds.
        """
        position_info, owner = await asyncio.gather(
            self.position_manager.functions.positions(token_id).call(),
            self.owner_of(token_id),
        )

        # Position info: (nonce, operator, token0, token1, fee,
        #                 tickLower, tickUpper, liquidity, ...)
        token0, token1, fee = position_info[2], position_info[3], position_info[4]
        tick_lower, tick_upper, liquidity = position_info[5], position_info[6], position_info[7]

        uncollected0, uncollected1 = await self.position_manager.functions.collect(
            (token_id, owner, MAX_UINT128, MAX_UINT128)
        ).call({"from": owner})

        logger.debug(
            f"Position {token_id}: ticks [{tick_lower}, {tick_upper}], "
            f"liquidity {liquidity}, uncollected ({uncollected0}, {uncollected1})"
        )

        return LiquidityPosition(
            token_id=token_id,
            owner=owner,
            token0=token0,
            token1=token1,
            fee=fee,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            liquidity=liquidity,
            uncollected0=uncollected0,
            uncollected1=uncollected1,
        )

    @retry_on_rpc_error
    async def query_events(
        self,
        kind: EventKind,
        token_id: int,
        from_block: int,
        to_block: BlockIdentifier,
    ) -> List[Dict[str, Any]]:
        async def fetch() -> List[Dict[str, Any]]:
            event = getattr(self.position_manager.events, kind.value)
            logs = await event().get_logs(
                argument_filters={"tokenId": token_id},
                from_block=from_block,
                to_block=to_block,
            )
            logger.debug(
                f"Fetched {len(logs)} {kind.value} logs for position {token_id} "
                f"in [{from_block}, {to_block}]"
            )
            return [self._parse_log(kind, log) for log in logs]

        if not isinstance(to_block, int):
            return await fetch()
        return await self._cached(
            "query_events", (kind.value, token_id, from_block, to_block), fetch
        )

    @staticmethod
    def _parse_log(kind: EventKind, log) -> Dict[str, Any]:
        args = log["args"]
        return {
            "kind": kind.value,
            "block_number": log["blockNumber"],
            "log_index": log["logIndex"],
            "transaction_hash": Web3.to_hex(log["transactionHash"]),
            "token_id": args["tokenId"],
            "liquidity": args.get("liquidity"),
            "amount0": args["amount0"],
            "amount1": args["amount1"],
        }

    # -----------------------------
    # Pools and tokens
    # -----------------------------

    @retry_on_rpc_error
    async def get_pool_address(self, token0: str, token1: str, fee: int) -> str:
        async def fetch() -> str:
            return await self.factory.functions.getPool(
                Web3.to_checksum_address(token0),
                Web3.to_checksum_address(token1),
                fee,
            ).call()

        pool_address = await self._cached(
            "get_pool_address", (token0.lower(), token1.lower(), fee), fetch
        )
        if pool_address == ZERO_ADDRESS:
            raise ValueError(f"No pool for {token0}/{token1} with fee {fee}")
        return pool_address

    @retry_on_rpc_error
    async def get_sqrt_price(self, pool_address: str, block_number: Optional[int] = None) -> int:
        pool = self.helper.make_contract_by_name(name="UniswapV3Pool", addr=pool_address)

        async def fetch() -> int:
            block_identifier = "latest" if block_number is None else block_number
            slot0 = await pool.functions.slot0().call(block_identifier=block_identifier)
            return slot0[0]

        if block_number is None:
            return await fetch()
        return await self._cached("get_sqrt_price", (pool_address.lower(), block_number), fetch)

    @retry_on_rpc_error
    async def get_token(self, address: str) -> Token:
        erc20 = self.helper.make_contract_by_name(name="ERC20", addr=address)

        async def fetch() -> Dict[str, Any]:
            chain_id, decimals, symbol, name = await asyncio.gather(
                self.helper.web3.eth.chain_id,
                erc20.functions.decimals().call(),
                erc20.functions.symbol().call(),
                erc20.functions.name().call(),
            )
            return {
                "chain_id": chain_id,
                "address": address,
                "decimals": decimals,
                "symbol": symbol,
                "name": name,
            }

        metadata = await self._cached("get_token", (address.lower(),), fetch)
        return Token(**metadata)

    # -----------------------------
    # Accounts and blocks
    # -----------------------------

    @retry_on_rpc_error
    async def get_transaction_count(self, account: str, block_number: int) -> int:
        async def fetch() -> int:
            return await self.helper.web3.eth.get_transaction_count(
                Web3.to_checksum_address(account), block_identifier=block_number
            )

        return await self._cached("get_transaction_count", (account.lower(), block_number), fetch)

    @retry_on_rpc_error
    async def get_block_number(self) -> int:
        return await self.helper.web3.eth.block_number

    @retry_on_rpc_error
    async def get_block_timestamp(self, block_number: int) -> datetime:
        async def fetch() -> int:
            block = await self.helper.web3.eth.get_block(block_number)
            return block["timestamp"]

        timestamp = await self._cached("get_block_timestamp", (block_number,), fetch)
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
