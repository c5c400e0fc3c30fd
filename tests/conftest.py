from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from web3 import Web3

from lpstats.models import EventKind, LiquidityPosition, Token
from lpstats.repositories.chain import (
    BlockReader,
    EventSource,
    PoolPriceReader,
    PoolResolver,
    PositionReader,
    TokenReader,
    TransactionCountOracle,
)

Q96 = 1 << 96

# Use valid hex addresses; USDC sorts before WETH so it is token0
USDC_ADDR = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
WETH_ADDR = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
POOL_ADDR = "0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640"
OWNER_ADDR = "0x5234567890123456789012345678901234567890"

GENESIS = datetime(2024, 1, 1, tzinfo=timezone.utc)
BLOCK_TIME = timedelta(seconds=12)


def block_time(block_number: int) -> datetime:
    return GENESIS + block_number * BLOCK_TIME


def raw_event(
    kind: EventKind,
    block_number: int,
    amount0: int,
    amount1: int,
    liquidity: Optional[int] = None,
    log_index: int = 0,
    token_id: int = 1,
) -> Dict:
    return {
        "kind": kind.value,
        "block_number": block_number,
        "log_index": log_index,
        "transaction_hash": f"0x{block_number:062x}{log_index:02x}",
        "token_id": token_id,
        "liquidity": liquidity,
        "amount0": amount0,
        "amount1": amount1,
    }


class FakeChain(
    PositionReader,
    PoolResolver,
    PoolPriceReader,
    TokenReader,
    EventSource,
    TransactionCountOracle,
    BlockReader,
):
    """In-memory chain: every capability is answered from plain dicts."""

    def __init__(
        self,
        position: Optional[LiquidityPosition] = None,
        tokens: Optional[List[Token]] = None,
        sqrt_prices: Optional[Dict[int, int]] = None,
        current_sqrt_price: int = Q96,
        events: Optional[Dict[EventKind, List[Dict]]] = None,
        supports_range_queries: bool = True,
        head: int = 1000,
        tx_blocks: Optional[List[int]] = None,
    ):
        self.position = position
        self.tokens = {token.address: token for token in (tokens or [])}
        self.sqrt_prices = sqrt_prices or {}
        self.current_sqrt_price = current_sqrt_price
        self.events = events or {}
        self._supports_range_queries = supports_range_queries
        self.head = head
        self.tx_blocks = tx_blocks or []

        self.sqrt_price_calls: List[Optional[int]] = []
        self.event_queries: List[tuple] = []

    @property
    def supports_range_queries(self) -> bool:
        return self._supports_range_queries

    async def get_position(self, token_id):
        return self.position

    async def owner_of(self, token_id):
        return self.position.owner if self.position else OWNER_ADDR

    async def get_pool_address(self, token0, token1, fee):
        return POOL_ADDR

    async def get_sqrt_price(self, pool_address, block_number=None):
        self.sqrt_price_calls.append(block_number)
        if block_number is None:
            return self.current_sqrt_price
        return self.sqrt_prices[block_number]

    async def get_token(self, address):
        return self.tokens[Web3.to_checksum_address(address)]

    async def query_events(self, kind, token_id, from_block, to_block):
        self.event_queries.append((kind, from_block, to_block))
        upper = self.head if to_block == "latest" else to_block
        return [
            e
            for e in self.events.get(kind, [])
            if from_block <= e["block_number"] <= upper and e["token_id"] == token_id
        ]

    async def get_transaction_count(self, account, block_number):
        assert block_number <= self.head, "queried past the chain head"
        return sum(1 for block in self.tx_blocks if block <= block_number)

    async def get_block_number(self):
        return self.head

    async def get_block_timestamp(self, block_number):
        return block_time(block_number)


@pytest.fixture
def usdc():
    return Token(chain_id=1, address=USDC_ADDR, decimals=6, symbol="USDC", name="USD Coin")


@pytest.fixture
def weth():
    return Token(chain_id=1, address=WETH_ADDR, decimals=18, symbol="WETH", name="Wrapped Ether")


@pytest.fixture
def position():
    return LiquidityPosition(
        token_id=1,
        owner=OWNER_ADDR,
        token0=USDC_ADDR,
        token1=WETH_ADDR,
        fee=500,
        tick_lower=-600,
        tick_upper=600,
        liquidity=1000,
        uncollected0=10,
        uncollected1=20,
    )
