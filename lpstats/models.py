"""
Data models for lpstats.

Prices and amounts are exact rationals (`fractions.Fraction`); rounding only
happens when a value is rendered with `to_significant`.
"""
from datetime import datetime, timedelta
from decimal import Decimal, localcontext
from enum import Enum
from fractions import Fraction
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from web3 import Web3

from lpstats.exceptions import InconsistentInputError


def _to_fraction(value) -> Fraction:
    if isinstance(value, Fraction):
        return value
    if isinstance(value, (int, str, Decimal)):
        return Fraction(value)
    raise ValueError(f"Cannot convert {type(value).__name__} to an exact fraction")


def to_significant(value: Fraction, digits: int = 6) -> str:
    """Render an exact fraction with `digits` significant digits."""
    with localcontext() as ctx:
        ctx.prec = digits
        result = Decimal(value.numerator) / Decimal(value.denominator)
    return f"{result.normalize():f}"


class Token(BaseModel):
    """An ERC-20 token on a given chain."""
    model_config = ConfigDict(frozen=True)

    chain_id: int = Field(..., description="Chain ID the token lives on")
    address: str = Field(..., description="Checksummed token address")
    decimals: int = Field(..., ge=0, description="ERC-20 decimals")
    symbol: str = Field(..., description="Token symbol")
    name: str = Field("", description="Token name")

    @field_validator("address")
    @classmethod
    def checksum_address(cls, v: str) -> str:
        return Web3.to_checksum_address(v)

    def sorts_before(self, other: "Token") -> bool:
        """
        Canonical token ordering used by the exchange: token0 is the token
        with the numerically smaller address.
        """
        if self.chain_id != other.chain_id:
            raise InconsistentInputError(
                f"Tokens {self.symbol} and {other.symbol} are on different chains"
            )
        if self.address == other.address:
            raise InconsistentInputError(f"Token {self.symbol} cannot be ordered against itself")
        return int(self.address, 16) < int(other.address, 16)


class TokenAmount(BaseModel):
    """An exact amount of a token, in the token's base units."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    token: Token
    raw: Fraction = Field(..., description="Amount in base units (exact)")

    @field_validator("raw", mode="before")
    @classmethod
    def coerce_raw(cls, v):
        return _to_fraction(v)

    def _check_token(self, other: "TokenAmount") -> None:
        if self.token != other.token:
            raise InconsistentInputError(
                f"Cannot combine amounts of {self.token.symbol} and {other.token.symbol}"
            )

    def __add__(self, other: "TokenAmount") -> "TokenAmount":
        self._check_token(other)
        return TokenAmount(token=self.token, raw=self.raw + other.raw)

    def __sub__(self, other: "TokenAmount") -> "TokenAmount":
        self._check_token(other)
        return TokenAmount(token=self.token, raw=self.raw - other.raw)

    def scale(self, factor: Fraction) -> "TokenAmount":
        return TokenAmount(token=self.token, raw=self.raw * factor)

    def is_zero(self) -> bool:
        return self.raw == 0

    def to_exact(self) -> Fraction:
        """Amount in whole token units."""
        return self.raw / (10 ** self.token.decimals)

    def to_significant(self, digits: int = 6) -> str:
        return to_significant(self.to_exact(), digits)

    def __str__(self) -> str:
        return f"{self.to_significant()} {self.token.symbol}"


class TokenAmountPair(BaseModel):
    """Ordered (token0, token1) amounts."""
    model_config = ConfigDict(frozen=True)

    amount0: TokenAmount
    amount1: TokenAmount

    @classmethod
    def from_raw(cls, token0: Token, amount0, token1: Token, amount1) -> "TokenAmountPair":
        return cls(
            amount0=TokenAmount(token=token0, raw=amount0),
            amount1=TokenAmount(token=token1, raw=amount1),
        )

    @classmethod
    def zero(cls, token0: Token, token1: Token) -> "TokenAmountPair":
        return cls.from_raw(token0, 0, token1, 0)

    def as_tuple(self) -> Tuple[TokenAmount, TokenAmount]:
        return self.amount0, self.amount1

    def __add__(self, other: "TokenAmountPair") -> "TokenAmountPair":
        return TokenAmountPair(
            amount0=self.amount0 + other.amount0,
            amount1=self.amount1 + other.amount1,
        )

    def __sub__(self, other: "TokenAmountPair") -> "TokenAmountPair":
        return TokenAmountPair(
            amount0=self.amount0 - other.amount0,
            amount1=self.amount1 - other.amount1,
        )

    def scale(self, factor: Fraction) -> "TokenAmountPair":
        return TokenAmountPair(
            amount0=self.amount0.scale(factor),
            amount1=self.amount1.scale(factor),
        )

    def __str__(self) -> str:
        return f"{self.amount0} {self.amount1}"


class Price(BaseModel):
    """
    Exact price of `base` denominated in `quote`.

    `raw` is quote base-units per one base base-unit, i.e. it ignores token
    decimals. Use `adjusted` for the human-readable ratio.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    base: Token
    quote: Token
    raw: Fraction = Field(..., description="Quote base-units per base base-unit")

    @field_validator("raw", mode="before")
    @classmethod
    def coerce_raw(cls, v):
        return _to_fraction(v)

    def invert(self) -> "Price":
        return Price(base=self.quote, quote=self.base, raw=1 / self.raw)

    @property
    def adjusted(self) -> Fraction:
        """Price in whole-token units (quote per base)."""
        return self.raw * Fraction(10 ** self.base.decimals, 10 ** self.quote.decimals)

    def quote_amount(self, amount: TokenAmount) -> TokenAmount:
        """Convert an amount of the base token into the quote token."""
        if amount.token != self.base:
            raise InconsistentInputError(
                f"Price {self.quote.symbol}/{self.base.symbol} cannot quote "
                f"an amount of {amount.token.symbol}"
            )
        return TokenAmount(token=self.quote, raw=amount.raw * self.raw)

    def to_significant(self, digits: int = 6) -> str:
        return to_significant(self.adjusted, digits)

    def __str__(self) -> str:
        return f"{self.to_significant()} {self.quote.symbol}/{self.base.symbol}"


class EventKind(str, Enum):
    """Position manager events, valued by their on-chain names."""
    INCREASE = "IncreaseLiquidity"
    DECREASE = "DecreaseLiquidity"
    COLLECT = "Collect"


class PositionEvent(BaseModel):
    """A single position manager event for one position."""
    kind: EventKind = Field(..., description="Event type")
    block_number: int = Field(..., ge=0, description="Block the event was emitted in")
    log_index: int = Field(0, ge=0, description="Log index within the block")
    transaction_hash: str = Field("", description="Transaction hash")
    token_id: int = Field(..., description="Position NFT id")
    liquidity: Optional[int] = Field(
        None, ge=0, description="Liquidity delta (Increase/Decrease only)"
    )
    amount0: int = Field(..., ge=0, description="Amount of token0 in base units")
    amount1: int = Field(..., ge=0, description="Amount of token1 in base units")

    @property
    def sort_key(self) -> Tuple[int, int]:
        return self.block_number, self.log_index


class WeightedAggregate(BaseModel):
    """Liquidity-weighted totals folded over a sequence of events."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    amount0: int = 0
    amount1: int = 0
    total_liquidity: Fraction = Fraction(0)
    total_weighted_sqrt_price: Fraction = Fraction(0)
    event_count: int = 0
    first_block: Optional[int] = None
    last_block: Optional[int] = None
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None

    @field_validator("total_liquidity", "total_weighted_sqrt_price", mode="before")
    @classmethod
    def coerce_fraction(cls, v):
        return _to_fraction(v)

    @property
    def avg_sqrt_price_x96(self) -> Optional[Fraction]:
        """Average sqrtPriceX96, absent when no liquidity was aggregated."""
        if self.total_liquidity <= 0 or self.total_weighted_sqrt_price <= 0:
            return None
        return self.total_weighted_sqrt_price / self.total_liquidity


class LiquidityPosition(BaseModel):
    """On-chain state of a position NFT."""
    token_id: int = Field(..., description="Position NFT id")
    owner: str = Field(..., description="Current owner of the NFT")
    token0: str = Field(..., description="Address of token0")
    token1: str = Field(..., description="Address of token1")
    fee: int = Field(..., description="Pool fee tier in hundredths of a bip")
    tick_lower: int = Field(..., description="Lower tick of the range")
    tick_upper: int = Field(..., description="Upper tick of the range")
    liquidity: int = Field(..., ge=0, description="Current liquidity")
    uncollected0: int = Field(0, ge=0, description="Uncollected token0 (fees + owed)")
    uncollected1: int = Field(0, ge=0, description="Uncollected token1 (fees + owed)")


class PositionStats(BaseModel):
    """Statistics for one liquidity position. Built once, never mutated."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    position_id: int
    owner: str
    token0: Token
    token1: Token
    pool_address: str

    lower_tick_price: Price
    upper_tick_price: Price
    current_price: Price
    in_range: bool

    current: TokenAmountPair
    uncollected: TokenAmountPair

    deposited: TokenAmountPair
    avg_deposit_price: Optional[Price] = None
    withdrawn: TokenAmountPair
    avg_withdrawn_price: Optional[Price] = None
    collected: TokenAmountPair
    avg_collected_price: Optional[Price] = None

    date_opened: Optional[datetime] = None
    date_closed: Optional[datetime] = None
    duration_position_held: Optional[timedelta] = None

    total_yield: TokenAmountPair
    avg_yield_price: Price
    yield_per_day: Optional[TokenAmountPair] = None
    apr: Tuple[Optional[Fraction], Optional[Fraction]] = (None, None)
