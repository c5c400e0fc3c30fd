from fractions import Fraction
from typing import Tuple, Union

from lpstats.models import Price, Token, TokenAmountPair

SqrtPrice = Union[int, Fraction]


class UniswapV3Math:
    """
    Exact Uniswap V3 math helpers (Q96 fixed point).

    Every intermediate is a Python int or Fraction, so the 192/256-bit
    products of the tick math never overflow and nothing is truncated.
    """

    Q96 = 1 << 96
    Q192 = Q96 * Q96
    MIN_TICK = -887272
    MAX_TICK = 887272

    MIN_SQRT_RATIO = 4295128739
    MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342

    # -----------------------------
    # Price math
    # -----------------------------

    @staticmethod
    def get_sqrt_ratio_at_tick(tick: int) -> int:
        if tick < UniswapV3Math.MIN_TICK or tick > UniswapV3Math.MAX_TICK:
            raise ValueError(f"Tick {tick} outside [{UniswapV3Math.MIN_TICK}, {UniswapV3Math.MAX_TICK}]")

        abs_tick = -tick if tick < 0 else tick

        ratio = (
            0xFFFCB933BD6FAD37AA2D162D1A594001
            if abs_tick & 0x1 != 0
            else 0x100000000000000000000000000000000
        )

        if abs_tick & 0x2:
            ratio = (ratio * 0xFFF97272373D413259A46990580E213A) >> 128
        if abs_tick & 0x4:
            ratio = (ratio * 0xFFF2E50F5F656932EF12357CF3C7FDCC) >> 128
        if abs_tick & 0x8:
            ratio = (ratio * 0xFFE5CACA7E10E4E61C3624EAA0941CD0) >> 128
        if abs_tick & 0x10:
            ratio = (ratio * 0xFFCB9843D60F6159C9DB58835C926644) >> 128
        if abs_tick & 0x20:
            ratio = (ratio * 0xFF973B41FA98C081472E6896DFB254C0) >> 128
        if abs_tick & 0x40:
            ratio = (ratio * 0xFF2EA16466C96A3843EC78B326B52861) >> 128
        if abs_tick & 0x80:
            ratio = (ratio * 0xFE5DEE046A99A2A811C461F1969C3053) >> 128
        if abs_tick & 0x100:
            ratio = (ratio * 0xFCBE86C7900A88AEDCFFC83B479AA3A4) >> 128
        if abs_tick & 0x200:
            ratio = (ratio * 0xF987A7253AC413176F2B074CF7815E54) >> 128
        if abs_tick & 0x400:
            ratio = (ratio * 0xF3392B0822B70005940C7A398E4B70F3) >> 128
        if abs_tick & 0x800:
            ratio = (ratio * 0xE7159475A2C29B7443B29C7FA6E889D9) >> 128
        if abs_tick & 0x1000:
            ratio = (ratio * 0xD097F3BDFD2022B8845AD8F792AA5825) >> 128
        if abs_tick & 0x2000:
            ratio = (ratio * 0xA9F746462D870FDF8A65DC1F90E061E5) >> 128
        if abs_tick & 0x4000:
            ratio = (ratio * 0x70D869A156D2A1B890BB3DF62BAF32F7) >> 128
        if abs_tick & 0x8000:
            ratio = (ratio * 0x31BE135F97D08FD981231505542FCFA6) >> 128
        if abs_tick & 0x10000:
            ratio = (ratio * 0x9AA508B5B7A84E1C677DE54F3E99BC9) >> 128
        if abs_tick & 0x20000:
            ratio = (ratio * 0x5D6AF8DEDB81196699C329225EE604) >> 128
        if abs_tick & 0x40000:
            ratio = (ratio * 0x2216E584F5FA1EA926041BEDFE98) >> 128
        if abs_tick & 0x80000:
            ratio = (ratio * 0x48A170391F7DC42444E8FA2) >> 128

        if tick > 0:
            ratio = ((1 << 256) - 1) // ratio

        # round up to match Solidity
        return (ratio >> 32) + (1 if ratio & ((1 << 32) - 1) != 0 else 0)

    @staticmethod
    def sqrt_price_x96_to_price(sqrt_price_x96: SqrtPrice, base: Token, quote: Token) -> Price:
        """
        Convert sqrtPriceX96 to an exact Price of `base` in `quote`.

        The pool price is token1/token0 = sqrtPriceX96^2 / 2^192; it is
        inverted when `base` is token1.

        Args:
            sqrt_price_x96: The sqrtPriceX96 value (int from slot0, or an
                exact Fraction for averaged prices)
            base: Base token
            quote: Quote token

        Returns:
            Exact Price, no rounding applied
        """
        if sqrt_price_x96 <= 0:
            raise ValueError(f"sqrtPriceX96 must be positive, got {sqrt_price_x96}")

        ratio_x192 = Fraction(sqrt_price_x96) ** 2
        ratio = ratio_x192 / UniswapV3Math.Q192
        if base.sorts_before(quote):
            return Price(base=base, quote=quote, raw=ratio)
        return Price(base=base, quote=quote, raw=1 / ratio)

    @staticmethod
    def price_to_ratio_x192(price: Price) -> Fraction:
        """Inverse of `sqrt_price_x96_to_price`: the pool's sqrtPriceX96^2."""
        ratio = price.raw if price.base.sorts_before(price.quote) else 1 / price.raw
        return ratio * UniswapV3Math.Q192

    @staticmethod
    def tick_to_price(base: Token, quote: Token, tick: int) -> Price:
        """Price at a tick, oriented so that `Price.base == base`."""
        return UniswapV3Math.sqrt_price_x96_to_price(
            UniswapV3Math.get_sqrt_ratio_at_tick(tick), base, quote
        )

    @staticmethod
    def in_range(sqrt_price_x96: SqrtPrice, tick_lower: int, tick_upper: int) -> bool:
        sqrt_lower = UniswapV3Math.get_sqrt_ratio_at_tick(tick_lower)
        sqrt_upper = UniswapV3Math.get_sqrt_ratio_at_tick(tick_upper)
        return sqrt_lower <= sqrt_price_x96 < sqrt_upper

    @staticmethod
    def clamp(sqrt_price_x96: SqrtPrice, sqrtPA: int, sqrtPB: int) -> SqrtPrice:
        if sqrtPA > sqrtPB:
            sqrtPA, sqrtPB = sqrtPB, sqrtPA
        return min(max(sqrt_price_x96, sqrtPA), sqrtPB)

    # -----------------------------
    # Liquidity math
    # -----------------------------

    @staticmethod
    def _liquidity_from_amount0(amount0, sqrtPA: SqrtPrice, sqrtPB: SqrtPrice) -> Fraction:
        return Fraction(amount0 * sqrtPA * sqrtPB) / ((sqrtPB - sqrtPA) * UniswapV3Math.Q96)

    @staticmethod
    def _liquidity_from_amount1(amount1, sqrtPA: SqrtPrice, sqrtPB: SqrtPrice) -> Fraction:
        return Fraction(amount1 * UniswapV3Math.Q96) / (sqrtPB - sqrtPA)

    @staticmethod
    def get_liquidity_for_amounts(
        sqrtP: SqrtPrice,
        sqrtPA: int,
        sqrtPB: int,
        amount0,
        amount1,
    ) -> Fraction:
        """
        Liquidity equivalent of a pair of amounts at a price, clamped to the range.

        Inside the range the two tokens rarely match the position's exact
        ratio (e.g. collected fees), so the smaller single-token liquidity is
        used when both are positive and the positive one otherwise.
        """

        if sqrtPA > sqrtPB:
            sqrtPA, sqrtPB = sqrtPB, sqrtPA

        if sqrtPA == sqrtPB:
            return Fraction(0)

        sqrtP = UniswapV3Math.clamp(sqrtP, sqrtPA, sqrtPB)

        if sqrtP == sqrtPA:
            return UniswapV3Math._liquidity_from_amount0(amount0, sqrtPA, sqrtPB)

        if sqrtP == sqrtPB:
            return UniswapV3Math._liquidity_from_amount1(amount1, sqrtPA, sqrtPB)

        L0 = UniswapV3Math._liquidity_from_amount0(amount0, sqrtP, sqrtPB)
        L1 = UniswapV3Math._liquidity_from_amount1(amount1, sqrtPA, sqrtP)
        if L0 > 0 and L1 > 0:
            return min(L0, L1)
        return max(L0, L1)

    # -----------------------------
    # Amounts from liquidity
    # -----------------------------

    @staticmethod
    def get_amounts_for_liquidity(
        sqrtP: SqrtPrice,
        sqrtPA: int,
        sqrtPB: int,
        L,
    ) -> Tuple[Fraction, Fraction]:
        """
        Exact amounts held by liquidity L over [sqrtPA, sqrtPB] at price sqrtP.

        The price is clamped into the range, which covers the out-of-range
        cases: below the range everything is token0, above it token1.

            amount0 = L * (sqrtPB - sqrtP) / (sqrtP * sqrtPB)
            amount1 = L * (sqrtP - sqrtPA)

        Returns (amount0, amount1) in base units.
        """

        if sqrtPA > sqrtPB:
            sqrtPA, sqrtPB = sqrtPB, sqrtPA

        if L <= 0:
            return Fraction(0), Fraction(0)

        sqrtP = UniswapV3Math.clamp(sqrtP, sqrtPA, sqrtPB)

        amount0 = Fraction(L * (sqrtPB - sqrtP) * UniswapV3Math.Q96) / (sqrtP * sqrtPB)
        amount1 = Fraction(L * (sqrtP - sqrtPA)) / UniswapV3Math.Q96
        return amount0, amount1


# -----------------------------
# Position helpers
# -----------------------------

def amounts_for_liquidity(
    liquidity: int,
    sqrt_price_x96: SqrtPrice,
    tick_lower: int,
    tick_upper: int,
    token0: Token,
    token1: Token,
) -> TokenAmountPair:
    """Token amounts represented by `liquidity` over a tick range."""
    amount0, amount1 = UniswapV3Math.get_amounts_for_liquidity(
        sqrt_price_x96,
        UniswapV3Math.get_sqrt_ratio_at_tick(tick_lower),
        UniswapV3Math.get_sqrt_ratio_at_tick(tick_upper),
        liquidity,
    )
    return TokenAmountPair.from_raw(token0, amount0, token1, amount1)


def liquidity_for_amounts(
    amount0: int,
    amount1: int,
    sqrt_price_x96: SqrtPrice,
    tick_lower: int,
    tick_upper: int,
) -> Fraction:
    """Liquidity equivalent of (amount0, amount1) over a tick range."""
    return UniswapV3Math.get_liquidity_for_amounts(
        sqrt_price_x96,
        UniswapV3Math.get_sqrt_ratio_at_tick(tick_lower),
        UniswapV3Math.get_sqrt_ratio_at_tick(tick_upper),
        amount0,
        amount1,
    )
