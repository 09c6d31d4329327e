from __future__ import annotations

from decimal import Decimal, localcontext

# 2**96 written out; Decimal(2) ** 96 would depend on the active context precision
Q96 = Decimal("79228162514264337593543950336")

PRICE_PRECISION = 60


def sqrt_price_x96_to_price(sqrt_price_x96: int, decimal_shift: int) -> Decimal:
    """
    Convert a pool's sqrtPriceX96 into the price of token1 quoted in token0 units
    (e.g. USD per ETH for the USDC/WETH pool).

    `decimal_shift` is decimals(token0) - decimals(token1). Returns 0 for a
    zero sqrt price instead of dividing by zero.
    """
    if sqrt_price_x96 < 0:
        raise ValueError(f"sqrtPriceX96 must be non-negative, got {sqrt_price_x96}")
    if sqrt_price_x96 == 0:
        return Decimal(0)

    with localcontext() as ctx:
        ctx.prec = PRICE_PRECISION
        sqrt_price = Decimal(sqrt_price_x96) / Q96
        ratio = sqrt_price * sqrt_price          # token1 per token0, raw base units
        if decimal_shift > 0:
            ratio = ratio * (Decimal(10) ** decimal_shift)
        elif decimal_shift < 0:
            ratio = ratio / (Decimal(10) ** -decimal_shift)
        if ratio.is_zero():
            return Decimal(0)
        return 1 / ratio


def price_to_float(price: Decimal) -> float:
    return float(price)


def format_price(price: Decimal, places: int = 2) -> str:
    with localcontext() as ctx:
        ctx.prec = PRICE_PRECISION
        return f"{price:.{places}f}"
