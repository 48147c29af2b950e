"""Common display and unit helpers for the raffle client."""

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Union

TOKEN_DECIMALS = 6
MINOR_UNITS_PER_TOKEN = 10 ** TOKEN_DECIMALS

# Prize pool progress bar range, in whole tokens
PRIZE_RANGE_LOW = 5
PRIZE_RANGE_HIGH = 10


def shorten_address(address: str, head: int = 4, tail: int = 4) -> str:
    """Shorten an Ethereum address for display: '0x1234...abcd'.

    Keeps the '0x' prefix plus `head` hex characters, then the last `tail`
    characters. Addresses too short to shorten are returned unchanged.
    """
    if not address:
        return ""
    if len(address) <= 2 + head + tail:
        return address
    return f"{address[:2 + head]}...{address[-tail:]}"


def to_display_units(minor_units: int) -> Decimal:
    """Convert token minor units to whole tokens."""
    return Decimal(int(minor_units)) / MINOR_UNITS_PER_TOKEN


def to_minor_units(amount: Union[Decimal, int, str]) -> int:
    """Convert a whole-token amount to minor units, truncating toward zero."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"Not a decimal amount: {amount!r}") from exc
    return int((value * MINOR_UNITS_PER_TOKEN).to_integral_value(rounding=ROUND_DOWN))


def format_token_amount(minor_units: int, places: int = 2) -> str:
    """Format minor units as a fixed-point token string, e.g. 7_500_000 -> '7.50'."""
    quantum = Decimal(1).scaleb(-places)
    return str(to_display_units(minor_units).quantize(quantum))


def prize_fill_percentage(
    minor_units: int,
    low: Union[int, Decimal] = PRIZE_RANGE_LOW,
    high: Union[int, Decimal] = PRIZE_RANGE_HIGH,
) -> Decimal:
    """Position of the prize pool inside the [low, high] display range, clamped to 0-100."""
    low, high = Decimal(low), Decimal(high)
    if high <= low:
        raise ValueError("high must be greater than low")
    position = (to_display_units(minor_units) - low) / (high - low) * 100
    return min(max(position, Decimal(0)), Decimal(100))
