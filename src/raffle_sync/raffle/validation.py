"""
Local input validation for orchestrated actions.

Everything here runs before any network contact and raises ValidationError.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Union

from raffle_sync.raffle.errors import ValidationError
from raffle_sync.utils.common import to_minor_units

MAX_BATCH_SIZE = 100

# Largest value a uint256 argument can carry
MAX_UINT256 = 2 ** 256 - 1

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_BATCH_SEPARATORS = re.compile(r"[\n,]")


def is_valid_address(address: str) -> bool:
    return isinstance(address, str) and bool(_ADDRESS_RE.match(address))


def validate_address(address: str) -> str:
    """Return the address unchanged if it is a 42-character 0x hex string."""
    if not is_valid_address(address):
        raise ValidationError(f"Invalid address: {address!r}")
    return address


def split_batch(raw: str) -> List[str]:
    """Split on newlines or commas, trim, and drop empty tokens."""
    return [token.strip() for token in _BATCH_SEPARATORS.split(raw or "") if token.strip()]


def parse_batch(raw: Union[str, Iterable[str]]) -> List[str]:
    """Parse and validate a batch of player addresses.

    Accepts either the free-text form (one per line or comma separated) or an
    already split sequence.
    """
    if isinstance(raw, str):
        addresses = split_batch(raw)
    else:
        addresses = [str(item).strip() for item in raw if str(item).strip()]

    if not addresses:
        raise ValidationError("Please enter at least one address")
    if len(addresses) > MAX_BATCH_SIZE:
        raise ValidationError(f"Maximum {MAX_BATCH_SIZE} addresses per batch, got {len(addresses)}")
    for address in addresses:
        validate_address(address)
    return addresses


def parse_amount(amount: Union[str, int, float, Decimal]) -> Decimal:
    """Parse a funding amount; it must be a positive finite decimal."""
    if isinstance(amount, bool):
        raise ValidationError(f"Invalid amount: {amount!r}")
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {amount!r}") from None
    if not value.is_finite() or value <= 0:
        raise ValidationError(f"Amount must be a positive number, got {amount!r}")
    try:
        too_large = value.adjusted() > 77 or to_minor_units(value) > MAX_UINT256
    except ArithmeticError:
        too_large = True
    if too_large:
        raise ValidationError(f"Amount is too large, got {amount!r}")
    return value
