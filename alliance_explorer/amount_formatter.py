"""
Amount formatting for on-chain coin amounts.

Turns a raw amount plus denomination into a display string such as
``"249.000000 LUNA"``. Amounts are handled as ``Decimal`` so that reward
splits add up exactly at six decimal places.
"""

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Tuple

from .config import DENOM_ALIASES, GENERIC_TOKEN_SYMBOL, MICRO_UNITS

logger = logging.getLogger(__name__)

SIX_PLACES = Decimal('0.000001')
TWO_PLACES = Decimal('0.01')

_COIN_RE = re.compile(r'^(\d+)(.+)$')


def to_decimal(amount: Any) -> Optional[Decimal]:
    """Parse an amount into a Decimal, or None when it is not numeric."""
    if amount is None or amount == '':
        return None
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return value


def micro_to_display(amount: Any) -> Optional[str]:
    """Convert a base-unit integer amount to a 6-decimal display string."""
    value = to_decimal(amount)
    if value is None:
        return None
    return str((value / MICRO_UNITS).quantize(SIX_PLACES))


def resolve_symbol(denom: Optional[str], default_symbol: str = 'LUNA') -> str:
    """Map a denomination (native, IBC hash or CW20 address) to a symbol."""
    if not denom:
        return default_symbol
    denom_lower = denom.lower()
    for fragment, symbol in DENOM_ALIASES:
        if fragment.lower() in denom_lower:
            return symbol
    return default_symbol


def format_amount(amount: Any, denom: Optional[str], default_symbol: str = 'LUNA') -> Optional[str]:
    """
    Format a raw amount and denomination for display.

    Large values are assumed to be in micro units (6 decimals) and scaled
    down; values below one are assumed to have been divided already and are
    scaled back up; anything in between is taken as display units.

    Args:
        amount: Raw amount (string or number)
        denom: Denomination tag (e.g. 'uluna', 'ibc/...', CW20 address)
        default_symbol: Symbol used when the denomination is not recognised

    Returns:
        Display string like '249.000000 LUNA', or None when amount is missing
    """
    value = to_decimal(amount)
    if value is None:
        if amount not in (None, ''):
            logger.debug(f"Unparseable amount {amount!r} ({denom})")
        return None

    if value >= MICRO_UNITS:
        value = value / MICRO_UNITS
    elif value < 1:
        value = value * MICRO_UNITS

    symbol = resolve_symbol(denom, default_symbol=default_symbol)
    return f"{value.quantize(SIX_PLACES)} {symbol}"


def format_token_amount(amount: Any) -> Optional[str]:
    """Format an amount of an unidentified token (no denomination available)."""
    value = to_decimal(amount)
    if value is None:
        return None
    return f"{(value / MICRO_UNITS).quantize(TWO_PLACES)} {GENERIC_TOKEN_SYMBOL}"


def parse_coin(coin: Optional[str]) -> Optional[Tuple[str, str]]:
    """
    Split a coin string like '1000000uluna' into ('1000000', 'uluna').

    Multi-coin strings ('1uluna,2ibc/...') yield their first coin.
    """
    if not coin:
        return None
    first = coin.split(',')[0].strip()
    match = _COIN_RE.match(first)
    if not match:
        return None
    return match.group(1), match.group(2)
