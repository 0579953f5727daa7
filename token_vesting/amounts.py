"""
Native Asset Amounts Module

Amounts are integers in the native asset's base unit (18 decimals). Decimal is
only used at the edges to format human-readable values; ledger math
is integer math with floor division. NEVER uses float for amounts.
"""

from decimal import Decimal, ROUND_DOWN, getcontext
from typing import Optional
import re

getcontext().prec = 78  # enough digits for any uint256 value

NATIVE_SYMBOL = "FLR"
NATIVE_DECIMALS = 18
BASE_UNITS_PER_TOKEN = 10 ** NATIVE_DECIMALS

BASIS_POINTS_DENOMINATOR = 10000
MAX_SETUP_FEE_BPS = 1000  # 10%
DEFAULT_SETUP_FEE_BPS = 100  # 1%

ZERO_ADDRESS = "0x" + "0" * 40

_HEX_ADDRESS = re.compile(r'^0x[0-9a-fA-F]{40}$')


def calculate_setup_fee(gross_amount: int, fee_bps: int) -> int:
    """
    Fee taken from a gross deposit, rounded down

    Args:
        gross_amount: Deposited amount in base units
        fee_bps: Fee in basis points (100 = 1%)

    Returns:
        Fee in base units
    """
    return gross_amount * fee_bps // BASIS_POINTS_DENOMINATOR


def split_gross_amount(gross_amount: int, fee_bps: int) -> tuple:
    """Return (fee, net) for a gross deposit; fee + net == gross always"""
    fee = calculate_setup_fee(gross_amount, fee_bps)
    return fee, gross_amount - fee


def from_base_units(amount: int) -> Decimal:
    """Convert integer base units to a token Decimal"""
    return Decimal(amount) / BASE_UNITS_PER_TOKEN


def format_amount(amount: int, places: Optional[int] = None) -> str:
    """
    Format base units for display, e.g. 1500000000000000000 -> "1.5 FLR"

    Args:
        amount: Amount in base units
        places: Truncate to this many decimal places (no rounding up)
    """
    tokens = from_base_units(amount)
    if places is not None:
        tokens = tokens.quantize(Decimal('0.1') ** places, rounding=ROUND_DOWN)
        text = f"{tokens:,.{places}f}"
    else:
        text = format(tokens.normalize(), 'f')
        if '.' in text:
            text = text.rstrip('0').rstrip('.')
    return f"{text} {NATIVE_SYMBOL}"


def normalize_address(address: Optional[str]) -> str:
    """
    Canonical form of an account identity

    Hex addresses are lower-cased so lookups are case-insensitive; other
    identities are only stripped of surrounding whitespace.
    """
    if address is None:
        return ""
    address = str(address).strip()
    if _HEX_ADDRESS.match(address):
        return address.lower()
    return address


def is_null_address(address: Optional[str]) -> bool:
    """True for None, the empty string and the zero address"""
    normalized = normalize_address(address)
    return normalized == "" or normalized == ZERO_ADDRESS

