"""
Utility helpers for the invoice_recon package.

Numeric coercion and name keys shared by the extractors, the cleaner and the
normalizer.
"""
import math
import re
from typing import Any, Optional


# Currency prefixes seen on invoices: Rs., INR, USD, EUR, GBP and the symbols.
CURRENCY = r'(?:rs\.?|inr|usd|eur|gbp|[$€£₹])'

_CURRENCY_TOKEN = re.compile(r'(?<![a-z])(?:rs\.?|inr|usd|eur|gbp)(?![a-z])|[$€£₹]', re.IGNORECASE)
# "500/-" is the rupee "no paise" suffix.
_TRAILING_DASH = re.compile(r'/-\s*$')
_NON_NUMERIC = re.compile(r'[^\d.\-+]')


def parse_amount(text: str) -> Optional[float]:
    """
    Convert a string representation of currency to a float.

    Removes the trailing "/-" suffix, currency codes and symbols (including
    the dot of "Rs."), thousands separators and whitespace, then parses to
    float.

    Args:
        text: String containing a monetary amount.

    Returns:
        Float value of the amount, or None if parsing fails.
    """
    if not text:
        return None

    cleaned = _TRAILING_DASH.sub('', str(text).strip())
    cleaned = _CURRENCY_TOKEN.sub('', cleaned)
    cleaned = _NON_NUMERIC.sub('', cleaned)
    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def to_number(value: Any, default: float = 0.0) -> float:
    """Coerce a cell or model-output value to float, falling back to `default`."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else default
    parsed = parse_amount(str(value))
    return default if parsed is None else parsed


def to_text(value: Any) -> str:
    """Stringify a cell value; None and NaN become an empty string."""
    if value is None:
        return ''
    if isinstance(value, float):
        if not math.isfinite(value):
            return ''
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def name_key(name: Any) -> str:
    """Identity key for products and customers: lowercased, trimmed name."""
    return to_text(name).lower()


def normalize_tax_rate(raw: Any) -> float:
    """Values above 1.0 are percentages (18 -> 0.18), the rest are fractions."""
    rate = to_number(raw)
    return rate / 100 if rate > 1.0 else rate
