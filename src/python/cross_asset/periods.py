"""
Tenor parsing.

Times in this package are year fractions. Configuration and market
loaders also accept tenor strings which are converted with a plain
ACT/365-style convention (no calendars):

    >>> parse_period("6M")
    0.5
    >>> parse_period("2Y6M")
    2.5
"""

import re
from typing import List, Sequence, Union

from .exceptions import ConfigurationError

_TENOR_RE = re.compile(r"(\d+(?:\.\d+)?)([DWMY])", re.IGNORECASE)

_UNIT_YEARS = {
    "D": 1.0 / 365.0,
    "W": 7.0 / 365.0,
    "M": 1.0 / 12.0,
    "Y": 1.0,
}

PeriodLike = Union[str, float, int]


def parse_period(value: PeriodLike) -> float:
    """
    Convert a tenor string or number to a year fraction.

    Args:
        value: "10Y", "6M", "2W", "30D", combinations like "1Y6M", or a number

    Returns:
        Year fraction as float

    Raises:
        ConfigurationError: If the string is not a valid tenor
    """
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().upper()
    try:
        return float(text)
    except ValueError:
        pass
    parts = _TENOR_RE.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ConfigurationError(f"invalid tenor '{value}'")
    return sum(float(n) * _UNIT_YEARS[u.upper()] for n, u in parts)


def parse_periods(values: Sequence[PeriodLike]) -> List[float]:
    """Vectorised parse_period."""
    return [parse_period(v) for v in values]
