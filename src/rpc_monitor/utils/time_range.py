"""Time range parsing for history queries.

Ranges are written the way Prometheus range selectors are: a positive integer
followed by ``m`` (minutes), ``h`` (hours), or ``d`` (days), e.g. ``"15m"``,
``"1h"``, ``"7d"``.
"""

import re
from typing import Final

DEFAULT_TIME_RANGE_MS: Final[int] = 60 * 60 * 1000

_UNIT_MS: Final[dict[str, int]] = {
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}

TIME_RANGE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(\d*[1-9]\d*)([mhd])$", re.ASCII)


def parse_time_range(value: str) -> int:
    """Convert a range string into milliseconds.

    Unrecognized strings fall back to one hour.

    Examples:
        >>> parse_time_range("15m")
        900000
        >>> parse_time_range("2h")
        7200000
        >>> parse_time_range("bogus")
        3600000
    """
    match = TIME_RANGE_PATTERN.match(value.strip())
    if match is None:
        return DEFAULT_TIME_RANGE_MS
    amount, unit = match.groups()
    return int(amount) * _UNIT_MS[unit]


def is_valid_time_range(value: str) -> bool:
    return TIME_RANGE_PATTERN.match(value.strip()) is not None
