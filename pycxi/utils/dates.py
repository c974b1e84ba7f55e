"""Timestamp format check for CXI date fields.

CXI timestamps are fixed-width ISO 8601 with a numeric timezone offset,
e.g. ``2013-01-12T08:00:00+0100``. Only the character class at each offset
is checked; calendar correctness is not.
"""

from __future__ import annotations

from pycxi.errors import DateFormatError

TIMESTAMP_LENGTH = 24

# Expected character at each offset: "d" is a digit, "+" is a sign
_PATTERN = "dddd-dd-ddTdd:dd:dd+dddd"


def follows_iso8601(value: str) -> bool:
    """True if ``value`` matches ``YYYY-MM-DDThh:mm:ss±hhmm`` exactly."""
    if not isinstance(value, str) or len(value) != TIMESTAMP_LENGTH:
        return False
    for expected, char in zip(_PATTERN, value):
        if expected == "d":
            if not "0" <= char <= "9":
                return False
        elif expected == "+":
            if char not in "+-":
                return False
        elif char != expected:
            return False
    return True


def check_timestamp(name: str, value: str) -> None:
    """Raise :class:`DateFormatError` unless ``value`` is a valid timestamp."""
    if not follows_iso8601(value):
        raise DateFormatError(
            f"{name}: '{value}' does not follow ISO 8601 (expected e.g. 2013-01-12T08:00:00+0100)"
        )
