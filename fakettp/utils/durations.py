"""Duration text parsing for fakettp.

Delays are written the way Go writes them: ``"200ms"``, ``"1s15ms"``,
``"1m5s"``, ``"1.5h"``. Each group is a decimal number followed by a unit;
groups add up. The bare string ``"0"`` means zero.

IMPORT RULES:
  - `import re2` ONLY, same as the rule matcher.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal, InvalidOperation, Overflow

import re2

# Nanoseconds per unit. Both micro signs (U+00B5, U+03BC) are accepted.
_UNIT_NANOS: dict[str, int] = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}

_GROUP = re2.compile(r"([0-9.]*)([^0-9.]+)")

# Largest duration representable as signed 64-bit nanoseconds (about 2562047h).
MAX_DURATION_NANOS: int = 2**63 - 1


class DurationParseError(ValueError):
    """Raised when a duration string is malformed."""


def parse_duration(text: str) -> timedelta:
    """Parse a Go-style duration string into a timedelta.

    Precision below one microsecond is truncated.

    Raises:
        DurationParseError: on empty text, a missing or unknown unit, a
            malformed number, or a total beyond MAX_DURATION_NANOS.
    """
    original = text
    if not isinstance(text, str) or not text:
        raise DurationParseError(f"invalid duration {original!r}")

    negative = False
    if text[0] in "+-":
        negative = text[0] == "-"
        text = text[1:]

    if text == "0":
        return timedelta(0)
    if not text:
        raise DurationParseError(f"invalid duration {original!r}")

    total_nanos = Decimal(0)
    position = 0
    for group in _GROUP.finditer(text):
        if group.start() != position:
            raise DurationParseError(f"invalid duration {original!r}")
        number, unit = group.group(1), group.group(2)
        if unit not in _UNIT_NANOS:
            raise DurationParseError(f"unknown unit {unit!r} in duration {original!r}")
        try:
            total_nanos += Decimal(number) * _UNIT_NANOS[unit]
        except InvalidOperation:
            raise DurationParseError(f"invalid duration {original!r}") from None
        except Overflow:
            raise DurationParseError(f"invalid duration {original!r}: out of range") from None
        if total_nanos > MAX_DURATION_NANOS:
            raise DurationParseError(f"invalid duration {original!r}: out of range")
        position = group.end()

    if position == 0 or position != len(text):
        raise DurationParseError(f"invalid duration {original!r}")

    micros = int(total_nanos / 1_000)
    return timedelta(microseconds=-micros if negative else micros)


def _trim(value: float) -> str:
    return f"{value:.6f}".rstrip("0").rstrip(".")


def format_duration(value: timedelta) -> str:
    """Render a timedelta the way Go prints durations (``0s``, ``250ms``, ``1m5s``)."""
    micros = value // timedelta(microseconds=1)
    if micros == 0:
        return "0s"

    sign = "-" if micros < 0 else ""
    micros = abs(micros)
    if micros < 1_000:
        return f"{sign}{micros}µs"
    if micros < 1_000_000:
        return f"{sign}{_trim(micros / 1_000)}ms"

    hours, rest = divmod(micros, 3600 * 1_000_000)
    minutes, rest = divmod(rest, 60 * 1_000_000)
    text = sign
    if hours:
        text += f"{hours}h"
    if hours or minutes:
        text += f"{minutes}m"
    return text + f"{_trim(rest / 1_000_000)}s"
