"""
Clock
=====
The single "now" provider injected into the points and streak
calculators. Tests pass ``fixed_clock(...)`` instead of patching
``datetime``.
"""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def zoned_clock(tz: tzinfo) -> Clock:
    """Wall-clock time in *tz*, so weekday checks follow local days."""

    def _now() -> datetime:
        return datetime.now(tz)

    return _now


def fixed_clock(instant: datetime) -> Clock:
    """Always returns *instant*."""

    def _now() -> datetime:
        return instant

    return _now
