"""
Component Factory
=================
Builds calculators from ``Settings``. Each call returns a fresh
instance; there are no module-level singletons, so tests and workers
can run with different configs side by side.
"""

from __future__ import annotations

from zoneinfo import ZoneInfo

from fitproof.config import Settings, get_settings
from fitproof.models.points import DEFAULT_POINTS_CONFIG, MultipliersConfig, merge_points_config
from fitproof.services.clock import Clock, zoned_clock
from fitproof.services.points import PointsCalculator
from fitproof.services.streak import StreakTracker


def build_clock(settings: Settings | None = None) -> Clock:
    settings = settings or get_settings()
    return zoned_clock(ZoneInfo(settings.app_timezone))


def build_points_calculator(settings: Settings | None = None) -> PointsCalculator:
    settings = settings or get_settings()
    config = merge_points_config(
        DEFAULT_POINTS_CONFIG,
        {
            "multipliers": MultipliersConfig(
                weekend_multiplier=settings.weekend_multiplier,
                event_multiplier=settings.event_multiplier,
            ),
        },
    )
    return PointsCalculator(config=config, clock=build_clock(settings))


def build_streak_tracker(settings: Settings | None = None) -> StreakTracker:
    settings = settings or get_settings()
    return StreakTracker(clock=build_clock(settings), tz=ZoneInfo(settings.app_timezone))
