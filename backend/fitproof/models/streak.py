"""
Streak Schemas
==============
Pydantic models for daily workout streaks and the rules that govern them.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class StreakStatus(str, Enum):
    NEW = "new"
    ACTIVE = "active"
    AT_RISK = "at_risk"
    BROKEN = "broken"


class StreakConfig(BaseModel):
    """Rest-day economy, grace period and milestone table."""

    model_config = ConfigDict(frozen=True)

    rest_days_per_cycle: int = Field(default=1, ge=0)
    cycle_length_days: int = Field(default=6, ge=1)
    grace_period_hours: int = 48
    at_risk_after_hours: int = 24
    milestones: tuple[int, ...] = (3, 7, 14, 30, 60, 100, 365)


class StreakState(BaseModel):
    """A user's streak as of "now", reconstructed from workout history."""

    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    streak_start_date: Optional[date] = None
    last_workout_date: Optional[datetime] = None
    rest_days_used: int = Field(default=0, ge=0)
    rest_days_available: int = Field(default=0, ge=0)
    streak_status: StreakStatus = StreakStatus.NEW
    days_until_break: int = Field(default=0, ge=0)


class StreakUpdateResult(BaseModel):
    """Outcome of one workout applied to the previous streak counters."""

    previous_streak: int
    new_streak: int
    streak_increased: bool
    streak_broken: bool
    rest_day_used: bool
    milestone_reached: Optional[int] = Field(
        default=None,
        description="Set only when new_streak exactly equals a milestone; never on a break.",
    )


class StreakResponse(BaseModel):
    """Returned by GET /api/v1/streaks/me."""

    streak: StreakState
    message: str
