"""
Streak Tracking Service
=======================
Daily workout streaks with a rest-day allowance.

Transition rules (day difference between the last and the new workout,
both normalised to midnight):

    no prior workout          → streak starts at 1
    0 (same day)              → unchanged
    1                         → +1
    2, rest day available     → +2 (gap day credited), rest day consumed
    2, no rest day available  → broken, restart at 1
    ≥3                        → broken, restart at 1

One rest day is earned per ``cycle_length_days`` (6) consecutive active
days: ``available = max(0, floor(streak / 6) × rest_days_per_cycle − used)``.

The read path (``StreakTracker.calculate_streak``) replays the completed
workout history oldest-first through the same transition and the same
rest-day counter rule as the write path, so "what is my streak now" and
"what did this workout do to my streak" can never disagree. Status is
then layered on from hours since the last workout:
>48h broken (display streak 0), >24h at_risk, otherwise active.

``StreakTracker`` is pure. ``StreakService`` reads and writes the user's
stored counters in Supabase and delegates every decision to the tracker.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timezone, tzinfo
from typing import Iterable, Optional, Union

from supabase import Client

from fitproof.db.supabase import get_supabase_client
from fitproof.models.streak import (
    StreakConfig,
    StreakState,
    StreakStatus,
    StreakUpdateResult,
)
from fitproof.services.clock import Clock, utc_now

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]


# ---------------------------------------------------------------------------
# Pure state machine
# ---------------------------------------------------------------------------

class StreakTracker:
    """Day-granularity streak state machine. No I/O."""

    def __init__(
        self,
        config: Optional[StreakConfig] = None,
        clock: Clock = utc_now,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self._config = config or StreakConfig()
        self._clock = clock
        self._tz = tz

    @property
    def config(self) -> StreakConfig:
        return self._config

    # ------------------------------------------------------------------
    # Date helpers
    # ------------------------------------------------------------------

    def normalize_date(self, value: DateLike) -> date:
        """Calendar day of *value* in the tracker's timezone."""
        if isinstance(value, datetime):
            if value.tzinfo is not None:
                value = value.astimezone(self._tz)
            return value.date()
        return value

    def day_difference(self, first: DateLike, second: DateLike) -> int:
        """Absolute whole-day distance between two calendar days."""
        return abs((self.normalize_date(second) - self.normalize_date(first)).days)

    def as_aware(self, value: datetime) -> datetime:
        # Naive timestamps are read as wall-clock time in the tracker's zone
        if value.tzinfo is None:
            return value.replace(tzinfo=self._tz)
        return value

    def _hours_since(self, value: datetime) -> float:
        elapsed = self.as_aware(self._clock()) - self.as_aware(value)
        return elapsed.total_seconds() / 3600

    # ------------------------------------------------------------------
    # Rest days and milestones
    # ------------------------------------------------------------------

    def get_rest_days_available(self, rest_days_used: int, current_streak: int) -> int:
        completed_cycles = current_streak // self._config.cycle_length_days
        earned = completed_cycles * self._config.rest_days_per_cycle
        return max(0, earned - rest_days_used)

    def can_use_rest_day(self, rest_days_used: int, current_streak: int) -> bool:
        return self.get_rest_days_available(rest_days_used, current_streak) > 0

    def advance_rest_days_used(self, rest_days_used: int, result: StreakUpdateResult) -> int:
        """Rest-day counter to store after *result*.

        Incremented when a rest day was consumed; otherwise reset to 0 when
        the streak moved onto an exact multiple of the cycle length. A
        same-day workout leaves it untouched so that re-applying it is a no-op.
        """
        if result.rest_day_used:
            return rest_days_used + 1

        moved = result.streak_increased or result.streak_broken
        if moved and result.new_streak % self._config.cycle_length_days == 0:
            return 0
        return rest_days_used

    def check_milestone(self, streak: int) -> Optional[int]:
        return streak if streak in self._config.milestones else None

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def calculate_streak_update(
        self,
        previous_streak: int,
        last_workout_date: Optional[DateLike],
        new_workout_date: DateLike,
        rest_days_used: int,
    ) -> StreakUpdateResult:
        if last_workout_date is None:
            return StreakUpdateResult(
                previous_streak=previous_streak,
                new_streak=1,
                streak_increased=True,
                streak_broken=False,
                rest_day_used=False,
                milestone_reached=self.check_milestone(1),
            )

        days = self.day_difference(last_workout_date, new_workout_date)

        if days == 0:
            return StreakUpdateResult(
                previous_streak=previous_streak,
                new_streak=previous_streak,
                streak_increased=False,
                streak_broken=False,
                rest_day_used=False,
            )

        if days == 1:
            new_streak = previous_streak + 1
            return StreakUpdateResult(
                previous_streak=previous_streak,
                new_streak=new_streak,
                streak_increased=True,
                streak_broken=False,
                rest_day_used=False,
                milestone_reached=self.check_milestone(new_streak),
            )

        if days == 2 and self.can_use_rest_day(rest_days_used, previous_streak):
            new_streak = previous_streak + 2
            return StreakUpdateResult(
                previous_streak=previous_streak,
                new_streak=new_streak,
                streak_increased=True,
                streak_broken=False,
                rest_day_used=True,
                milestone_reached=self.check_milestone(new_streak),
            )

        logger.debug("Streak of %d broken after a %d-day gap", previous_streak, days)
        return StreakUpdateResult(
            previous_streak=previous_streak,
            new_streak=1,
            streak_increased=False,
            streak_broken=True,
            rest_day_used=False,
        )

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def calculate_streak(
        self,
        workout_history: Iterable[datetime],
        longest_streak: int = 0,
    ) -> StreakState:
        """Reconstruct the streak as of now from completion timestamps.

        *workout_history* may be in any order. *longest_streak* is the
        stored all-time best, which may predate the supplied history.
        """
        workouts = sorted(workout_history, key=self.as_aware)
        if not workouts:
            return StreakState(longest_streak=longest_streak)

        streak = 0
        rest_days_used = 0
        last: Optional[datetime] = None
        start: Optional[date] = None

        for workout in workouts:
            result = self.calculate_streak_update(streak, last, workout, rest_days_used)
            rest_days_used = self.advance_rest_days_used(rest_days_used, result)
            if last is None or result.streak_broken:
                start = self.normalize_date(workout)
            streak = result.new_streak
            longest_streak = max(longest_streak, streak)
            last = workout

        hours = self._hours_since(last)
        grace = self._config.grace_period_hours

        if hours > grace:
            status = StreakStatus.BROKEN
            streak = 0
            start = None
            rest_days_used = 0
        elif hours > self._config.at_risk_after_hours:
            status = StreakStatus.AT_RISK
        elif streak > 0:
            status = StreakStatus.ACTIVE
        else:
            status = StreakStatus.NEW

        hours_remaining = grace - hours
        days_until_break = math.ceil(hours_remaining / 24) if hours_remaining > 0 else 0

        return StreakState(
            current_streak=streak,
            longest_streak=longest_streak,
            streak_start_date=start,
            last_workout_date=last,
            rest_days_used=rest_days_used,
            rest_days_available=self.get_rest_days_available(rest_days_used, streak),
            streak_status=status,
            days_until_break=days_until_break,
        )

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    @staticmethod
    def get_streak_message(state: StreakState) -> str:
        if state.streak_status == StreakStatus.BROKEN:
            return "Your streak ended, but every champion has setbacks. Start fresh today! 💪"

        if state.streak_status == StreakStatus.AT_RISK:
            return (
                f"Your {state.current_streak}-day streak is at risk! "
                "Work out soon to keep it alive! 🔥"
            )

        if state.current_streak == 0:
            return "Start your streak today! Consistency is the key to success! 🚀"

        if state.current_streak < 7:
            return f"{state.current_streak} day streak! Keep building momentum! 🔥"

        if state.current_streak < 30:
            return f"{state.current_streak} day streak! You're unstoppable! 🔥🔥"

        return f"{state.current_streak} day streak! You're a legend! 🔥🔥🔥"


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class StreakService:
    """Reads and writes the streak counters stored on the ``users`` row."""

    def __init__(self, tracker: StreakTracker, db: Optional[Client] = None) -> None:
        self._tracker = tracker
        self._db = db if db is not None else get_supabase_client()

    def _get_user(self, user_id: str, columns: str) -> dict:
        result = (
            self._db.table("users")
            .select(columns)
            .eq("id", user_id)
            .maybe_single()
            .execute()
        )
        if result is None or not result.data:
            raise LookupError("User not found")
        return result.data

    async def calculate_streak(self, user_id: str) -> StreakState:
        """Return *user_id*'s streak as of now, rebuilt from completed sessions."""
        user = self._get_user(user_id, "id, longest_streak")

        sessions = (
            self._db.table("workout_sessions")
            .select("completed_at")
            .eq("user_id", user_id)
            .eq("is_completed", True)
            .order("completed_at", desc=True)
            .execute()
        )
        history = [
            ts for ts in (_parse_timestamp(row.get("completed_at")) for row in sessions.data or [])
            if ts is not None
        ]

        logger.debug("Rebuilding streak for user %s from %d workouts", user_id, len(history))
        return self._tracker.calculate_streak(history, longest_streak=user.get("longest_streak") or 0)

    async def update_streak_after_workout(
        self, user_id: str, workout_date: datetime
    ) -> StreakUpdateResult:
        """Apply one completed workout to *user_id*'s stored counters."""
        user = self._get_user(
            user_id, "id, current_streak, longest_streak, last_workout_date, rest_days_used"
        )

        previous_streak = user.get("current_streak") or 0
        rest_days_used = user.get("rest_days_used") or 0
        last_workout_date = _parse_timestamp(user.get("last_workout_date"))

        normalize = self._tracker.normalize_date
        if last_workout_date is not None and normalize(workout_date) < normalize(last_workout_date):
            # Late-synced workout from an earlier day. The counters only move
            # forward; calculate_streak replays it from history instead.
            logger.debug(
                "Ignoring out-of-order workout %s for user %s (last %s)",
                workout_date, user_id, last_workout_date,
            )
            return StreakUpdateResult(
                previous_streak=previous_streak,
                new_streak=previous_streak,
                streak_increased=False,
                streak_broken=False,
                rest_day_used=False,
            )

        result = self._tracker.calculate_streak_update(
            previous_streak, last_workout_date, workout_date, rest_days_used
        )

        self._db.table("users").update({
            "current_streak": result.new_streak,
            "longest_streak": max(user.get("longest_streak") or 0, result.new_streak),
            "last_workout_date": workout_date.isoformat(),
            "rest_days_used": self._tracker.advance_rest_days_used(rest_days_used, result),
        }).eq("id", user_id).execute()

        logger.info(
            "Streak for user %s: %d -> %d (broken=%s, rest_day_used=%s)",
            user_id, previous_streak, result.new_streak,
            result.streak_broken, result.rest_day_used,
        )
        return result
