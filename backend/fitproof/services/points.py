"""
Points Calculation Service
==========================
Turns a rep count into a point total with stacked bonuses and
multipliers.

Calculation order:
    1. Base points = valid_reps × points_per_rep (exercise record first,
       then the exercise-family default, then 1).
    2. Bonuses, only when a ``BonusCalculationInput`` is supplied:
       streak tier (highest qualifying tier only), perfect form,
       first workout of the day, lifetime-workout milestone (exact match).
    3. Multiplier = weekend multiplier (Sat/Sun) × event multiplier.
    4. Total = floor((base + bonus) × multiplier).

Inputs are assumed already validated by the caller (non-negative
integers, enforced by the pydantic request models). ``calculate`` never
raises for a valid input; anti-cheat rejection is reported by
``validate`` as a normal ``PointsValidation`` result.

The calculator holds no shared state beyond its own config, so separate
instances with different configs can run side by side.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional

from fitproof.models.points import (
    DEFAULT_POINTS_CONFIG,
    BonusCalculationInput,
    Exercise,
    PointsBreakdown,
    PointsCalculationResult,
    PointsConfig,
    PointsValidation,
    merge_points_config,
)
from fitproof.services.clock import Clock, utc_now

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_POINTS_PER_REP = 1

# Anti-exploit ceiling: 10 points/rep baseline × 10× max reasonable multiplier stack
MAX_POINTS_PER_VALID_REP = 100

_WEEKEND_DAYS = frozenset({5, 6})  # datetime.weekday(): Saturday, Sunday


class PointsCalculator:
    """Computes points for a workout session."""

    def __init__(self, config: Optional[PointsConfig] = None, clock: Clock = utc_now) -> None:
        self._config = config or DEFAULT_POINTS_CONFIG
        self._clock = clock

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    def calculate(
        self,
        exercise: Exercise,
        valid_reps: int,
        total_reps: int,
        bonus_input: Optional[BonusCalculationInput] = None,
    ) -> PointsCalculationResult:
        """Calculate points for *valid_reps* out of *total_reps* of *exercise*.

        Omitting *bonus_input* yields zero bonuses (used for previews that
        have no user-history lookup).
        """
        base_points = self.calculate_base_points(exercise, valid_reps)

        breakdown = PointsBreakdown(base_points=base_points)
        if bonus_input is not None:
            self._apply_bonuses(breakdown, valid_reps, total_reps, bonus_input)

        bonus_points = (
            breakdown.streak_bonus
            + breakdown.perfect_form_bonus
            + breakdown.first_workout_bonus
            + breakdown.milestone_bonus
        )

        multiplier = self.get_multiplier()
        breakdown.multiplier = multiplier
        total_points = math.floor((base_points + bonus_points) * multiplier)

        logger.debug(
            "Points for %s: base=%d bonus=%d multiplier=%.2f total=%d",
            exercise.id, base_points, bonus_points, multiplier, total_points,
        )

        return PointsCalculationResult(
            base_points=base_points,
            bonus_points=bonus_points,
            total_points=total_points,
            breakdown=breakdown,
        )

    def calculate_base_points(self, exercise: Exercise, valid_reps: int) -> int:
        points_per_rep = exercise.points_per_rep or self.get_default_points_per_rep(exercise.name)
        return valid_reps * points_per_rep

    def get_default_points_per_rep(self, exercise_name: str) -> int:
        """Family default by case-insensitive substring: pushup, situp, squat."""
        name = exercise_name.lower()
        family_points = self._config.exercise_points

        if "pushup" in name:
            return family_points.pushup
        if "situp" in name:
            return family_points.situp
        if "squat" in name:
            return family_points.squat
        return DEFAULT_POINTS_PER_REP

    def _apply_bonuses(
        self,
        breakdown: PointsBreakdown,
        valid_reps: int,
        total_reps: int,
        bonus_input: BonusCalculationInput,
    ) -> None:
        bonuses = self._config.bonuses
        base_points = breakdown.base_points

        # 1. Streak
        if bonuses.streak_bonus.enabled:
            streak_bonus = self.calculate_streak_bonus(base_points, bonus_input.current_streak)
            if streak_bonus > 0:
                breakdown.streak_bonus = streak_bonus
                breakdown.applied_bonuses.append(f"{bonus_input.current_streak}-day streak")

        # 2. Perfect form
        if bonuses.perfect_form_bonus.enabled:
            form_bonus = self.calculate_perfect_form_bonus(base_points, valid_reps, total_reps)
            if form_bonus > 0:
                breakdown.perfect_form_bonus = form_bonus
                breakdown.applied_bonuses.append("Perfect form")

        # 3. First workout of the day
        if bonuses.first_workout_bonus.enabled and bonus_input.is_first_workout_today:
            if bonuses.first_workout_bonus.points > 0:
                breakdown.first_workout_bonus = bonuses.first_workout_bonus.points
                breakdown.applied_bonuses.append("First workout today")

        # 4. Lifetime milestone
        if bonuses.milestone_bonus.enabled:
            milestone_bonus = self.calculate_milestone_bonus(bonus_input.total_workouts_completed)
            if milestone_bonus > 0:
                breakdown.milestone_bonus = milestone_bonus
                breakdown.applied_bonuses.append(
                    f"{bonus_input.total_workouts_completed} workouts milestone"
                )

    def calculate_streak_bonus(self, base_points: int, current_streak: int) -> int:
        """Highest qualifying tier only, evaluated top-down."""
        tiers = sorted(self._config.bonuses.streak_bonus.tiers, key=lambda t: t.days, reverse=True)
        for tier in tiers:
            if current_streak >= tier.days:
                return math.floor(base_points * tier.bonus)
        return 0

    def calculate_perfect_form_bonus(self, base_points: int, valid_reps: int, total_reps: int) -> int:
        if total_reps == 0:
            return 0

        config = self._config.bonuses.perfect_form_bonus
        if valid_reps / total_reps >= config.threshold:
            return math.floor(base_points * config.bonus)
        return 0

    def calculate_milestone_bonus(self, total_workouts_completed: int) -> int:
        """Exact equality only; exceeding a milestone without hitting it earns nothing."""
        for milestone in self._config.bonuses.milestone_bonus.milestones:
            if total_workouts_completed == milestone.workouts:
                return milestone.bonus
        return 0

    def get_multiplier(self) -> float:
        """Weekend and event multipliers, composed multiplicatively."""
        multipliers = self._config.multipliers
        multiplier = 1.0

        if self._clock().weekday() in _WEEKEND_DAYS:
            multiplier *= multipliers.weekend_multiplier

        multiplier *= multipliers.event_multiplier
        return multiplier

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, result: PointsCalculationResult, valid_reps: int) -> PointsValidation:
        """Anti-cheat check. Returns a reason instead of raising."""
        if result.total_points < 0:
            return PointsValidation(is_valid=False, reason="Total points cannot be negative")
        if result.base_points < 0:
            return PointsValidation(is_valid=False, reason="Base points cannot be negative")
        if result.bonus_points < 0:
            return PointsValidation(is_valid=False, reason="Bonus points cannot be negative")
        return self.validate_total(result.total_points, valid_reps)

    def validate_total(self, total_points: int, valid_reps: int) -> PointsValidation:
        """Ceiling check for a total computed elsewhere, e.g. on a device during offline sync."""
        if total_points < 0:
            return PointsValidation(is_valid=False, reason="Total points cannot be negative")

        max_reasonable_points = valid_reps * MAX_POINTS_PER_VALID_REP
        if total_points > max_reasonable_points:
            logger.warning(
                "Rejected %d points for %d valid reps (ceiling %d)",
                total_points, valid_reps, max_reasonable_points,
            )
            return PointsValidation(is_valid=False, reason="Points exceeded reasonable maximum")

        return PointsValidation(is_valid=True)

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    @staticmethod
    def format_breakdown(result: PointsCalculationResult) -> list[str]:
        """Ordered human-readable lines for audit/debug display."""
        breakdown = result.breakdown
        lines = ["Points Breakdown:", f"  Base Points: {result.base_points}"]

        if breakdown.streak_bonus > 0:
            lines.append(f"  Streak Bonus: +{breakdown.streak_bonus}")
        if breakdown.perfect_form_bonus > 0:
            lines.append(f"  Perfect Form Bonus: +{breakdown.perfect_form_bonus}")
        if breakdown.first_workout_bonus > 0:
            lines.append(f"  First Workout Bonus: +{breakdown.first_workout_bonus}")
        if breakdown.milestone_bonus > 0:
            lines.append(f"  Milestone Bonus: +{breakdown.milestone_bonus}")
        if breakdown.multiplier > 1.0:
            lines.append(f"  Multiplier: {breakdown.multiplier:g}x")

        lines.append(f"  Total: {result.total_points}")

        if breakdown.applied_bonuses:
            lines.append(f"  Applied: {', '.join(breakdown.applied_bonuses)}")

        return lines

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def update_config(self, overrides: dict[str, Any]) -> None:
        """Shallow merge; see ``merge_points_config``."""
        self._config = merge_points_config(self._config, overrides)

    def get_config(self) -> PointsConfig:
        return self._config.model_copy()
