"""
Points Schemas
==============
Pydantic models for points calculation: the exercise record it reads,
the optional bonus context, the result/breakdown it produces, and the
rules configuration that drives it.

Configuration merge semantics
-----------------------------
``PointsConfig`` has three top-level keys: ``exercise_points``,
``bonuses`` and ``multipliers``. ``merge_points_config`` is a SHALLOW
merge: each supplied top-level key replaces the whole sub-object. To
change a single streak tier you must re-specify the entire ``bonuses``
object. Sub-model fields deliberately carry no defaults, so a partial
sub-object raises ``pydantic.ValidationError`` instead of silently
resetting the omitted fields.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class Exercise(BaseModel):
    """Exercise lookup record. Immutable for the duration of a calculation."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    points_per_rep: Optional[int] = Field(
        default=None,
        ge=1,
        description="Points per valid rep. Null falls back to the exercise-family default.",
    )


class BonusCalculationInput(BaseModel):
    """User-history facts needed for bonuses. Omit for preview calculations."""

    current_streak: int = Field(default=0, ge=0)
    is_first_workout_today: bool = False
    total_workouts_completed: int = Field(default=0, ge=0)
    exercise_type: str = ""


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class PointsBreakdown(BaseModel):
    base_points: int = 0
    streak_bonus: int = 0
    perfect_form_bonus: int = 0
    first_workout_bonus: int = 0
    milestone_bonus: int = 0
    multiplier: float = 1.0
    applied_bonuses: list[str] = Field(default_factory=list)


class PointsCalculationResult(BaseModel):
    """Computed fresh per call; only the scalar fields are ever persisted."""

    base_points: int
    bonus_points: int
    total_points: int
    breakdown: PointsBreakdown


class PointsValidation(BaseModel):
    is_valid: bool
    reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ExercisePointsConfig(_Frozen):
    """Fallback points per rep, matched by substring of the exercise name."""

    pushup: int
    situp: int
    squat: int


class StreakBonusTier(_Frozen):
    days: int = Field(..., ge=1)
    bonus: float = Field(..., ge=0.0, description="Fraction of base points, e.g. 0.25.")


class StreakBonusConfig(_Frozen):
    enabled: bool
    tiers: tuple[StreakBonusTier, ...]


class PerfectFormBonusConfig(_Frozen):
    enabled: bool
    threshold: float  # 1.0 = every rep valid
    bonus: float


class FirstWorkoutBonusConfig(_Frozen):
    enabled: bool
    points: int


class Milestone(_Frozen):
    workouts: int
    bonus: int


class MilestoneBonusConfig(_Frozen):
    enabled: bool
    milestones: tuple[Milestone, ...]


class BonusesConfig(_Frozen):
    streak_bonus: StreakBonusConfig
    perfect_form_bonus: PerfectFormBonusConfig
    first_workout_bonus: FirstWorkoutBonusConfig
    milestone_bonus: MilestoneBonusConfig


class MultipliersConfig(_Frozen):
    weekend_multiplier: float = Field(..., ge=1.0)
    event_multiplier: float = Field(..., ge=1.0)


class PointsConfig(_Frozen):
    exercise_points: ExercisePointsConfig
    bonuses: BonusesConfig
    multipliers: MultipliersConfig


DEFAULT_POINTS_CONFIG = PointsConfig(
    exercise_points=ExercisePointsConfig(pushup=2, situp=2, squat=1),
    bonuses=BonusesConfig(
        streak_bonus=StreakBonusConfig(
            enabled=True,
            tiers=(
                StreakBonusTier(days=3, bonus=0.10),
                StreakBonusTier(days=7, bonus=0.25),
                StreakBonusTier(days=30, bonus=0.50),
            ),
        ),
        perfect_form_bonus=PerfectFormBonusConfig(enabled=True, threshold=1.0, bonus=0.20),
        first_workout_bonus=FirstWorkoutBonusConfig(enabled=True, points=50),
        milestone_bonus=MilestoneBonusConfig(
            enabled=True,
            milestones=(
                Milestone(workouts=10, bonus=100),
                Milestone(workouts=50, bonus=500),
                Milestone(workouts=100, bonus=1000),
                Milestone(workouts=250, bonus=2500),
                Milestone(workouts=500, bonus=5000),
                Milestone(workouts=1000, bonus=10000),
            ),
        ),
    ),
    multipliers=MultipliersConfig(weekend_multiplier=1.5, event_multiplier=1.0),
)


def merge_points_config(base: PointsConfig, overrides: dict[str, Any]) -> PointsConfig:
    """Shallow-merge *overrides* onto *base* and return a new config.

    Values may be sub-model instances or plain dicts. Unknown top-level
    keys are rejected.
    """
    unknown = set(overrides) - set(PointsConfig.model_fields)
    if unknown:
        raise ValueError(f"Unknown points config keys: {sorted(unknown)}")

    merged = {name: getattr(base, name) for name in PointsConfig.model_fields}
    merged.update(overrides)
    return PointsConfig.model_validate(merged)
