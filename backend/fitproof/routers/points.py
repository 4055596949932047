"""
Points Router
=============
POST /api/v1/points/preview: Points for a set of reps, without bonuses.

Used by the app for immediate feedback before any user-history lookup,
so no streak or milestone bonus is included. Weekend and event
multipliers still apply.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Header, HTTPException, status
from pydantic import BaseModel, Field, model_validator

from fitproof.db.supabase import get_supabase_client
from fitproof.models.points import Exercise, PointsCalculationResult, PointsValidation
from fitproof.routers.auth import get_authenticated_user_id
from fitproof.services.factory import build_points_calculator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/points", tags=["points"])


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class PointsPreviewRequest(BaseModel):
    exercise_id: str
    valid_reps: int = Field(..., ge=0)
    total_reps: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _valid_within_total(self) -> "PointsPreviewRequest":
        if self.valid_reps > self.total_reps:
            raise ValueError("valid_reps cannot exceed total_reps")
        return self


class PointsPreviewResponse(BaseModel):
    result: PointsCalculationResult
    validation: PointsValidation
    breakdown_lines: list[str]


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------

@router.post(
    "/preview",
    response_model=PointsPreviewResponse,
    summary="Preview points for a set of reps",
    responses={
        401: {"description": "Authentication required"},
        404: {"description": "Exercise not found"},
        422: {"description": "Validation error"},
    },
)
async def preview_points(
    body: PointsPreviewRequest,
    authorization: str = Header(..., description="Bearer token from Supabase Auth"),
) -> PointsPreviewResponse:
    db = get_supabase_client()
    get_authenticated_user_id(authorization, db)

    result = (
        db.table("exercises")
        .select("id, name, points_per_rep")
        .eq("id", body.exercise_id)
        .maybe_single()
        .execute()
    )
    if result is None or not result.data:
        logger.info("Points preview for unknown exercise %s", body.exercise_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": "Exercise not found", "code": "exercise_not_found"},
        )

    exercise = Exercise(**result.data)
    calculator = build_points_calculator()
    points = calculator.calculate(exercise, body.valid_reps, body.total_reps)

    return PointsPreviewResponse(
        result=points,
        validation=calculator.validate(points, body.valid_reps),
        breakdown_lines=calculator.format_breakdown(points),
    )
