"""
Streaks Router
==============
GET /api/v1/streaks/me: The caller's streak as of now.

The streak is rebuilt from completed sessions on every read, so a
workout synced late is reflected as soon as it is stored.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Header, HTTPException, status

from fitproof.db.supabase import get_supabase_client
from fitproof.models.streak import StreakResponse
from fitproof.routers.auth import get_authenticated_user_id
from fitproof.services.factory import build_streak_tracker
from fitproof.services.streak import StreakService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/streaks", tags=["streaks"])


@router.get(
    "/me",
    response_model=StreakResponse,
    summary="Get the current user's streak",
    responses={
        401: {"description": "Authentication required"},
        404: {"description": "User profile not found"},
    },
)
async def get_my_streak(
    authorization: str = Header(..., description="Bearer token from Supabase Auth"),
) -> StreakResponse:
    db = get_supabase_client()
    user_id = get_authenticated_user_id(authorization, db)

    tracker = build_streak_tracker()
    try:
        state = await StreakService(tracker, db=db).calculate_streak(user_id)
    except LookupError as exc:
        logger.warning("Streak requested for user %s with no profile row", user_id)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": "User profile not found", "code": "user_not_found"},
        ) from exc

    return StreakResponse(streak=state, message=tracker.get_streak_message(state))
