"""
Sync Router
===========
POST /api/v1/sync/sessions: Bulk sync of sessions recorded offline.

Each session is reconciled independently against the stored copy; the
response reports per-item success, failures and resolved conflicts so
the app can show a "changed on another device" notice. A partial
failure still returns 200 with ``success: false``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Header, HTTPException, status

from fitproof.db.supabase import get_supabase_client
from fitproof.models.sync import BulkSyncRequest, SyncWorkoutSessionResponse
from fitproof.routers.auth import get_authenticated_user_id
from fitproof.services.factory import build_clock, build_points_calculator, build_streak_tracker
from fitproof.services.streak import StreakService
from fitproof.services.sync import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


@router.post(
    "/sessions",
    response_model=SyncWorkoutSessionResponse,
    summary="Sync offline workout sessions",
    responses={
        200: {"description": "Batch processed; see per-item results"},
        401: {"description": "Authentication required"},
        403: {"description": "A session belongs to another user"},
        422: {"description": "Validation error (negative counts, missing fields, etc.)"},
    },
)
async def sync_sessions(
    body: BulkSyncRequest,
    authorization: str = Header(..., description="Bearer token from Supabase Auth"),
) -> SyncWorkoutSessionResponse:
    """Reconcile a batch of device-recorded sessions."""
    db = get_supabase_client()
    user_id = get_authenticated_user_id(authorization, db)

    foreign = [s.id for s in body.sessions if s.user_id != user_id]
    if foreign:
        logger.warning("User %s tried to sync %d sessions of another user", user_id, len(foreign))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": "Sessions belong to another user", "code": "forbidden_session"},
        )

    streak_service = StreakService(build_streak_tracker(), db=db)
    service = SyncService(
        streak_service=streak_service,
        db=db,
        clock=build_clock(),
        calculator=build_points_calculator(),
    )
    return await service.sync_sessions(body.sessions)
