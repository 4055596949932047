"""
Sync Service
============
Bulk sync of workout sessions recorded offline on a device.

Per session:
    1. Look up the stored session by its client-generated id.
    2. Not stored yet → insert it.
    3. Stored → detect a conflict; on conflict write back the resolved
       values, otherwise write the client's values (a stored completion
       is kept).
    4. Either way, the points about to be written must pass the
       calculator's ceiling check, or the item fails and nothing is written.
    5. If the write completed a session that was not completed before,
       apply it to the user's streak.

Every session is processed independently: one failure is recorded on
that item and the rest of the batch carries on ("N of M synced").

Writes to an existing session are guarded by the ``updated_at`` value
that was read, so two syncs of the same session cannot silently
overwrite each other; the loser is reported as a failed item and the
device retries on its next sync.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from supabase import Client

from fitproof.db.supabase import get_supabase_client
from fitproof.models.sync import (
    ConflictStrategy,
    MergedData,
    StoredWorkoutSession,
    SyncConflict,
    SyncItemResult,
    SyncWorkoutSessionPayload,
    SyncWorkoutSessionResponse,
)
from fitproof.services.clock import Clock, utc_now
from fitproof.services.conflict import ConflictResolver
from fitproof.services.points import PointsCalculator
from fitproof.services.streak import StreakService

logger = logging.getLogger(__name__)

SESSIONS_TABLE = "workout_sessions"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class SyncWriteError(Exception):
    """The stored session changed between read and write, or the write returned nothing."""


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class SyncService:
    """Reconciles device-recorded sessions with the stored copies."""

    def __init__(
        self,
        resolver: Optional[ConflictResolver] = None,
        streak_service: Optional[StreakService] = None,
        db: Optional[Client] = None,
        clock: Clock = utc_now,
        calculator: Optional[PointsCalculator] = None,
    ) -> None:
        self._resolver = resolver or ConflictResolver()
        self._calculator = calculator or PointsCalculator()
        self._streaks = streak_service
        self._db = db if db is not None else get_supabase_client()
        self._clock = clock

    async def sync_sessions(
        self, payloads: Iterable[SyncWorkoutSessionPayload]
    ) -> SyncWorkoutSessionResponse:
        results: list[SyncItemResult] = []
        synced = failed = conflicts = 0

        for payload in payloads:
            try:
                result = await self.sync_session(payload)
            except Exception as exc:
                logger.exception("Failed to sync session %s", payload.id)
                result = SyncItemResult(id=payload.id, success=False, error=str(exc))

            results.append(result)
            if result.success:
                synced += 1
            else:
                failed += 1
            if result.conflict is not None:
                conflicts += 1

        total = len(results)
        logger.info(
            "Session sync finished: %d/%d synced, %d failed, %d conflicts",
            synced, total, failed, conflicts,
        )
        return SyncWorkoutSessionResponse(
            success=failed == 0,
            message=f"Synced {synced}/{total} sessions. {failed} failed, {conflicts} conflicts.",
            results=results,
            synced=synced,
            failed=failed,
            conflicts=conflicts,
        )

    async def sync_session(self, payload: SyncWorkoutSessionPayload) -> SyncItemResult:
        """Sync one session. Raises on storage failure; ``sync_sessions`` contains it."""
        row = self._find_session(payload.id)

        if row is None:
            rejection = self._reject_points(payload.id, payload.points, payload.valid_reps)
            if rejection is not None:
                return rejection
            self._create_session(payload)
            logger.info("Created session %s for user %s", payload.id, payload.user_id)
            if payload.is_completed:
                await self._apply_streak(payload.user_id, payload.updated_at)
            return SyncItemResult(id=payload.id, success=True)

        stored = StoredWorkoutSession.model_validate(row)
        conflict = self._resolver.detect_conflict(payload, stored)

        if conflict.has_conflict:
            logger.warning(
                "Sync conflict on session %s:\n%s",
                payload.id, self._resolver.generate_conflict_report(conflict),
            )
            resolved = self._resolver.resolve_conflict(payload, stored, conflict.strategy)
            sync_conflict = SyncConflict(
                entity_id=payload.id,
                conflict_fields=conflict.conflict_fields,
                resolution=conflict.strategy,
                server_updated_at=conflict.server_updated_at,
                client_updated_at=conflict.client_updated_at,
                message=self._resolver.get_recommended_action(conflict),
            )
        else:
            resolved = self._resolver.resolve_conflict(payload, stored, ConflictStrategy.CLIENT_WINS)
            if stored.is_completed:
                # A stored completion is never undone by a near-simultaneous incomplete copy
                resolved = resolved.model_copy(update={
                    "is_completed": True,
                    "completed_at": stored.completed_at or resolved.completed_at,
                })
            sync_conflict = None

        rejection = self._reject_points(
            payload.id, resolved.total_points, resolved.valid_reps, sync_conflict,
        )
        if rejection is not None:
            return rejection

        self._update_session(payload.id, row["updated_at"], resolved)

        if resolved.is_completed and not stored.is_completed:
            await self._apply_streak(payload.user_id, resolved.completed_at or payload.updated_at)

        return SyncItemResult(id=payload.id, success=True, conflict=sync_conflict)

    def _reject_points(
        self,
        session_id: str,
        total_points: int,
        valid_reps: int,
        conflict: Optional[SyncConflict] = None,
    ) -> Optional[SyncItemResult]:
        """Failed item if *total_points* is over the ceiling for *valid_reps*, else None."""
        validation = self._calculator.validate_total(total_points, valid_reps)
        if validation.is_valid:
            return None
        logger.warning("Rejected session %s: %s", session_id, validation.reason)
        return SyncItemResult(
            id=session_id, success=False, error=validation.reason, conflict=conflict,
        )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def _find_session(self, session_id: str) -> Optional[dict]:
        result = (
            self._db.table(SESSIONS_TABLE)
            .select("*")
            .eq("id", session_id)
            .maybe_single()
            .execute()
        )
        if result is None or not result.data:
            return None
        return result.data

    def _create_session(self, payload: SyncWorkoutSessionPayload) -> None:
        row = {
            "id": payload.id,
            "user_id": payload.user_id,
            "exercise_id": payload.exercise_id,
            "total_reps": payload.total_reps,
            "valid_reps": payload.valid_reps,
            "invalid_reps": payload.invalid_reps,
            "total_points": payload.points,
            "duration_seconds": payload.duration_seconds,
            "is_completed": payload.is_completed,
            "started_at": payload.created_at.isoformat(),
            "completed_at": payload.updated_at.isoformat() if payload.is_completed else None,
            "updated_at": self._clock().isoformat(),
        }
        result = self._db.table(SESSIONS_TABLE).insert(row).execute()
        if not result.data:
            raise SyncWriteError(f"Failed to insert session {payload.id}")

    def _update_session(self, session_id: str, read_updated_at: str, data: MergedData) -> None:
        row = {
            "total_reps": data.total_reps,
            "valid_reps": data.valid_reps,
            "invalid_reps": data.invalid_reps,
            "total_points": data.total_points,
            "duration_seconds": data.duration_seconds,
            "is_completed": data.is_completed,
            "completed_at": data.completed_at.isoformat() if data.completed_at else None,
            "updated_at": self._clock().isoformat(),
        }
        result = (
            self._db.table(SESSIONS_TABLE)
            .update(row)
            .eq("id", session_id)
            .eq("updated_at", read_updated_at)
            .execute()
        )
        if not result.data:
            raise SyncWriteError(f"Session {session_id} was modified concurrently")

    async def _apply_streak(self, user_id: str, completed_at: datetime) -> None:
        if self._streaks is None:
            return
        try:
            await self._streaks.update_streak_after_workout(user_id, completed_at)
        except Exception:
            # The session itself is stored; the streak is rebuilt on read
            logger.exception("Streak update failed for user %s", user_id)
