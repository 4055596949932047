"""
Tests for SyncService
=====================
Covers:
- New session → inserted with client id, points stored as total_points
- Existing session, no conflict → client values written, stored completed_at kept
- Existing session, conflict → resolved values written, conflict surfaced on item
- Partial failure: one failing item does not abort the batch; counts + message
- Concurrent modification (updated_at moved under us) → item fails, nothing written
- Streak: applied for a newly completed session only, never twice;
  a streak failure does not fail the item
- Retrying an identical batch is harmless
- Client timestamps without a UTC offset sync like UTC ones
- Points over the per-rep ceiling are rejected on insert, client-wins
  update and merge; nothing is written
- A stored completion is kept when a near-simultaneous copy is incomplete

Run: pytest backend/tests/test_sync.py -v
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from fitproof.models.points import PointsValidation
from fitproof.models.sync import ConflictStrategy, SyncWorkoutSessionPayload
from fitproof.services.clock import fixed_clock
from fitproof.services.sync import SyncService

USER_ID = str(uuid.uuid4())
EXERCISE_ID = str(uuid.uuid4())

NOW = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)
CLIENT_UPDATED_AT = NOW - timedelta(minutes=10)


def _payload(session_id: str | None = None, **overrides) -> SyncWorkoutSessionPayload:
    fields = {
        "id": session_id or str(uuid.uuid4()),
        "user_id": USER_ID,
        "exercise_id": EXERCISE_ID,
        "exercise_type": "pushup",
        "device_id": "dev-1",
        "device_name": "Pixel 8",
        "total_reps": 10,
        "valid_reps": 9,
        "invalid_reps": 1,
        "points": 18,
        "duration_seconds": 60,
        "is_completed": False,
        "created_at": CLIENT_UPDATED_AT - timedelta(minutes=5),
        "updated_at": CLIENT_UPDATED_AT,
    }
    fields.update(overrides)
    return SyncWorkoutSessionPayload(**fields)


def _stored(session_id: str, seconds_newer: float = 0, **overrides) -> dict:
    row = {
        "id": session_id,
        "user_id": USER_ID,
        "exercise_id": EXERCISE_ID,
        "total_reps": 10,
        "valid_reps": 9,
        "invalid_reps": 1,
        "total_points": 18,
        "duration_seconds": 60,
        "is_completed": False,
        "completed_at": None,
        "updated_at": (CLIENT_UPDATED_AT + timedelta(seconds=seconds_newer)).isoformat(),
    }
    row.update(overrides)
    return row


# ---------------------------------------------------------------------------
# Fake Supabase
# ---------------------------------------------------------------------------

class _FakeSessionsDb:
    """In-memory ``workout_sessions`` behind the supabase query-builder chain.

    select().eq("id").maybe_single().execute()     → row or None
    insert(row).execute()                           → [row], or [] for ids in fail_inserts
    update(row).eq("id").eq("updated_at").execute() → [row] only if updated_at still matches
    """

    def __init__(self, rows: list[dict] | None = None, fail_inserts: set[str] | None = None) -> None:
        self.rows = {row["id"]: dict(row) for row in rows or []}
        self.fail_inserts = fail_inserts or set()
        self.inserted: list[dict] = []
        self.updated: list[dict] = []
        # Simulates another writer touching these rows between our read and write
        self.race_ids: set[str] = set()

    def table(self, name: str) -> MagicMock:
        assert name == "workout_sessions"
        db = self
        mock = MagicMock()

        def select(_columns: str) -> MagicMock:
            filters: dict = {}
            query = MagicMock()

            def eq(column: str, value):
                filters[column] = value
                return query

            def execute():
                row = db.rows.get(filters.get("id"))
                if row is None:
                    return None
                result = MagicMock()
                result.data = dict(row)
                return result

            query.eq.side_effect = eq
            query.maybe_single.return_value = query
            query.execute.side_effect = execute
            return query

        def insert(row: dict) -> MagicMock:
            query = MagicMock()

            def execute():
                result = MagicMock()
                if row["id"] in db.fail_inserts:
                    result.data = []
                    return result
                db.rows[row["id"]] = dict(row)
                db.inserted.append(row)
                result.data = [row]
                return result

            query.execute.side_effect = execute
            return query

        def update(row: dict) -> MagicMock:
            filters: dict = {}
            query = MagicMock()

            def eq(column: str, value):
                filters[column] = value
                return query

            def execute():
                result = MagicMock()
                current = db.rows.get(filters.get("id"))
                if current is None or filters["id"] in db.race_ids:
                    result.data = []
                    return result
                if current["updated_at"] != filters.get("updated_at"):
                    result.data = []
                    return result
                current.update(row)
                db.updated.append(row)
                result.data = [dict(current)]
                return result

            query.eq.side_effect = eq
            query.execute.side_effect = execute
            return query

        mock.select.side_effect = select
        mock.insert.side_effect = insert
        mock.update.side_effect = update
        return mock


def _service(db: _FakeSessionsDb, streaks: MagicMock | None = None) -> SyncService:
    return SyncService(streak_service=streaks, db=db, clock=fixed_clock(NOW))


def _streaks() -> MagicMock:
    streaks = MagicMock()
    streaks.update_streak_after_workout = AsyncMock()
    return streaks


# ---------------------------------------------------------------------------
# Single session
# ---------------------------------------------------------------------------

class TestSyncSession:

    @pytest.mark.asyncio
    async def test_new_session_is_inserted(self):
        db = _FakeSessionsDb()
        payload = _payload()

        result = await _service(db).sync_session(payload)

        assert result.success is True
        assert result.conflict is None
        assert len(db.inserted) == 1
        row = db.inserted[0]
        assert row["id"] == payload.id
        assert row["total_points"] == 18
        assert row["invalid_reps"] == 1
        assert row["completed_at"] is None
        assert row["updated_at"] == NOW.isoformat()

    @pytest.mark.asyncio
    async def test_new_completed_session_sets_completed_at(self):
        db = _FakeSessionsDb()
        await _service(db).sync_session(_payload(is_completed=True))
        assert db.inserted[0]["completed_at"] == CLIENT_UPDATED_AT.isoformat()

    @pytest.mark.asyncio
    async def test_existing_session_without_conflict_takes_client_values(self):
        session_id = str(uuid.uuid4())
        db = _FakeSessionsDb([_stored(session_id, seconds_newer=2)])

        result = await _service(db).sync_session(_payload(session_id, total_reps=14, valid_reps=12,
                                                          invalid_reps=2, points=24))

        assert result.success is True
        assert result.conflict is None
        assert db.rows[session_id]["total_reps"] == 14
        assert db.rows[session_id]["total_points"] == 24
        assert db.rows[session_id]["updated_at"] == NOW.isoformat()

    @pytest.mark.asyncio
    async def test_stored_completed_at_is_kept(self):
        session_id = str(uuid.uuid4())
        done = (CLIENT_UPDATED_AT - timedelta(minutes=2)).isoformat()
        db = _FakeSessionsDb([_stored(session_id, is_completed=True, completed_at=done)])

        await _service(db).sync_session(_payload(session_id, is_completed=True))

        assert datetime.fromisoformat(db.rows[session_id]["completed_at"]) == datetime.fromisoformat(done)

    @pytest.mark.asyncio
    async def test_conflict_is_merged_and_reported(self):
        session_id = str(uuid.uuid4())
        db = _FakeSessionsDb([_stored(session_id, seconds_newer=10, total_reps=10)])

        result = await _service(db).sync_session(_payload(session_id, total_reps=8))

        assert result.success is True
        assert result.conflict is not None
        assert result.conflict.resolution == ConflictStrategy.MERGE
        assert result.conflict.conflict_fields == ["total_reps"]
        assert result.conflict.entity_id == session_id
        assert db.rows[session_id]["total_reps"] == 10

    @pytest.mark.asyncio
    async def test_concurrent_modification_raises(self):
        session_id = str(uuid.uuid4())
        db = _FakeSessionsDb([_stored(session_id)])
        db.race_ids.add(session_id)

        with pytest.raises(Exception, match="modified concurrently"):
            await _service(db).sync_session(_payload(session_id, total_reps=12))
        assert db.updated == []


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

class TestSyncSessions:

    @pytest.mark.asyncio
    async def test_all_synced(self):
        db = _FakeSessionsDb()
        response = await _service(db).sync_sessions([_payload(), _payload()])

        assert response.success is True
        assert response.synced == 2
        assert response.failed == 0
        assert response.message == "Synced 2/2 sessions. 0 failed, 0 conflicts."

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_going(self):
        failing = str(uuid.uuid4())
        db = _FakeSessionsDb(fail_inserts={failing})
        payloads = [_payload(), _payload(failing), _payload()]

        response = await _service(db).sync_sessions(payloads)

        assert response.success is False
        assert response.synced == 2
        assert response.failed == 1
        assert response.conflicts == 0
        assert response.message == "Synced 2/3 sessions. 1 failed, 0 conflicts."
        assert [r.id for r in response.results] == [p.id for p in payloads]
        failed = response.results[1]
        assert failed.success is False
        assert failing in failed.error
        assert len(db.inserted) == 2

    @pytest.mark.asyncio
    async def test_conflicts_counted(self):
        session_id = str(uuid.uuid4())
        db = _FakeSessionsDb([_stored(session_id, seconds_newer=30, duration_seconds=90)])

        response = await _service(db).sync_sessions([_payload(session_id), _payload()])

        assert response.success is True
        assert response.conflicts == 1
        assert response.message == "Synced 2/2 sessions. 0 failed, 1 conflicts."

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        response = await _service(_FakeSessionsDb()).sync_sessions([])
        assert response.success is True
        assert response.results == []
        assert response.message == "Synced 0/0 sessions. 0 failed, 0 conflicts."

    @pytest.mark.asyncio
    async def test_retry_is_harmless(self):
        db = _FakeSessionsDb()
        payloads = [_payload(), _payload(is_completed=True)]
        service = _service(db)

        await service.sync_sessions(payloads)
        snapshot = {k: dict(v) for k, v in db.rows.items()}
        response = await service.sync_sessions(payloads)

        assert response.synced == 2
        assert response.conflicts == 0
        assert len(db.inserted) == 2
        for session_id, row in db.rows.items():
            for field in ("total_reps", "valid_reps", "total_points", "is_completed"):
                assert row[field] == snapshot[session_id][field]


# ---------------------------------------------------------------------------
# Streak hand-off
# ---------------------------------------------------------------------------

class TestStreakHandOff:

    @pytest.mark.asyncio
    async def test_completed_new_session_updates_streak(self):
        streaks = _streaks()
        await _service(_FakeSessionsDb(), streaks).sync_session(_payload(is_completed=True))
        streaks.update_streak_after_workout.assert_awaited_once_with(USER_ID, CLIENT_UPDATED_AT)

    @pytest.mark.asyncio
    async def test_incomplete_session_leaves_streak(self):
        streaks = _streaks()
        await _service(_FakeSessionsDb(), streaks).sync_session(_payload())
        streaks.update_streak_after_workout.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_completing_stored_session_updates_streak(self):
        session_id = str(uuid.uuid4())
        streaks = _streaks()
        db = _FakeSessionsDb([_stored(session_id)])

        await _service(db, streaks).sync_session(_payload(session_id, is_completed=True))

        streaks.update_streak_after_workout.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_already_completed_session_not_counted_twice(self):
        session_id = str(uuid.uuid4())
        streaks = _streaks()
        db = _FakeSessionsDb([_stored(session_id, is_completed=True,
                                      completed_at=CLIENT_UPDATED_AT.isoformat())])

        await _service(db, streaks).sync_session(_payload(session_id, is_completed=True))

        streaks.update_streak_after_workout.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_streak_failure_does_not_fail_item(self):
        streaks = _streaks()
        streaks.update_streak_after_workout.side_effect = LookupError("User not found")
        db = _FakeSessionsDb()

        response = await _service(db, streaks).sync_sessions([_payload(is_completed=True)])

        assert response.success is True
        assert response.synced == 1
        assert len(db.inserted) == 1


# ---------------------------------------------------------------------------
# Timestamps without a UTC offset
# ---------------------------------------------------------------------------

class TestTimestampsWithoutOffset:

    NAIVE_UPDATED_AT = CLIENT_UPDATED_AT.replace(tzinfo=None)

    def _naive_payload(self, session_id: str, **overrides) -> SyncWorkoutSessionPayload:
        return _payload(
            session_id,
            created_at=self.NAIVE_UPDATED_AT - timedelta(minutes=5),
            updated_at=self.NAIVE_UPDATED_AT,
            **overrides,
        )

    @pytest.mark.asyncio
    async def test_conflict_against_stored_row_with_offset(self):
        session_id = str(uuid.uuid4())
        db = _FakeSessionsDb([_stored(session_id, seconds_newer=10, total_reps=10)])

        response = await _service(db).sync_sessions([self._naive_payload(session_id, total_reps=8)])

        assert response.failed == 0
        assert response.conflicts == 1
        assert response.results[0].conflict.resolution == ConflictStrategy.MERGE
        assert db.rows[session_id]["total_reps"] == 10

    @pytest.mark.asyncio
    async def test_completed_at_written_with_offset(self):
        session_id = str(uuid.uuid4())
        streaks = _streaks()
        db = _FakeSessionsDb([_stored(session_id, seconds_newer=2)])

        result = await _service(db, streaks).sync_session(
            self._naive_payload(session_id, is_completed=True)
        )

        assert result.success is True
        assert db.rows[session_id]["completed_at"] == CLIENT_UPDATED_AT.isoformat()
        streaks.update_streak_after_workout.assert_awaited_once_with(USER_ID, CLIENT_UPDATED_AT)

    @pytest.mark.asyncio
    async def test_new_session_without_offset(self):
        db = _FakeSessionsDb()
        payload = self._naive_payload(str(uuid.uuid4()), is_completed=True)

        result = await _service(db).sync_session(payload)

        assert result.success is True
        assert db.inserted[0]["completed_at"] == CLIENT_UPDATED_AT.isoformat()


# ---------------------------------------------------------------------------
# Points ceiling
# ---------------------------------------------------------------------------

class TestPointsCeiling:

    @pytest.mark.asyncio
    async def test_inflated_new_session_rejected(self):
        db = _FakeSessionsDb()
        payload = _payload(total_reps=1, valid_reps=1, invalid_reps=0, points=10**9)

        response = await _service(db).sync_sessions([payload, _payload()])

        assert response.success is False
        assert response.synced == 1
        assert response.failed == 1
        assert response.results[0].success is False
        assert response.results[0].error == "Points exceeded reasonable maximum"
        assert payload.id not in db.rows
        assert len(db.inserted) == 1

    @pytest.mark.asyncio
    async def test_inflated_points_cannot_win_a_merge(self):
        session_id = str(uuid.uuid4())
        db = _FakeSessionsDb([_stored(session_id, seconds_newer=10)])
        payload = _payload(session_id, total_reps=1, valid_reps=1, invalid_reps=0, points=10**9)

        result = await _service(db).sync_session(payload)

        assert result.success is False
        assert result.error == "Points exceeded reasonable maximum"
        assert result.conflict is not None
        assert result.conflict.resolution == ConflictStrategy.MERGE
        assert db.updated == []
        assert db.rows[session_id]["total_points"] == 18

    @pytest.mark.asyncio
    async def test_inflated_client_values_rejected_without_conflict(self):
        session_id = str(uuid.uuid4())
        db = _FakeSessionsDb([_stored(session_id, seconds_newer=2)])

        result = await _service(db).sync_session(_payload(session_id, points=5_000))

        assert result.success is False
        assert result.conflict is None
        assert db.updated == []

    @pytest.mark.asyncio
    async def test_rejected_session_leaves_streak(self):
        streaks = _streaks()
        payload = _payload(valid_reps=1, invalid_reps=9, points=101, is_completed=True)

        await _service(_FakeSessionsDb(), streaks).sync_session(payload)

        streaks.update_streak_after_workout.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ceiling_follows_injected_calculator(self):
        calculator = MagicMock()
        calculator.validate_total.return_value = PointsValidation(is_valid=False, reason="nope")
        db = _FakeSessionsDb()
        service = SyncService(db=db, clock=fixed_clock(NOW), calculator=calculator)

        result = await service.sync_session(_payload())

        assert result.error == "nope"
        calculator.validate_total.assert_called_once_with(18, 9)


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------

class TestStoredCompletion:

    @pytest.mark.asyncio
    async def test_incomplete_copy_within_window_keeps_completion(self):
        session_id = str(uuid.uuid4())
        done = (CLIENT_UPDATED_AT - timedelta(seconds=30)).isoformat()
        streaks = _streaks()
        db = _FakeSessionsDb([_stored(session_id, seconds_newer=3, is_completed=True, completed_at=done)])

        result = await _service(db, streaks).sync_session(_payload(session_id, total_reps=11, valid_reps=10))

        assert result.success is True
        assert result.conflict is None
        row = db.rows[session_id]
        assert row["is_completed"] is True
        assert datetime.fromisoformat(row["completed_at"]) == datetime.fromisoformat(done)
        assert row["total_reps"] == 11
        streaks.update_streak_after_workout.assert_not_awaited()
