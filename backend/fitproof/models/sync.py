"""
Sync Schemas
============
Pydantic models for offline session sync: what the mobile app submits,
what the server has stored, and how a divergence between the two is
described and resolved.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def _assume_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Devices may send timestamps without an offset; those are read as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class SyncWorkoutSessionPayload(BaseModel):
    """A session recorded on-device, submitted during sync.

    ``id`` is generated by the client and stays stable across retries.
    """

    id: str
    user_id: str
    exercise_id: str
    exercise_type: str = ""
    device_id: Optional[str] = None
    device_name: Optional[str] = Field(default=None, max_length=100)
    total_reps: int = Field(..., ge=0)
    valid_reps: int = Field(..., ge=0)
    invalid_reps: int = Field(..., ge=0)
    points: int = Field(..., ge=0)
    duration_seconds: int = Field(..., ge=0)
    is_completed: bool
    created_at: datetime
    updated_at: datetime

    timestamps_as_utc = field_validator("created_at", "updated_at")(_assume_utc)


class BulkSyncRequest(BaseModel):
    sessions: list[SyncWorkoutSessionPayload]


# ---------------------------------------------------------------------------
# Stored record
# ---------------------------------------------------------------------------

class StoredWorkoutSession(BaseModel):
    """The server's row in ``workout_sessions``."""

    id: str
    user_id: str
    exercise_id: str
    total_reps: int = 0
    valid_reps: int = 0
    # Null when the row predates separate tracking; derive as total - valid
    invalid_reps: Optional[int] = None
    total_points: int = 0
    duration_seconds: int = 0
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    updated_at: datetime

    timestamps_as_utc = field_validator("completed_at", "updated_at")(_assume_utc)


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------

class ConflictStrategy(str, Enum):
    SERVER_WINS = "server_wins"
    CLIENT_WINS = "client_wins"
    MERGE = "merge"
    MANUAL = "manual"


class SessionSnapshot(BaseModel):
    """One side of a conflict, in server field names."""

    total_reps: int
    valid_reps: int
    total_points: int
    duration_seconds: int
    is_completed: bool
    updated_at: datetime


class ConflictInfo(BaseModel):
    has_conflict: bool
    conflict_fields: list[str] = Field(default_factory=list)
    strategy: ConflictStrategy
    server_data: Optional[SessionSnapshot] = None
    client_data: Optional[SessionSnapshot] = None
    server_updated_at: datetime
    client_updated_at: datetime
    message: str
    device_id: Optional[str] = None
    device_name: Optional[str] = None


class MergedData(BaseModel):
    """Resolved session values to be written back by the orchestrator."""

    total_reps: int
    valid_reps: int
    invalid_reps: int
    total_points: int
    duration_seconds: int
    is_completed: bool
    completed_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------

class SyncConflict(BaseModel):
    """Conflict metadata surfaced to the client, e.g. for a "changed on another device" notice."""

    entity_type: str = "workout_session"
    entity_id: str
    conflict_fields: list[str]
    resolution: ConflictStrategy
    server_updated_at: Optional[datetime] = None
    client_updated_at: Optional[datetime] = None
    message: Optional[str] = None


class SyncItemResult(BaseModel):
    id: str
    success: bool
    error: Optional[str] = None
    conflict: Optional[SyncConflict] = None


class SyncWorkoutSessionResponse(BaseModel):
    success: bool
    message: str
    results: list[SyncItemResult]
    synced: int
    failed: int
    conflicts: int
