"""
Conflict Resolution Service
===========================
Detects and resolves divergence between a session recorded offline on a
device and the server's stored copy of the same session.

Detection:
    Only a server copy more than 5 seconds newer than the client's copy
    can conflict; near-simultaneous updates are benign. Beyond that
    window, the fields {total_reps, valid_reps, total_points,
    duration_seconds, is_completed} are compared.

Strategy selection (deterministic, no configuration):
    1. Completion status differs → the completed side wins.
    2. Only metrics differ → merge (field-wise maximum).
    3. Anything else → server wins.

``MANUAL`` is never selected automatically; if a caller asks for it,
the server's values are returned as a safe default and the orchestrator
is expected to surface the conflict to a person.

All methods are pure and return text or models; nothing is mutated.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fitproof.models.sync import (
    ConflictInfo,
    ConflictStrategy,
    MergedData,
    SessionSnapshot,
    StoredWorkoutSession,
    SyncWorkoutSessionPayload,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CONFLICT_WINDOW_MS = 5000

# Comparison order is also the reporting order of conflict_fields
COMPARED_FIELDS = ("total_reps", "valid_reps", "total_points", "duration_seconds", "is_completed")
METRIC_FIELDS = frozenset({"total_reps", "valid_reps", "total_points", "duration_seconds"})

_RECOMMENDED_ACTIONS = {
    ConflictStrategy.SERVER_WINS: "Server data will be kept. Your local changes will be discarded.",
    ConflictStrategy.CLIENT_WINS: "Your local data will be uploaded. Server data will be overwritten.",
    ConflictStrategy.MERGE: "Data will be merged automatically using maximum values.",
    ConflictStrategy.MANUAL: "Manual resolution required. Please review and choose which version to keep.",
}


def _client_snapshot(client: SyncWorkoutSessionPayload) -> SessionSnapshot:
    return SessionSnapshot(
        total_reps=client.total_reps,
        valid_reps=client.valid_reps,
        total_points=client.points,
        duration_seconds=client.duration_seconds,
        is_completed=client.is_completed,
        updated_at=client.updated_at,
    )


def _server_snapshot(server: StoredWorkoutSession) -> SessionSnapshot:
    return SessionSnapshot(
        total_reps=server.total_reps,
        valid_reps=server.valid_reps,
        total_points=server.total_points,
        duration_seconds=server.duration_seconds,
        is_completed=server.is_completed,
        updated_at=server.updated_at,
    )


def _server_invalid_reps(server: StoredWorkoutSession) -> int:
    if server.invalid_reps is not None:
        return server.invalid_reps
    return server.total_reps - server.valid_reps


def _time_diff_ms(server_updated_at: datetime, client_updated_at: datetime) -> float:
    return (server_updated_at - client_updated_at).total_seconds() * 1000


class ConflictResolver:
    """Stateless; one instance can serve every sync request."""

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect_conflict(
        self,
        client: SyncWorkoutSessionPayload,
        server: StoredWorkoutSession,
        device_id: Optional[str] = None,
        device_name: Optional[str] = None,
    ) -> ConflictInfo:
        device_id = device_id or client.device_id
        device_name = device_name or client.device_name
        time_diff = _time_diff_ms(server.updated_at, client.updated_at)

        if time_diff > CONFLICT_WINDOW_MS:
            client_data = _client_snapshot(client)
            server_data = _server_snapshot(server)
            conflict_fields = [
                field for field in COMPARED_FIELDS
                if getattr(server_data, field) != getattr(client_data, field)
            ]

            if conflict_fields:
                strategy = self._determine_strategy(conflict_fields, client, server)
                device_info = f" (from {device_name})" if device_name else ""
                return ConflictInfo(
                    has_conflict=True,
                    conflict_fields=conflict_fields,
                    strategy=strategy,
                    server_data=server_data,
                    client_data=client_data,
                    server_updated_at=server.updated_at,
                    client_updated_at=client.updated_at,
                    device_id=device_id,
                    device_name=device_name,
                    message=(
                        f"Server data is newer by {time_diff / 1000:.1f}s{device_info}. "
                        f"Conflicting fields: {', '.join(conflict_fields)}"
                    ),
                )

        return ConflictInfo(
            has_conflict=False,
            strategy=ConflictStrategy.CLIENT_WINS,
            server_updated_at=server.updated_at,
            client_updated_at=client.updated_at,
            message="No conflict detected",
        )

    @staticmethod
    def _determine_strategy(
        conflict_fields: list[str],
        client: SyncWorkoutSessionPayload,
        server: StoredWorkoutSession,
    ) -> ConflictStrategy:
        if "is_completed" in conflict_fields:
            if server.is_completed and not client.is_completed:
                return ConflictStrategy.SERVER_WINS
            if client.is_completed and not server.is_completed:
                return ConflictStrategy.CLIENT_WINS

        if all(field in METRIC_FIELDS for field in conflict_fields):
            return ConflictStrategy.MERGE

        return ConflictStrategy.SERVER_WINS

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_conflict(
        self,
        client: SyncWorkoutSessionPayload,
        server: StoredWorkoutSession,
        strategy: ConflictStrategy,
    ) -> MergedData:
        if strategy == ConflictStrategy.CLIENT_WINS:
            return MergedData(
                total_reps=client.total_reps,
                valid_reps=client.valid_reps,
                invalid_reps=client.invalid_reps,
                total_points=client.points,
                duration_seconds=client.duration_seconds,
                is_completed=client.is_completed,
                completed_at=client.updated_at if client.is_completed else None,
            )

        if strategy == ConflictStrategy.MERGE:
            completed_at = server.completed_at
            if completed_at is None and client.is_completed:
                completed_at = client.updated_at
            return MergedData(
                total_reps=max(server.total_reps, client.total_reps),
                valid_reps=max(server.valid_reps, client.valid_reps),
                invalid_reps=max(_server_invalid_reps(server), client.invalid_reps),
                total_points=max(server.total_points, client.points),
                duration_seconds=max(server.duration_seconds, client.duration_seconds),
                is_completed=server.is_completed or client.is_completed,
                completed_at=completed_at,
            )

        if strategy == ConflictStrategy.MANUAL:
            logger.info("Session %s needs manual resolution; keeping server values", server.id)

        # SERVER_WINS, and the MANUAL fallback
        return MergedData(
            total_reps=server.total_reps,
            valid_reps=server.valid_reps,
            invalid_reps=_server_invalid_reps(server),
            total_points=server.total_points,
            duration_seconds=server.duration_seconds,
            is_completed=server.is_completed,
            completed_at=server.completed_at,
        )

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    @staticmethod
    def requires_manual_resolution(conflict: ConflictInfo) -> bool:
        return conflict.strategy == ConflictStrategy.MANUAL

    @staticmethod
    def get_recommended_action(conflict: ConflictInfo) -> str:
        if not conflict.has_conflict:
            return "Proceed with sync"
        return _RECOMMENDED_ACTIONS[conflict.strategy]

    @staticmethod
    def generate_conflict_report(conflict: ConflictInfo) -> str:
        if not conflict.has_conflict:
            return "No conflicts detected"

        time_diff = _time_diff_ms(conflict.server_updated_at, conflict.client_updated_at)
        lines = [
            "Conflict Detected",
            f"Strategy: {conflict.strategy.value}",
            f"Time Difference: {time_diff / 1000:.1f}s",
            "",
            "Conflicting Fields:",
        ]
        for field in conflict.conflict_fields:
            server_value = getattr(conflict.server_data, field)
            client_value = getattr(conflict.client_data, field)
            lines.append(f"  - {field}: Server={server_value}, Client={client_value}")

        lines.append("")
        lines.append(conflict.message)
        return "\n".join(lines)
