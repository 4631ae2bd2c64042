"""
Conflict Detector.

Validates a proposed (or edited) session against both parties'
weekly availability and a snapshot of existing sessions.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from app.core.scheduling.intervals import (
    intervals_overlap,
    is_within_availability,
    validate_interval,
)
from app.core.scheduling.models import (
    Client,
    Conflict,
    ConflictType,
    ExistingSession,
    SchedulingValidationError,
    Therapist,
    TimeWindow,
    Weekday,
)

logger = logging.getLogger(__name__)


def _format_clock(value: datetime) -> str:
    """Format as "1:00 PM"."""
    return value.strftime("%I:%M %p").lstrip("0")


def detect_conflicts(
    start_time: datetime,
    end_time: datetime,
    therapist_id: str,
    client_id: str,
    existing_sessions: Iterable[ExistingSession],
    therapist: Therapist,
    client: Client,
    exclude_session_id: Optional[str] = None,
) -> list[Conflict]:
    """Detect all conflicts for a proposed session.

    Checks run in a fixed order and every applicable conflict is
    reported: therapist availability, client availability, then one
    ``session_overlap`` per colliding session (snapshot order).

    Args:
        start_time: Proposed start (aware UTC)
        end_time: Proposed end (aware UTC)
        therapist_id: Therapist being booked
        client_id: Client being booked
        existing_sessions: Snapshot of sessions on the calendar
        therapist: Therapist snapshot (availability)
        client: Client snapshot (availability)
        exclude_session_id: Session being edited, never conflicts with itself

    Returns:
        List of conflicts, empty if the session is conflict-free

    Raises:
        SchedulingValidationError: for malformed intervals or missing ids
    """
    if not therapist_id:
        raise SchedulingValidationError("Therapist id is required")
    if not client_id:
        raise SchedulingValidationError("Client id is required")
    validate_interval(start_time, end_time)

    conflicts: list[Conflict] = []
    weekday = Weekday.from_datetime(start_time)

    # Check therapist availability
    if not is_within_availability(therapist.availability, weekday, start_time, end_time):
        conflicts.append(
            Conflict(
                type=ConflictType.THERAPIST_UNAVAILABLE,
                message=_unavailable_message(
                    "Therapist",
                    therapist.name or therapist_id,
                    therapist.availability.get(weekday),
                    weekday,
                ),
            )
        )

    # Check client availability
    if not is_within_availability(client.availability, weekday, start_time, end_time):
        conflicts.append(
            Conflict(
                type=ConflictType.CLIENT_UNAVAILABLE,
                message=_unavailable_message(
                    "Client",
                    client.name or client_id,
                    client.availability.get(weekday),
                    weekday,
                ),
            )
        )

    # Check for overlapping sessions
    for session in existing_sessions:
        if exclude_session_id and session.id == exclude_session_id:
            continue
        if not session.is_active:
            continue
        if session.therapist_id != therapist_id and session.client_id != client_id:
            continue
        if intervals_overlap(start_time, end_time, session.start_time, session.end_time):
            conflicts.append(
                Conflict(
                    type=ConflictType.SESSION_OVERLAP,
                    message=(
                        f"Conflicts with existing session from "
                        f"{_format_clock(session.start_time)} to {_format_clock(session.end_time)}"
                    ),
                )
            )

    if conflicts:
        logger.debug(
            f"Found {len(conflicts)} conflict(s) for therapist {therapist_id} / "
            f"client {client_id} at {start_time.isoformat()}"
        )

    return conflicts


def _unavailable_message(
    role: str,
    name: str,
    window: Optional[TimeWindow],
    weekday: Weekday,
) -> str:
    if window is None:
        return f"{role} {name} is not available on {weekday.label}s"
    return f"{role} {name} is not available during this time"


def is_conflict_free(
    start_time: datetime,
    end_time: datetime,
    therapist: Therapist,
    client: Client,
    existing_sessions: Iterable[ExistingSession],
    exclude_session_id: Optional[str] = None,
) -> bool:
    """Convenience wrapper: True when ``detect_conflicts`` finds nothing."""
    return not detect_conflicts(
        start_time,
        end_time,
        therapist.id,
        client.id,
        existing_sessions,
        therapist,
        client,
        exclude_session_id,
    )
