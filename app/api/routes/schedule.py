"""
Scheduling API Endpoints.

Thin HTTP surface over the scheduling engine:
- Conflict detection for proposed or edited sessions
- Alternative-time suggestions
- Batch auto-scheduling
- Cache management between unrelated runs

Request bodies are read-only snapshots; nothing is persisted here.
"""

import logging
from datetime import date, datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from app.core.scheduling.engine import SchedulingEngine, get_scheduling_engine
from app.core.scheduling.models import (
    MAX_CLIENTS_PER_THERAPIST,
    Client,
    Conflict,
    ExistingSession,
    OptimizationConstraints,
    Therapist,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/schedule", tags=["Scheduling"])


# === Request Models ===


class AvailabilityWindowModel(BaseModel):
    """Availability for one weekday. Null start or end means unavailable."""

    start: Optional[str] = Field(default=None, examples=["09:00"])
    end: Optional[str] = Field(default=None, examples=["17:00"])


class TherapistModel(BaseModel):
    """Therapist snapshot."""

    id: str = Field(..., min_length=1)
    name: str = ""
    availability: dict[str, AvailabilityWindowModel] = Field(
        default_factory=dict,
        description="Weekday name to window",
        examples=[{"monday": {"start": "09:00", "end": "17:00"}}],
    )
    service_types: list[str] = Field(default_factory=list, examples=[["In clinic"]])
    specialties: list[str] = Field(default_factory=list)
    max_clients: int = Field(default=MAX_CLIENTS_PER_THERAPIST, ge=0)
    weekly_hours_min: float = Field(default=0, ge=0)
    weekly_hours_max: float = Field(default=40, ge=0)
    active_client_count: int = Field(default=0, ge=0)

    def to_domain(self) -> Therapist:
        return Therapist.from_dict(self.model_dump(mode="json"))


class ClientModel(BaseModel):
    """Client snapshot."""

    id: str = Field(..., min_length=1)
    name: str = ""
    availability: dict[str, AvailabilityWindowModel] = Field(default_factory=dict)
    service_preferences: list[str] = Field(default_factory=list, examples=[["In clinic"]])
    diagnosis: list[str] = Field(default_factory=list)
    date_of_birth: Optional[date] = None
    authorized_hours: float = Field(default=0, ge=0)

    def to_domain(self) -> Client:
        return Client.from_dict(self.model_dump(mode="json"))


class SessionModel(BaseModel):
    """Existing session on the calendar."""

    id: str = Field(..., min_length=1)
    therapist_id: str
    client_id: str
    start_time: datetime
    end_time: datetime
    status: Literal["scheduled", "completed", "cancelled", "no-show"] = "scheduled"

    def to_domain(self) -> ExistingSession:
        return ExistingSession.from_dict(self.model_dump(mode="json"))


class ConflictModel(BaseModel):
    """Conflict as returned by the conflict endpoint."""

    type: Literal["therapist_unavailable", "client_unavailable", "session_overlap"]
    message: str = ""
    severity: Literal["error", "warning"] = "error"

    def to_domain(self) -> Conflict:
        return Conflict.from_dict(self.model_dump())


class ConflictCheckRequest(BaseModel):
    """Proposed (or edited) session to validate."""

    start_time: datetime = Field(..., examples=["2025-05-19T11:00:00Z"])
    end_time: datetime = Field(..., examples=["2025-05-19T12:00:00Z"])
    therapist_id: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    therapist: TherapistModel
    client: ClientModel
    existing_sessions: list[SessionModel] = Field(default_factory=list)
    exclude_session_id: Optional[str] = Field(
        default=None,
        description="Session being edited; it never conflicts with itself",
    )


class AlternativesRequest(ConflictCheckRequest):
    """Conflicted request to find replacement slots for."""

    conflicts: list[ConflictModel] = Field(default_factory=list)


class ConstraintsModel(BaseModel):
    """Batch optimization parameters."""

    start_date: date
    end_date: date
    session_duration_minutes: int = Field(default=60, gt=0)
    slot_step_minutes: int = Field(default=30, gt=0)
    max_daily_hours: float = Field(default=8, gt=0)
    min_break_minutes: int = Field(default=15, ge=0)
    max_consecutive_sessions: int = Field(default=4, ge=1)
    preferred_start_hour: int = Field(default=9, ge=0, le=23)
    preferred_end_hour: int = Field(default=15, ge=1, le=24)
    max_workers: Optional[int] = Field(default=None, ge=1)
    suggest_for_unassigned: bool = False

    def to_domain(self) -> OptimizationConstraints:
        return OptimizationConstraints.from_dict(self.model_dump(mode="json"))


class OptimizeRequest(BaseModel):
    """Batch to auto-schedule."""

    clients: list[ClientModel]
    therapists: list[TherapistModel]
    existing_sessions: list[SessionModel] = Field(default_factory=list)
    constraints: ConstraintsModel


# === Response Models ===


class ConflictResponse(BaseModel):
    type: str
    message: str
    severity: str


class ConflictsResponse(BaseModel):
    """Conflict check response."""

    has_conflicts: bool
    conflicts: list[ConflictResponse]


class AlternativeResponse(BaseModel):
    start_time: str
    end_time: str
    score: float
    reason: str


class AlternativesResponse(BaseModel):
    """Alternative times response."""

    alternatives: list[AlternativeResponse]


# === Endpoints ===


@router.post(
    "/conflicts",
    response_model=ConflictsResponse,
    status_code=status.HTTP_200_OK,
    summary="Detect scheduling conflicts",
    description="Check a proposed session against availability and existing sessions.",
)
async def check_conflicts(
    request: ConflictCheckRequest,
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> ConflictsResponse:
    """Detect conflicts for a proposed or edited session."""
    conflicts = engine.detect_conflicts(
        request.start_time,
        request.end_time,
        request.therapist_id,
        request.client_id,
        [s.to_domain() for s in request.existing_sessions],
        request.therapist.to_domain(),
        request.client.to_domain(),
        request.exclude_session_id,
    )

    return ConflictsResponse(
        has_conflicts=bool(conflicts),
        conflicts=[ConflictResponse(**c.to_dict()) for c in conflicts],
    )


@router.post(
    "/alternatives",
    response_model=AlternativesResponse,
    status_code=status.HTTP_200_OK,
    summary="Suggest alternative times",
    description="Find ranked conflict-free replacement slots near a conflicted request.",
)
async def suggest_alternatives(
    request: AlternativesRequest,
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> AlternativesResponse:
    """Suggest alternative times for a conflicted request."""
    alternatives = await engine.suggest_alternatives(
        request.start_time,
        request.end_time,
        request.therapist_id,
        request.client_id,
        [s.to_domain() for s in request.existing_sessions],
        request.therapist.to_domain(),
        request.client.to_domain(),
        [c.to_domain() for c in request.conflicts],
        request.exclude_session_id,
    )

    return AlternativesResponse(
        alternatives=[AlternativeResponse(**a.to_dict()) for a in alternatives],
    )


@router.post(
    "/optimize",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="Auto-schedule a batch",
    description="Assign clients to therapists and time slots with load balancing.",
)
async def optimize(
    request: OptimizeRequest,
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> dict:
    """Run batch optimization and return the assignment plan.

    The host application is responsible for persisting accepted
    assignments.
    """
    plan = await engine.optimize(
        [c.to_domain() for c in request.clients],
        [t.to_domain() for t in request.therapists],
        [s.to_domain() for s in request.existing_sessions],
        request.constraints.to_domain(),
    )
    return plan.to_dict()


@router.get(
    "/cache",
    response_model=dict,
    summary="Cache statistics",
    description="Size and hit/miss counters of the scoring cache.",
)
async def cache_stats(
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> dict:
    """Get memoization cache statistics."""
    return engine.cache_stats()


@router.delete(
    "/cache",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Clear scheduling cache",
    description="Drop memoized scores. Call between unrelated optimization runs.",
)
async def clear_cache(
    engine: SchedulingEngine = Depends(get_scheduling_engine),
) -> None:
    """Clear the memoization cache."""
    engine.clear_cache()
