"""
Scheduling data model.

Value types shared by the conflict detector, compatibility scorer,
alternative-time suggester and batch optimizer. All of them are
read-only snapshots supplied by the host application; the engine
never writes them back.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Optional

from app.core.scheduling.state import (
    BatchState,
    InvalidTransitionError,
    can_transition,
)


# Default caseload cap when a therapist record does not carry one
MAX_CLIENTS_PER_THERAPIST = 10


class SchedulingValidationError(ValueError):
    """Raised when scheduling input is malformed (bad interval, missing ids)."""
    pass


class Weekday(str, Enum):
    """Days of the week, Monday first (matches ``datetime.weekday()``)."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def from_datetime(cls, value: datetime) -> "Weekday":
        """Get weekday of a datetime."""
        return list(cls)[value.weekday()]

    @property
    def label(self) -> str:
        """Capitalized day name for display ("Monday")."""
        return self.value.capitalize()


class SessionStatus(str, Enum):
    """Lifecycle status of an existing session."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class ConflictType(str, Enum):
    """Reasons a proposed session cannot stand as scheduled."""

    THERAPIST_UNAVAILABLE = "therapist_unavailable"
    CLIENT_UNAVAILABLE = "client_unavailable"
    SESSION_OVERLAP = "session_overlap"


class Severity(str, Enum):
    """Conflict severity."""

    ERROR = "error"
    WARNING = "warning"


def parse_time_of_day(value: Any) -> Optional[time]:
    """Parse "HH:MM" / "HH:MM:SS" into a time. Blank or None means unset."""
    if value is None:
        return None
    if isinstance(value, time):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return time.fromisoformat(text)
    except ValueError:
        raise SchedulingValidationError(f"Invalid time of day: {value!r}")


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive values are treated as UTC. A trailing "Z" is accepted.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if not text:
            raise SchedulingValidationError("Timestamp is required")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise SchedulingValidationError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format an aware datetime as ISO-8601 UTC with a "Z" suffix."""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class TimeWindow:
    """Time-of-day range [start, end) within a single day."""

    start: time
    end: time

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise SchedulingValidationError(
                f"Availability window start {self.start:%H:%M} must be before end {self.end:%H:%M}"
            )

    @property
    def minutes(self) -> int:
        """Length of the window in minutes."""
        return _minute_of_day(self.end) - _minute_of_day(self.start)

    def to_dict(self) -> dict:
        return {"start": self.start.strftime("%H:%M"), "end": self.end.strftime("%H:%M")}


def _minute_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


@dataclass(frozen=True)
class WeeklyAvailability:
    """Fixed map of the seven weekdays to an optional availability window."""

    windows: tuple[Optional[TimeWindow], ...] = (None,) * 7

    def __post_init__(self) -> None:
        if len(self.windows) != 7:
            raise SchedulingValidationError("Weekly availability needs exactly 7 entries")

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "WeeklyAvailability":
        """Create from host format ``{"monday": {"start": "09:00", "end": "17:00"}}``.

        Missing days and null/blank start or end mean unavailable.
        Unknown day names are rejected.
        """
        data = data or {}
        valid_days = {day.value for day in Weekday}
        unknown = [key for key in data if str(key).lower() not in valid_days]
        if unknown:
            raise SchedulingValidationError(
                f"Unknown weekday(s) in availability: {', '.join(sorted(map(str, unknown)))}"
            )

        normalized = {str(key).lower(): value for key, value in data.items()}
        windows: list[Optional[TimeWindow]] = []
        for day in Weekday:
            entry = normalized.get(day.value) or {}
            start = parse_time_of_day(entry.get("start"))
            end = parse_time_of_day(entry.get("end"))
            windows.append(TimeWindow(start, end) if start and end else None)
        return cls(tuple(windows))

    @classmethod
    def of(cls, **days: tuple[str, str]) -> "WeeklyAvailability":
        """Build from keyword pairs, e.g. ``of(monday=("09:00", "17:00"))``."""
        return cls.from_dict(
            {day: {"start": start, "end": end} for day, (start, end) in days.items()}
        )

    def get(self, weekday: Weekday) -> Optional[TimeWindow]:
        """Window for a weekday, or None when unavailable."""
        return self.windows[list(Weekday).index(weekday)]

    def items(self) -> list[tuple[Weekday, Optional[TimeWindow]]]:
        return list(zip(Weekday, self.windows))

    @property
    def total_minutes(self) -> int:
        """Total available minutes across the week."""
        return sum(window.minutes for window in self.windows if window)

    def to_dict(self) -> dict:
        return {
            day.value: window.to_dict() if window else {"start": None, "end": None}
            for day, window in self.items()
        }


def _int_or(value: Any, default: int) -> int:
    """Integer value, or ``default`` when absent. An explicit 0 is kept."""
    return default if value is None else int(value)


def _require_id(data: dict, kind: str) -> str:
    value = data.get("id")
    if not value:
        raise SchedulingValidationError(f"{kind} id is required")
    return str(value)


@dataclass(frozen=True)
class Therapist:
    """Therapist snapshot."""

    id: str
    name: str = ""
    availability: WeeklyAvailability = field(default_factory=WeeklyAvailability)
    service_types: tuple[str, ...] = ()
    specialties: tuple[str, ...] = ()
    max_clients: int = MAX_CLIENTS_PER_THERAPIST
    weekly_hours_min: float = 0
    weekly_hours_max: float = 40
    active_client_count: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "Therapist":
        """Create from API payload dict (accepts host field names)."""
        return cls(
            id=_require_id(data, "Therapist"),
            name=data.get("name", data.get("full_name", "")) or "",
            availability=WeeklyAvailability.from_dict(
                data.get("availability", data.get("availability_hours"))
            ),
            service_types=tuple(data.get("service_types", data.get("service_type")) or ()),
            specialties=tuple(data.get("specialties") or ()),
            max_clients=_int_or(data.get("max_clients"), MAX_CLIENTS_PER_THERAPIST),
            weekly_hours_min=float(data.get("weekly_hours_min") or 0),
            weekly_hours_max=float(data.get("weekly_hours_max") or 40),
            active_client_count=int(data.get("active_client_count") or 0),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "availability": self.availability.to_dict(),
            "service_types": list(self.service_types),
            "specialties": list(self.specialties),
            "max_clients": self.max_clients,
            "weekly_hours_min": self.weekly_hours_min,
            "weekly_hours_max": self.weekly_hours_max,
            "active_client_count": self.active_client_count,
        }


@dataclass(frozen=True)
class Client:
    """Client snapshot."""

    id: str
    name: str = ""
    availability: WeeklyAvailability = field(default_factory=WeeklyAvailability)
    service_preferences: tuple[str, ...] = ()
    diagnosis: tuple[str, ...] = ()
    date_of_birth: Optional[date] = None
    authorized_hours: float = 0

    @classmethod
    def from_dict(cls, data: dict) -> "Client":
        """Create from API payload dict (accepts host field names)."""
        dob = data.get("date_of_birth")
        if isinstance(dob, str) and dob:
            try:
                dob = date.fromisoformat(dob[:10])
            except ValueError:
                raise SchedulingValidationError(f"Invalid date of birth: {dob!r}")

        return cls(
            id=_require_id(data, "Client"),
            name=data.get("name", data.get("full_name", "")) or "",
            availability=WeeklyAvailability.from_dict(
                data.get("availability", data.get("availability_hours"))
            ),
            service_preferences=tuple(
                data.get("service_preferences", data.get("service_preference")) or ()
            ),
            diagnosis=tuple(data.get("diagnosis") or ()),
            date_of_birth=dob or None,
            authorized_hours=float(data.get("authorized_hours") or 0),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "availability": self.availability.to_dict(),
            "service_preferences": list(self.service_preferences),
            "diagnosis": list(self.diagnosis),
            "date_of_birth": self.date_of_birth.isoformat() if self.date_of_birth else None,
            "authorized_hours": self.authorized_hours,
        }


@dataclass(frozen=True)
class ExistingSession:
    """A session already on the calendar."""

    id: str
    therapist_id: str
    client_id: str
    start_time: datetime
    end_time: datetime
    status: SessionStatus = SessionStatus.SCHEDULED

    @classmethod
    def from_dict(cls, data: dict) -> "ExistingSession":
        """Create from API payload dict."""
        status = data.get("status") or SessionStatus.SCHEDULED.value
        try:
            status = SessionStatus(status)
        except ValueError:
            raise SchedulingValidationError(f"Unknown session status: {status!r}")

        return cls(
            id=_require_id(data, "Session"),
            therapist_id=str(data.get("therapist_id") or ""),
            client_id=str(data.get("client_id") or ""),
            start_time=parse_timestamp(data.get("start_time")),
            end_time=parse_timestamp(data.get("end_time")),
            status=status,
        )

    @property
    def is_active(self) -> bool:
        """Cancelled sessions never block the calendar."""
        return self.status != SessionStatus.CANCELLED

    @property
    def duration_minutes(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / 60

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "therapist_id": self.therapist_id,
            "client_id": self.client_id,
            "start_time": format_timestamp(self.start_time),
            "end_time": format_timestamp(self.end_time),
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Conflict:
    """A detected reason a proposed session cannot stand."""

    type: ConflictType
    message: str
    severity: Severity = Severity.ERROR

    @classmethod
    def from_dict(cls, data: dict) -> "Conflict":
        return cls(
            type=ConflictType(data["type"]),
            message=data.get("message", ""),
            severity=Severity(data.get("severity") or Severity.ERROR.value),
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "message": self.message,
            "severity": self.severity.value,
        }


@dataclass(frozen=True)
class Alternative:
    """Ranked candidate replacement slot."""

    start_time: datetime
    end_time: datetime
    score: float
    reason: str

    @classmethod
    def from_dict(cls, data: dict) -> "Alternative":
        """Create from API response dict (camelCase or snake_case keys)."""
        score = float(data.get("score", 0.0))
        return cls(
            start_time=parse_timestamp(data.get("start_time", data.get("startTime"))),
            end_time=parse_timestamp(data.get("end_time", data.get("endTime"))),
            score=min(max(score, 0.0), 1.0),
            reason=data.get("reason", ""),
        )

    def sort_key(self) -> tuple[float, datetime]:
        """Score descending, then earliest start."""
        return (-self.score, self.start_time)

    def to_dict(self) -> dict:
        return {
            "start_time": format_timestamp(self.start_time),
            "end_time": format_timestamp(self.end_time),
            "score": self.score,
            "reason": self.reason,
        }


def rank_alternatives(alternatives: list[Alternative], top_k: int) -> list[Alternative]:
    """Sort alternatives by score desc / earliest start and keep the top K."""
    return sorted(alternatives, key=Alternative.sort_key)[:top_k]


@dataclass(frozen=True)
class OptimizationConstraints:
    """Batch optimization parameters."""

    start_date: date
    end_date: date
    session_duration_minutes: int = 60
    slot_step_minutes: int = 30
    max_daily_hours: float = 8
    min_break_minutes: int = 15
    max_consecutive_sessions: int = 4
    preferred_start_hour: int = 9
    preferred_end_hour: int = 15
    max_workers: Optional[int] = None
    suggest_for_unassigned: bool = False

    def __post_init__(self) -> None:
        if self.end_date < self.start_date:
            raise SchedulingValidationError("Optimization end_date must not be before start_date")
        if self.session_duration_minutes <= 0:
            raise SchedulingValidationError("Session duration must be positive")
        if self.slot_step_minutes <= 0:
            raise SchedulingValidationError("Slot step must be positive")
        if self.min_break_minutes < 0:
            raise SchedulingValidationError("Minimum break must not be negative")
        if self.max_consecutive_sessions < 1:
            raise SchedulingValidationError("Max consecutive sessions must be at least 1")

    @classmethod
    def from_dict(cls, data: dict) -> "OptimizationConstraints":
        """Create from API payload dict. Dates are "YYYY-MM-DD"."""
        try:
            start_date = date.fromisoformat(str(data["start_date"])[:10])
            end_date = date.fromisoformat(str(data.get("end_date") or data["start_date"])[:10])
        except (KeyError, ValueError) as e:
            raise SchedulingValidationError(f"Invalid optimization horizon: {e}")

        optional = {
            key: data[key]
            for key in (
                "session_duration_minutes",
                "slot_step_minutes",
                "max_daily_hours",
                "min_break_minutes",
                "max_consecutive_sessions",
                "preferred_start_hour",
                "preferred_end_hour",
                "max_workers",
                "suggest_for_unassigned",
            )
            if data.get(key) is not None
        }
        return cls(start_date=start_date, end_date=end_date, **optional)


@dataclass(frozen=True)
class Assignment:
    """A client placed with a therapist in a time slot."""

    client_id: str
    client_name: str
    therapist_id: str
    therapist_name: str
    start_time: datetime
    end_time: datetime
    score: float

    @property
    def duration_minutes(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / 60

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "client_name": self.client_name,
            "therapist_id": self.therapist_id,
            "therapist_name": self.therapist_name,
            "start_time": format_timestamp(self.start_time),
            "end_time": format_timestamp(self.end_time),
            "score": self.score,
        }


@dataclass
class UnassignedClient:
    """A client the batch could not place, with display-ready reasons."""

    client_id: str
    client_name: str
    reasons: list[str] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    alternatives: list[Alternative] = field(default_factory=list)

    # Best rejected slot, used to suggest alternatives for residual conflicts
    attempted_therapist_id: Optional[str] = None
    attempted_start: Optional[datetime] = None
    attempted_end: Optional[datetime] = None

    @property
    def reason(self) -> str:
        """All reasons joined for display."""
        return "; ".join(self.reasons)

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "client_name": self.client_name,
            "reason": self.reason,
            "reasons": list(self.reasons),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "alternatives": [a.to_dict() for a in self.alternatives],
        }


@dataclass
class AssignmentPlan:
    """Result of a batch optimization run."""

    assignments: list[Assignment] = field(default_factory=list)
    unassigned: list[UnassignedClient] = field(default_factory=list)
    state: BatchState = BatchState.PENDING
    cancelled: bool = False
    violations: list[str] = field(default_factory=list)
    cache_stats: dict = field(default_factory=dict)

    def advance(self, to_state: BatchState) -> None:
        """Move the plan to a new batch state, enforcing the transition table."""
        if to_state == self.state:
            return
        if not can_transition(self.state, to_state):
            raise InvalidTransitionError(
                f"Invalid batch transition {self.state.value} -> {to_state.value}"
            )
        self.state = to_state

    @property
    def assigned_client_ids(self) -> set[str]:
        return {a.client_id for a in self.assignments}

    def to_dict(self) -> dict:
        return {
            "assignments": [a.to_dict() for a in self.assignments],
            "unassigned": [u.to_dict() for u in self.unassigned],
            "state": self.state.value,
            "cancelled": self.cancelled,
            "violations": list(self.violations),
            "cache_stats": dict(self.cache_stats),
        }
