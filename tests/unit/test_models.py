"""Tests for scheduling data model."""

import pytest
from datetime import date, datetime, time, timezone

from app.core.scheduling.models import (
    MAX_CLIENTS_PER_THERAPIST,
    Alternative,
    AssignmentPlan,
    Client,
    Conflict,
    ConflictType,
    ExistingSession,
    OptimizationConstraints,
    SchedulingValidationError,
    SessionStatus,
    Therapist,
    TimeWindow,
    UnassignedClient,
    WeeklyAvailability,
    Weekday,
    parse_timestamp,
    rank_alternatives,
)
from app.core.scheduling.state import (
    BatchState,
    InvalidTransitionError,
    can_transition,
    is_terminal_state,
)


class TestWeeklyAvailability:
    """Test WeeklyAvailability parsing."""

    def test_from_dict(self):
        """Test host availability format."""
        availability = WeeklyAvailability.from_dict({
            "monday": {"start": "09:00", "end": "17:00"},
            "Tuesday": {"start": "10:00", "end": "12:30"},
        })

        assert availability.get(Weekday.MONDAY) == TimeWindow(time(9), time(17))
        assert availability.get(Weekday.TUESDAY).minutes == 150
        assert availability.get(Weekday.WEDNESDAY) is None

    def test_null_and_blank_entries_are_unavailable(self):
        """Test null/blank start or end means the day is off."""
        availability = WeeklyAvailability.from_dict({
            "monday": {"start": None, "end": None},
            "tuesday": {"start": "", "end": "17:00"},
            "wednesday": None,
        })

        assert availability.total_minutes == 0

    def test_unknown_day_rejected(self):
        """Test unknown weekday names raise."""
        with pytest.raises(SchedulingValidationError, match="funday"):
            WeeklyAvailability.from_dict({"funday": {"start": "09:00", "end": "10:00"}})

    def test_inverted_window_rejected(self):
        """Test start after end raises."""
        with pytest.raises(SchedulingValidationError):
            WeeklyAvailability.of(monday=("17:00", "09:00"))

    def test_invalid_time_rejected(self):
        """Test malformed time of day raises."""
        with pytest.raises(SchedulingValidationError, match="Invalid time"):
            WeeklyAvailability.of(monday=("nine", "17:00"))

    def test_to_dict(self):
        """Test conversion back to host format."""
        d = WeeklyAvailability.of(friday=("08:00", "12:00")).to_dict()

        assert d["friday"] == {"start": "08:00", "end": "12:00"}
        assert d["sunday"] == {"start": None, "end": None}


class TestSnapshots:
    """Test therapist, client and session snapshots."""

    def test_therapist_from_host_field_names(self):
        """Test host field names are accepted."""
        therapist = Therapist.from_dict({
            "id": "t-1",
            "full_name": "Dana Reyes",
            "availability_hours": {"monday": {"start": "09:00", "end": "17:00"}},
            "service_type": ["In clinic", "Telehealth"],
            "max_clients": 12,
        })

        assert therapist.name == "Dana Reyes"
        assert therapist.service_types == ("In clinic", "Telehealth")
        assert therapist.weekly_hours_max == 40
        assert therapist.availability.get(Weekday.MONDAY) is not None

    def test_therapist_default_caseload_cap(self):
        """Test a missing max_clients falls back to the default cap; 0 is kept."""
        assert Therapist.from_dict({"id": "t-1"}).max_clients == MAX_CLIENTS_PER_THERAPIST
        assert Therapist.from_dict({"id": "t-1", "max_clients": None}).max_clients == 10
        assert Therapist.from_dict({"id": "t-1", "max_clients": 0}).max_clients == 0
        assert Therapist(id="t-1").max_clients == 10

    def test_therapist_requires_id(self):
        """Test missing id raises."""
        with pytest.raises(SchedulingValidationError, match="Therapist id"):
            Therapist.from_dict({"name": "No Id"})

    def test_client_from_dict(self):
        """Test creating client from dict."""
        client = Client.from_dict({
            "id": "c-1",
            "name": "Sam",
            "service_preferences": ["In home"],
            "diagnosis": ["Autism"],
            "date_of_birth": "2015-03-02",
            "authorized_hours": 20,
        })

        assert client.date_of_birth == date(2015, 3, 2)
        assert client.authorized_hours == 20.0
        assert client.to_dict()["date_of_birth"] == "2015-03-02"

    def test_session_from_dict(self):
        """Test session parsing with "Z" timestamps."""
        session = ExistingSession.from_dict({
            "id": "s-1",
            "therapist_id": "t-1",
            "client_id": "c-1",
            "start_time": "2025-05-19T13:00:00Z",
            "end_time": "2025-05-19T14:00:00Z",
            "status": "no-show",
        })

        assert session.status == SessionStatus.NO_SHOW
        assert session.is_active
        assert session.duration_minutes == 60
        assert session.to_dict()["start_time"] == "2025-05-19T13:00:00Z"

    def test_cancelled_session_inactive(self):
        """Test cancelled sessions do not block the calendar."""
        session = ExistingSession.from_dict({
            "id": "s-1",
            "therapist_id": "t-1",
            "client_id": "c-1",
            "start_time": "2025-05-19T13:00:00Z",
            "end_time": "2025-05-19T14:00:00Z",
            "status": "cancelled",
        })

        assert not session.is_active

    def test_unknown_session_status(self):
        """Test unknown status raises."""
        with pytest.raises(SchedulingValidationError, match="status"):
            ExistingSession.from_dict({
                "id": "s-1",
                "start_time": "2025-05-19T13:00:00Z",
                "end_time": "2025-05-19T14:00:00Z",
                "status": "rescheduled",
            })


class TestTimestamps:
    """Test timestamp parsing."""

    def test_naive_treated_as_utc(self):
        assert parse_timestamp("2025-05-19T13:00:00") == datetime(2025, 5, 19, 13, tzinfo=timezone.utc)

    def test_offset_normalized_to_utc(self):
        parsed = parse_timestamp("2025-05-19T15:00:00+02:00")

        assert parsed == datetime(2025, 5, 19, 13, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_invalid(self):
        with pytest.raises(SchedulingValidationError):
            parse_timestamp("next tuesday")

    def test_missing(self):
        with pytest.raises(SchedulingValidationError):
            parse_timestamp(None)


class TestAlternative:
    """Test Alternative dataclass."""

    def test_from_dict_camel_case(self):
        """Test recommender wire format."""
        alternative = Alternative.from_dict({
            "startTime": "2025-05-19T14:00:00Z",
            "endTime": "2025-05-19T15:00:00Z",
            "score": 0.8,
            "reason": "Later the same day",
        })

        assert alternative.start_time.hour == 14
        assert alternative.score == 0.8

    def test_score_clamped(self):
        """Test out-of-range scores are clamped."""
        alternative = Alternative.from_dict({
            "start_time": "2025-05-19T14:00:00Z",
            "end_time": "2025-05-19T15:00:00Z",
            "score": 3,
        })

        assert alternative.score == 1.0

    def test_rank_by_score_then_start(self):
        """Test ranking order and truncation."""
        def make(hour, score):
            start = datetime(2025, 5, 19, hour, tzinfo=timezone.utc)
            return Alternative(start, start.replace(hour=hour + 1), score, "")

        ranked = rank_alternatives([make(15, 0.5), make(12, 0.9), make(10, 0.9), make(9, 0.1)], 3)

        assert [a.start_time.hour for a in ranked] == [10, 12, 15]


class TestOptimizationConstraints:
    """Test OptimizationConstraints."""

    def test_from_dict_defaults(self):
        constraints = OptimizationConstraints.from_dict({"start_date": "2025-05-19", "end_date": "2025-05-23"})

        assert constraints.session_duration_minutes == 60
        assert constraints.slot_step_minutes == 30
        assert constraints.max_workers is None
        assert constraints.min_break_minutes == 15
        assert constraints.max_consecutive_sessions == 4

    def test_end_before_start_rejected(self):
        with pytest.raises(SchedulingValidationError):
            OptimizationConstraints(start_date=date(2025, 5, 20), end_date=date(2025, 5, 19))

    def test_missing_start_date(self):
        with pytest.raises(SchedulingValidationError, match="horizon"):
            OptimizationConstraints.from_dict({"end_date": "2025-05-19"})

    def test_pacing_limits_from_dict(self):
        constraints = OptimizationConstraints.from_dict({
            "start_date": "2025-05-19",
            "min_break_minutes": 0,
            "max_consecutive_sessions": 2,
        })

        assert constraints.min_break_minutes == 0
        assert constraints.max_consecutive_sessions == 2

    def test_invalid_pacing_limits_rejected(self):
        with pytest.raises(SchedulingValidationError, match="break"):
            OptimizationConstraints(
                start_date=date(2025, 5, 19), end_date=date(2025, 5, 19), min_break_minutes=-5
            )
        with pytest.raises(SchedulingValidationError, match="consecutive"):
            OptimizationConstraints(
                start_date=date(2025, 5, 19), end_date=date(2025, 5, 19), max_consecutive_sessions=0
            )

    def test_zero_duration_rejected(self):
        with pytest.raises(SchedulingValidationError):
            OptimizationConstraints(
                start_date=date(2025, 5, 19),
                end_date=date(2025, 5, 19),
                session_duration_minutes=0,
            )


class TestBatchState:
    """Test batch state machine."""

    def test_valid_transitions(self):
        assert can_transition(BatchState.PENDING, BatchState.SCORING)
        assert can_transition(BatchState.SCORING, BatchState.ASSIGNING)
        assert can_transition(BatchState.ASSIGNING, BatchState.SCORING)
        assert can_transition(BatchState.ASSIGNING, BatchState.DONE)

    def test_invalid_transitions(self):
        assert not can_transition(BatchState.PENDING, BatchState.ASSIGNING)
        assert not can_transition(BatchState.DONE, BatchState.SCORING)

    def test_terminal(self):
        assert is_terminal_state(BatchState.DONE)
        assert not is_terminal_state(BatchState.SCORING)

    def test_plan_advance(self):
        """Test plan enforces the transition table."""
        plan = AssignmentPlan()
        plan.advance(BatchState.SCORING)
        plan.advance(BatchState.SCORING)
        plan.advance(BatchState.DONE)

        assert plan.state == BatchState.DONE
        with pytest.raises(InvalidTransitionError):
            plan.advance(BatchState.SCORING)

    def test_plan_to_dict(self):
        plan = AssignmentPlan(
            unassigned=[
                UnassignedClient(
                    client_id="c-1",
                    client_name="Sam",
                    reasons=["At capacity: Dana", "No open slot"],
                    conflicts=[Conflict(ConflictType.SESSION_OVERLAP, "overlap")],
                )
            ]
        )

        d = plan.to_dict()

        assert d["state"] == "pending"
        assert d["unassigned"][0]["reason"] == "At capacity: Dana; No open slot"
        assert d["unassigned"][0]["conflicts"][0]["type"] == "session_overlap"
