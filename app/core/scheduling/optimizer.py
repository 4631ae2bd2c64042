"""
Auto-Schedule Optimizer.

Greedy batch assignment of clients to therapists and time slots.

Clients are processed in a fixed priority order. For each client the
eligible therapists are scored in parallel against a read-only
occupancy snapshot; the winner is then assigned on the coordinating
thread, producing the next snapshot. Assignments placed earlier in the
batch therefore block later ones exactly like pre-existing sessions.
"""

import logging
import threading
from collections import defaultdict
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from types import MappingProxyType
from typing import Mapping, Optional

from app.core.scheduling.conflicts import detect_conflicts
from app.core.scheduling.intervals import (
    combine_utc,
    intersect_windows,
    intervals_overlap,
    iter_days,
    iter_slots,
)
from app.core.scheduling.models import (
    Assignment,
    AssignmentPlan,
    Client,
    Conflict,
    ConflictType,
    ExistingSession,
    OptimizationConstraints,
    SessionStatus,
    Therapist,
    UnassignedClient,
    Weekday,
)
from app.core.scheduling.scoring import (
    CompatibilityScorer,
    availability_fit,
    continuity_score,
    workload_score,
)
from app.core.scheduling.state import BatchState

logger = logging.getLogger(__name__)

# Slot score weights (sum to 1.0); compatibility scales the result
FIT_WEIGHT = 0.6
WORKLOAD_WEIGHT = 0.25
CONTINUITY_WEIGHT = 0.15

_CONFLICT_SUMMARY = {
    ConflictType.THERAPIST_UNAVAILABLE: "therapist unavailable",
    ConflictType.CLIENT_UNAVAILABLE: "client unavailable",
    ConflictType.SESSION_OVERLAP: "session overlap",
}


def unused_authorized_hours(client: Client, sessions: list[ExistingSession]) -> float:
    """Authorized hours not yet booked in non-cancelled sessions (never negative)."""
    booked_minutes = sum(
        s.duration_minutes for s in sessions if s.client_id == client.id and s.is_active
    )
    return max(0.0, client.authorized_hours - booked_minutes / 60)


def prioritize_clients(clients: list[Client], sessions: list[ExistingSession]) -> list[Client]:
    """Order clients for a batch: fewest unused authorized hours first, then client id."""
    return sorted(clients, key=lambda c: (unused_authorized_hours(c, sessions), c.id))


@dataclass(frozen=True)
class Occupancy:
    """
    Immutable calendar view threaded through the batch.

    Holds every active session (snapshot plus in-batch assignments)
    and each therapist's running client load.
    """

    sessions: tuple[ExistingSession, ...]
    loads: Mapping[str, int]

    @classmethod
    def from_snapshot(
        cls,
        sessions: list[ExistingSession],
        therapists: list[Therapist],
    ) -> "Occupancy":
        return cls(
            sessions=tuple(s for s in sessions if s.is_active),
            loads=MappingProxyType({t.id: t.active_client_count for t in therapists}),
        )

    def load_of(self, therapist: Therapist) -> int:
        return self.loads.get(therapist.id, therapist.active_client_count)

    def with_assignment(self, assignment: Assignment) -> "Occupancy":
        """New occupancy including a freshly placed session."""
        planned = ExistingSession(
            id=f"planned-{assignment.client_id}-{assignment.therapist_id}-{assignment.start_time:%Y%m%dT%H%M}",
            therapist_id=assignment.therapist_id,
            client_id=assignment.client_id,
            start_time=assignment.start_time,
            end_time=assignment.end_time,
            status=SessionStatus.SCHEDULED,
        )
        loads = dict(self.loads)
        loads[assignment.therapist_id] = loads.get(assignment.therapist_id, 0) + 1
        return Occupancy(
            sessions=self.sessions + (planned,),
            loads=MappingProxyType(loads),
        )


@dataclass
class CandidateEvaluation:
    """Outcome of scoring one therapist for one client."""

    therapist: Therapist
    compatibility: float
    slot: Optional[tuple[datetime, datetime]] = None
    fit: float = 0.0
    workload: float = 0.0
    continuity: float = 0.5
    # Best rejected slot, for reporting when no slot is viable
    rejected_slot: Optional[tuple[datetime, datetime]] = None
    rejected_conflicts: list[Conflict] = field(default_factory=list)
    rejection_reasons: list[str] = field(default_factory=list)

    @property
    def slot_score(self) -> float:
        """Weighted fit, workload and continuity of the chosen slot."""
        return (
            FIT_WEIGHT * self.fit
            + WORKLOAD_WEIGHT * self.workload
            + CONTINUITY_WEIGHT * self.continuity
        )

    @property
    def combined_score(self) -> float:
        """Compatibility × slot score (0 without a viable slot)."""
        if self.slot is None:
            return 0.0
        return round(self.compatibility * self.slot_score, 4)

    def describe_rejection(self) -> str:
        name = self.therapist.name or self.therapist.id
        details = ", ".join(self.rejection_reasons) or "no open slot in the horizon"
        return f"{name}: no conflict-free slot ({details})"


class ScheduleOptimizer:
    """
    Batch optimizer.

    Coordinates:
    - Client prioritization
    - Parallel, cache-backed compatibility scoring per client
    - Serialized assignment with load balancing
    - Cancellation between clients
    - Per-client failure isolation
    """

    def __init__(
        self,
        scorer: Optional[CompatibilityScorer] = None,
        max_workers: int = 4,
    ):
        """Initialize optimizer.

        Args:
            scorer: Compatibility scorer sharing the engine's cache
            max_workers: Default scoring threads (constraints may override)
        """
        self.scorer = scorer or CompatibilityScorer()
        self.max_workers = max_workers

    def optimize(
        self,
        clients: list[Client],
        therapists: list[Therapist],
        existing_sessions: list[ExistingSession],
        constraints: OptimizationConstraints,
        cancel_event: Optional[threading.Event] = None,
    ) -> AssignmentPlan:
        """Run one batch.

        Args:
            clients: Clients to place
            therapists: Candidate therapists
            existing_sessions: Calendar snapshot
            constraints: Horizon and limits
            cancel_event: Set to stop after the current client

        Returns:
            AssignmentPlan with assignments, unassigned clients and,
            if cancelled, the plan built so far with ``cancelled=True``
        """
        plan = AssignmentPlan()
        ordered = prioritize_clients(clients, existing_sessions)
        ordered_therapists = sorted(therapists, key=lambda t: t.id)
        occupancy = Occupancy.from_snapshot(existing_sessions, therapists)
        history = tuple(existing_sessions)
        workers = max(1, constraints.max_workers or self.max_workers)

        logger.info(
            f"Optimizing batch: {len(ordered)} clients, {len(ordered_therapists)} therapists, "
            f"{constraints.start_date} to {constraints.end_date}"
        )

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="schedule-score") as pool:
            for client in ordered:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(
                        f"Batch cancelled after {len(plan.assignments) + len(plan.unassigned)} "
                        f"of {len(ordered)} clients"
                    )
                    plan.cancelled = True
                    break

                plan.advance(BatchState.SCORING)
                try:
                    evaluations, skipped = self._score_client(
                        pool, client, ordered_therapists, occupancy, history, constraints
                    )
                    plan.advance(BatchState.ASSIGNING)
                    occupancy = self._assign(plan, client, evaluations, skipped, occupancy)
                except Exception as e:
                    logger.exception(f"Failed to schedule client {client.id}: {e}")
                    plan.unassigned.append(
                        UnassignedClient(
                            client_id=client.id,
                            client_name=client.name,
                            reasons=[f"Scheduling error: {e}"],
                        )
                    )

        plan.advance(BatchState.DONE)
        plan.violations = validate_plan(plan.assignments, constraints)
        plan.cache_stats = self.scorer.cache.stats()

        logger.info(
            f"Batch done: {len(plan.assignments)} assigned, {len(plan.unassigned)} unassigned"
            f"{' (cancelled)' if plan.cancelled else ''}"
        )
        return plan

    def _score_client(
        self,
        pool: Executor,
        client: Client,
        therapists: list[Therapist],
        occupancy: Occupancy,
        history: tuple[ExistingSession, ...],
        constraints: OptimizationConstraints,
    ) -> tuple[list[CandidateEvaluation], list[str]]:
        """Filter eligible therapists and evaluate them in parallel.

        Returns:
            Tuple of (evaluations in therapist order, reasons for skipped therapists)
        """
        preferences = set(client.service_preferences)
        eligible: list[Therapist] = []
        at_capacity: list[str] = []

        for therapist in therapists:
            if not preferences.intersection(therapist.service_types):
                continue
            if occupancy.load_of(therapist) >= therapist.max_clients:
                at_capacity.append(therapist.name or therapist.id)
                continue
            eligible.append(therapist)

        skipped: list[str] = []
        if at_capacity:
            skipped.append(f"At capacity: {', '.join(at_capacity)}")

        futures = [
            pool.submit(self._evaluate, therapist, client, occupancy, history, constraints)
            for therapist in eligible
        ]
        return [future.result() for future in futures], skipped

    def _evaluate(
        self,
        therapist: Therapist,
        client: Client,
        occupancy: Occupancy,
        history: tuple[ExistingSession, ...],
        constraints: OptimizationConstraints,
    ) -> CandidateEvaluation:
        """Find the therapist's best slot for the client. Reads the snapshot only.

        Slots are ranked by availability fit and the therapist's weekly
        workload; the earliest slot wins a tie.
        """
        evaluation = CandidateEvaluation(
            therapist=therapist,
            compatibility=self.scorer.score(therapist, client),
            continuity=continuity_score(therapist.id, client.id, history),
        )

        relevant = [
            s for s in occupancy.sessions
            if s.therapist_id == therapist.id or s.client_id == client.id
        ]
        daily_minutes: dict[date, float] = defaultdict(float)
        weekly_minutes: dict[tuple[int, int], float] = defaultdict(float)
        daily_sessions: dict[date, list[ExistingSession]] = defaultdict(list)
        for session in relevant:
            if session.therapist_id == therapist.id:
                daily_minutes[session.start_time.date()] += session.duration_minutes
                weekly_minutes[session.start_time.isocalendar()[:2]] += session.duration_minutes
                daily_sessions[session.start_time.date()].append(session)

        duration = constraints.session_duration_minutes
        reasons: set[str] = set()
        best_rank = -1.0

        for day in iter_days(constraints.start_date, constraints.end_date):
            weekday = Weekday.from_datetime(combine_utc(day, time()))
            therapist_window = therapist.availability.get(weekday)
            client_window = client.availability.get(weekday)
            shared = intersect_windows(therapist_window, client_window)

            if shared is None:
                fallback_window = therapist_window or client_window
                fallback_start = combine_utc(day, fallback_window.start if fallback_window else time(9))
                self._reject(
                    evaluation,
                    reasons,
                    fallback_start,
                    fallback_start + timedelta(minutes=duration),
                    therapist,
                    client,
                    relevant,
                )
                continue

            week = day.isocalendar()[:2]
            if daily_minutes[day] + duration > constraints.max_daily_hours * 60:
                reasons.add(f"{constraints.max_daily_hours:g}h daily limit reached")
                continue
            if weekly_minutes[week] + duration > therapist.weekly_hours_max * 60:
                reasons.add(f"{therapist.weekly_hours_max:g}h weekly limit reached")
                continue

            workload = workload_score(therapist, weekly_minutes[week])
            for slot_start, slot_end in iter_slots(day, shared, duration, constraints.slot_step_minutes):
                if self._reject(
                    evaluation, reasons, slot_start, slot_end, therapist, client, relevant
                ):
                    continue

                pacing = self._pacing_violation(slot_start, slot_end, daily_sessions[day], constraints)
                if pacing:
                    reasons.add(pacing)
                    continue

                fit = availability_fit(
                    slot_start,
                    slot_end,
                    constraints.preferred_start_hour,
                    constraints.preferred_end_hour,
                )
                rank = FIT_WEIGHT * fit + WORKLOAD_WEIGHT * workload
                if rank > best_rank:
                    best_rank = rank
                    evaluation.slot = (slot_start, slot_end)
                    evaluation.fit = fit
                    evaluation.workload = workload

        evaluation.rejection_reasons = sorted(reasons)
        return evaluation

    @staticmethod
    def _pacing_violation(
        start: datetime,
        end: datetime,
        day_sessions: list[ExistingSession],
        constraints: OptimizationConstraints,
    ) -> Optional[str]:
        """Check breaks and back-to-back runs around a conflict-free slot.

        Sessions separated by no more than ``min_break_minutes`` count as
        one run; a run including the slot may hold at most
        ``max_consecutive_sessions`` sessions.

        Returns:
            Reason the slot breaks a pacing rule, or None
        """
        gap = timedelta(minutes=constraints.min_break_minutes)
        if any(s.start_time < end + gap and start < s.end_time + gap for s in day_sessions):
            return f"{constraints.min_break_minutes:g} min break required"

        earlier = sorted(
            (s for s in day_sessions if s.end_time <= start),
            key=lambda s: s.end_time,
            reverse=True,
        )
        later = sorted(
            (s for s in day_sessions if s.start_time >= end),
            key=lambda s: s.start_time,
        )

        run = 1
        edge = start
        for session in earlier:
            if edge - session.end_time > gap:
                break
            run += 1
            edge = session.start_time

        edge = end
        for session in later:
            if session.start_time - edge > gap:
                break
            run += 1
            edge = session.end_time

        if run > constraints.max_consecutive_sessions:
            return f"max {constraints.max_consecutive_sessions} consecutive sessions"
        return None

    @staticmethod
    def _reject(
        evaluation: CandidateEvaluation,
        reasons: set[str],
        start: datetime,
        end: datetime,
        therapist: Therapist,
        client: Client,
        sessions: list[ExistingSession],
    ) -> bool:
        """Check a slot; record its conflicts and return True if it is not viable."""
        conflicts = detect_conflicts(
            start, end, therapist.id, client.id, sessions, therapist, client
        )
        if not conflicts:
            return False

        reasons.update(_CONFLICT_SUMMARY[c.type] for c in conflicts)
        # Keep the rejected slot with the fewest conflicts
        if evaluation.rejected_slot is None or len(conflicts) < len(evaluation.rejected_conflicts):
            evaluation.rejected_slot = (start, end)
            evaluation.rejected_conflicts = conflicts
        return True

    def _assign(
        self,
        plan: AssignmentPlan,
        client: Client,
        evaluations: list[CandidateEvaluation],
        skipped: list[str],
        occupancy: Occupancy,
    ) -> Occupancy:
        """Record the best candidate (or the failure) and return the next occupancy."""
        viable = [e for e in evaluations if e.slot is not None]

        if not viable:
            reasons = list(skipped)
            reasons.extend(e.describe_rejection() for e in evaluations)
            if not evaluations and not skipped:
                reasons.append("No therapist offers a matching service type")

            closest = min(
                (e for e in evaluations if e.rejected_slot is not None),
                key=lambda e: (len(e.rejected_conflicts), -e.compatibility, e.therapist.id),
                default=None,
            )
            plan.unassigned.append(
                UnassignedClient(
                    client_id=client.id,
                    client_name=client.name,
                    reasons=reasons,
                    conflicts=list(closest.rejected_conflicts) if closest else [],
                    attempted_therapist_id=closest.therapist.id if closest else None,
                    attempted_start=closest.rejected_slot[0] if closest else None,
                    attempted_end=closest.rejected_slot[1] if closest else None,
                )
            )
            logger.debug(f"Client {client.id} unassigned: {'; '.join(reasons)}")
            return occupancy

        # Highest combined score; ties go to the least loaded therapist
        best = min(
            viable,
            key=lambda e: (
                -e.combined_score,
                occupancy.load_of(e.therapist),
                e.slot[0],
                e.therapist.id,
            ),
        )
        assignment = Assignment(
            client_id=client.id,
            client_name=client.name,
            therapist_id=best.therapist.id,
            therapist_name=best.therapist.name,
            start_time=best.slot[0],
            end_time=best.slot[1],
            score=best.combined_score,
        )
        plan.assignments.append(assignment)
        logger.debug(
            f"Assigned client {client.id} to therapist {best.therapist.id} "
            f"at {assignment.start_time.isoformat()} (score {assignment.score})"
        )
        return occupancy.with_assignment(assignment)


def validate_plan(
    assignments: list[Assignment],
    constraints: OptimizationConstraints,
) -> list[str]:
    """Check a plan for daily-hour overruns and in-batch collisions.

    Returns:
        Human-readable violations, empty for a valid plan
    """
    violations: list[str] = []

    daily: dict[tuple[str, date], float] = defaultdict(float)
    for assignment in assignments:
        daily[(assignment.therapist_id, assignment.start_time.date())] += assignment.duration_minutes

    for (therapist_id, day), minutes in sorted(daily.items()):
        if minutes / 60 > constraints.max_daily_hours:
            violations.append(
                f"Therapist {therapist_id} exceeds maximum daily hours on {day.isoformat()}"
            )

    for index, first in enumerate(assignments):
        for second in assignments[index + 1:]:
            shares_party = (
                first.therapist_id == second.therapist_id or first.client_id == second.client_id
            )
            if shares_party and intervals_overlap(
                first.start_time, first.end_time, second.start_time, second.end_time
            ):
                violations.append(
                    f"Assignments for clients {first.client_id} and {second.client_id} overlap"
                )

    return violations
