"""
Scheduling Engine - Main Orchestrator.

Owns the memoization cache and wires the conflict detector,
compatibility scorer, alternative-time suggester and batch optimizer
behind the operations the host application calls.
"""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Optional, Union

from app.config import get_settings
from app.core.scheduling.alternatives import AlternativeSuggester
from app.core.scheduling.cache import MemoizationCache
from app.core.scheduling.conflicts import detect_conflicts
from app.core.scheduling.models import (
    Alternative,
    AssignmentPlan,
    Client,
    Conflict,
    ExistingSession,
    OptimizationConstraints,
    SchedulingValidationError,
    Therapist,
    parse_timestamp,
)
from app.core.scheduling.optimizer import ScheduleOptimizer
from app.core.scheduling.recommender import AlternativeRecommender, get_recommender
from app.core.scheduling.scoring import CompatibilityScorer

logger = logging.getLogger(__name__)

Timestamp = Union[str, datetime]


class SchedulingEngine:
    """
    Main entry point for scheduling operations.

    Coordinates:
    - Conflict detection
    - Compatibility scoring (shared memoization cache)
    - Alternative-time suggestions
    - Batch optimization
    """

    def __init__(
        self,
        cache: Optional[MemoizationCache] = None,
        recommender: Optional[AlternativeRecommender] = None,
        scorer: Optional[CompatibilityScorer] = None,
        suggester: Optional[AlternativeSuggester] = None,
        optimizer: Optional[ScheduleOptimizer] = None,
    ):
        """Initialize engine with optional dependencies.

        Args:
            cache: Memoization cache shared by all scoring
            recommender: External alternative recommender
            scorer: Compatibility scorer
            suggester: Alternative-time suggester
            optimizer: Batch optimizer
        """
        self.cache = cache if cache is not None else MemoizationCache()
        self._recommender = recommender
        self._scorer = scorer
        self._suggester = suggester
        self._optimizer = optimizer

    def _get_scorer(self) -> CompatibilityScorer:
        """Get compatibility scorer."""
        if self._scorer is None:
            self._scorer = CompatibilityScorer(cache=self.cache)
        return self._scorer

    def _get_suggester(self) -> AlternativeSuggester:
        """Get alternative-time suggester."""
        if self._suggester is None:
            self._suggester = AlternativeSuggester(
                scorer=self._get_scorer(),
                recommender=self._recommender,
            )
        return self._suggester

    def _get_optimizer(self) -> ScheduleOptimizer:
        """Get batch optimizer."""
        if self._optimizer is None:
            self._optimizer = ScheduleOptimizer(
                scorer=self._get_scorer(),
                max_workers=get_settings().optimizer_max_workers,
            )
        return self._optimizer

    def detect_conflicts(
        self,
        start_time: Timestamp,
        end_time: Timestamp,
        therapist_id: str,
        client_id: str,
        existing_sessions: list[ExistingSession],
        therapist: Therapist,
        client: Client,
        exclude_session_id: Optional[str] = None,
    ) -> list[Conflict]:
        """Detect conflicts for a proposed or edited session.

        Args:
            start_time: Proposed start (ISO-8601 or datetime)
            end_time: Proposed end (ISO-8601 or datetime)
            therapist_id: Therapist being booked
            client_id: Client being booked
            existing_sessions: Calendar snapshot
            therapist: Therapist snapshot
            client: Client snapshot
            exclude_session_id: Session being edited

        Returns:
            Conflicts in check order (therapist, client, overlaps)
        """
        _check_party_ids(therapist_id, client_id, therapist, client)
        return detect_conflicts(
            parse_timestamp(start_time),
            parse_timestamp(end_time),
            therapist_id,
            client_id,
            existing_sessions,
            therapist,
            client,
            exclude_session_id,
        )

    async def suggest_alternatives(
        self,
        start_time: Timestamp,
        end_time: Timestamp,
        therapist_id: str,
        client_id: str,
        existing_sessions: list[ExistingSession],
        therapist: Therapist,
        client: Client,
        conflicts: list[Conflict],
        exclude_session_id: Optional[str] = None,
    ) -> list[Alternative]:
        """Suggest ranked replacement slots for a conflicted request.

        Returns:
            Top-K alternatives; empty if the recommender fails
        """
        _check_party_ids(therapist_id, client_id, therapist, client)
        suggester = self._get_suggester()
        return await suggester.suggest(
            parse_timestamp(start_time),
            parse_timestamp(end_time),
            therapist_id,
            client_id,
            existing_sessions,
            therapist,
            client,
            conflicts,
            exclude_session_id,
        )

    async def optimize(
        self,
        clients: list[Client],
        therapists: list[Therapist],
        existing_sessions: list[ExistingSession],
        constraints: OptimizationConstraints,
        cancel_event: Optional[threading.Event] = None,
    ) -> AssignmentPlan:
        """Run batch optimization off the event loop.

        With ``constraints.suggest_for_unassigned`` each unassigned
        client gets local alternatives around its closest rejected slot.
        The external recommender is never consulted here.

        Returns:
            AssignmentPlan
        """
        return await asyncio.to_thread(
            self._optimize_and_attach,
            clients,
            therapists,
            existing_sessions,
            constraints,
            cancel_event,
        )

    def _optimize_and_attach(
        self,
        clients: list[Client],
        therapists: list[Therapist],
        existing_sessions: list[ExistingSession],
        constraints: OptimizationConstraints,
        cancel_event: Optional[threading.Event],
    ) -> AssignmentPlan:
        """Blocking half of ``optimize``: the batch, then residual alternatives."""
        plan = self._get_optimizer().optimize(
            clients,
            therapists,
            existing_sessions,
            constraints,
            cancel_event,
        )

        if constraints.suggest_for_unassigned and plan.unassigned:
            self._attach_residual_alternatives(plan, clients, therapists, existing_sessions)

        return plan

    def _attach_residual_alternatives(
        self,
        plan: AssignmentPlan,
        clients: list[Client],
        therapists: list[Therapist],
        existing_sessions: list[ExistingSession],
    ) -> None:
        """Fill ``alternatives`` for unassigned clients with a rejected slot."""
        clients_by_id = {c.id: c for c in clients}
        therapists_by_id = {t.id: t for t in therapists}
        planned = [
            ExistingSession(
                id=f"planned-{a.client_id}-{a.therapist_id}",
                therapist_id=a.therapist_id,
                client_id=a.client_id,
                start_time=a.start_time,
                end_time=a.end_time,
            )
            for a in plan.assignments
        ]
        suggester = self._get_suggester()

        for unassigned in plan.unassigned:
            client = clients_by_id.get(unassigned.client_id)
            therapist = therapists_by_id.get(unassigned.attempted_therapist_id or "")
            if client is None or therapist is None or unassigned.attempted_start is None:
                continue
            unassigned.alternatives = suggester.find_candidates(
                unassigned.attempted_start,
                unassigned.attempted_end,
                therapist,
                client,
                list(existing_sessions) + planned,
                unassigned.conflicts,
            )

    def clear_cache(self) -> None:
        """Drop memoized scores. Call between unrelated runs."""
        self.cache.clear()

    def cache_stats(self) -> dict[str, int]:
        """Memoization cache size and hit/miss counters."""
        return self.cache.stats()


def _check_party_ids(
    therapist_id: str,
    client_id: str,
    therapist: Therapist,
    client: Client,
) -> None:
    """Reject requests whose ids do not match the supplied snapshots."""
    if not therapist_id or not client_id:
        raise SchedulingValidationError("Therapist id and client id are required")
    if therapist.id != therapist_id:
        raise SchedulingValidationError(
            f"Therapist id {therapist_id} does not match therapist record {therapist.id}"
        )
    if client.id != client_id:
        raise SchedulingValidationError(
            f"Client id {client_id} does not match client record {client.id}"
        )


# Singleton
_engine: Optional[SchedulingEngine] = None


def get_scheduling_engine() -> SchedulingEngine:
    """Get singleton SchedulingEngine."""
    global _engine
    if _engine is None:
        _engine = SchedulingEngine(recommender=get_recommender())
    return _engine


def detect_scheduling_conflicts(
    start_time: Timestamp,
    end_time: Timestamp,
    therapist_id: str,
    client_id: str,
    existing_sessions: list[ExistingSession],
    therapist: Therapist,
    client: Client,
    exclude_session_id: Optional[str] = None,
) -> list[Conflict]:
    """Convenience function to detect conflicts with the singleton engine."""
    return get_scheduling_engine().detect_conflicts(
        start_time,
        end_time,
        therapist_id,
        client_id,
        existing_sessions,
        therapist,
        client,
        exclude_session_id,
    )


async def suggest_alternative_times(
    start_time: Timestamp,
    end_time: Timestamp,
    therapist_id: str,
    client_id: str,
    existing_sessions: list[ExistingSession],
    therapist: Therapist,
    client: Client,
    conflicts: list[Conflict],
    exclude_session_id: Optional[str] = None,
) -> list[Alternative]:
    """Convenience function to suggest alternatives with the singleton engine."""
    return await get_scheduling_engine().suggest_alternatives(
        start_time,
        end_time,
        therapist_id,
        client_id,
        existing_sessions,
        therapist,
        client,
        conflicts,
        exclude_session_id,
    )


async def optimize_schedule(
    clients: list[Client],
    therapists: list[Therapist],
    existing_sessions: list[ExistingSession],
    constraints: OptimizationConstraints,
    cancel_event: Optional[threading.Event] = None,
) -> AssignmentPlan:
    """Convenience function to run a batch with the singleton engine."""
    return await get_scheduling_engine().optimize(
        clients,
        therapists,
        existing_sessions,
        constraints,
        cancel_event,
    )


def clear_schedule_cache() -> None:
    """Clear the singleton engine's memoization cache."""
    get_scheduling_engine().clear_cache()
