"""
Compatibility Scorer.

Normalized [0, 1] therapist/client fit computed from static snapshot
attributes, memoized per pair in an injected MemoizationCache.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from app.core.scheduling.cache import MemoizationCache
from app.core.scheduling.intervals import weekly_overlap_minutes
from app.core.scheduling.models import Client, ExistingSession, SessionStatus, Therapist

logger = logging.getLogger(__name__)

# Score weights (sum to 1.0)
SERVICE_WEIGHT = 0.4
SPECIALTY_WEIGHT = 0.2
CASELOAD_WEIGHT = 0.2
AVAILABILITY_WEIGHT = 0.2

CACHE_NAMESPACE = "compatibility"

# Statuses that say how a past pairing went
_RESOLVED_STATUSES = (SessionStatus.COMPLETED, SessionStatus.CANCELLED, SessionStatus.NO_SHOW)


def compute_compatibility(therapist: Therapist, client: Client) -> float:
    """Compute the compatibility score for a pair (no caching).

    Components:
    - Service type overlap (no shared service type means score 0)
    - Specialty match against the client's diagnosis or preferences
    - Caseload headroom (lower load scores higher)
    - Shared weekly availability relative to the client's availability

    Every ratio whose denominator is zero contributes 0.
    """
    client_services = list(dict.fromkeys(client.service_preferences))
    therapist_services = set(therapist.service_types)
    common = [service for service in client_services if service in therapist_services]

    denominator = max(len(client_services), len(therapist_services))
    if denominator == 0 or not common:
        return 0.0

    score = SERVICE_WEIGHT * len(common) / denominator

    # Specialty match
    needs = [need.lower() for need in (*client.diagnosis, *client.service_preferences) if need]
    specialties = [specialty.lower() for specialty in therapist.specialties if specialty]
    if any(need in specialty for need in needs for specialty in specialties):
        score += SPECIALTY_WEIGHT

    # Caseload headroom
    if therapist.max_clients > 0:
        headroom = 1 - therapist.active_client_count / therapist.max_clients
        score += CASELOAD_WEIGHT * max(0.0, headroom)

    # Shared availability
    client_minutes = client.availability.total_minutes
    if client_minutes > 0:
        shared = weekly_overlap_minutes(therapist.availability, client.availability)
        score += AVAILABILITY_WEIGHT * min(1.0, shared / client_minutes)

    return round(min(max(score, 0.0), 1.0), 4)


class CompatibilityScorer:
    """
    Memoized compatibility scoring.

    The cache is keyed by ``("compatibility", therapist_id, client_id)``;
    a pair is computed at most once per cache lifetime. ``compute`` is
    injectable so tests can count underlying computations.
    """

    def __init__(
        self,
        cache: Optional[MemoizationCache] = None,
        compute: Callable[[Therapist, Client], float] = compute_compatibility,
    ):
        """Initialize scorer.

        Args:
            cache: Shared memoization cache (a private one if omitted)
            compute: Pure scoring function
        """
        self.cache = cache if cache is not None else MemoizationCache()
        self._compute = compute

    def score(self, therapist: Therapist, client: Client) -> float:
        """Get the (cached) compatibility score for a pair."""
        key = MemoizationCache.make_key(CACHE_NAMESPACE, therapist.id, client.id)
        return self.cache.get_or_compute(key, lambda: self._compute(therapist, client))


def availability_fit(
    start: datetime,
    end: datetime,
    preferred_start_hour: int = 9,
    preferred_end_hour: int = 15,
) -> float:
    """Score how well a slot sits inside the preferred working window.

    1.0 inside the window, dropping by 0.1 per hour spent outside it.
    """
    start_hour = start.hour + start.minute / 60
    end_hour = end.hour + end.minute / 60
    if end.date() > start.date():
        end_hour += 24

    hours_outside = max(0.0, preferred_start_hour - start_hour) + max(0.0, end_hour - preferred_end_hour)
    return round(max(0.0, 1 - hours_outside / 10), 4)


def workload_score(therapist: Therapist, worked_minutes: float) -> float:
    """Score the therapist's remaining room in the week.

    The target is the midpoint of ``weekly_hours_min`` and
    ``weekly_hours_max``. An empty week scores 1.0; a week at or past
    the target (or a therapist without a target) scores 0.
    """
    target_hours = (therapist.weekly_hours_min + therapist.weekly_hours_max) / 2
    if target_hours <= 0:
        return 0.0

    remaining = target_hours - worked_minutes / 60
    if remaining <= 0:
        return 0.0
    return round(min(remaining / target_hours, 1.0), 4)


def continuity_score(
    therapist_id: str,
    client_id: str,
    sessions: Iterable[ExistingSession],
) -> float:
    """Share of the pair's resolved past sessions that were completed.

    Scheduled sessions have no outcome yet and are ignored. A pair with
    no history scores a neutral 0.5.
    """
    resolved = [
        s.status for s in sessions
        if s.therapist_id == therapist_id
        and s.client_id == client_id
        and s.status in _RESOLVED_STATUSES
    ]
    if not resolved:
        return 0.5
    completed = sum(1 for status in resolved if status == SessionStatus.COMPLETED)
    return round(completed / len(resolved), 4)
