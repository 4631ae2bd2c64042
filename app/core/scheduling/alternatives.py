"""
Alternative-Time Suggester.

Searches a bounded neighborhood of the conflicted request for slots
that pass the conflict detector, ranks them by compatibility and
temporal proximity, and optionally hands the ranking to an external
recommender.
"""

import asyncio
import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from app.config import get_settings
from app.core.scheduling.conflicts import detect_conflicts
from app.core.scheduling.intervals import (
    intersect_windows,
    iter_slots,
    minutes_between,
    validate_interval,
)
from app.core.scheduling.models import (
    Alternative,
    Client,
    Conflict,
    ConflictType,
    ExistingSession,
    SchedulingValidationError,
    Therapist,
    Weekday,
    rank_alternatives,
)
from app.core.scheduling.recommender import AlternativeRecommender, AlternativeRequest
from app.core.scheduling.scoring import CompatibilityScorer

logger = logging.getLogger(__name__)

COMPATIBILITY_WEIGHT = 0.3
PROXIMITY_WEIGHT = 0.7

_CONFLICT_LABELS = {
    ConflictType.THERAPIST_UNAVAILABLE: "therapist availability",
    ConflictType.CLIENT_UNAVAILABLE: "client availability",
    ConflictType.SESSION_OVERLAP: "session overlap",
}


def _format_offset(minutes: float) -> str:
    """Format a duration like "1 hour 30 minutes"."""
    hours, mins = divmod(int(round(minutes)), 60)
    parts = []
    if hours:
        parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
    if mins:
        parts.append(f"{mins} minute{'s' if mins != 1 else ''}")
    return " ".join(parts) or "0 minutes"


def describe_alternative(
    requested: datetime,
    candidate: datetime,
    conflicts: list[Conflict],
) -> str:
    """Human-readable reason for an alternative slot."""
    labels = list(dict.fromkeys(_CONFLICT_LABELS[c.type] for c in conflicts))
    if len(labels) > 1:
        resolved = f"{', '.join(labels[:-1])} and {labels[-1]}"
    else:
        resolved = labels[0] if labels else "scheduling"

    day_offset = (candidate.date() - requested.date()).days
    direction = "later" if candidate > requested else "earlier"
    if day_offset == 0:
        when = f"same day, {_format_offset(minutes_between(requested, candidate))} {direction}"
    else:
        days = abs(day_offset)
        clock = candidate.strftime("%I:%M %p").lstrip("0")
        when = f"{days} day{'s' if days != 1 else ''} {direction} at {clock}"

    return f"Avoids {resolved} conflicts; {when}"


class AlternativeSuggester:
    """
    Finds and ranks replacement slots for a conflicted request.

    Local search covers ±search_days around the request at step_minutes
    granularity, inside the intersection of both parties' windows. With
    a recommender configured, the local candidates are delegated for
    final ranking under a timeout; any failure yields no suggestions.
    """

    def __init__(
        self,
        scorer: Optional[CompatibilityScorer] = None,
        recommender: Optional[AlternativeRecommender] = None,
        search_days: Optional[int] = None,
        step_minutes: Optional[int] = None,
        top_k: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        """Initialize suggester.

        Args:
            scorer: Compatibility scorer (private cache if omitted)
            recommender: Optional external recommender
            search_days: Days searched either side (defaults to settings)
            step_minutes: Candidate granularity (defaults to settings)
            top_k: Max alternatives returned (defaults to settings)
            timeout_seconds: Recommender call bound (defaults to settings)
        """
        settings = get_settings()
        self.scorer = scorer or CompatibilityScorer()
        self.recommender = recommender
        self.search_days = search_days if search_days is not None else settings.alternative_search_days
        self.step_minutes = step_minutes or settings.alternative_step_minutes
        self.top_k = top_k or settings.alternative_top_k
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.recommender_timeout_seconds
        )

    def find_candidates(
        self,
        start_time: datetime,
        end_time: datetime,
        therapist: Therapist,
        client: Client,
        existing_sessions: list[ExistingSession],
        conflicts: list[Conflict],
        exclude_session_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Alternative]:
        """Local neighborhood search.

        Args:
            start_time: Requested start
            end_time: Requested end
            therapist: Therapist snapshot
            client: Client snapshot
            existing_sessions: Calendar snapshot
            conflicts: Conflicts found for the request (used in reasons)
            exclude_session_id: Session being edited
            limit: Max results (defaults to top_k)

        Returns:
            Conflict-free alternatives, best first
        """
        validate_interval(start_time, end_time)

        # Partial minutes round up so candidates are never shorter than the request
        duration_minutes = math.ceil((end_time - start_time).total_seconds() / 60)
        horizon_minutes = max(self.search_days, 1) * 24 * 60
        compatibility = self.scorer.score(therapist, client)

        candidates: list[Alternative] = []
        for offset in range(-self.search_days, self.search_days + 1):
            day = start_time.date() + timedelta(days=offset)
            weekday = Weekday.from_datetime(start_time + timedelta(days=offset))
            shared = intersect_windows(
                therapist.availability.get(weekday),
                client.availability.get(weekday),
            )
            if shared is None:
                continue

            for slot_start, slot_end in iter_slots(day, shared, duration_minutes, self.step_minutes):
                if slot_start == start_time:
                    continue
                slot_conflicts = detect_conflicts(
                    slot_start,
                    slot_end,
                    therapist.id,
                    client.id,
                    existing_sessions,
                    therapist,
                    client,
                    exclude_session_id,
                )
                if slot_conflicts:
                    continue

                proximity = max(0.0, 1 - minutes_between(start_time, slot_start) / horizon_minutes)
                score = COMPATIBILITY_WEIGHT * compatibility + PROXIMITY_WEIGHT * proximity
                candidates.append(
                    Alternative(
                        start_time=slot_start,
                        end_time=slot_end,
                        score=round(min(score, 1.0), 4),
                        reason=describe_alternative(start_time, slot_start, conflicts),
                    )
                )

        return rank_alternatives(candidates, limit or self.top_k)

    async def suggest(
        self,
        start_time: datetime,
        end_time: datetime,
        therapist_id: str,
        client_id: str,
        existing_sessions: list[ExistingSession],
        therapist: Therapist,
        client: Client,
        conflicts: list[Conflict],
        exclude_session_id: Optional[str] = None,
    ) -> list[Alternative]:
        """Suggest alternatives for a conflicted request.

        Returns:
            Top-K alternatives sorted by score desc, then earliest start.
            Empty when there is nothing to resolve, or when the
            recommender times out or fails.
        """
        validate_interval(start_time, end_time)
        if therapist_id != therapist.id or client_id != client.id:
            raise SchedulingValidationError("Therapist/client ids do not match the supplied records")
        if not conflicts:
            return []

        if self.recommender is None:
            return self.find_candidates(
                start_time,
                end_time,
                therapist,
                client,
                existing_sessions,
                conflicts,
                exclude_session_id,
            )

        candidates = self.find_candidates(
            start_time,
            end_time,
            therapist,
            client,
            existing_sessions,
            conflicts,
            exclude_session_id,
            limit=self.top_k * 4,
        )
        request = AlternativeRequest(
            start_time=start_time,
            end_time=end_time,
            therapist=therapist,
            client=client,
            conflicts=conflicts,
            existing_sessions=existing_sessions,
            exclude_session_id=exclude_session_id,
        )

        try:
            ranked = await asyncio.wait_for(
                self.recommender.recommend(request, candidates),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Recommender timed out after {self.timeout_seconds}s "
                f"for therapist {therapist_id} / client {client_id}"
            )
            return []
        except Exception as e:
            logger.warning(f"Recommender failed, returning no alternatives: {e}")
            return []

        viable = [
            alternative
            for alternative in ranked
            if self._is_viable(alternative, therapist, client, existing_sessions, exclude_session_id)
        ]
        if len(viable) < len(ranked):
            logger.warning(
                f"Dropped {len(ranked) - len(viable)} conflicting alternative(s) from recommender "
                f"for therapist {therapist_id} / client {client_id}"
            )

        return rank_alternatives(viable, self.top_k)

    @staticmethod
    def _is_viable(
        alternative: Alternative,
        therapist: Therapist,
        client: Client,
        existing_sessions: list[ExistingSession],
        exclude_session_id: Optional[str],
    ) -> bool:
        """Re-check an externally ranked slot against the conflict detector."""
        try:
            conflicts = detect_conflicts(
                alternative.start_time,
                alternative.end_time,
                therapist.id,
                client.id,
                existing_sessions,
                therapist,
                client,
                exclude_session_id,
            )
        except SchedulingValidationError:
            return False
        return not conflicts
