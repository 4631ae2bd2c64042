"""Tests for Alternative-Time Suggester."""

import asyncio
from datetime import timedelta

import pytest
from unittest.mock import AsyncMock

from app.core.scheduling.alternatives import AlternativeSuggester, describe_alternative
from app.core.scheduling.conflicts import detect_conflicts
from app.core.scheduling.models import (
    Alternative,
    Conflict,
    ConflictType,
    SchedulingValidationError,
)
from app.core.scheduling.recommender import AlternativeRecommender, AlternativeRequest
from app.core.scheduling.scoring import CompatibilityScorer
from tests.factories import make_client, make_session, make_therapist, utc


class SlowRecommender(AlternativeRecommender):
    """Recommender that never answers in time."""

    async def recommend(self, request, candidates):
        await asyncio.sleep(5)
        return candidates


class TestDescribeAlternative:
    """Test reason strings."""

    def test_same_day_later(self):
        reason = describe_alternative(
            utc("2025-05-19T13:30"),
            utc("2025-05-19T14:00"),
            [Conflict(ConflictType.SESSION_OVERLAP, "")],
        )

        assert reason == "Avoids session overlap conflicts; same day, 30 minutes later"

    def test_other_day(self):
        reason = describe_alternative(
            utc("2025-05-19T13:00"),
            utc("2025-05-21T10:00"),
            [
                Conflict(ConflictType.THERAPIST_UNAVAILABLE, ""),
                Conflict(ConflictType.SESSION_OVERLAP, ""),
            ],
        )

        assert reason == (
            "Avoids therapist availability and session overlap conflicts; "
            "2 days later at 10:00 AM"
        )


class TestAlternativeSuggester:
    """Test AlternativeSuggester.

    The therapist has a session 13:00-14:00 on Monday 2025-05-19 and
    the client asks for 13:30-14:30.
    """

    @pytest.fixture
    def therapist(self):
        return make_therapist()

    @pytest.fixture
    def client(self):
        return make_client()

    @pytest.fixture
    def sessions(self):
        return [make_session()]

    @pytest.fixture
    def conflicts(self, therapist, client, sessions):
        return detect_conflicts(
            utc("2025-05-19T13:30"),
            utc("2025-05-19T14:30"),
            therapist.id,
            client.id,
            sessions,
            therapist,
            client,
        )

    def make_suggester(self, recommender=None, timeout=0.05):
        return AlternativeSuggester(
            scorer=CompatibilityScorer(),
            recommender=recommender,
            search_days=1,
            step_minutes=30,
            top_k=3,
            timeout_seconds=timeout,
        )

    async def suggest(self, suggester, therapist, client, sessions, conflicts):
        return await suggester.suggest(
            utc("2025-05-19T13:30"),
            utc("2025-05-19T14:30"),
            therapist.id,
            client.id,
            sessions,
            therapist,
            client,
            conflicts,
        )

    def test_find_candidates_ranked_by_proximity(self, therapist, client, sessions, conflicts):
        """Test closest conflict-free slots come first."""
        suggester = self.make_suggester()

        candidates = suggester.find_candidates(
            utc("2025-05-19T13:30"),
            utc("2025-05-19T14:30"),
            therapist,
            client,
            sessions,
            conflicts,
        )

        assert [c.start_time for c in candidates] == [
            utc("2025-05-19T14:00"),
            utc("2025-05-19T14:30"),
            utc("2025-05-19T12:00"),
        ]
        assert candidates[0].reason == "Avoids session overlap conflicts; same day, 30 minutes later"
        scores = [c.score for c in candidates]
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= s <= 1.0 for s in scores)

    def test_candidates_are_conflict_free(self, therapist, client, sessions, conflicts):
        """Test every suggested slot passes the conflict detector."""
        suggester = self.make_suggester()

        candidates = suggester.find_candidates(
            utc("2025-05-19T13:30"),
            utc("2025-05-19T14:30"),
            therapist,
            client,
            sessions,
            conflicts,
            limit=50,
        )

        assert candidates
        for candidate in candidates:
            assert candidate.end_time - candidate.start_time == utc("2025-05-19T14:30") - utc("2025-05-19T13:30")
            assert detect_conflicts(
                candidate.start_time,
                candidate.end_time,
                therapist.id,
                client.id,
                sessions,
                therapist,
                client,
            ) == []

    def test_partial_minutes_round_up(self, therapist, client, sessions, conflicts):
        """Test candidates are never shorter than a request with seconds."""
        suggester = self.make_suggester()

        candidates = suggester.find_candidates(
            utc("2025-05-19T13:30"),
            utc("2025-05-19T14:30:30"),
            therapist,
            client,
            sessions,
            conflicts,
        )

        assert candidates
        for candidate in candidates:
            assert candidate.end_time - candidate.start_time == timedelta(minutes=61)

    @pytest.mark.asyncio
    async def test_local_ranking_without_recommender(self, therapist, client, sessions, conflicts):
        suggester = self.make_suggester()

        alternatives = await self.suggest(suggester, therapist, client, sessions, conflicts)

        assert len(alternatives) == 3
        assert alternatives[0].start_time == utc("2025-05-19T14:00")

    @pytest.mark.asyncio
    async def test_no_conflicts_returns_empty(self, therapist, client, sessions):
        """Test nothing to resolve means no suggestions."""
        recommender = AsyncMock(spec=AlternativeRecommender)
        suggester = self.make_suggester(recommender)

        alternatives = await self.suggest(suggester, therapist, client, sessions, [])

        assert alternatives == []
        recommender.recommend.assert_not_called()

    @pytest.mark.asyncio
    async def test_recommender_ranking_used(self, therapist, client, sessions, conflicts):
        """Test recommender output is re-ranked and truncated."""
        def alt(hour, score):
            return Alternative(
                utc(f"2025-05-20T{hour:02d}:00"),
                utc(f"2025-05-20T{hour + 1:02d}:00"),
                score,
                "From recommender",
            )

        recommender = AsyncMock(spec=AlternativeRecommender)
        recommender.recommend.return_value = [alt(10, 0.4), alt(11, 0.9), alt(12, 0.6), alt(13, 0.1)]
        suggester = self.make_suggester(recommender)

        alternatives = await self.suggest(suggester, therapist, client, sessions, conflicts)

        assert [a.score for a in alternatives] == [0.9, 0.6, 0.4]
        request, candidates = recommender.recommend.call_args.args
        assert isinstance(request, AlternativeRequest)
        assert request.conflicts == conflicts
        assert 0 < len(candidates) <= 12

    @pytest.mark.asyncio
    async def test_conflicting_recommender_slots_dropped(self, therapist, client, sessions, conflicts):
        """Test slots from the recommender are re-checked for conflicts."""
        requested = Alternative(
            utc("2025-05-19T13:30"), utc("2025-05-19T14:30"), 0.99, "Keep the requested time"
        )
        weekend = Alternative(
            utc("2025-05-24T10:00"), utc("2025-05-24T11:00"), 0.95, "Saturday morning"
        )
        inverted = Alternative(
            utc("2025-05-20T11:00"), utc("2025-05-20T10:00"), 0.9, "Malformed"
        )
        after = Alternative(
            utc("2025-05-19T14:00"), utc("2025-05-19T15:00"), 0.8, "Right after the existing session"
        )
        recommender = AsyncMock(spec=AlternativeRecommender)
        recommender.recommend.return_value = [requested, weekend, inverted, after]
        suggester = self.make_suggester(recommender)

        alternatives = await self.suggest(suggester, therapist, client, sessions, conflicts)

        assert alternatives == [after]
        for alternative in alternatives:
            assert detect_conflicts(
                alternative.start_time,
                alternative.end_time,
                therapist.id,
                client.id,
                sessions,
                therapist,
                client,
            ) == []

    @pytest.mark.asyncio
    async def test_recommender_timeout_returns_empty(self, therapist, client, sessions, conflicts):
        """Test a slow recommender never blocks past the timeout."""
        suggester = self.make_suggester(SlowRecommender(), timeout=0.05)

        alternatives = await asyncio.wait_for(
            self.suggest(suggester, therapist, client, sessions, conflicts),
            timeout=2,
        )

        assert alternatives == []

    @pytest.mark.asyncio
    async def test_recommender_error_returns_empty(self, therapist, client, sessions, conflicts):
        recommender = AsyncMock(spec=AlternativeRecommender)
        recommender.recommend.side_effect = RuntimeError("recommender down")
        suggester = self.make_suggester(recommender)

        alternatives = await self.suggest(suggester, therapist, client, sessions, conflicts)

        assert alternatives == []

    @pytest.mark.asyncio
    async def test_id_mismatch_rejected(self, therapist, client, sessions, conflicts):
        suggester = self.make_suggester()

        with pytest.raises(SchedulingValidationError):
            await suggester.suggest(
                utc("2025-05-19T13:30"),
                utc("2025-05-19T14:30"),
                "someone-else",
                client.id,
                sessions,
                therapist,
                client,
                conflicts,
            )

    @pytest.mark.asyncio
    async def test_invalid_interval_rejected(self, therapist, client, sessions, conflicts):
        suggester = self.make_suggester()

        with pytest.raises(SchedulingValidationError):
            await suggester.suggest(
                utc("2025-05-19T14:30"),
                utc("2025-05-19T13:30"),
                therapist.id,
                client.id,
                sessions,
                therapist,
                client,
                conflicts,
            )
