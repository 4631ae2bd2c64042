"""
Alternative recommender collaborator.

The suggester can hand its locally found candidates to an external
recommender for richer ranking. The recommender runs separately and
exposes a REST API:
- POST /suggest-alternative-times - Rank alternatives for a conflicted request
- GET /health - Liveness
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import httpx

from app.config import get_settings
from app.core.scheduling.models import (
    Alternative,
    Client,
    Conflict,
    ExistingSession,
    Therapist,
    format_timestamp,
)

logger = logging.getLogger(__name__)


@dataclass
class AlternativeRequest:
    """Conflicted request handed to a recommender."""

    start_time: datetime
    end_time: datetime
    therapist: Therapist
    client: Client
    conflicts: list[Conflict]
    existing_sessions: list[ExistingSession] = field(default_factory=list)
    exclude_session_id: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to the recommender wire format."""
        return {
            "startTime": format_timestamp(self.start_time),
            "endTime": format_timestamp(self.end_time),
            "therapistId": self.therapist.id,
            "clientId": self.client.id,
            "therapist": self.therapist.to_dict(),
            "client": self.client.to_dict(),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "existingSessions": [s.to_dict() for s in self.existing_sessions],
            "excludeSessionId": self.exclude_session_id,
        }


class AlternativeRecommender(ABC):
    """
    Capability interface for external alternative ranking.

    Implementations receive the request and the locally ranked
    candidates and return their own ranking. Callers bound every call
    with a timeout and treat errors as "no suggestions".
    """

    @abstractmethod
    async def recommend(
        self,
        request: AlternativeRequest,
        candidates: list[Alternative],
    ) -> list[Alternative]:
        """Return ranked alternatives for a conflicted request."""


class HttpAlternativeRecommender(AlternativeRecommender):
    """HTTP client for the recommender service."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        """Initialize client.

        Args:
            base_url: Recommender base URL (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
        """
        settings = get_settings()
        self.base_url = base_url or settings.recommender_url or ""
        self.timeout = timeout if timeout is not None else settings.recommender_timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def recommend(
        self,
        request: AlternativeRequest,
        candidates: list[Alternative],
    ) -> list[Alternative]:
        """Ask the recommender to rank alternatives.

        Args:
            request: Conflicted request
            candidates: Locally found conflict-free candidates

        Returns:
            Ranked alternatives, empty on HTTP errors
        """
        client = await self._get_client()

        payload = request.to_dict()
        payload["candidates"] = [c.to_dict() for c in candidates]

        try:
            response = await client.post("/suggest-alternative-times", json=payload)
            response.raise_for_status()

            data = response.json()
            if isinstance(data, list):
                items = data
            else:
                items = data.get("alternatives", data.get("items", []))
            return [Alternative.from_dict(item) for item in items]

        except httpx.HTTPError as e:
            logger.error(f"Failed to get alternatives from recommender: {e}")
            return []

    async def check_health(self) -> bool:
        """Check that the recommender answers its health endpoint."""
        client = await self._get_client()

        try:
            response = await client.get("/health")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Recommender health check failed: {e}")
            return False


# Singleton
_recommender: Optional[HttpAlternativeRecommender] = None


def get_recommender() -> Optional[HttpAlternativeRecommender]:
    """Get singleton recommender, or None when no URL is configured."""
    global _recommender
    if not get_settings().recommender_enabled:
        return None
    if _recommender is None:
        _recommender = HttpAlternativeRecommender()
    return _recommender


async def close_recommender() -> None:
    """Close the singleton recommender's HTTP client."""
    global _recommender
    if _recommender is not None:
        await _recommender.close()
        _recommender = None
