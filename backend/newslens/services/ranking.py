"""
Ranking service - per-user ranking over a rolling window of items.

This is where the signals meet:
1. Quality composite from analysis features (user-independent)
2. Profile relevance against the user's declared interests
3. Feedback: topical preferences plus the latent taste for evidence
4. A small heuristic base term (recency, source weight, novelty)

Then, for users with declared interests, the Diversification Allocator
redistributes the final list across topic buckets.

Any failure while loading personalization inputs degrades to neutral inputs:
the worst case is an unpersonalized ranking, never an error.
"""
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from newslens.config import Settings, get_settings
from newslens.core.errors import NewsLensError
from newslens.core.utils import utcnow
from newslens.models.domain import DeliveryItem, InterestTopic, RankedCandidate, UserProfile
from newslens.services.diversification import DiversificationAllocator
from newslens.services.feedback import FeedbackVectorBuilder
from newslens.services.personalization import PersonalizationEngine
from newslens.services.store import Store

logger = structlog.get_logger(__name__)


class RankingService:
    """Orchestrates loading, scoring, sorting and diversification."""

    def __init__(
        self,
        store: Store,
        feedback: Optional[FeedbackVectorBuilder] = None,
        personalization: Optional[PersonalizationEngine] = None,
        diversification: Optional[DiversificationAllocator] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.feedback = feedback or FeedbackVectorBuilder(store)
        self.personalization = personalization or PersonalizationEngine(self.settings.ranking)
        self.diversification = diversification or DiversificationAllocator(self.settings.diversity)

    async def _load_user(self, user_id: str) -> Optional[UserProfile]:
        try:
            return await self.store.get_user(user_id)
        except SQLAlchemyError as e:
            logger.warning("rank.profile.failed", user_id=user_id, error=str(e))
            return None

    async def _load_feedback(self, user_id: str) -> tuple[dict[str, float], float]:
        try:
            return await self.feedback.build(user_id)
        except (SQLAlchemyError, NewsLensError) as e:
            logger.warning("rank.feedback.failed", user_id=user_id, error=str(e))
            return {}, 0.0

    async def rank_for_user(
        self,
        user_id: str,
        window_hours: Optional[int] = None,
        limit: Optional[int] = None,
        require_analysis: bool = False,
    ) -> list[RankedCandidate]:
        """
        Rank items published in the last `window_hours` for a user.

        Returns at most `limit` candidates, diversified when the user has
        declared interests.
        """
        cfg = self.settings.ranking
        window_hours = window_hours or cfg.window_hours
        limit = limit or cfg.default_limit

        user = await self._load_user(user_id)
        profile_topics: list[InterestTopic] = user.interest_topics if user else []
        preference_vector, latent = await self._load_feedback(user_id)

        since = utcnow() - timedelta(hours=window_hours)
        try:
            items = await self.store.items_in_window(
                since,
                limit=cfg.candidate_limit,
                require_analysis=require_analysis,
            )
        except SQLAlchemyError as e:
            logger.error("rank.candidates.failed", user_id=user_id, error=str(e))
            return []

        ranked = self.personalization.rank(items, profile_topics, preference_vector, latent)

        try:
            result = self.diversification.diversify(ranked, profile_topics, limit)
        except Exception as e:
            logger.exception("rank.diversify.failed", user_id=user_id, error=str(e))
            result = ranked[:limit]

        logger.info(
            "rank.completed",
            user_id=user_id,
            candidates=len(items),
            returned=len(result),
            interests=len(profile_topics),
            feedback_families=len(preference_vector),
        )
        return result

    async def build_digest(
        self,
        user_id: str,
        limit: Optional[int] = None,
        window_hours: Optional[int] = None,
    ) -> list[DeliveryItem]:
        """Compact ranked list of analysed items; empty for paused users."""
        cfg = self.settings.ranking
        user = await self._load_user(user_id)
        if user is not None and user.paused:
            logger.info("digest.skipped.paused", user_id=user_id)
            return []

        ranked = await self.rank_for_user(
            user_id,
            window_hours=window_hours or cfg.digest_window_hours,
            limit=limit or cfg.digest_limit,
            require_analysis=True,
        )
        return [DeliveryItem.from_candidate(c) for c in ranked]
