"""
Feedback Vector Builder.

Turns a user's likes and dislikes into two signals:

- preference vector: topic family -> signed weight in [-1, 1]
- feedback latent: how much more the user likes high-evidence items than the
  items they dislike, in [-1, 1]
"""
from typing import Iterable

import structlog

from newslens.models.domain import POSITIVE_FEATURES, Item
from newslens.services.store import Store

logger = structlog.get_logger(__name__)


def _sign(vote: int) -> int:
    return (vote > 0) - (vote < 0)


def build_preference_vector(votes: Iterable[tuple[int, Item]]) -> dict[str, float]:
    """
    Accumulate sign(vote) * tag_score per family, then scale by the largest
    absolute value so the strongest family sits at +-1.
    """
    vector: dict[str, float] = {}
    for vote, item in votes:
        sign = _sign(vote)
        if not sign:
            continue
        for tag in item.topics:
            key = tag.family or tag.tag
            if not key or tag.score <= 0:
                continue
            vector[key] = vector.get(key, 0.0) + sign * tag.score

    max_abs = max((abs(v) for v in vector.values()), default=0.0)
    if max_abs == 0:
        return {}
    return {key: value / max_abs for key, value in vector.items()}


def compute_feedback_latent(votes: Iterable[tuple[int, Item]]) -> float:
    """Positive-signal mean over liked items minus the same over disliked items."""
    liked: list[Item] = []
    disliked: list[Item] = []
    for vote, item in votes:
        if vote > 0:
            liked.append(item)
        elif vote < 0:
            disliked.append(item)
    return _group_signal(liked) - _group_signal(disliked)


def _group_signal(items: list[Item]) -> float:
    """Per-feature averages over present values, then the mean of the six."""
    if not items:
        return 0.0
    total = 0.0
    for name in POSITIVE_FEATURES:
        values = [getattr(i.analysis, name) for i in items if i.analysis is not None]
        present = [v for v in values if v is not None]
        total += sum(present) / len(present) if present else 0.0
    return total / len(POSITIVE_FEATURES)


class FeedbackVectorBuilder:
    """Loads a user's votes from the store and derives feedback signals."""

    def __init__(self, store: Store):
        self.store = store

    async def build_preference_vector(self, user_id: str) -> dict[str, float]:
        votes = await self.store.feedback_with_items(user_id)
        return build_preference_vector(votes)

    async def build_feedback_latent(self, user_id: str) -> float:
        votes = await self.store.feedback_with_items(user_id)
        return compute_feedback_latent(votes)

    async def build(self, user_id: str) -> tuple[dict[str, float], float]:
        """Both signals from a single store read."""
        votes = await self.store.feedback_with_items(user_id)
        vector = build_preference_vector(votes)
        latent = compute_feedback_latent(votes)
        logger.debug("feedback.built", user_id=user_id, votes=len(votes), families=len(vector), latent=round(latent, 3))
        return vector, latent
