"""
Personalization Engine - combines item quality with the user's interests and
feedback into one score per candidate.

    final = wP * profile_relevance
          + wL * quality_composite
          + wF * (0.6 * feedback_topic + 0.4 * latent * (quality_composite - 0.5))
          + wB * base_term

No I/O happens here: inputs are loaded beforehand, so scoring a few hundred
candidates never suspends.
"""
from typing import Optional, Sequence

from newslens.config import RankingWeights, Settings, get_settings
from newslens.core.text import normalize_surface
from newslens.core.utils import clamp, clamp01
from newslens.models.domain import InterestTopic, Item, RankedCandidate, TopicTag
from newslens.services.scoring import base_term, heuristic_base, quality_composite

FAMILY_MATCH_FACTOR = 0.9


def profile_relevance(item_tags: Sequence[TopicTag], profile_topics: Sequence[InterestTopic]) -> float:
    """
    Weighted overlap between the item's canonical tags and declared interests.

    A profile topic matches an item tag directly (full tag score) or through
    the tag's family (0.9 x score). Each topic contributes min(weight, match)
    over a denominator of its weight; the result is capped at 1.
    """
    if not item_tags or not profile_topics:
        return 0.0

    by_tag: dict[str, float] = {}
    by_family: dict[str, float] = {}
    for t in item_tags:
        by_tag[t.tag] = max(by_tag.get(t.tag, 0.0), t.score)
        family = t.family or t.tag
        by_family[family] = max(by_family.get(family, 0.0), t.score)

    numerator = 0.0
    denominator = 0.0
    for topic in profile_topics:
        key = normalize_surface(topic.tag)
        if not key:
            continue
        match = max(by_tag.get(key, 0.0), FAMILY_MATCH_FACTOR * by_family.get(key, 0.0))
        numerator += min(topic.weight, match)
        denominator += topic.weight

    if denominator <= 0:
        return 0.0
    return min(1.0, numerator / denominator)


def feedback_relevance(item_tags: Sequence[TopicTag], preference_vector: dict[str, float]) -> float:
    """Score-weighted mean of the preference for each tag's family, in [-1, 1]."""
    if not item_tags or not preference_vector:
        return 0.0

    numerator = 0.0
    denominator = 0.0
    for t in item_tags:
        key = t.family or t.tag
        if not key or t.score <= 0:
            continue
        numerator += t.score * preference_vector.get(key, 0.0)
        denominator += t.score

    if denominator <= 0:
        return 0.0
    return clamp(numerator / denominator, -1.0, 1.0)


class PersonalizationEngine:
    """Scores and sorts candidates for one user."""

    def __init__(self, weights: Optional[RankingWeights] = None, settings: Optional[Settings] = None):
        self.weights = weights or (settings or get_settings()).ranking

    def score(
        self,
        item: Item,
        profile_topics: Sequence[InterestTopic] = (),
        preference_vector: Optional[dict[str, float]] = None,
        feedback_latent: float = 0.0,
    ) -> RankedCandidate:
        w = self.weights
        tags = item.topics

        relevance = profile_relevance(tags, profile_topics)
        quality = quality_composite(item)
        fb_topic = feedback_relevance(tags, preference_vector or {})
        fb_latent = feedback_latent * (quality - 0.5)
        fb_adjustment = w.feedback_topic_share * fb_topic + (1.0 - w.feedback_topic_share) * fb_latent
        base = heuristic_base(item)
        base_component = base_term(item, w.enriched_base_scale)

        final = (
            w.profile_weight * relevance
            + w.quality_weight * quality
            + w.feedback_weight * fb_adjustment
            + w.base_weight * base_component
        )

        return RankedCandidate(
            item=item,
            profile_relevance=relevance,
            quality_composite=quality,
            feedback_topic=fb_topic,
            feedback_latent_term=fb_latent,
            feedback_adjustment=fb_adjustment,
            base=clamp01(base),
            base_term=base_component,
            final_score=final,
        )

    def rank(
        self,
        items: Sequence[Item],
        profile_topics: Sequence[InterestTopic] = (),
        preference_vector: Optional[dict[str, float]] = None,
        feedback_latent: float = 0.0,
    ) -> list[RankedCandidate]:
        """Score every item and sort by final score, newest first on ties."""
        scored = [
            self.score(item, profile_topics, preference_vector, feedback_latent)
            for item in items
        ]
        return sort_candidates(scored)


def sort_candidates(candidates: Sequence[RankedCandidate]) -> list[RankedCandidate]:
    return sorted(
        candidates,
        key=lambda c: (c.final_score, c.item.published_at),
        reverse=True,
    )
