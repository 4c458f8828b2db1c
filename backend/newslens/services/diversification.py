"""
Diversification Allocator - spreads the final list across the user's interests.

1. Bucketing: each candidate joins the bucket of its best-matching top-K
   profile topic, or the misc bucket when nothing matches well enough.
2. Quotas: slots per topic proportional to declared weight, clamped to
   [min_per_topic, max_share * L] and to what each bucket holds. Slots the
   topics cannot fill go to misc.
3. Selection: round-robin over topics (misc last) while quotas remain, then
   backfill from the best remaining candidates.
"""
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

import structlog

from newslens.config import DiversitySettings, Settings, get_settings
from newslens.core.text import normalize_surface
from newslens.models.domain import InterestTopic, RankedCandidate, TopicTag
from newslens.services.personalization import sort_candidates

logger = structlog.get_logger(__name__)

MISC_BUCKET = "misc"


@dataclass
class TopicBuckets:
    """Candidates grouped by leading profile topic; `topics` keeps bucket order."""

    topics: list[tuple[str, float]]
    by_topic: dict[str, list[RankedCandidate]]
    misc: list[RankedCandidate] = field(default_factory=list)

    def available(self, key: str) -> int:
        return len(self.by_topic.get(key, []))


@dataclass
class Quotas:
    per_topic: dict[str, int]
    misc: int = 0

    @property
    def total(self) -> int:
        return sum(self.per_topic.values()) + self.misc


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


class DiversificationAllocator:
    """Re-selects a score-sorted candidate list under per-topic quotas."""

    def __init__(self, settings: Optional[DiversitySettings] = None, app_settings: Optional[Settings] = None):
        self.settings = settings or (app_settings or get_settings()).diversity

    # =========================================================================
    # Topics & bucketing
    # =========================================================================

    def select_topics(self, profile_topics: Sequence[InterestTopic]) -> list[tuple[str, float]]:
        """Top-K (key, weight) by declared weight; equal weights keep declared order."""
        seen: set[str] = set()
        topics: list[tuple[str, float]] = []
        for topic in profile_topics:
            key = normalize_surface(topic.tag)
            if not key or key in seen:
                continue
            seen.add(key)
            topics.append((key, topic.weight))

        # sorted() is stable, so declared order breaks ties
        topics = sorted(topics, key=lambda t: t[1], reverse=True)
        return topics[: self.settings.top_k]

    def match_strength(self, tags: Sequence[TopicTag], key: str, weight: float) -> float:
        """
        Best match of one profile topic against an item's tags:
        exact tag or family match scores score * weight, substring containment
        either way scores 0.6 * score * weight.
        """
        best = 0.0
        for tag in tags:
            if not tag.tag:
                continue
            if tag.tag == key or tag.family == key:
                best = max(best, tag.score * weight)
            elif key in tag.tag or tag.tag in key:
                best = max(best, self.settings.substring_match_factor * tag.score * weight)
        return best

    def leading_topic(
        self,
        candidate: RankedCandidate,
        topics: Sequence[tuple[str, float]],
    ) -> tuple[Optional[str], float]:
        """Profile topic with the strongest match; ties keep the earlier topic."""
        best_key: Optional[str] = None
        best = 0.0
        for key, weight in topics:
            strength = self.match_strength(candidate.item.topics, key, weight)
            if strength > best:
                best_key, best = key, strength
        return best_key, best

    def bucket(
        self,
        candidates: Sequence[RankedCandidate],
        topics: Sequence[tuple[str, float]],
    ) -> TopicBuckets:
        by_topic: dict[str, list[RankedCandidate]] = {key: [] for key, _ in topics}
        misc: list[RankedCandidate] = []

        for candidate in candidates:
            key, strength = self.leading_topic(candidate, topics)
            if key is not None and strength >= self.settings.min_assign_score:
                candidate.bucket = key
                by_topic[key].append(candidate)
            else:
                candidate.bucket = MISC_BUCKET
                misc.append(candidate)

        return TopicBuckets(
            topics=list(topics),
            by_topic={key: sort_candidates(bucket) for key, bucket in by_topic.items()},
            misc=sort_candidates(misc),
        )

    # =========================================================================
    # Quotas
    # =========================================================================

    def compute_quotas(self, buckets: TopicBuckets, limit: int) -> Quotas:
        """
        Slots per non-empty topic bucket.

        Sums to min(limit, candidates available) unless the max-share caps and
        an empty misc bucket leave slots unassigned; selection backfills those.
        """
        active = [(key, weight) for key, weight in buckets.topics if buckets.available(key) > 0]
        if not active:
            return Quotas(per_topic={}, misc=min(limit, len(buckets.misc)))

        total_weight = sum(weight for _, weight in active)
        if total_weight > 0:
            weights = dict(active)
        else:
            weights = {key: 1.0 for key, _ in active}
            total_weight = float(len(active))

        max_cap = max(1, math.floor(self.settings.max_share * limit))

        quotas: dict[str, int] = {}
        for key, _ in active:
            available = buckets.available(key)
            low = min(available, self.settings.min_per_topic)
            high = min(available, max_cap)
            share = _round_half_up(weights[key] / total_weight * limit)
            quotas[key] = max(low, min(share, high))

        while sum(quotas.values()) > limit:
            largest = max(quotas.values())
            if largest <= 0:
                break
            # Ties go to the first topic in order
            key = next(k for k, q in quotas.items() if q == largest)
            quotas[key] -= 1

        while sum(quotas.values()) < limit:
            headroom = [
                key for key, _ in active
                if quotas[key] < min(buckets.available(key), max_cap)
            ]
            if not headroom:
                break
            key = max(headroom, key=lambda k: weights[k] / (quotas[k] + 1))
            quotas[key] += 1

        shortfall = limit - sum(quotas.values())
        misc = min(max(shortfall, 0), len(buckets.misc))
        return Quotas(per_topic=quotas, misc=misc)

    # =========================================================================
    # Selection
    # =========================================================================

    def select(self, buckets: TopicBuckets, quotas: Quotas, limit: int) -> list[RankedCandidate]:
        # misc is keyed by None so a profile topic named "misc" cannot collide
        order: list[tuple[Optional[str], list[RankedCandidate]]] = [
            (key, buckets.by_topic[key]) for key, _ in buckets.topics if key in quotas.per_topic
        ]
        order.append((None, buckets.misc))

        remaining: dict[Optional[str], int] = dict(quotas.per_topic)
        remaining[None] = quotas.misc
        positions = {key: 0 for key, _ in order}

        picked: list[RankedCandidate] = []
        used: set[str] = set()

        while len(picked) < limit:
            progressed = False
            for key, bucket in order:
                if remaining.get(key, 0) <= 0:
                    continue
                i = positions[key]
                while i < len(bucket) and bucket[i].item.id in used:
                    i += 1
                positions[key] = i
                if i >= len(bucket):
                    continue
                candidate = bucket[i]
                picked.append(candidate)
                used.add(candidate.item.id)
                remaining[key] -= 1
                positions[key] = i + 1
                progressed = True
                if len(picked) >= limit:
                    break
            if not progressed:
                break

        if len(picked) < limit:
            rest = [
                c
                for _, bucket in order
                for c in bucket
                if c.item.id not in used
            ]
            for candidate in sort_candidates(rest):
                picked.append(candidate)
                used.add(candidate.item.id)
                if len(picked) >= limit:
                    break

        return picked[:limit]

    def diversify(
        self,
        candidates: Sequence[RankedCandidate],
        profile_topics: Sequence[InterestTopic],
        limit: int,
    ) -> list[RankedCandidate]:
        """
        Final ordered selection of at most `limit` candidates.

        Returns the plain top-`limit` when diversification is disabled, the
        user has no interests, or `limit` <= 1.
        """
        if not self.settings.enabled or not profile_topics or limit <= 1:
            return list(candidates[:limit])

        topics = self.select_topics(profile_topics)
        if not topics:
            return list(candidates[:limit])

        buckets = self.bucket(candidates, topics)
        quotas = self.compute_quotas(buckets, limit)
        picked = self.select(buckets, quotas, limit)

        logger.debug(
            "rank.diversified",
            limit=limit,
            buckets={**{k: len(v) for k, v in buckets.by_topic.items()}, MISC_BUCKET: len(buckets.misc)},
            quotas={**quotas.per_topic, MISC_BUCKET: quotas.misc},
            picked=len(picked),
        )
        return picked
