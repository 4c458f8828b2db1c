"""
Tests for the diversification allocator: bucketing, quotas and selection.
"""

from collections import Counter

import pytest

from newslens.config import DiversitySettings
from newslens.models.domain import InterestTopic, RankedCandidate
from newslens.services.diversification import (
    MISC_BUCKET,
    DiversificationAllocator,
    Quotas,
    TopicBuckets,
)

from conftest import make_item


def candidate(item_id: str, score: float, topics=None, family=None) -> RankedCandidate:
    return RankedCandidate(item=make_item(item_id, topics=topics or [], family=family), final_score=score)


def pool(prefix: str, tag: str, n: int, start: float = 1.0) -> list[RankedCandidate]:
    return [candidate(f"{prefix}{i}", start - i * 0.01, [(tag, 0.9)]) for i in range(n)]


def profile(*pairs) -> list[InterestTopic]:
    return [InterestTopic(tag=tag, weight=weight) for tag, weight in pairs]


@pytest.fixture
def allocator() -> DiversificationAllocator:
    return DiversificationAllocator(DiversitySettings())


class TestBucketing:
    def test_select_topics_top_k_stable(self, allocator):
        topics = allocator.select_topics(
            profile(("a1", 0.5), ("a2", 0.9), ("a3", 0.5), ("a4", 0.1), ("a5", 0.5), ("A2", 0.3))
        )
        assert topics == [("a2", 0.9), ("a1", 0.5), ("a3", 0.5), ("a5", 0.5)]

    def test_match_strength(self, allocator):
        c = candidate("x", 1.0, [("american football", 0.5), ("nfl", 0.8)], {"nfl": "sport"})
        tags = c.item.topics
        assert allocator.match_strength(tags, "sport", 0.5) == pytest.approx(0.4)
        assert allocator.match_strength(tags, "football", 1.0) == pytest.approx(0.6 * 0.5)
        assert allocator.match_strength(tags, "cooking", 1.0) == 0.0

    def test_leading_topic_ties_keep_earlier(self, allocator):
        c = candidate("x", 1.0, [("football", 0.5), ("space", 0.5)])
        key, _ = allocator.leading_topic(c, [("space", 0.6), ("football", 0.6)])
        assert key == "space"

    def test_weak_matches_go_to_misc(self, allocator):
        weak = candidate("weak", 1.0, [("football", 0.1)])
        strong = candidate("strong", 0.5, [("football", 0.9)])
        buckets = allocator.bucket([weak, strong], [("football", 0.4)])

        assert [c.item.id for c in buckets.by_topic["football"]] == ["strong"]
        assert [c.item.id for c in buckets.misc] == ["weak"]
        assert weak.bucket == MISC_BUCKET
        assert strong.bucket == "football"


class TestQuotas:
    def _buckets(self, available: dict[str, int], weights: dict[str, float], misc: int = 0) -> TopicBuckets:
        return TopicBuckets(
            topics=list(weights.items()),
            by_topic={key: pool(key, key, n) for key, n in available.items()},
            misc=pool("m", "misc-topic", misc),
        )

    def test_max_share_cap_sends_rest_to_misc(self, allocator):
        buckets = self._buckets({"a": 10, "b": 3}, {"a": 0.6, "b": 0.4}, misc=5)
        quotas = allocator.compute_quotas(buckets, 8)
        assert quotas == Quotas(per_topic={"a": 4, "b": 3}, misc=1)
        assert quotas.total == 8

    def test_sum_matches_available_when_short(self, allocator):
        buckets = self._buckets({"a": 2, "b": 1}, {"a": 0.5, "b": 0.5}, misc=1)
        quotas = allocator.compute_quotas(buckets, 10)
        assert quotas.total == 4

    @pytest.mark.parametrize("limit", [2, 3, 5, 8, 10, 20])
    def test_sum_is_min_of_limit_and_available(self, allocator, limit):
        buckets = self._buckets(
            {"a": 6, "b": 4, "c": 2}, {"a": 0.7, "b": 0.2, "c": 0.1}, misc=20
        )
        quotas = allocator.compute_quotas(buckets, limit)
        assert quotas.total == min(limit, 6 + 4 + 2 + 20)
        assert all(q >= 0 for q in quotas.per_topic.values())

    def test_overflow_decrements_first_largest(self, allocator):
        buckets = self._buckets({"x": 5, "y": 5, "z": 5}, {"x": 1.0, "y": 1.0, "z": 1.0})
        quotas = allocator.compute_quotas(buckets, 2)
        assert quotas.per_topic == {"x": 0, "y": 1, "z": 1}

    def test_growth_ties_go_to_first_topic(self, allocator):
        buckets = self._buckets({"x": 5, "y": 5, "z": 5}, {"x": 1.0, "y": 1.0, "z": 1.0})
        quotas = allocator.compute_quotas(buckets, 4)
        assert quotas.per_topic == {"x": 2, "y": 1, "z": 1}

    def test_empty_buckets_get_no_quota(self, allocator):
        buckets = self._buckets({"a": 3, "b": 0}, {"a": 0.5, "b": 0.5}, misc=3)
        quotas = allocator.compute_quotas(buckets, 4)
        assert "b" not in quotas.per_topic
        assert quotas.per_topic["a"] == 2
        assert quotas.misc == 2

    def test_only_misc(self, allocator):
        buckets = self._buckets({"a": 0}, {"a": 1.0}, misc=3)
        assert allocator.compute_quotas(buckets, 5) == Quotas(per_topic={}, misc=3)


class TestDiversify:
    def test_quota_example(self, allocator):
        candidates = pool("f", "football", 10) + pool("s", "space", 3, start=0.5) + pool("m", "cooking", 2, start=0.2)
        picked = allocator.diversify(candidates, profile(("football", 0.6), ("space", 0.4)), 8)

        assert len(picked) == 8
        counts = Counter(c.bucket for c in picked)
        assert counts == {"football": 4, "space": 3, MISC_BUCKET: 1}
        # round robin: football, space, misc, football, space, football, space, football
        assert [c.item.id for c in picked[:3]] == ["f0", "s0", "m0"]
        assert len({c.item.id for c in picked}) == 8

    def test_backfill_beyond_caps(self, allocator):
        candidates = pool("f", "football", 10)
        picked = allocator.diversify(candidates, profile(("football", 1.0)), 6)
        assert [c.item.id for c in picked] == [f"f{i}" for i in range(6)]

    def test_backfill_is_score_sorted(self, allocator):
        candidates = pool("f", "football", 2, start=0.3) + pool("m", "cooking", 5, start=0.9)
        picked = allocator.diversify(candidates, profile(("football", 1.0)), 4)
        ids = [c.item.id for c in picked]
        assert set(ids[:2]) == {"f0", "m0"}
        assert len(ids) == 4
        assert len(set(ids)) == 4

    def test_fewer_candidates_than_limit(self, allocator):
        candidates = pool("f", "football", 2) + pool("m", "cooking", 1)
        picked = allocator.diversify(candidates, profile(("football", 1.0)), 10)
        assert len(picked) == 3

    def test_bypass_without_interests(self, allocator):
        candidates = pool("f", "football", 5)
        assert allocator.diversify(candidates, [], 3) == candidates[:3]

    def test_bypass_when_limit_is_one(self, allocator):
        candidates = pool("m", "cooking", 3) + pool("f", "football", 3)
        assert allocator.diversify(candidates, profile(("football", 1.0)), 1) == candidates[:1]

    def test_bypass_when_disabled(self):
        allocator = DiversificationAllocator(DiversitySettings(enabled=False))
        candidates = pool("f", "football", 6)
        assert allocator.diversify(candidates, profile(("football", 1.0)), 4) == candidates[:4]

    def test_profile_topic_named_misc(self, allocator):
        candidates = pool("t", "misc", 3) + pool("o", "cooking", 3, start=0.5)
        picked = allocator.diversify(candidates, profile(("misc", 1.0)), 4)
        assert len(picked) == 4
        assert len({c.item.id for c in picked}) == 4
