"""
Tests for the ranking orchestration and the interest-profile service.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from newslens.core.errors import NotFoundError, TransientExternalError
from newslens.core.vocabulary import SeedTopic
from newslens.models.domain import FeedbackRecord, InterestProfile, InterestTopic
from newslens.services.profiles import ProfileService
from newslens.services.ranking import RankingService

from conftest import make_item


async def seed_items(store):
    for i in range(6):
        await store.put_item(
            make_item(f"f{i}", topics=[("football", 0.9)], family={"football": "sport"},
                      evidence_strength=0.6, hours_ago=1 + i)
        )
    for i in range(3):
        await store.put_item(
            make_item(f"s{i}", topics=[("space", 0.9)], family={"space": "science"},
                      evidence_strength=0.5, hours_ago=1 + i)
        )
    await store.put_item(make_item("bare", analysed=False, hours_ago=0.5))
    await store.put_item(make_item("stale", topics=[("football", 0.9)], evidence_strength=0.9, hours_ago=100))


class TestRankingService:
    @pytest.mark.asyncio
    async def test_unpersonalized_ranking(self, store, settings):
        await seed_items(store)
        ranking = RankingService(store, settings=settings)

        ranked = await ranking.rank_for_user("nobody", limit=5)
        assert len(ranked) == 5
        scores = [c.final_score for c in ranked]
        assert scores == sorted(scores, reverse=True)
        assert "stale" not in {c.item.id for c in ranked}

    @pytest.mark.asyncio
    async def test_diversified_for_declared_interests(self, store, settings):
        await seed_items(store)
        await store.set_interest_profile(
            "u",
            InterestProfile(topics=[InterestTopic(tag="football", weight=0.6), InterestTopic(tag="space", weight=0.4)]),
        )
        ranking = RankingService(store, settings=settings)

        ranked = await ranking.rank_for_user("u", limit=6)
        buckets = [c.bucket for c in ranked]
        assert buckets.count("football") == 3
        assert buckets.count("space") == 3
        assert "misc" not in buckets

    @pytest.mark.asyncio
    async def test_feedback_shifts_ranking(self, store, settings):
        await seed_items(store)
        await store.upsert_feedback(FeedbackRecord(user_id="u", item_id="s0", vote=1))
        await store.upsert_feedback(FeedbackRecord(user_id="u", item_id="f0", vote=-1))
        ranking = RankingService(store, settings=settings)

        ranked = await ranking.rank_for_user("u", limit=3)
        assert ranked[0].item.topics[0].tag == "space"
        assert ranked[0].feedback_topic > 0

    @pytest.mark.asyncio
    async def test_require_analysis(self, store, settings):
        await seed_items(store)
        ranking = RankingService(store, settings=settings)
        ranked = await ranking.rank_for_user("u", limit=20, require_analysis=True)
        assert "bare" not in {c.item.id for c in ranked}
        assert len(ranked) == 9

    @pytest.mark.asyncio
    async def test_feedback_failure_degrades(self, store, settings):
        await seed_items(store)
        feedback = MagicMock()
        feedback.build = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("locked")))
        ranking = RankingService(store, feedback=feedback, settings=settings)

        ranked = await ranking.rank_for_user("u", limit=4)
        assert len(ranked) == 4
        assert all(c.feedback_adjustment == 0 for c in ranked)

    @pytest.mark.asyncio
    async def test_candidate_load_failure_returns_empty(self, store, settings):
        await seed_items(store)
        ranking = RankingService(store, settings=settings)
        locked = OperationalError("SELECT", {}, Exception("database is locked"))

        with patch.object(store, "items_in_window", AsyncMock(side_effect=locked)):
            assert await ranking.rank_for_user("u", limit=5) == []
            assert await ranking.build_digest("u") == []

    @pytest.mark.asyncio
    async def test_diversification_failure_falls_back_to_top_n(self, store, settings):
        await seed_items(store)
        await store.set_interest_profile("u", InterestProfile(topics=[InterestTopic(tag="football")]))
        diversification = MagicMock()
        diversification.diversify = MagicMock(side_effect=RuntimeError("boom"))
        ranking = RankingService(store, diversification=diversification, settings=settings)

        ranked = await ranking.rank_for_user("u", limit=3)
        assert len(ranked) == 3

    @pytest.mark.asyncio
    async def test_digest(self, store, settings):
        await seed_items(store)
        ranking = RankingService(store, settings=settings)

        digest = await ranking.build_digest("u", limit=4)
        assert len(digest) == 4
        assert all(d.item_id != "bare" for d in digest)
        assert digest[0].url.startswith("https://")

        await store.set_paused("u", True)
        assert await ranking.build_digest("u") == []


class TestProfileService:
    SEEDS = (
        SeedTopic("sport"),
        SeedTopic("football", "sport", aliases=("футбол", "soccer")),
    )

    @pytest.mark.asyncio
    async def test_profile_tags_are_canonicalized_and_merged(self, store, canonicalizer):
        await canonicalizer.seed_vocabulary(self.SEEDS)
        service = ProfileService(store, canonicalizer)

        profile = InterestProfile(
            topics=[
                InterestTopic(tag="Футбол", weight=0.5, synonyms=["фут"]),
                InterestTopic(tag="soccer", weight=0.9, synonyms=["epl"]),
            ]
        )
        stored = await service.set_interest_profile("u", profile)

        assert len(stored.topics) == 1
        topic = stored.topics[0]
        assert topic.tag == "football"
        assert topic.family == "sport"
        assert topic.weight == 0.9
        assert topic.synonyms == ["фут", "epl"]
        assert (await store.get_user("u")).interest_topics == stored.topics

    @pytest.mark.asyncio
    async def test_import_legacy_profile(self, store, canonicalizer):
        await canonicalizer.seed_vocabulary(self.SEEDS)
        service = ProfileService(store, canonicalizer)

        stored = await service.import_legacy_profile("u", "tag_list", {"tags": ["soccer"]})
        assert [t.tag for t in stored.topics] == ["football"]

        with pytest.raises(ValueError):
            await service.import_legacy_profile("u", "tag_list", ["soccer"])

    @pytest.mark.asyncio
    async def test_clear_and_flags(self, store, canonicalizer):
        service = ProfileService(store, canonicalizer)
        await service.set_interest_profile("u", InterestProfile(topics=[InterestTopic(tag="chess")]))
        await service.clear_interest_profile("u")
        await service.set_paused("u", True)

        user = await service.get_profile("u")
        assert user.interest_profile is None
        assert user.paused is True

    @pytest.mark.asyncio
    async def test_reading_unknown_user_does_not_create_it(self, store, canonicalizer):
        service = ProfileService(store, canonicalizer)

        with pytest.raises(NotFoundError):
            await service.get_profile("ghost")
        assert await store.get_user("ghost") is None

    @pytest.mark.asyncio
    async def test_extract_falls_back_to_keywords(self, store, canonicalizer):
        llm = MagicMock()
        llm.complete_json = AsyncMock(side_effect=TransientExternalError("down"))
        service = ProfileService(store, canonicalizer, llm)

        stored = await service.extract_interest_profile("u", "Интересует футбол")
        assert {t.tag for t in stored.topics} == {"football", "sport"}
        assert (await store.get_user("u")).prompt_text == "Интересует футбол"

    @pytest.mark.asyncio
    async def test_extract_with_llm(self, store, canonicalizer):
        llm = MagicMock()
        llm.complete_json = AsyncMock(
            return_value={"topics": [{"tag": "Chess", "weight": 0.8, "synonyms": ["шахматы"]}]}
        )
        service = ProfileService(store, canonicalizer, llm)

        stored = await service.extract_interest_profile("u", "I love chess")
        assert [(t.tag, t.weight) for t in stored.topics] == [("chess", 0.8)]
