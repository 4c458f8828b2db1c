"""
Tests for the pure helpers in newslens.core: text normalization, clamping,
the seed vocabulary and the legacy profile adapters.
"""

import pytest

from newslens.core.profiles import (
    LEGACY_PROFILE_ADAPTERS,
    adapt_legacy_profile,
    from_interest_names,
    from_plain_strings,
    from_tag_list,
    from_topic_objects,
)
from newslens.core.text import normalize_surface, tokenize, truncate
from newslens.core.utils import clamp, clamp01
from newslens.core.vocabulary import SEED_TOPICS, heuristic_topics_from_prompt, iter_seed_topics


class TestNormalizeSurface:
    """Equivalent spellings must share one key."""

    def test_case_punctuation_and_whitespace(self):
        assert normalize_surface("  #Machine   Learning!! ") == "machine learning"
        assert normalize_surface("«Искусственный интеллект»") == "искусственный интеллект"

    def test_yo_folds_to_ye(self):
        assert normalize_surface("Ёлка") == normalize_surface("елка") == "елка"

    def test_nfkc(self):
        # Full-width letters fold to ASCII
        assert normalize_surface("ＡＩ") == "ai"

    def test_empty_inputs(self):
        assert normalize_surface("") == ""
        assert normalize_surface(None) == ""
        assert normalize_surface("?!#...") == ""

    def test_idempotent(self):
        once = normalize_surface("  The  U.S. Elections ")
        assert normalize_surface(once) == once


class TestTextHelpers:
    def test_tokenize_latin_and_cyrillic(self):
        assert tokenize("Apple и Google, 2024!") == ["apple", "и", "google", "2024"]
        assert tokenize(None) == []

    def test_truncate(self):
        assert truncate("abcdef", 3) == "abc"
        assert truncate("abc", 10) == "abc"
        assert truncate(None, 3) == ""


class TestClamp:
    def test_clamp01(self):
        assert clamp01(1.7) == 1.0
        assert clamp01(-0.2) == 0.0
        assert clamp01("0.25") == 0.25

    def test_clamp01_unparseable_uses_default(self):
        assert clamp01(None) == 0.0
        assert clamp01("high", default=0.6) == 0.6
        assert clamp01(float("nan"), default=0.5) == 0.5

    def test_clamp(self):
        assert clamp(3.0, -1.0, 1.0) == 1.0
        assert clamp(-3.0, -1.0, 1.0) == -1.0


class TestSeedVocabulary:
    def test_canonicals_are_normalized_and_unique(self):
        names = [t.canonical for t in SEED_TOPICS]
        assert len(names) == len(set(names))
        assert all(normalize_surface(n) == n for n in names)

    def test_families_exist_as_topics(self):
        names = {t.canonical for t in SEED_TOPICS}
        for topic in SEED_TOPICS:
            if topic.family:
                assert topic.family in names

    def test_iter_yields_families_first(self):
        ordered = [t.canonical for t in iter_seed_topics()]
        for topic in SEED_TOPICS:
            if topic.family:
                assert ordered.index(topic.family) < ordered.index(topic.canonical)

    def test_heuristic_prompt_topics(self):
        topics = heuristic_topics_from_prompt("Люблю футбол и новости про нейросети")
        tags = [t.tag for t in topics]
        assert "football" in tags
        assert "sport" in tags
        assert "artificial intelligence" in tags
        assert len(tags) == len(set(tags))

        football = next(t for t in topics if t.tag == "football")
        assert football.family == "sport"

    def test_heuristic_prompt_caps_and_empty(self):
        assert heuristic_topics_from_prompt("") == []
        many = heuristic_topics_from_prompt(
            "politics elections economy finance stock crypto energy tech football hockey tennis music"
        )
        assert len(many) <= 8


class TestLegacyProfileAdapters:
    def test_registry_names(self):
        assert set(LEGACY_PROFILE_ADAPTERS) == {
            "topic_objects",
            "tag_list",
            "interest_names",
            "plain_strings",
        }

    def test_topic_objects(self):
        profile = from_topic_objects(
            {"topics": [{"tag": " Football ", "weight": 1.4, "synonyms": ["Soccer", "soccer"]}]}
        )
        topic = profile.topics[0]
        assert topic.tag == "football"
        assert topic.weight == 1.0
        assert topic.synonyms == ["soccer"]

    def test_tag_list_defaults_weight(self):
        profile = from_tag_list({"tags": ["AI", "ai", 3, "Space"]})
        assert [t.tag for t in profile.topics] == ["ai", "space"]
        assert all(t.weight == 0.6 for t in profile.topics)

    def test_interest_names(self):
        profile = from_interest_names(
            {"interests": [{"name": "Crypto", "score": "0.9", "aliases": ["bitcoin"]}, "junk"]}
        )
        assert len(profile.topics) == 1
        assert profile.topics[0].weight == 0.9
        assert profile.topics[0].synonyms == ["bitcoin"]

    def test_plain_strings_caps_topics(self):
        profile = from_plain_strings([f"topic {n}" for n in range(40)])
        assert len(profile.topics) == 24

    def test_adapt_dispatches_by_shape(self):
        profile = adapt_legacy_profile("plain_strings", ["music"])
        assert profile.topics[0].tag == "music"

    def test_adapt_unknown_shape(self):
        with pytest.raises(ValueError, match="Unknown profile shape"):
            adapt_legacy_profile("guess", {"tags": []})

    def test_adapt_wrong_container(self):
        with pytest.raises(ValueError, match="JSON array"):
            adapt_legacy_profile("plain_strings", {"tags": ["x"]})
        with pytest.raises(ValueError, match="JSON object"):
            adapt_legacy_profile("tag_list", ["x"])
