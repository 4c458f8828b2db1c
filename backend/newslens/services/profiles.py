"""
Interest-profile service.

Every profile write goes through one path: validate against InterestProfile,
canonicalize topic tags, merge topics that collapse onto the same canonical,
persist.
"""
from typing import Optional

import structlog
from pydantic import ValidationError

from newslens.core.errors import NotFoundError, TransientExternalError
from newslens.core.profiles import adapt_legacy_profile, from_topic_objects
from newslens.core.text import normalize_surface
from newslens.core.vocabulary import heuristic_topics_from_prompt
from newslens.models.domain import InterestProfile, InterestTopic, ScoreWeights, UserProfile
from newslens.services.canonicalizer import TopicCanonicalizer
from newslens.services.llm import LLMClient
from newslens.services.store import Store

logger = structlog.get_logger(__name__)

EXTRACTION_PROMPT = """You turn a user's free-text description of their news interests into a
structured profile for a news recommendation system.
Rules:
- Output valid JSON only, no comments.
- All weights are within 0..1.
- Tags are short, in the language of the user's text, without hashtags.
- If an interest is broad, expand it into several relevant tags.
- Always include the "topics" key, even if the list is empty.
Shape: {"topics": [{"tag": str, "weight": number, "synonyms": [str, ...]}]}"""


class ProfileService:
    """Reads and writes user profiles; owns interest-profile canonicalization."""

    def __init__(self, store: Store, canonicalizer: TopicCanonicalizer, llm: Optional[LLMClient] = None):
        self.store = store
        self.canonicalizer = canonicalizer
        self.llm = llm

    async def get_profile(self, user_id: str) -> UserProfile:
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def set_interest_profile(self, user_id: str, profile: InterestProfile) -> InterestProfile:
        canonical = await self.canonicalize(profile)
        await self.store.set_interest_profile(user_id, canonical)
        logger.info("profile.updated", user_id=user_id, topics=len(canonical.topics))
        return canonical

    async def import_legacy_profile(self, user_id: str, shape: str, payload) -> InterestProfile:
        """Store a profile given in one of the named legacy shapes."""
        return await self.set_interest_profile(user_id, adapt_legacy_profile(shape, payload))

    async def clear_interest_profile(self, user_id: str) -> None:
        await self.store.set_interest_profile(user_id, None)
        logger.info("profile.cleared", user_id=user_id)

    async def set_paused(self, user_id: str, paused: bool) -> None:
        await self.store.set_paused(user_id, paused)

    async def set_score_weights(self, user_id: str, weights: ScoreWeights) -> None:
        await self.store.set_score_weights(user_id, weights)

    async def canonicalize(self, profile: InterestProfile) -> InterestProfile:
        """
        Replace each tag by its canonical name and attach its family.

        Weight and synonyms are kept. Topics that land on the same canonical
        are merged: max weight, union of synonyms, first position.
        """
        resolved = await self.canonicalizer.resolve_surfaces(t.tag for t in profile.topics)

        merged: dict[str, InterestTopic] = {}
        for topic in profile.topics:
            result = resolved.get(normalize_surface(topic.tag))
            if result is None or not result.canonical:
                continue
            tag = result.canonical[:80]
            current = merged.get(tag)
            if current is None:
                merged[tag] = InterestTopic(
                    tag=tag,
                    weight=topic.weight,
                    synonyms=topic.synonyms,
                    family=result.family or tag,
                )
            else:
                synonyms = list(dict.fromkeys([*current.synonyms, *topic.synonyms]))[:8]
                merged[tag] = current.model_copy(
                    update={"weight": max(current.weight, topic.weight), "synonyms": synonyms}
                )
        return InterestProfile(topics=list(merged.values()))

    async def extract_interest_profile(self, user_id: str, prompt_text: str) -> InterestProfile:
        """
        Build a profile from free text.

        Uses the LLM when available; if it fails or yields no topics, falls
        back to the keyword table of the seed vocabulary.
        """
        await self.store.set_prompt_text(user_id, prompt_text)

        profile = InterestProfile()
        if self.llm is not None:
            try:
                data = await self.llm.complete_json(
                    EXTRACTION_PROMPT,
                    f"Convert these interests:\n\n{prompt_text}",
                )
                profile = from_topic_objects(data)
            except (TransientExternalError, ValidationError) as e:
                logger.warning("profile.extract.failed", user_id=user_id, error=str(e))

        if not profile.topics:
            profile = InterestProfile(topics=heuristic_topics_from_prompt(prompt_text))
            logger.info("profile.extract.heuristic", user_id=user_id, topics=len(profile.topics))

        return await self.set_interest_profile(user_id, profile)
