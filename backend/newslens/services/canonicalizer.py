"""
Topic canonicalizer - maps noisy surface tags onto the controlled vocabulary.

Resolution tiers, cheapest first:

1. In-process alias cache
2. Durable alias store
3. Embedding nearest neighbour among canonical topics (cosine >= threshold)
4. LLM disambiguation, which grows the vocabulary
5. Fallback to the normalized surface itself (never persisted)

The vocabulary learns: every surface that reaches tier 4 becomes a persisted
alias, so later resolutions of it stop at tier 2.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Optional, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError

from newslens.config import Settings, get_settings
from newslens.core.errors import NewsLensError, TransientExternalError, VocabularyOverflowError
from newslens.core.text import normalize_surface
from newslens.core.vocabulary import SeedTopic, iter_seed_topics
from newslens.models.domain import (
    AliasMapping,
    CanonicalTopic,
    RawTopic,
    ResolutionMethod,
    ResolvedTopic,
    TopicTag,
)
from newslens.services.disambiguation import TopicDisambiguationService
from newslens.services.embeddings import EmbeddingService
from newslens.services.store import Store
from newslens.services.topic_cache import AliasCache, CanonicalEmbeddingIndex

logger = structlog.get_logger(__name__)


class TopicCanonicalizer:
    """
    Resolves surface tags to canonical topics.

    `resolve` never raises: every failure below it degrades to a lower tier,
    and in the worst case to the normalized surface with low confidence.
    """

    def __init__(
        self,
        store: Store,
        embeddings: EmbeddingService,
        disambiguation: TopicDisambiguationService,
        alias_cache: Optional[AliasCache] = None,
        embedding_index: Optional[CanonicalEmbeddingIndex] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = (settings or get_settings()).canonicalizer
        self.store = store
        self.embeddings = embeddings
        self.disambiguation = disambiguation
        self.alias_cache = alias_cache if alias_cache is not None else AliasCache()
        self.embedding_index = embedding_index or CanonicalEmbeddingIndex(
            store, ttl_seconds=self.settings.embedding_cache_ttl_seconds
        )
        # surface -> (lock, number of resolutions holding or awaiting it)
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    # =========================================================================
    # Public API
    # =========================================================================

    async def resolve(self, surface_tag: str) -> ResolvedTopic:
        """Resolve one surface tag to {canonical, family, confidence, method}."""
        surface = normalize_surface(surface_tag)
        if not surface:
            return ResolvedTopic(canonical="", family="", confidence=0.0, method=ResolutionMethod.FALLBACK)

        cached = self.alias_cache.get(surface)
        if cached is not None:
            return cached.model_copy(update={"method": ResolutionMethod.MEMORY})

        async with self._surface_lock(surface):
            # Another worker may have resolved it while we waited
            cached = self.alias_cache.get(surface)
            if cached is not None:
                return cached.model_copy(update={"method": ResolutionMethod.MEMORY})

            try:
                return await self._resolve_uncached(surface)
            except (SQLAlchemyError, NewsLensError) as e:
                logger.error("topic.resolve.failed", surface=surface, error=str(e))
                return self._fallback(surface)

    async def resolve_surfaces(self, surfaces: Iterable[str]) -> dict[str, ResolvedTopic]:
        """
        Resolve each distinct normalized surface once.

        Returns a map keyed by normalized surface; empty surfaces are omitted.
        """
        resolved: dict[str, ResolvedTopic] = {}
        for raw in surfaces:
            surface = normalize_surface(raw)
            if not surface or surface in resolved:
                continue
            resolved[surface] = await self.resolve(surface)
        return resolved

    async def resolve_batch(self, items: Sequence[RawTopic]) -> list[TopicTag]:
        """
        Canonicalize a list of raw topics, preserving order and scores.

        Identical normalized surfaces are resolved once per batch.
        """
        resolved = await self.resolve_surfaces(item.tag for item in items)

        tags: list[TopicTag] = []
        for item in items:
            result = resolved.get(normalize_surface(item.tag))
            if result is None or not result.canonical:
                continue
            tags.append(TopicTag(tag=result.canonical, score=item.score, family=result.family))
        return tags

    async def seed_vocabulary(self, seeds: Optional[Iterable[SeedTopic]] = None) -> int:
        """
        Persist seed canonical topics with their aliases.

        Existing topics keep their aliases (merged) and embedding. Returns the
        number of seed topics written.
        """
        seeds = list(seeds if seeds is not None else iter_seed_topics())
        names = [normalize_surface(s.canonical) for s in seeds]

        vectors: list[Optional[list[float]]] = [None] * len(seeds)
        try:
            embedded = await self.embeddings.embed_texts(names)
            vectors = [v.tolist() for v in embedded]
        except TransientExternalError as e:
            logger.warning("topic.seed.embedding_failed", error=str(e))

        written = 0
        for seed, canonical, vector in zip(seeds, names, vectors):
            if not canonical:
                continue
            parent = normalize_surface(seed.family) if seed.family else None
            aliases = [a for a in (normalize_surface(x) for x in seed.aliases) if a and a != canonical]
            await self._upsert_canonical(canonical, parent, aliases, embedding=vector)
            await self.store.put_alias(AliasMapping(alias=canonical, canonical=canonical, confidence=1.0))
            for alias in aliases:
                await self._put_alias_if_absent(alias, canonical, self.settings.alias_default_confidence)
            written += 1

        self.embedding_index.invalidate()
        logger.info("topic.seeded", topics=written)
        return written

    # =========================================================================
    # Tiers
    # =========================================================================

    async def _resolve_uncached(self, surface: str) -> ResolvedTopic:
        mapping = await self.store.get_alias(surface)
        if mapping is not None:
            resolved = ResolvedTopic(
                canonical=mapping.canonical,
                family=await self._family_of(mapping.canonical),
                confidence=mapping.confidence or self.settings.alias_default_confidence,
                method=ResolutionMethod.ALIAS,
            )
            self.alias_cache.put(surface, resolved)
            return resolved

        by_embedding = await self._match_by_embedding(surface)
        if by_embedding is not None:
            return by_embedding

        return await self._learn(surface)

    async def _match_by_embedding(self, surface: str) -> Optional[ResolvedTopic]:
        try:
            vector = await self.embeddings.embed_text(surface)
        except TransientExternalError as e:
            logger.warning("topic.embedding.failed", surface=surface, error=str(e))
            return None

        topic, similarity = await self.embedding_index.nearest(vector)
        if topic is None or similarity < self.settings.similarity_threshold:
            logger.debug("topic.embedding.miss", surface=surface, best_similarity=round(similarity, 4))
            return None

        await self.store.put_alias(
            AliasMapping(alias=surface, canonical=topic.canonical, confidence=similarity)
        )
        resolved = ResolvedTopic(
            canonical=topic.canonical,
            family=topic.family,
            confidence=similarity,
            method=ResolutionMethod.EMBEDDING,
        )
        self.alias_cache.put(surface, resolved)
        logger.info("topic.embedding.matched", surface=surface, canonical=topic.canonical, similarity=round(similarity, 4))
        return resolved

    async def _learn(self, surface: str) -> ResolvedTopic:
        """Grow the vocabulary with a new (or updated) canonical topic."""
        try:
            size = await self.store.count_canonicals()
            if size > self.settings.max_canonical:
                raise VocabularyOverflowError(size, self.settings.max_canonical)

            if self.settings.llm_disambiguation:
                proposal = await self.disambiguation.disambiguate(surface)
                canonical = normalize_surface(proposal.canonical) or surface
                parent = normalize_surface(proposal.parent) if proposal.parent else None
                synonyms = [normalize_surface(s) for s in proposal.synonyms]
                method = ResolutionMethod.LLM
            else:
                canonical, parent, synonyms = surface, None, []
                method = ResolutionMethod.VOCABULARY
        except (VocabularyOverflowError, TransientExternalError) as e:
            logger.warning("topic.disambiguation.failed", surface=surface, error=str(e))
            return self._fallback(surface)

        # A proposed name that is already an alias joins its existing canonical
        existing = await self.store.get_alias(canonical)
        if existing is not None and existing.canonical != canonical:
            canonical = existing.canonical
        if parent == canonical:
            parent = None

        synonyms = list(dict.fromkeys(s for s in synonyms if s and s not in (canonical, surface)))
        aliases = [surface, *synonyms] if surface != canonical else synonyms

        topic = await self._upsert_canonical(canonical, parent, aliases)
        await self.store.put_alias(AliasMapping(alias=canonical, canonical=canonical, confidence=1.0))
        if surface != canonical:
            await self.store.put_alias(
                AliasMapping(alias=surface, canonical=canonical, confidence=self.settings.llm_confidence)
            )
        for synonym in synonyms:
            await self._put_alias_if_absent(synonym, canonical, self.settings.synonym_confidence)
        self.embedding_index.invalidate()

        resolved = ResolvedTopic(
            canonical=canonical,
            family=topic.family,
            confidence=self.settings.llm_confidence,
            method=method,
        )
        self.alias_cache.put(surface, resolved)
        logger.info(
            "topic.learned",
            surface=surface,
            canonical=canonical,
            parent=topic.parent,
            synonyms=len(synonyms),
            method=method.value,
        )
        return resolved

    # =========================================================================
    # Helpers
    # =========================================================================

    @asynccontextmanager
    async def _surface_lock(self, surface: str) -> AsyncIterator[None]:
        """Serialize resolutions of one surface; the lock is dropped once unused."""
        lock, users = self._locks.get(surface, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[surface] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[surface]
            if users <= 1:
                del self._locks[surface]
            else:
                self._locks[surface] = (lock, users - 1)

    def _fallback(self, surface: str) -> ResolvedTopic:
        """Raw-surface result. Never cached, so a later pass may still learn it."""
        return ResolvedTopic(
            canonical=surface,
            family=surface,
            confidence=self.settings.fallback_confidence,
            method=ResolutionMethod.FALLBACK,
        )

    async def _family_of(self, canonical: str) -> str:
        topic = await self.store.get_canonical(canonical)
        return topic.family if topic else canonical

    async def _upsert_canonical(
        self,
        canonical: str,
        parent: Optional[str],
        aliases: Sequence[str],
        embedding: Optional[list[float]] = None,
    ) -> CanonicalTopic:
        existing = await self.store.get_canonical(canonical)

        merged_aliases = list(dict.fromkeys([*(existing.aliases if existing else []), *aliases]))
        parent = parent or (existing.parent if existing else None)
        if existing and existing.embedding:
            embedding = existing.embedding
        elif embedding is None:
            embedding = await self._embed_best_effort(canonical)

        topic = CanonicalTopic(
            canonical=canonical,
            parent=parent if parent != canonical else None,
            aliases=merged_aliases,
            embedding=embedding,
        )
        await self.store.put_canonical(topic)
        return topic

    async def _embed_best_effort(self, text: str) -> Optional[list[float]]:
        try:
            return (await self.embeddings.embed_text(text)).tolist()
        except TransientExternalError as e:
            logger.warning("topic.canonical_embedding.failed", canonical=text, error=str(e))
            return None

    async def _put_alias_if_absent(self, alias: str, canonical: str, confidence: float) -> None:
        """Synonyms never overwrite an alias that already points somewhere."""
        if await self.store.get_alias(alias) is None:
            await self.store.put_alias(AliasMapping(alias=alias, canonical=canonical, confidence=confidence))


def merge_topic_tags(tags: Iterable[TopicTag]) -> list[TopicTag]:
    """Collapse tags that resolved to the same canonical, keeping the max score."""
    merged: dict[str, TopicTag] = {}
    for tag in tags:
        current = merged.get(tag.tag)
        if current is None or tag.score > current.score:
            merged[tag.tag] = tag
    return list(merged.values())
