"""
Persistent store - the narrow storage interface the core talks to.

Every method opens its own short-lived session, so the store can be shared by
concurrent enrichment workers. Upserts use the dialect's native
INSERT ... ON CONFLICT so concurrent writers never need application locks.
"""
from datetime import datetime
from typing import Iterable, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite

from newslens.core.utils import utcnow
from newslens.models.database import (
    Database,
    DBAnalysisFeatures,
    DBCanonicalTopic,
    DBFeedback,
    DBItem,
    DBPendingEnrichment,
    DBTopicAlias,
    DBUser,
)
from newslens.models.domain import (
    HEURISTIC_FIELDS,
    SCALAR_FEATURES,
    AliasMapping,
    AnalysisFeatures,
    CanonicalTopic,
    EvidenceType,
    FeedbackRecord,
    Genre,
    HeuristicScores,
    InterestProfile,
    Item,
    PendingEnrichment,
    ScoreWeights,
    TopicTag,
    UserProfile,
)

logger = structlog.get_logger(__name__)

_EVIDENCE_VALUES = {e.value for e in EvidenceType}
_GENRE_VALUES = {g.value for g in Genre}


class Store:
    """SQLAlchemy-backed implementation of the persistent store."""

    def __init__(self, database: Database):
        self.database = database

    def _insert(self, table):
        """Dialect-specific INSERT supporting ON CONFLICT clauses."""
        if self.database.dialect == "postgresql":
            return postgresql.insert(table)
        return sqlite.insert(table)

    # =========================================================================
    # Items
    # =========================================================================

    async def put_item(self, item: Item) -> bool:
        """
        Insert an item if it is new and queue it for enrichment.

        Returns True when the item was inserted, False if it already existed.
        """
        values = {
            "id": item.id,
            "url": item.url,
            "source": item.source,
            "source_weight": item.source_weight,
            "title": item.title,
            "summary": item.summary,
            "published_at": item.published_at,
        }
        values.update({name: getattr(item.heuristics, name) for name in HEURISTIC_FIELDS})

        async with self.database.async_session() as session:
            result = await session.execute(
                self._insert(DBItem).values(**values).on_conflict_do_nothing(index_elements=["id"])
            )
            inserted = (result.rowcount or 0) > 0
            if inserted and item.analysis is None:
                await session.execute(
                    self._insert(DBPendingEnrichment)
                    .values(item_id=item.id, enqueued_at=utcnow(), attempts=0)
                    .on_conflict_do_nothing(index_elements=["item_id"])
                )
            await session.commit()

        if inserted and item.analysis is not None:
            await self.save_analysis(item.id, item.analysis)
        return inserted

    async def get_item(self, item_id: str) -> Optional[Item]:
        async with self.database.async_session() as session:
            db_item = await session.get(DBItem, item_id)
            return self._item_from_db(db_item) if db_item else None

    async def items_in_window(
        self,
        since: datetime,
        limit: int = 800,
        require_analysis: bool = False,
    ) -> list[Item]:
        """Items published since `since`, newest first, with features joined."""
        query = select(DBItem).where(DBItem.published_at >= since)
        if require_analysis:
            query = query.join(DBAnalysisFeatures, DBAnalysisFeatures.item_id == DBItem.id)
        query = query.order_by(DBItem.published_at.desc()).limit(limit)

        async with self.database.async_session() as session:
            result = await session.execute(query)
            return [self._item_from_db(row) for row in result.scalars().all()]

    async def items_missing_heuristics(self, limit: int = 200) -> list[Item]:
        conditions = [getattr(DBItem, name).is_(None) for name in HEURISTIC_FIELDS]
        query = (
            select(DBItem)
            .where(or_(*conditions))
            .order_by(DBItem.published_at.desc())
            .limit(limit)
        )
        async with self.database.async_session() as session:
            result = await session.execute(query)
            return [self._item_from_db(row) for row in result.scalars().all()]

    async def save_heuristics(self, item_id: str, scores: HeuristicScores) -> None:
        async with self.database.async_session() as session:
            await session.execute(
                update(DBItem)
                .where(DBItem.id == item_id)
                .values(**{name: getattr(scores, name) for name in HEURISTIC_FIELDS})
            )
            await session.commit()

    async def save_analysis(self, item_id: str, features: AnalysisFeatures, version: int = 2) -> bool:
        """
        Store analysis features unless the item already has them.

        Returns True if this call wrote the features.
        """
        values = {name: getattr(features, name) for name in SCALAR_FEATURES}
        values.update(
            item_id=item_id,
            version=version,
            genre=features.genre.value if features.genre else None,
            evidence_types_json=[e.value for e in features.evidence_types],
            key_entities_json=list(features.key_entities),
            geo_targets_json=list(features.geo_targets),
            topics_json=[t.model_dump() for t in features.topics],
            summary_short=features.summary,
            created_at=utcnow(),
        )

        async with self.database.async_session() as session:
            result = await session.execute(
                self._insert(DBAnalysisFeatures)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["item_id"])
            )
            await session.execute(
                delete(DBPendingEnrichment).where(DBPendingEnrichment.item_id == item_id)
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    def _item_from_db(self, db_item: DBItem) -> Item:
        """Convert database model to domain model."""
        heuristics = HeuristicScores(
            **{name: getattr(db_item, name) for name in HEURISTIC_FIELDS}
        )
        analysis = self._analysis_from_db(db_item.analysis) if db_item.analysis else None
        return Item(
            id=db_item.id,
            url=db_item.url or "",
            source=db_item.source or "",
            source_weight=db_item.source_weight,
            title=db_item.title,
            summary=db_item.summary or "",
            published_at=db_item.published_at,
            heuristics=heuristics,
            analysis=analysis,
        )

    def _analysis_from_db(self, row: DBAnalysisFeatures) -> AnalysisFeatures:
        topics = []
        for raw in row.topics_json or []:
            try:
                topics.append(TopicTag.model_validate(raw))
            except ValidationError:
                logger.warning("store.topic_tag.invalid", item_id=row.item_id, tag=str(raw))

        return AnalysisFeatures(
            **{name: getattr(row, name) for name in SCALAR_FEATURES},
            genre=row.genre if row.genre in _GENRE_VALUES else None,
            evidence_types=[e for e in (row.evidence_types_json or []) if e in _EVIDENCE_VALUES],
            key_entities=row.key_entities_json or [],
            geo_targets=row.geo_targets_json or [],
            topics=topics,
            summary=row.summary_short,
        )

    # =========================================================================
    # Enrichment queue
    # =========================================================================

    async def enqueue_enrichment(self, item_ids: Iterable[str]) -> int:
        """Idempotently add items to the pending queue. Returns rows added."""
        added = 0
        async with self.database.async_session() as session:
            for item_id in item_ids:
                result = await session.execute(
                    self._insert(DBPendingEnrichment)
                    .values(item_id=item_id, enqueued_at=utcnow(), attempts=0)
                    .on_conflict_do_nothing(index_elements=["item_id"])
                )
                added += result.rowcount or 0
            await session.commit()
        return added

    async def unanalysed_item_ids(self, since: datetime, limit: int = 1000) -> list[str]:
        query = (
            select(DBItem.id)
            .outerjoin(DBAnalysisFeatures, DBAnalysisFeatures.item_id == DBItem.id)
            .where(DBItem.published_at >= since)
            .where(DBAnalysisFeatures.item_id.is_(None))
            .order_by(DBItem.published_at.desc())
            .limit(limit)
        )
        async with self.database.async_session() as session:
            result = await session.execute(query)
            return [row[0] for row in result.all()]

    async def pending_enrichment(
        self,
        since: datetime,
        limit: int = 150,
        max_attempts: int = 5,
    ) -> list[str]:
        """Pending item IDs in the window, newest first, below the attempt cap."""
        query = (
            select(DBPendingEnrichment.item_id)
            .join(DBItem, DBItem.id == DBPendingEnrichment.item_id)
            .where(DBItem.published_at >= since)
            .where(DBPendingEnrichment.attempts < max_attempts)
            .order_by(DBItem.published_at.desc())
            .limit(limit)
        )
        async with self.database.async_session() as session:
            result = await session.execute(query)
            return [row[0] for row in result.all()]

    async def get_pending(self, item_id: str) -> Optional[PendingEnrichment]:
        async with self.database.async_session() as session:
            row = await session.get(DBPendingEnrichment, item_id)
            if row is None:
                return None
            return PendingEnrichment(
                item_id=row.item_id,
                enqueued_at=row.enqueued_at,
                attempts=row.attempts,
                last_error=row.last_error,
                last_attempt_at=row.last_attempt_at,
            )

    async def complete_enrichment(self, item_id: str) -> None:
        async with self.database.async_session() as session:
            await session.execute(
                delete(DBPendingEnrichment).where(DBPendingEnrichment.item_id == item_id)
            )
            await session.commit()

    async def fail_enrichment(self, item_id: str, error: str) -> None:
        async with self.database.async_session() as session:
            await session.execute(
                update(DBPendingEnrichment)
                .where(DBPendingEnrichment.item_id == item_id)
                .values(
                    attempts=DBPendingEnrichment.attempts + 1,
                    last_error=error[:500],
                    last_attempt_at=utcnow(),
                )
            )
            await session.commit()

    # =========================================================================
    # Topic vocabulary
    # =========================================================================

    async def get_canonical(self, canonical: str) -> Optional[CanonicalTopic]:
        async with self.database.async_session() as session:
            row = await session.get(DBCanonicalTopic, canonical)
            return self._canonical_from_db(row) if row else None

    async def put_canonical(self, topic: CanonicalTopic) -> None:
        """Insert or overwrite a canonical topic."""
        values = {
            "canonical": topic.canonical,
            "parent": topic.parent,
            "aliases_json": list(topic.aliases),
            "embedding_json": list(topic.embedding) if topic.embedding is not None else None,
            "updated_at": utcnow(),
        }
        stmt = self._insert(DBCanonicalTopic).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["canonical"],
            set_={
                "parent": stmt.excluded.parent,
                "aliases_json": stmt.excluded.aliases_json,
                "embedding_json": stmt.excluded.embedding_json,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        async with self.database.async_session() as session:
            await session.execute(stmt)
            await session.commit()

    async def list_canonicals(self) -> list[CanonicalTopic]:
        async with self.database.async_session() as session:
            result = await session.execute(select(DBCanonicalTopic))
            return [self._canonical_from_db(row) for row in result.scalars().all()]

    async def count_canonicals(self) -> int:
        async with self.database.async_session() as session:
            result = await session.execute(select(func.count(DBCanonicalTopic.canonical)))
            return result.scalar() or 0

    async def get_alias(self, alias: str) -> Optional[AliasMapping]:
        async with self.database.async_session() as session:
            row = await session.get(DBTopicAlias, alias)
            if row is None:
                return None
            return AliasMapping(alias=row.alias, canonical=row.canonical, confidence=row.confidence)

    async def put_alias(self, mapping: AliasMapping) -> None:
        """Insert or overwrite the mapping for one alias."""
        stmt = self._insert(DBTopicAlias).values(
            alias=mapping.alias,
            canonical=mapping.canonical,
            confidence=mapping.confidence,
            created_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["alias"],
            set_={
                "canonical": stmt.excluded.canonical,
                "confidence": stmt.excluded.confidence,
            },
        )
        async with self.database.async_session() as session:
            await session.execute(stmt)
            await session.commit()

    def _canonical_from_db(self, row: DBCanonicalTopic) -> CanonicalTopic:
        return CanonicalTopic(
            canonical=row.canonical,
            parent=row.parent or None,
            aliases=row.aliases_json or [],
            embedding=row.embedding_json or None,
        )

    # =========================================================================
    # Feedback
    # =========================================================================

    async def upsert_feedback(self, record: FeedbackRecord) -> None:
        """Record the user's live vote on an item (last write wins)."""
        now = utcnow()
        stmt = self._insert(DBFeedback).values(
            user_id=record.user_id,
            item_id=record.item_id,
            vote=record.vote,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "item_id"],
            set_={"vote": stmt.excluded.vote, "updated_at": stmt.excluded.updated_at},
        )
        async with self.database.async_session() as session:
            await session.execute(stmt)
            await session.commit()

    async def get_feedback_vote(self, user_id: str, item_id: str) -> int:
        async with self.database.async_session() as session:
            row = await session.get(DBFeedback, (user_id, item_id))
            return row.vote if row else 0

    async def feedback_with_items(self, user_id: str) -> list[tuple[int, Item]]:
        """Every vote of the user together with the voted item."""
        query = (
            select(DBFeedback.vote, DBItem)
            .join(DBItem, DBItem.id == DBFeedback.item_id)
            .where(DBFeedback.user_id == user_id)
        )
        async with self.database.async_session() as session:
            result = await session.execute(query)
            return [(vote, self._item_from_db(db_item)) for vote, db_item in result.all()]

    # =========================================================================
    # Users
    # =========================================================================

    async def ensure_user(self, user_id: str) -> UserProfile:
        async with self.database.async_session() as session:
            await session.execute(
                self._insert(DBUser)
                .values(id=user_id, prompt_text="", paused=False)
                .on_conflict_do_nothing(index_elements=["id"])
            )
            await session.commit()
        return await self.get_user(user_id)

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        async with self.database.async_session() as session:
            row = await session.get(DBUser, user_id)
            if row is None:
                return None
            return self._user_from_db(row)

    async def list_user_ids(self) -> list[str]:
        async with self.database.async_session() as session:
            result = await session.execute(select(DBUser.id))
            return [row[0] for row in result.all()]

    async def set_interest_profile(self, user_id: str, profile: Optional[InterestProfile]) -> None:
        payload = profile.model_dump() if profile is not None else None
        await self._update_user(user_id, interest_profile_json=payload)

    async def set_paused(self, user_id: str, paused: bool) -> None:
        await self._update_user(user_id, paused=paused)

    async def set_score_weights(self, user_id: str, weights: ScoreWeights) -> None:
        await self._update_user(user_id, score_weights_json=weights.model_dump())

    async def set_prompt_text(self, user_id: str, prompt_text: str) -> None:
        await self._update_user(user_id, prompt_text=prompt_text)

    async def _update_user(self, user_id: str, **values) -> None:
        await self.ensure_user(user_id)
        async with self.database.async_session() as session:
            await session.execute(
                update(DBUser).where(DBUser.id == user_id).values(**values, updated_at=utcnow())
            )
            await session.commit()

    def _user_from_db(self, row: DBUser) -> UserProfile:
        interest_profile = None
        if row.interest_profile_json:
            try:
                interest_profile = InterestProfile.model_validate(row.interest_profile_json)
            except ValidationError as e:
                # A stored profile that no longer validates is treated as absent
                logger.warning("store.profile.invalid", user_id=row.id, error=str(e))

        return UserProfile(
            user_id=row.id,
            score_weights=ScoreWeights(**(row.score_weights_json or {})),
            prompt_text=row.prompt_text or "",
            interest_profile=interest_profile,
            paused=bool(row.paused),
        )
