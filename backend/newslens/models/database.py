"""
SQLAlchemy database models for NewsLens.
Uses SQLAlchemy 2.0 async patterns.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.ext.asyncio import AsyncAttrs, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.pool import StaticPool


# =============================================================================
# Base
# =============================================================================

class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all database models."""
    pass


# =============================================================================
# Items
# =============================================================================

class DBItem(Base):
    """Ingested content item with its heuristic scores."""
    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    url: Mapped[str] = mapped_column(Text, default="")
    source: Mapped[str] = mapped_column(String(255), default="")
    source_weight: Mapped[float] = mapped_column(Float, default=0.8)

    title: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str] = mapped_column(Text, default="")
    published_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Heuristic scores, set once by the evaluation pass
    importance: Mapped[Optional[float]] = mapped_column(Float)
    hype: Mapped[Optional[float]] = mapped_column(Float)
    prominence: Mapped[Optional[float]] = mapped_column(Float)
    novelty: Mapped[Optional[float]] = mapped_column(Float)
    quality: Mapped[Optional[float]] = mapped_column(Float)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())

    analysis: Mapped[Optional["DBAnalysisFeatures"]] = relationship(
        back_populates="item", uselist=False, cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (
        Index("ix_items_published_at", "published_at"),
    )


class DBAnalysisFeatures(Base):
    """Analysis-service features for an item (written at most once)."""
    __tablename__ = "analysis_features"

    item_id: Mapped[str] = mapped_column(String(255), ForeignKey("items.id"), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, default=1)

    evidence_strength: Mapped[Optional[float]] = mapped_column(Float)
    fact_density: Mapped[Optional[float]] = mapped_column(Float)
    uncertainty: Mapped[Optional[float]] = mapped_column(Float)
    bias_risk: Mapped[Optional[float]] = mapped_column(Float)
    sensationalism: Mapped[Optional[float]] = mapped_column(Float)
    geo_scope_score: Mapped[Optional[float]] = mapped_column(Float)
    harm_severity: Mapped[Optional[float]] = mapped_column(Float)
    polarization_risk: Mapped[Optional[float]] = mapped_column(Float)
    time_criticality: Mapped[Optional[float]] = mapped_column(Float)
    actionability: Mapped[Optional[float]] = mapped_column(Float)
    followup_potential: Mapped[Optional[float]] = mapped_column(Float)

    genre: Mapped[Optional[str]] = mapped_column(String(32))
    evidence_types_json: Mapped[Optional[list]] = mapped_column(JSON)
    key_entities_json: Mapped[Optional[list]] = mapped_column(JSON)
    geo_targets_json: Mapped[Optional[list]] = mapped_column(JSON)
    topics_json: Mapped[Optional[list]] = mapped_column(JSON)  # List of {tag, score, family}
    summary_short: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    item: Mapped["DBItem"] = relationship(back_populates="analysis")


class DBPendingEnrichment(Base):
    """Durable queue of items awaiting enrichment."""
    __tablename__ = "pending_enrichment"

    item_id: Mapped[str] = mapped_column(String(255), ForeignKey("items.id"), primary_key=True)
    enqueued_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


# =============================================================================
# Users & Feedback
# =============================================================================

class DBUser(Base):
    """User account with declared weights and interest profile."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    score_weights_json: Mapped[Optional[dict]] = mapped_column(JSON)
    prompt_text: Mapped[str] = mapped_column(Text, default="")
    interest_profile_json: Mapped[Optional[dict]] = mapped_column(JSON)
    paused: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())


class DBFeedback(Base):
    """One live vote per (user, item)."""
    __tablename__ = "feedback"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    item_id: Mapped[str] = mapped_column(String(255), ForeignKey("items.id"), primary_key=True)
    vote: Mapped[int] = mapped_column(Integer, nullable=False)  # -1, 0, 1
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_feedback_item", "item_id"),
    )


# =============================================================================
# Topic vocabulary
# =============================================================================

class DBCanonicalTopic(Base):
    """Canonical topic of the self-learning vocabulary."""
    __tablename__ = "canonical_topics"

    canonical: Mapped[str] = mapped_column(String(255), primary_key=True)
    parent: Mapped[Optional[str]] = mapped_column(String(255))
    aliases_json: Mapped[Optional[list]] = mapped_column(JSON)
    embedding_json: Mapped[Optional[list]] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())


class DBTopicAlias(Base):
    """Normalized surface form -> canonical topic."""
    __tablename__ = "topic_aliases"

    alias: Mapped[str] = mapped_column(String(255), primary_key=True)
    canonical: Mapped[str] = mapped_column(String(255), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, default=0.9)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    __table_args__ = (
        Index("ix_topic_aliases_canonical", "canonical"),
    )


# =============================================================================
# Database Connection
# =============================================================================

class Database:
    """Database connection manager."""

    def __init__(self, database_url: str):
        engine_kwargs = {}
        self._shared_connection_lock: Optional[asyncio.Lock] = None
        if ":memory:" in database_url:
            # One shared connection, otherwise every session sees an empty database.
            # Sessions on it must not overlap: closing one rolls back the other.
            engine_kwargs = {
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            }
            self._shared_connection_lock = asyncio.Lock()
        self.engine = create_async_engine(
            database_url,
            echo=False,  # Set to True for SQL logging
            **engine_kwargs,
        )
        self._session_factory = async_sessionmaker(
            self.engine,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def async_session(self) -> AsyncIterator[AsyncSession]:
        """Open a session; on an in-memory database, one at a time."""
        if self._shared_connection_lock is None:
            async with self._session_factory() as session:
                yield session
            return

        async with self._shared_connection_lock:
            async with self._session_factory() as session:
                yield session

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    async def create_tables(self):
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_tables(self):
        """Drop all tables (use with caution!)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self):
        await self.engine.dispose()
