"""
Shared fixtures.

Everything runs offline: an in-memory SQLite store, the deterministic hash
embedding backend, and no LLM keys unless a test mocks the client.
"""

from datetime import timedelta
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from newslens.config import Settings
from newslens.core.utils import utcnow
from newslens.models.database import Database
from newslens.models.domain import AnalysisFeatures, HeuristicScores, Item, TopicTag
from newslens.services.canonicalizer import TopicCanonicalizer
from newslens.services.disambiguation import Disambiguation
from newslens.services.embeddings import EmbeddingService
from newslens.services.store import Store

MEMORY_DB = "sqlite+aiosqlite:///:memory:"


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url=MEMORY_DB,
        embedding_backend="hash",
        anthropic_api_key=None,
        openai_api_key=None,
        scheduler_enabled=False,
        seed_vocabulary_on_startup=False,
        log_format="console",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_item(
    item_id: str,
    title: str = "Headline",
    hours_ago: float = 1.0,
    topics: Optional[list[tuple[str, float]]] = None,
    family: Optional[dict[str, str]] = None,
    analysed: bool = True,
    **features,
) -> Item:
    """Item with optional analysis; `topics` is a list of (tag, score)."""
    analysis = None
    if analysed:
        family = family or {}
        tags = [TopicTag(tag=tag, score=score, family=family.get(tag, "")) for tag, score in topics or []]
        analysis = AnalysisFeatures(topics=tags, **features)
    return Item(
        id=item_id,
        url=f"https://news.example.com/{item_id}",
        source="example",
        title=title,
        summary="",
        published_at=utcnow() - timedelta(hours=hours_ago),
        heuristics=HeuristicScores(importance=0.5, hype=0.5, prominence=0.5, novelty=0.5, quality=0.5),
        analysis=analysis,
    )


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def database():
    db = Database(MEMORY_DB)
    await db.create_tables()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def store(database) -> Store:
    return Store(database)


@pytest.fixture
def embeddings(settings) -> EmbeddingService:
    return EmbeddingService(settings)


@pytest.fixture
def disambiguation() -> MagicMock:
    """Disambiguation service whose answer tests set per case."""
    service = MagicMock()
    service.available = True
    service.disambiguate = AsyncMock(
        side_effect=lambda surface: Disambiguation(canonical=surface, parent=None, synonyms=[])
    )
    return service


@pytest.fixture
def canonicalizer(store, embeddings, disambiguation, settings) -> TopicCanonicalizer:
    return TopicCanonicalizer(store, embeddings, disambiguation, settings=settings)
