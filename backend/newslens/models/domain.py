"""
Domain models for NewsLens.
These are the core business entities, independent of database/API representation.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from newslens.core.utils import clamp01, utcnow


# =============================================================================
# Enums
# =============================================================================

class Genre(str, Enum):
    """Editorial genre reported by the analysis service."""
    HARD_NEWS = "hard_news"
    LIVE_UPDATE = "live_update"
    ANALYSIS = "analysis"
    OPINION = "opinion"
    INTERVIEW = "interview"
    PRESS_RELEASE = "press_release"
    FEATURE = "feature"
    OTHER = "other"


class EvidenceType(str, Enum):
    """Allow-list of evidence kinds an item may cite."""
    OFFICIAL = "official"
    COMPANY = "company"
    COURT = "court"
    ACADEMIC = "academic"
    DATASET = "dataset"
    EYEWITNESS = "eyewitness"
    LEAK = "leak"
    MEDIA = "media"
    UNKNOWN = "unknown"


class ResolutionMethod(str, Enum):
    """Which tier of the canonicalizer produced a resolution."""
    MEMORY = "memory"
    ALIAS = "alias"
    EMBEDDING = "embedding"
    LLM = "llm"
    VOCABULARY = "vocabulary"
    FALLBACK = "fallback"


# Features that raise / lower the quality composite
POSITIVE_FEATURES = (
    "evidence_strength",
    "fact_density",
    "actionability",
    "time_criticality",
    "harm_severity",
    "geo_scope_score",
)
NEGATIVE_FEATURES = (
    "uncertainty",
    "sensationalism",
    "bias_risk",
    "polarization_risk",
)
SCALAR_FEATURES = POSITIVE_FEATURES + NEGATIVE_FEATURES + ("followup_potential",)

HEURISTIC_FIELDS = ("importance", "hype", "prominence", "novelty", "quality")


# =============================================================================
# Topics
# =============================================================================

class RawTopic(BaseModel):
    """A surface tag as produced by enrichment, before canonicalization."""
    tag: str
    score: float = 0.0

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return clamp01(v)


class TopicTag(BaseModel):
    """A canonical topic attached to an item."""
    tag: str = Field(min_length=1)
    score: float = 0.0
    family: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return clamp01(v)

    @model_validator(mode="after")
    def default_family(self) -> "TopicTag":
        if not self.family:
            self.family = self.tag
        return self


class CanonicalTopic(BaseModel):
    """One entry of the controlled vocabulary."""
    canonical: str = Field(min_length=1)
    parent: Optional[str] = None
    embedding: Optional[list[float]] = None
    aliases: list[str] = Field(default_factory=list)

    @property
    def family(self) -> str:
        return self.parent or self.canonical


class AliasMapping(BaseModel):
    """Normalized surface form -> canonical topic."""
    alias: str = Field(min_length=1)
    canonical: str = Field(min_length=1)
    confidence: float = 0.9

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v):
        return clamp01(v)


class ResolvedTopic(BaseModel):
    """Result of canonicalizing one surface tag."""
    canonical: str
    family: str
    confidence: float
    method: ResolutionMethod

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v):
        return clamp01(v)


# =============================================================================
# Items
# =============================================================================

class HeuristicScores(BaseModel):
    """Cheap ingestion-time scores, each in [0, 1] or absent."""
    importance: Optional[float] = None
    hype: Optional[float] = None
    prominence: Optional[float] = None
    novelty: Optional[float] = None
    quality: Optional[float] = None

    @field_validator(*HEURISTIC_FIELDS, mode="before")
    @classmethod
    def clamp_scores(cls, v):
        return None if v is None else clamp01(v)

    @property
    def is_complete(self) -> bool:
        return all(getattr(self, name) is not None for name in HEURISTIC_FIELDS)


class AnalysisFeatures(BaseModel):
    """Features written once by enrichment."""
    evidence_strength: Optional[float] = None
    fact_density: Optional[float] = None
    uncertainty: Optional[float] = None
    bias_risk: Optional[float] = None
    sensationalism: Optional[float] = None
    geo_scope_score: Optional[float] = None
    harm_severity: Optional[float] = None
    polarization_risk: Optional[float] = None
    time_criticality: Optional[float] = None
    actionability: Optional[float] = None
    followup_potential: Optional[float] = None

    genre: Optional[Genre] = None
    evidence_types: list[EvidenceType] = Field(default_factory=list)
    key_entities: list[str] = Field(default_factory=list)
    geo_targets: list[str] = Field(default_factory=list)
    topics: list[TopicTag] = Field(default_factory=list)
    summary: Optional[str] = None

    @field_validator(*SCALAR_FEATURES, mode="before")
    @classmethod
    def clamp_scalars(cls, v):
        return None if v is None else clamp01(v)

    def has_scalars(self) -> bool:
        return any(getattr(self, name) is not None for name in SCALAR_FEATURES)


class Item(BaseModel):
    """Core content item."""
    id: str
    url: str = ""
    source: str = ""
    title: str
    summary: str = ""
    published_at: datetime
    source_weight: float = 0.8

    heuristics: HeuristicScores = Field(default_factory=HeuristicScores)
    analysis: Optional[AnalysisFeatures] = None

    @field_validator("source_weight", mode="before")
    @classmethod
    def clamp_source_weight(cls, v):
        return clamp01(v, default=0.8)

    @property
    def topics(self) -> list[TopicTag]:
        return self.analysis.topics if self.analysis else []

    @property
    def is_enriched(self) -> bool:
        return self.analysis is not None


# =============================================================================
# Users
# =============================================================================

class ScoreWeights(BaseModel):
    """Declared weights over the five heuristic scores."""
    I: float = 0.35
    H: float = 0.2
    P: float = 0.2
    N: float = 0.15
    Q: float = 0.1

    @field_validator("I", "H", "P", "N", "Q", mode="before")
    @classmethod
    def clamp_weights(cls, v):
        return clamp01(v)


class InterestTopic(BaseModel):
    """One declared interest."""
    tag: str = Field(min_length=1, max_length=80)
    weight: float = 0.6
    synonyms: list[str] = Field(default_factory=list, max_length=8)
    family: Optional[str] = None

    @field_validator("weight", mode="before")
    @classmethod
    def clamp_weight(cls, v):
        return clamp01(v)

    @field_validator("tag")
    @classmethod
    def strip_tag(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("tag must not be blank")
        return v


class InterestProfile(BaseModel):
    """Strict schema for a user's interest profile."""
    topics: list[InterestTopic] = Field(default_factory=list, max_length=24)


class UserProfile(BaseModel):
    """Everything ranking needs to know about a user."""
    user_id: str
    score_weights: ScoreWeights = Field(default_factory=ScoreWeights)
    prompt_text: str = ""
    interest_profile: Optional[InterestProfile] = None
    paused: bool = False

    @property
    def interest_topics(self) -> list[InterestTopic]:
        return self.interest_profile.topics if self.interest_profile else []


class FeedbackRecord(BaseModel):
    """A user's like / dislike / neutral vote on an item."""
    user_id: str
    item_id: str
    vote: int = Field(ge=-1, le=1)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Ranking output
# =============================================================================

class RankedCandidate(BaseModel):
    """An item with every scoring component exposed."""
    item: Item
    profile_relevance: float = 0.0
    quality_composite: float = 0.0
    feedback_topic: float = 0.0
    feedback_latent_term: float = 0.0
    feedback_adjustment: float = 0.0
    base: float = 0.0
    base_term: float = 0.0
    final_score: float = 0.0
    bucket: Optional[str] = None


class DeliveryItem(BaseModel):
    """Compact shape consumed by the delivery layer."""
    item_id: str
    title: str
    url: str
    source: str
    score: float

    @classmethod
    def from_candidate(cls, candidate: RankedCandidate) -> "DeliveryItem":
        item = candidate.item
        return cls(
            item_id=item.id,
            title=item.title,
            url=item.url,
            source=item.source,
            score=round(candidate.final_score, 2),
        )


class PendingEnrichment(BaseModel):
    """Row of the durable enrichment queue."""
    item_id: str
    enqueued_at: datetime
    attempts: int = 0
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None
