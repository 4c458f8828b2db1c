"""
Application configuration using Pydantic Settings.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CanonicalizerSettings(BaseSettings):
    """Thresholds and confidences for topic canonicalization."""

    model_config = SettingsConfigDict(env_prefix="TOPIC_")

    similarity_threshold: float = Field(
        default=0.82,
        ge=0.0,
        le=1.0,
        description="Minimum cosine similarity to reuse an existing canonical topic",
    )
    embedding_cache_ttl_seconds: float = Field(
        default=300.0,
        description="Time-to-live of the cached canonical embedding list",
    )
    max_canonical: int = Field(
        default=5000,
        description="Vocabulary size above which LLM disambiguation is suppressed",
    )
    llm_disambiguation: bool = Field(default=True)

    # Confidences attached to each resolution tier
    alias_default_confidence: float = Field(default=0.9, ge=0.0, le=1.0)
    llm_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    synonym_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    fallback_confidence: float = Field(default=0.3, ge=0.0, le=1.0)


class RankingWeights(BaseSettings):
    """Weights for the personalized ranking formula."""

    model_config = SettingsConfigDict(env_prefix="RANKING_")

    # Component weights for final score
    profile_weight: float = Field(default=0.8, ge=0.0, le=1.0)
    quality_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    feedback_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    base_weight: float = Field(default=0.05, ge=0.0, le=1.0)

    # Share of the feedback term taken by topical feedback (rest: latent quality taste)
    feedback_topic_share: float = Field(default=0.6, ge=0.0, le=1.0)

    # Heuristic base term is scaled down once analysis features exist
    enriched_base_scale: float = Field(default=0.2, ge=0.0, le=1.0)

    # Candidate window
    window_hours: int = Field(default=24, ge=1)
    candidate_limit: int = Field(default=800, ge=1)
    default_limit: int = Field(default=10, ge=1, le=100)
    digest_limit: int = Field(default=8, ge=1, le=100)
    digest_window_hours: int = Field(default=48, ge=1)

    @field_validator("profile_weight", "quality_weight", "feedback_weight", "base_weight")
    @classmethod
    def validate_weights(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("Weights must be between 0 and 1")
        return v


class DiversitySettings(BaseSettings):
    """Quota parameters for topic diversification."""

    model_config = SettingsConfigDict(env_prefix="DIVERSITY_")

    enabled: bool = Field(default=True)
    top_k: int = Field(default=4, ge=1, description="Number of profile topics that get buckets")
    min_assign_score: float = Field(default=0.05, ge=0.0, le=1.0)
    min_per_topic: int = Field(default=1, ge=0)
    max_share: float = Field(default=0.5, gt=0.0, le=1.0)
    substring_match_factor: float = Field(default=0.6, ge=0.0, le=1.0)


class EnrichmentSettings(BaseSettings):
    """Worker pool settings for the enrichment pass."""

    model_config = SettingsConfigDict(env_prefix="ENRICH_")

    concurrency: int = Field(default=12, ge=1)
    batch_limit: int = Field(default=150, ge=1)
    window_hours: int = Field(default=48, ge=1)
    interval_minutes: int = Field(default=15, ge=1)
    max_attempts: int = Field(
        default=5,
        ge=1,
        description="Pending items that failed this many times are no longer picked up",
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "NewsLens"
    app_version: str = "0.1.0"
    debug: bool = Field(default=False)
    environment: Literal["development", "staging", "production"] = "development"

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./newslens.db",
        description="Async database URL (SQLAlchemy format)",
    )

    # API Keys (all optional for local development)
    anthropic_api_key: str | None = Field(default=None)
    openai_api_key: str | None = Field(default=None)

    # LLM
    llm_model: str = Field(default="gpt-4o-mini")
    anthropic_model: str = Field(default="claude-3-haiku-20240307")
    llm_timeout_seconds: float = Field(default=30.0, gt=0.0)
    llm_max_attempts: int = Field(default=3, ge=1)

    # Embeddings
    embedding_backend: Literal["auto", "openai", "local", "hash"] = Field(default="auto")
    embedding_model: str = Field(default="sentence-transformers/all-MiniLM-L6-v2")
    openai_embedding_model: str = Field(default="text-embedding-3-small")
    embedding_dimension: int = Field(default=384, ge=8)

    # Scheduler
    scheduler_enabled: bool = Field(default=False)
    seed_vocabulary_on_startup: bool = Field(default=False)

    # Nested groups
    canonicalizer: CanonicalizerSettings = Field(default_factory=CanonicalizerSettings)
    ranking: RankingWeights = Field(default_factory=RankingWeights)
    diversity: DiversitySettings = Field(default_factory=DiversitySettings)
    enrichment: EnrichmentSettings = Field(default_factory=EnrichmentSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
