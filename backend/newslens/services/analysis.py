"""
Analysis service - LLM feature extraction for a single item.

The model scores an item from its title and short description only. Whatever
comes back is sanitized into AnalysisFeatures: scalars clamped, enums
filtered, lists capped. Topics are returned raw for the canonicalizer.
"""
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field

from newslens.core.text import truncate
from newslens.core.utils import clamp01
from newslens.models.domain import (
    SCALAR_FEATURES,
    AnalysisFeatures,
    EvidenceType,
    Genre,
    RawTopic,
)
from newslens.services.llm import LLMClient

logger = structlog.get_logger(__name__)

MAX_EVIDENCE_TYPES = 6
MAX_KEY_ENTITIES = 8
MAX_GEO_TARGETS = 5
MAX_TOPICS = 8
MAX_TAG_LENGTH = 40
MAX_ENTITY_LENGTH = 80
MAX_SUMMARY_LENGTH = 400

_GENRES = {g.value for g in Genre}
_EVIDENCE_TYPES = {e.value for e in EvidenceType}

SYSTEM_PROMPT = f"""You are a news analyst. Extract abstract ranking features and topic tags.
Rules:
- Judge only from the headline and the short description.
- Numeric fields are strictly within 0..1.
- "topics": up to {MAX_TOPICS} concise tags in the language of the item, no hashtags, no
  duplicates; "score" 0..1 is how strongly the item matches the tag.
- Answer with JSON only, no comments.

JSON keys:
{", ".join(SCALAR_FEATURES)} (numbers 0..1),
genre (one of {", ".join(sorted(_GENRES))}),
evidence_types (up to {MAX_EVIDENCE_TYPES} of {", ".join(sorted(_EVIDENCE_TYPES))}),
key_entities (up to {MAX_KEY_ENTITIES} strings), geo_targets (up to {MAX_GEO_TARGETS} strings),
topics (list of {{"tag": str, "score": number}}), summary_2sents (two sentences, max {MAX_SUMMARY_LENGTH} chars)."""


class AnalysisResult(BaseModel):
    """Sanitized features plus the raw topic tags awaiting canonicalization."""

    features: AnalysisFeatures
    raw_topics: list[RawTopic] = Field(default_factory=list)


def _string_list(value: Any, max_items: int, max_length: int = MAX_ENTITY_LENGTH) -> list[str]:
    if not isinstance(value, list):
        return []
    out: list[str] = []
    for v in value:
        if isinstance(v, (str, int, float)) and str(v).strip():
            out.append(truncate(str(v).strip(), max_length))
        if len(out) >= max_items:
            break
    return out


def _raw_topics(value: Any) -> list[RawTopic]:
    """Case-insensitive dedup, tags truncated, at most MAX_TOPICS."""
    if not isinstance(value, list):
        return []
    seen: set[str] = set()
    topics: list[RawTopic] = []
    for entry in value:
        if not isinstance(entry, dict):
            continue
        tag = truncate(str(entry.get("tag") or "").strip().lower(), MAX_TAG_LENGTH).strip()
        if not tag or tag in seen:
            continue
        seen.add(tag)
        topics.append(RawTopic(tag=tag, score=clamp01(entry.get("score"))))
        if len(topics) >= MAX_TOPICS:
            break
    return topics


def sanitize_analysis(data: dict[str, Any]) -> AnalysisResult:
    """Coerce a model answer into bounded features; never raises on content."""
    scalars = {name: clamp01(data[name]) for name in SCALAR_FEATURES if name in data}

    genre = data.get("genre")
    if genre is not None:
        genre = genre if isinstance(genre, str) and genre in _GENRES else Genre.OTHER.value

    evidence: list[str] = []
    raw_evidence = data.get("evidence_types")
    for e in raw_evidence if isinstance(raw_evidence, list) else []:
        if isinstance(e, str) and e in _EVIDENCE_TYPES and e not in evidence:
            evidence.append(e)
    evidence = evidence[:MAX_EVIDENCE_TYPES]

    summary = data.get("summary_2sents")
    if not isinstance(summary, str) or not summary.strip():
        summary = None

    features = AnalysisFeatures(
        **scalars,
        genre=genre,
        evidence_types=evidence,
        key_entities=_string_list(data.get("key_entities"), MAX_KEY_ENTITIES),
        geo_targets=_string_list(data.get("geo_targets"), MAX_GEO_TARGETS),
        summary=truncate(summary.strip(), MAX_SUMMARY_LENGTH) if summary else None,
    )
    return AnalysisResult(features=features, raw_topics=_raw_topics(data.get("topics")))


class AnalysisService:
    """Extracts AnalysisFeatures for an item through the LLM client."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    async def analyze(self, title: str, summary: Optional[str] = None) -> AnalysisResult:
        """
        Raises:
            TransientExternalError: the model could not be reached
            MalformedResponseError: both attempts returned no JSON object
        """
        prompt = f"News item:\nHeadline: {title}\nDescription: {summary or ''}\n\nReturn the JSON object."
        data = await self.llm.complete_json(SYSTEM_PROMPT, prompt, max_tokens=900)
        result = sanitize_analysis(data)

        if not result.features.has_scalars():
            logger.warning("analysis.no_scalars", title=title)
        return result
