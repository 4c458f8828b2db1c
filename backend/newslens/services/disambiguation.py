"""
LLM disambiguation of a topic surface form into a canonical name.
"""
from typing import Optional

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from newslens.core.errors import MalformedResponseError
from newslens.services.llm import LLMClient

logger = structlog.get_logger(__name__)

MAX_SYNONYMS = 8

SYSTEM_PROMPT = """You normalize topic tags for a news recommendation system.
Return a short canonical tag in the same language as the input and, where it makes
sense, its broader parent category (family). If there is no parent category,
return parent as an empty string "".
Always return the keys canonical, parent and synonyms, even when empty.
Output JSON only: {"canonical": str, "parent": str, "synonyms": [str, ...]}"""


class Disambiguation(BaseModel):
    """What the model proposed for one surface tag."""

    canonical: str = Field(min_length=2, max_length=40)
    parent: Optional[str] = Field(default=None, max_length=40)
    synonyms: list[str] = Field(default_factory=list)

    model_config = {"strict": True}

    @field_validator("synonyms", mode="before")
    @classmethod
    def cap_synonyms(cls, v):
        return v[:MAX_SYNONYMS] if isinstance(v, list) else v

    @field_validator("canonical")
    @classmethod
    def strip_canonical(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("canonical must have at least 2 characters")
        return v

    @field_validator("parent")
    @classmethod
    def empty_parent_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()


class TopicDisambiguationService:
    """Asks the LLM for {canonical, parent, synonyms} for a normalized tag."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    @property
    def available(self) -> bool:
        return self.llm.available

    async def disambiguate(self, surface: str) -> Disambiguation:
        """
        Raises:
            TransientExternalError: transport failure or no client configured
            MalformedResponseError: answer missing or violating the schema
        """
        data = await self.llm.complete_json(
            SYSTEM_PROMPT,
            f"Normalize this tag: {surface}\nReturn JSON.",
            max_tokens=200,
        )
        try:
            result = Disambiguation.model_validate(data)
        except ValidationError as e:
            raise MalformedResponseError(f"disambiguation schema violated: {e.error_count()} errors") from e

        logger.debug(
            "topic.disambiguated",
            surface=surface,
            canonical=result.canonical,
            parent=result.parent,
            synonyms=len(result.synonyms),
        )
        return result
