"""
Thin LLM client (Claude or GPT) that returns parsed JSON objects.

Shared by topic disambiguation, item analysis and interest-profile extraction.
Transport problems raise TransientExternalError; answers that are not a JSON
object raise MalformedResponseError.
"""
import asyncio
import json
import re
from typing import Any, Optional

import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from newslens.config import Settings, get_settings
from newslens.core.errors import MalformedResponseError, TransientExternalError

logger = structlog.get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

JSON_ONLY_SUFFIX = "\n\nRespond with a single JSON object and nothing else."


def parse_json_object(raw: str) -> dict[str, Any]:
    """
    Parse a model answer into a JSON object.

    Tolerates Markdown code fences and prose around the object.
    """
    text = _FENCE_RE.sub("", (raw or "").strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start < 0 or end <= start:
            raise MalformedResponseError(f"no JSON object in model output: {text[:120]!r}")
        try:
            data = json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"invalid JSON in model output: {e}") from e

    if not isinstance(data, dict):
        raise MalformedResponseError(f"expected JSON object, got {type(data).__name__}")
    return data


class LLMClient:
    """
    Service for JSON completions using LLMs.

    Anthropic is used when its key is configured, otherwise OpenAI.
    Without any key the client is unavailable and every call raises
    TransientExternalError, which callers treat as a soft failure.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._anthropic_client = None
        self._openai_client = None
        self._initialized = False

    @property
    def provider(self) -> Optional[str]:
        if self.settings.anthropic_api_key:
            return "anthropic"
        if self.settings.openai_api_key:
            return "openai"
        return None

    @property
    def available(self) -> bool:
        return self.provider is not None

    async def initialize(self):
        """Initialize the LLM client (lazy loading)."""
        if self._initialized:
            return
        if self.provider == "anthropic":
            from anthropic import AsyncAnthropic

            self._anthropic_client = AsyncAnthropic(
                api_key=self.settings.anthropic_api_key,
                timeout=self.settings.llm_timeout_seconds,
            )
        elif self.provider == "openai":
            from openai import AsyncOpenAI

            self._openai_client = AsyncOpenAI(
                api_key=self.settings.openai_api_key,
                timeout=self.settings.llm_timeout_seconds,
            )
        self._initialized = True

    async def complete_json(
        self,
        system: str,
        prompt: str,
        max_tokens: int = 800,
        retry_malformed: bool = True,
    ) -> dict[str, Any]:
        """
        Ask the model for a JSON object.

        When the first answer does not parse and `retry_malformed` is set,
        asks once more in strict JSON-object mode.
        """
        raw = await self._complete(system, prompt, max_tokens, json_mode=False)
        try:
            return parse_json_object(raw)
        except MalformedResponseError as e:
            if not retry_malformed:
                raise
            logger.info("llm.malformed.retry", provider=self.provider, error=str(e))

        raw = await self._complete(system, prompt + JSON_ONLY_SUFFIX, max_tokens, json_mode=True)
        return parse_json_object(raw)

    async def _complete(self, system: str, prompt: str, max_tokens: int, json_mode: bool) -> str:
        if not self.available:
            raise TransientExternalError("no LLM API key configured")
        await self.initialize()

        try:
            if self._anthropic_client:
                coro = self._complete_anthropic(system, prompt, max_tokens)
            else:
                coro = self._complete_openai(system, prompt, max_tokens, json_mode)
            return await asyncio.wait_for(
                coro,
                timeout=self.settings.llm_timeout_seconds * self.settings.llm_max_attempts,
            )
        except Exception as e:
            logger.warning("llm.request.failed", provider=self.provider, error=str(e))
            raise TransientExternalError(f"{self.provider} request failed: {e}") from e

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=5), reraise=True)
    async def _complete_anthropic(self, system: str, prompt: str, max_tokens: int) -> str:
        """Generate a completion using Claude."""
        response = await self._anthropic_client.messages.create(
            model=self.settings.anthropic_model,
            max_tokens=max_tokens,
            temperature=0,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.content[0].text.strip()

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=5), reraise=True)
    async def _complete_openai(self, system: str, prompt: str, max_tokens: int, json_mode: bool) -> str:
        """Generate a completion using GPT."""
        kwargs: dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await self._openai_client.chat.completions.create(
            model=self.settings.llm_model,
            max_tokens=max_tokens,
            temperature=0,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            **kwargs,
        )
        return (response.choices[0].message.content or "").strip()
