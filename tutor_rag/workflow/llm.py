from __future__ import annotations

import json
import os
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence

from openai import AsyncOpenAI

from tutor_rag.logging_config import get_logger
from tutor_rag.utils.types import CompletionOptions

logger = get_logger(__name__)

JSON_ONLY_INSTRUCTION = "IMPORTANT: Respond ONLY with valid JSON. No text before or after."
_FENCE_RE = re.compile(r"```[a-zA-Z]*\s*")


class EmbeddingService(Protocol):
    async def embed(self, text: str) -> List[float]: ...


class CompletionService(Protocol):
    async def complete(self, messages: Sequence[Dict[str, str]], options: CompletionOptions | None = None) -> str: ...

    async def complete_json(self, messages: Sequence[Dict[str, str]], options: CompletionOptions | None = None) -> Any: ...


class OpenAIEmbeddingService:
    """Embedding collaborator backed by the OpenAI embeddings endpoint.

    If no API key is provided, it falls back to a dummy key and remains inactive.
    """

    def __init__(self, api_key: Optional[str] = None, model: str = "text-embedding-3-small", dummy_key: str = "sk-dummy") -> None:
        self.api_key = api_key or os.getenv("OPENAI_API_KEY", dummy_key)
        self.model = model
        self.dummy_key = dummy_key
        self._client: Optional[AsyncOpenAI] = None
        if self.api_key and self.api_key != self.dummy_key:
            self._client = AsyncOpenAI(api_key=self.api_key)

    @property
    def is_active(self) -> bool:
        return self._client is not None

    async def embed(self, text: str) -> List[float]:
        if not self.is_active:
            raise RuntimeError("Embedding client is not configured with a valid API key.")
        try:
            response = await self._client.embeddings.create(model=self.model, input=text)
        except Exception as exc:
            raise RuntimeError(f"OpenAI embedding request failed: {exc}") from exc
        return list(response.data[0].embedding)


class OpenAICompletionService:
    """Completion collaborator: plain chat text and a lenient structured-JSON variant."""

    def __init__(self, api_key: Optional[str] = None, model: str = "gpt-4o-mini", dummy_key: str = "sk-dummy") -> None:
        self.api_key = api_key or os.getenv("OPENAI_API_KEY", dummy_key)
        self.model = model
        self.dummy_key = dummy_key
        self._client: Optional[AsyncOpenAI] = None
        if self.api_key and self.api_key != self.dummy_key:
            self._client = AsyncOpenAI(api_key=self.api_key)

    @property
    def is_active(self) -> bool:
        return self._client is not None

    async def complete(self, messages: Sequence[Dict[str, str]], options: CompletionOptions | None = None) -> str:
        if not self.is_active:
            raise RuntimeError("Completion client is not configured with a valid API key.")
        opts = options or CompletionOptions()
        model = opts.preferred_model or self.model
        try:
            response = await self._client.chat.completions.create(
                model=model,
                temperature=opts.temperature,
                max_tokens=opts.max_tokens,
                messages=list(messages),
            )
        except Exception as exc:
            raise RuntimeError(f"OpenAI completion failed: {exc}") from exc
        content = response.choices[0].message.content or ""
        logger.debug("Completion done | model=%s chars=%s", model, len(content))
        return content.strip()

    async def complete_json(self, messages: Sequence[Dict[str, str]], options: CompletionOptions | None = None) -> Any:
        prepared = [dict(message) for message in messages]
        if prepared and prepared[0].get("role") == "system":
            prepared[0]["content"] = f"{prepared[0]['content']}\n\n{JSON_ONLY_INSTRUCTION}"
        else:
            prepared.insert(0, {"role": "system", "content": JSON_ONLY_INSTRUCTION})
        opts = options or CompletionOptions(temperature=0.3)
        content = await self.complete(prepared, opts)
        return _extract_json(content)


def _extract_json(content: str) -> Any:
    """Parse JSON from a model reply that may carry code fences or chatter around it."""
    cleaned = _FENCE_RE.sub("", content or "").strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    spans = []
    for opener, closer in (("[", "]"), ("{", "}")):
        start = cleaned.find(opener)
        end = cleaned.rfind(closer)
        if start != -1 and end > start:
            spans.append((start, end))
    # the outermost structure starts first
    for start, end in sorted(spans):
        try:
            return json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError:
            continue
    logger.warning("Failed to parse JSON from LLM response: %s", (content or "")[:200])
    return {}
