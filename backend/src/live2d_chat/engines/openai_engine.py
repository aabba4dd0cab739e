from __future__ import annotations

from contextlib import aclosing
from typing import AsyncIterator, Callable, Optional, Sequence
import logging

from fastapi import HTTPException

from ..core.config import settings
from ..schemas.chat import ChatMessage, ChatResult
from ..integrations.openai_client import OpenAICompatibleClient


log = logging.getLogger("live2d.engines.openai")


class OpenAIChatEngine:
    """Client de complétion adossé à une API OpenAI-compatible (vLLM ou provider hébergé).

    Seul le mode streaming est exposé: chaque delta de contenu non vide devient
    un fragment ``ChatResult``.
    """

    def __init__(self, *, client: OpenAICompatibleClient, model: str):
        self.client = client
        self.model = model

    async def stream(self, messages: Sequence[ChatMessage]) -> AsyncIterator[ChatResult]:
        payload = [m.model_dump() for m in messages]
        chunks = self.client.stream_chat_completions(model=self.model, messages=payload)
        async with aclosing(chunks):
            async for chunk in chunks:
                try:
                    delta = chunk["choices"][0].get("delta") or {}
                    text = delta.get("content")
                except (KeyError, IndexError, TypeError, AttributeError) as e:
                    log.error("Invalid stream chunk: %s", e)
                    continue
                if text:
                    yield ChatResult.fragment(text)

    async def aclose(self) -> None:
        await self.client.aclose()


def build_engine() -> OpenAIChatEngine:
    """Build the engine for the configured ``LLM_MODE``.

    - ``local``: ``VLLM_BASE_URL`` + ``Z_LOCAL_MODEL``, no API key.
    - ``api``: ``OPENAI_BASE_URL`` + ``OPENAI_API_KEY`` + ``LLM_MODEL``.
    """
    if settings.llm_mode == "local":
        base_url = settings.vllm_base_url
        model = settings.z_local_model
        api_key = None
    else:
        base_url = settings.openai_base_url
        model = settings.llm_model
        api_key = settings.openai_api_key

    if not base_url or not model:
        raise HTTPException(status_code=500, detail="LLM base_url/model not configured")

    client = OpenAICompatibleClient(
        base_url=base_url,
        api_key=api_key,
        timeout_s=settings.openai_timeout_s,
    )
    return OpenAIChatEngine(client=client, model=model)


class LazyChatEngine:
    """Construit le moteur réel au premier appel de ``stream``.

    Une requête rejetée (401) ou réduite à une notice ne lit jamais la
    configuration LLM et n'ouvre aucun client HTTP.
    """

    def __init__(self, factory: Callable[[], OpenAIChatEngine] = build_engine):
        self.factory = factory
        self.engine: Optional[OpenAIChatEngine] = None

    def stream(self, messages: Sequence[ChatMessage]) -> AsyncIterator[ChatResult]:
        if self.engine is None:
            self.engine = self.factory()
        return self.engine.stream(messages)

    async def aclose(self) -> None:
        if self.engine is not None:
            await self.engine.aclose()
