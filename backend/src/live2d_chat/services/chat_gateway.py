from __future__ import annotations

import logging
from contextlib import aclosing
from typing import AsyncIterator, List, Protocol, Sequence, Type, TypeVar

from fastapi import HTTPException, status
from pydantic import BaseModel

from ..core.security import Authentication, is_authenticated
from ..schemas.chat import ChatMessage, ChatRequest, ChatResult
from ..schemas.settings import AICHAT_GROUP, AiChatConfig
from .setting_service import InvalidSettingError


log = logging.getLogger("live2d.services.chat")

M = TypeVar("M", bound=BaseModel)

# Shown to the widget when a visitor must log in before chatting
UNAUTHORIZED_DETAIL = "请先登录"


class SettingProvider(Protocol):
    async def fetch(self, group: str, model: Type[M]) -> M:
        ...


class AuthenticationProvider(Protocol):
    async def current(self) -> Authentication | None:
        ...


class CompletionClient(Protocol):
    def stream(self, messages: Sequence[ChatMessage]) -> AsyncIterator[ChatResult]:
        ...


def _preview_text(text: str, *, limit: int = 160) -> str:
    """Return a single-line preview capped at ``limit`` characters."""
    compact = " ".join(text.split())
    if len(compact) <= limit:
        return compact
    cutoff = max(limit - 3, 1)
    return f"{compact[:cutoff]}..."


def build_chat_messages(system_message: str, request: ChatRequest) -> List[ChatMessage]:
    """Prepend the configured system prompt to the caller's messages, order kept."""
    messages = [ChatMessage(role="system", content=system_message)]
    messages.extend(request.message)
    return messages


async def _single(result: ChatResult) -> AsyncIterator[ChatResult]:
    yield result


class ChatGateway:
    """Autorise une requête de chat et relaie le flux de complétion.

    ``process_chat`` fait toutes les vérifications en amont: une fois qu'il a
    rendu la main, seul le client de complétion peut encore échouer. Une
    configuration ``aichat`` invalide n'est pas une erreur HTTP: elle revient
    sous forme d'un flux à un seul élément, une notice portant le message.

    Le moteur n'est sollicité qu'après la lecture de la configuration et le
    contrôle d'accès.
    """

    def __init__(self, settings: SettingProvider, completion: CompletionClient):
        self.settings = settings
        self.completion = completion

    async def process_chat(
        self, request: ChatRequest, auth: AuthenticationProvider
    ) -> AsyncIterator[ChatResult]:
        try:
            config = await self.settings.fetch(AICHAT_GROUP, AiChatConfig)
        except InvalidSettingError as exc:
            log.warning("ChatGateway: invalid '%s' settings, replying with notice: %s", AICHAT_GROUP, exc)
            return _single(ChatResult.notice(str(exc)))

        base = config.ai_chat_base_setting
        if not base.is_anonymous:
            authentication = await auth.current()
            if not is_authenticated(authentication):
                log.info(
                    "ChatGateway: rejected caller principal=%s",
                    authentication.principal_name if authentication else None,
                )
                raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED_DETAIL)

        messages = build_chat_messages(base.system_message, request)
        last = request.message[-1] if request.message else None
        log.info(
            "ChatGateway.process_chat: count=%d last_role=%s preview=\"%s\" anonymous=%s",
            len(messages),
            last.role if last else "-",
            _preview_text(last.content) if last else "",
            base.is_anonymous,
        )
        return self._relay(self.completion.stream(messages))

    async def _relay(self, stream: AsyncIterator[ChatResult]) -> AsyncIterator[ChatResult]:
        count = 0
        async with aclosing(stream):
            async for result in stream:
                count += 1
                yield result
        log.info("ChatGateway: stream done fragments=%d", count)
