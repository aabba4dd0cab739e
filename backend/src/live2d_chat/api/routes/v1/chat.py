import logging
from typing import AsyncIterator

import anyio
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from starlette.responses import StreamingResponse

from ....schemas.chat import ChatRequest, ChatResult
from ....core.database import get_session
from ....core.security import RequestAuthentication, get_request_authentication
from ....engines.openai_engine import LazyChatEngine
from ....integrations.openai_client import OpenAIBackendError
from ....repositories.plugin_setting_repository import PluginSettingRepository
from ....services.chat_gateway import ChatGateway
from ....services.setting_service import SettingFetcher, SettingService
from ....utils.streams import close_stream, prime

log = logging.getLogger("live2d.api.chat")

router = APIRouter(prefix="/live2d/ai")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}


def _sse(result: ChatResult) -> bytes:
    return f"data: {result.model_dump_json()}\n\n".encode("utf-8")


def get_setting_fetcher(session: Session = Depends(get_session)) -> SettingFetcher:
    return SettingFetcher(SettingService(PluginSettingRepository(session)))


def get_completion_engine() -> LazyChatEngine:
    return LazyChatEngine()


@router.post(
    "/chat-process",
    operation_id="chatCompletion",
    description="Chat completion",
    response_class=StreamingResponse,
    responses={200: {"content": {"text/event-stream": {}}}},
)
async def chat_process(
    payload: ChatRequest,
    auth: RequestAuthentication = Depends(get_request_authentication),
    fetcher: SettingFetcher = Depends(get_setting_fetcher),
    engine: LazyChatEngine = Depends(get_completion_engine),
):
    """SSE streaming of the chat completion.

    Each event carries one JSON ``ChatResult``. Authorization and the first
    upstream read happen before the response starts, so 401 and backend
    failures are reported as HTTP errors rather than inside the stream.
    """
    gateway = ChatGateway(fetcher, engine)
    try:
        stream = await prime(await gateway.process_chat(payload, auth))
    except OpenAIBackendError as exc:
        await engine.aclose()
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except BaseException:
        await engine.aclose()
        raise

    async def generate() -> AsyncIterator[bytes]:
        try:
            async for result in stream:
                yield _sse(result)
        except OpenAIBackendError as exc:
            log.error("Chat stream aborted by backend: %s", exc)
            raise
        finally:
            # Runs on client disconnect too; the upstream must be closed despite the cancellation
            with anyio.CancelScope(shield=True):
                await close_stream(stream)
                await engine.aclose()

    return StreamingResponse(generate(), media_type="text/event-stream", headers=SSE_HEADERS)
