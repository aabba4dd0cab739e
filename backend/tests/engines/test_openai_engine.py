import asyncio
import json
from typing import Any, Dict, List

import httpx
import pytest
from fastapi import HTTPException

from live2d_chat.core.config import settings
from live2d_chat.engines.openai_engine import LazyChatEngine, OpenAIChatEngine, build_engine
from live2d_chat.integrations.openai_client import OpenAIBackendError, OpenAICompatibleClient
from live2d_chat.schemas.chat import ChatMessage, ChatResult


def chunk(content: str | None = None, finish: str | None = None) -> Dict[str, Any]:
    delta = {} if content is None else {"content": content}
    return {"choices": [{"index": 0, "delta": delta, "finish_reason": finish}]}


def sse_body(*lines: str) -> bytes:
    return "".join(f"{line}\n\n" for line in lines).encode("utf-8")


def make_engine(handler, *, api_key: str | None = None) -> OpenAIChatEngine:
    client = OpenAICompatibleClient(
        base_url="http://llm.test/v1/",
        api_key=api_key,
        transport=httpx.MockTransport(handler),
    )
    return OpenAIChatEngine(client=client, model="test-model")


def collect(engine: OpenAIChatEngine, messages: List[ChatMessage]) -> List[ChatResult]:
    async def _run():
        try:
            return [item async for item in engine.stream(messages)]
        finally:
            await engine.aclose()

    return asyncio.run(_run())


def test_stream_maps_content_deltas_to_fragments():
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = sse_body(
            f"data: {json.dumps(chunk(''))}",
            f"data: {json.dumps(chunk('Bon'))}",
            ": keep-alive",
            f"data: {json.dumps(chunk('jour'))}",
            f"data: {json.dumps(chunk(finish='stop'))}",
            "data: [DONE]",
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    engine = make_engine(handler, api_key="sk-test")
    messages = [ChatMessage(role="system", content="sys"), ChatMessage(role="user", content="hi")]

    results = collect(engine, messages)

    assert results == [ChatResult.fragment("Bon"), ChatResult.fragment("jour")]
    request = seen[0]
    assert str(request.url) == "http://llm.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    payload = json.loads(request.content)
    assert payload["stream"] is True
    assert payload["model"] == "test-model"
    assert payload["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "hi"},
    ]


def test_stream_skips_malformed_chunks():
    def handler(request: httpx.Request) -> httpx.Response:
        body = sse_body(
            "data: {not json",
            f"data: {json.dumps({'choices': []})}",
            f"data: {json.dumps(chunk('ok'))}",
            "data: [DONE]",
        )
        return httpx.Response(200, content=body)

    assert collect(make_engine(handler), []) == [ChatResult.fragment("ok")]


def test_stream_stops_at_done_marker():
    def handler(request: httpx.Request) -> httpx.Response:
        body = sse_body(
            f"data: {json.dumps(chunk('a'))}",
            "data: [DONE]",
            f"data: {json.dumps(chunk('ignored'))}",
        )
        return httpx.Response(200, content=body)

    assert [r.text for r in collect(make_engine(handler), [])] == ["a"]


def test_error_status_raises_backend_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="overloaded")

    with pytest.raises(OpenAIBackendError, match="status 500"):
        collect(make_engine(handler), [])


def test_unreachable_backend_raises_backend_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(OpenAIBackendError, match="Unable to reach"):
        collect(make_engine(handler), [])


class TrackingStream(httpx.AsyncByteStream):
    def __init__(self, lines: List[str]):
        self.lines = lines
        self.closed = False

    async def __aiter__(self):
        for line in self.lines:
            yield f"{line}\n\n".encode("utf-8")

    async def aclose(self) -> None:
        self.closed = True


def test_stream_raises_on_error_object_after_fragments():
    def handler(request: httpx.Request) -> httpx.Response:
        body = sse_body(
            f"data: {json.dumps(chunk('par'))}",
            f"data: {json.dumps({'object': 'error', 'message': 'CUDA OOM'})}",
            "data: [DONE]",
        )
        return httpx.Response(200, content=body)

    engine = make_engine(handler)
    received: List[ChatResult] = []

    async def _run():
        try:
            async for item in engine.stream([]):
                received.append(item)
        finally:
            await engine.aclose()

    with pytest.raises(OpenAIBackendError, match="CUDA OOM"):
        asyncio.run(_run())
    assert received == [ChatResult.fragment("par")]


def test_stream_raises_on_nested_error_payload():
    def handler(request: httpx.Request) -> httpx.Response:
        body = sse_body(
            f"data: {json.dumps({'error': {'message': 'Rate limit reached', 'type': 'requests'}})}",
            "data: [DONE]",
        )
        return httpx.Response(200, content=body)

    with pytest.raises(OpenAIBackendError, match="Rate limit reached"):
        collect(make_engine(handler), [])


def test_stream_ignores_null_error_field():
    def handler(request: httpx.Request) -> httpx.Response:
        payload = chunk("ok")
        payload["error"] = None
        return httpx.Response(200, content=sse_body(f"data: {json.dumps(payload)}", "data: [DONE]"))

    assert collect(make_engine(handler), []) == [ChatResult.fragment("ok")]


def test_closing_stream_early_closes_upstream_response():
    upstream = TrackingStream([
        f"data: {json.dumps(chunk('first'))}",
        f"data: {json.dumps(chunk('second'))}",
        "data: [DONE]",
    ])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, stream=upstream)

    engine = make_engine(handler)

    async def _run():
        stream = engine.stream([ChatMessage(role="user", content="hi")])
        try:
            first = await stream.__anext__()
            assert upstream.closed is False
            await stream.aclose()
            return first
        finally:
            await engine.aclose()

    assert asyncio.run(_run()) == ChatResult.fragment("first")
    assert upstream.closed is True


def test_lazy_engine_builds_only_when_streaming():
    built: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=sse_body(f"data: {json.dumps(chunk('hi'))}", "data: [DONE]"))

    def factory() -> OpenAIChatEngine:
        built.append("engine")
        return make_engine(handler)

    lazy = LazyChatEngine(factory)
    asyncio.run(lazy.aclose())
    assert built == []

    async def _run():
        try:
            return [item async for item in lazy.stream([])]
        finally:
            await lazy.aclose()

    assert asyncio.run(_run()) == [ChatResult.fragment("hi")]
    assert built == ["engine"]


def test_lazy_engine_surfaces_missing_configuration_on_stream(monkeypatch):
    monkeypatch.setattr(settings, "llm_mode", "api")
    monkeypatch.setattr(settings, "openai_base_url", None)

    lazy = LazyChatEngine()
    with pytest.raises(HTTPException) as exc:
        lazy.stream([])
    assert exc.value.status_code == 500
    assert lazy.engine is None


def test_build_engine_requires_base_url_and_model(monkeypatch):
    monkeypatch.setattr(settings, "llm_mode", "api")
    monkeypatch.setattr(settings, "openai_base_url", None)
    monkeypatch.setattr(settings, "llm_model", "gpt")

    with pytest.raises(HTTPException) as exc:
        build_engine()
    assert exc.value.status_code == 500


def test_build_engine_uses_api_provider(monkeypatch):
    monkeypatch.setattr(settings, "llm_mode", "api")
    monkeypatch.setattr(settings, "openai_base_url", "https://api.example.com/v1")
    monkeypatch.setattr(settings, "openai_api_key", "sk-live")
    monkeypatch.setattr(settings, "llm_model", "gpt-4o-mini")

    engine = build_engine()
    try:
        assert engine.model == "gpt-4o-mini"
        assert engine.client.base_url == "https://api.example.com/v1"
        assert engine.client.api_key == "sk-live"
    finally:
        asyncio.run(engine.aclose())


def test_build_engine_uses_local_vllm_without_key(monkeypatch):
    monkeypatch.setattr(settings, "llm_mode", "local")
    monkeypatch.setattr(settings, "vllm_base_url", "http://localhost:9000/v1")
    monkeypatch.setattr(settings, "z_local_model", "GLM-4.5-Air")
    monkeypatch.setattr(settings, "openai_api_key", "ignored")

    engine = build_engine()
    try:
        assert engine.model == "GLM-4.5-Air"
        assert engine.client.api_key is None
    finally:
        asyncio.run(engine.aclose())
