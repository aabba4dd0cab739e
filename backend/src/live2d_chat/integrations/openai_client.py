from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx


class OpenAIBackendError(RuntimeError):
    """Raised when the OpenAI-compatible backend cannot satisfy a request."""
    pass


log = logging.getLogger("live2d.integrations.openai")


def _stream_error_message(chunk: Any) -> Optional[str]:
    """Return the provider's message if ``chunk`` is an error object, else None.

    vLLM sends ``{"object": "error", "message": ...}``; OpenAI-style providers
    send ``{"error": {"message": ...}}``. Both arrive inside a 200 stream.
    """
    if not isinstance(chunk, dict):
        return None
    error = chunk.get("error")
    if error:
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error)
    if chunk.get("object") == "error":
        return str(chunk.get("message") or "unknown error")
    return None


class OpenAICompatibleClient:
    """Minimal async OpenAI-compatible client for streamed chat completions.

    Works with vLLM's OpenAI server and providers that expose the same schema.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.client = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json_payload: Dict[str, Any],
        headers_extra: Dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request and return the response with its body still unread."""
        url = f"{self.base_url}{path}"
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if headers_extra:
            headers.update(headers_extra)
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        log.debug("%s %s", method.upper(), url)
        request = self.client.build_request(method.upper(), url, headers=headers, json=json_payload)
        try:
            response = await self.client.send(request, stream=True)
        except httpx.ConnectError as exc:
            log.error("LLM backend unreachable at %s: %s", url, exc)
            raise OpenAIBackendError(
                f"Unable to reach the LLM backend ({self.base_url})."
                " Check that vLLM is running or that OPENAI_BASE_URL is correct."
            ) from exc
        except httpx.HTTPError as exc:
            log.error("LLM backend request failed for %s: %s", url, exc)
            raise OpenAIBackendError("Error while calling the LLM backend.") from exc
        if response.is_error:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            log.error("LLM backend returned %s for %s: %s", response.status_code, url, body)
            raise OpenAIBackendError(
                f"The LLM backend returned status {response.status_code}."
                " See its logs for details."
            )
        return response

    async def stream_chat_completions(
        self, *, model: str, messages: List[Dict[str, str]], **params: Any
    ) -> AsyncIterator[Dict[str, Any]]:
        """Stream OpenAI-compatible chat completions as raw SSE JSON chunks.

        Yields parsed JSON dicts from lines starting with ``data:``. Stops on ``[DONE]``.
        Closing the iterator early closes the upstream response.
        """
        headers_extra = {"Accept": "text/event-stream"}
        payload: Dict[str, Any] = {"model": model, "messages": messages, "stream": True}
        payload.update(params)
        response = await self._send(
            "post",
            "/chat/completions",
            json_payload=payload,
            headers_extra=headers_extra,
        )
        try:
            async for line in response.aiter_lines():
                if not line or not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError as exc:
                    log.error("Invalid SSE chunk: %s", exc)
                    continue
                message = _stream_error_message(chunk)
                if message is not None:
                    log.error("LLM backend reported an error mid-stream: %s", message)
                    raise OpenAIBackendError(f"The LLM backend reported an error: {message}")
                yield chunk
        except httpx.HTTPError as exc:
            log.error("LLM stream interrupted: %s", exc)
            raise OpenAIBackendError("The LLM backend stream was interrupted.") from exc
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()
