"""
OpenAI-compatible chat-completion provider.

Works with any endpoint that speaks the OpenAI ``/v1/chat/completions`` wire
protocol -- OpenAI itself, DeepSeek, vLLM, LM Studio, LocalAI, etc.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from modelcli.llm.providers.base import Provider
from modelcli.llm.types import RawToolDelta, StreamChunk

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"

_REASONING_SWITCHES = ("reasoning", "reasoning_mode", "enable_reasoning", "supports_reasoning")


def extract_reasoning_text(blocks: Any) -> str:
    """Flatten the shapes ``reasoning_content`` comes in to plain text."""
    if not blocks:
        return ""
    if isinstance(blocks, str):
        return blocks
    if isinstance(blocks, list):
        parts = []
        for entry in blocks:
            if isinstance(entry, str):
                parts.append(entry)
            elif isinstance(entry, dict):
                text = entry.get("text")
                if not isinstance(text, str):
                    text = entry.get("content")
                if isinstance(text, str):
                    parts.append(text)
        return "".join(parts)
    if isinstance(blocks, dict):
        for key in ("text", "content"):
            if isinstance(blocks.get(key), str):
                return blocks[key]
    return ""


def extract_content_text(content: Any) -> str:
    """Content is a string, or a list of ``{"type": "text", "text": ...}`` parts."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part["text"]
            for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
    return ""


class OpenAICompatProvider(Provider):
    """Stream-capable provider for any OpenAI-API-compatible endpoint."""

    name = "openai"

    def __init__(self, settings, **kwargs) -> None:
        super().__init__(settings, **kwargs)
        self._url = (settings.base_url or DEFAULT_BASE_URL).rstrip("/")
        self._supports_reasoning = self._detect_reasoning_support()

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    def supports_reasoning_content(self) -> bool:
        return self._supports_reasoning

    def _detect_reasoning_support(self) -> bool:
        for key in _REASONING_SWITCHES:
            if self.settings.extra.get(key) is not None:
                return bool(self.settings.extra[key])
        model_id = (self.settings.model or "").lower()
        return "reasoner" in model_id or "reasoning" in model_id

    async def events(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        stream: bool = True,
    ) -> AsyncIterator[StreamChunk]:
        body = self._build_body(messages, tools, stream)
        headers = self._build_headers()

        if stream:
            async for chunk in self._stream_request(body, headers):
                yield chunk
        else:
            yield await self._sync_request(body, headers)

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "Authorization": f"Bearer {self._require_api_key()}",
        }
        for key, value in self.settings.extra_headers.items():
            headers[key] = str(value)
        return headers

    def _build_body(
        self,
        messages: list[dict],
        tools: list[dict] | None,
        stream: bool,
    ) -> dict:
        body: dict = {
            "model": self.settings.model,
            "messages": messages,
            "stream": stream,
        }
        if self.settings.temperature is not None:
            body["temperature"] = self.settings.temperature
        if self.settings.max_output_tokens is not None:
            body["max_tokens"] = self.settings.max_output_tokens
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"
        body.update(self.settings.extra_body)
        logger.info(
            "REQUEST: model=%s tools=%d messages=%d stream=%s",
            self.settings.model,
            len(tools) if tools else 0,
            len(messages),
            stream,
        )
        return body

    # ------------------------------------------------------------------
    # Streaming request
    # ------------------------------------------------------------------

    async def _stream_request(
        self,
        body: dict,
        headers: dict[str, str],
    ) -> AsyncIterator[StreamChunk]:
        url = f"{self._url}/chat/completions"

        last_error: Exception | None = None
        for attempt in range(1 + self._max_retries):
            # Once a chunk has reached the caller the request cannot be replayed.
            yielded = False
            try:
                async with self._client() as client:
                    async with client.stream(
                        "POST", url, json=body, headers=headers
                    ) as response:
                        if response.status_code == 429 or response.status_code >= 500:
                            # Retryable -- read body so the connection is released.
                            await response.aread()
                            last_error = httpx.HTTPStatusError(
                                f"HTTP {response.status_code}",
                                request=response.request,
                                response=response,
                            )
                            continue

                        if response.is_error:
                            await response.aread()
                        response.raise_for_status()

                        async for chunk in self._parse_sse_stream(response):
                            yielded = True
                            yield chunk
                        return  # success
            except httpx.TransportError as exc:
                last_error = exc
                if not yielded and attempt < self._max_retries:
                    continue
                raise

        if last_error is not None:
            raise last_error

    async def _parse_sse_stream(
        self, response: httpx.Response
    ) -> AsyncIterator[StreamChunk]:
        """
        Parse Server-Sent Events from the response.

        Each SSE event has the form::

            data: {json}\\n\\n

        The sentinel ``data: [DONE]`` terminates the stream.
        """
        async for line in response.aiter_lines():
            line = line.rstrip("\r")
            if not line or not line.startswith("data:"):
                # Blank lines separate events; comments and other fields
                # carry nothing we use.
                continue

            data_str = line[len("data:"):].strip()
            if data_str == "[DONE]":
                yield StreamChunk(done=True)
                return

            try:
                data = json.loads(data_str)
            except json.JSONDecodeError:
                logger.warning("Failed to parse SSE data: %s", data_str[:200])
                continue

            chunk = self._sse_data_to_chunk(data)
            if chunk is not None:
                yield chunk

        # The stream ended without [DONE].
        yield StreamChunk(done=True)

    def _sse_data_to_chunk(self, data: dict) -> StreamChunk | None:
        """Convert a parsed SSE ``data`` payload into a ``StreamChunk``."""
        choices = data.get("choices")
        if not choices:
            return None

        choice = choices[0]
        delta = choice.get("delta") or {}

        tool_deltas: list[RawToolDelta] | None = None
        raw_tcs = delta.get("tool_calls")
        if isinstance(raw_tcs, list) and raw_tcs:
            tool_deltas = []
            for position, raw_tc in enumerate(raw_tcs):
                func = raw_tc.get("function") or {}
                idx = raw_tc.get("index")
                tool_deltas.append(
                    RawToolDelta(
                        call_index=position if idx is None else int(idx),
                        id=raw_tc.get("id") or None,
                        name=func.get("name") or None,
                        arguments=func.get("arguments") or "",
                    )
                )

        return StreamChunk(
            delta=extract_content_text(delta.get("content")),
            reasoning=extract_reasoning_text(delta.get("reasoning_content")),
            tool_deltas=tool_deltas,
            done=choice.get("finish_reason") is not None,
        )

    # ------------------------------------------------------------------
    # Non-streaming request
    # ------------------------------------------------------------------

    async def _sync_request(
        self,
        body: dict,
        headers: dict[str, str],
    ) -> StreamChunk:
        url = f"{self._url}/chat/completions"

        last_error: Exception | None = None
        for attempt in range(1 + self._max_retries):
            try:
                async with self._client() as client:
                    resp = await client.post(url, json=body, headers=headers)

                    if resp.status_code == 429 or resp.status_code >= 500:
                        last_error = httpx.HTTPStatusError(
                            f"HTTP {resp.status_code}",
                            request=resp.request,
                            response=resp,
                        )
                        continue

                    resp.raise_for_status()
                    data = resp.json()
            except httpx.TransportError as exc:
                last_error = exc
                if attempt < self._max_retries:
                    continue
                raise
            else:
                return self._parse_non_stream(data)

        if last_error is not None:
            raise last_error
        raise RuntimeError("unreachable")  # pragma: no cover

    def _parse_non_stream(self, data: dict) -> StreamChunk:
        """Convert a non-streaming response into a single ``StreamChunk``."""
        choices = data.get("choices") or []
        if not choices:
            return StreamChunk(done=True)

        message = choices[0].get("message") or {}

        tool_deltas: list[RawToolDelta] | None = None
        raw_tcs = message.get("tool_calls")
        if isinstance(raw_tcs, list) and raw_tcs:
            tool_deltas = []
            for idx, raw_tc in enumerate(raw_tcs):
                func = raw_tc.get("function") or {}
                arguments = func.get("arguments")
                if not isinstance(arguments, str):
                    arguments = json.dumps(arguments) if arguments is not None else ""
                tool_deltas.append(
                    RawToolDelta(
                        call_index=idx,
                        id=raw_tc.get("id") or None,
                        name=func.get("name") or None,
                        arguments=arguments,
                    )
                )

        return StreamChunk(
            delta=extract_content_text(message.get("content")),
            reasoning=extract_reasoning_text(message.get("reasoning_content")),
            tool_deltas=tool_deltas,
            done=True,
        )
