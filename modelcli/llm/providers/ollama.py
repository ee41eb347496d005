"""
Ollama provider.

Streams responses from a local Ollama instance via its ``/api/chat`` endpoint.
Supports tool calling when the Ollama model advertises it.

Dependencies: ``httpx``.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

from modelcli.llm.providers.base import Provider
from modelcli.llm.types import RawToolDelta, StreamChunk

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"


class OllamaProvider(Provider):
    """
    Provider for a local `Ollama <https://ollama.com>`_ instance.

    No credentials are needed.  ``base_url`` defaults to the local daemon.
    """

    name = "ollama"

    def __init__(self, settings, **kwargs) -> None:
        super().__init__(settings, **kwargs)
        self._url = (settings.base_url or DEFAULT_BASE_URL).rstrip("/")

    async def events(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        stream: bool = True,
    ) -> AsyncIterator[StreamChunk]:
        body = self._build_body(messages, tools, stream)

        if stream:
            async for chunk in self._stream_request(body):
                yield chunk
        else:
            yield await self._non_stream_request(body)

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_body(
        self,
        messages: list[dict],
        tools: list[dict] | None,
        stream: bool,
    ) -> dict:
        wire_messages: list[dict] = []
        for msg in messages:
            m = dict(msg)
            if msg.get("tool_calls"):
                # Ollama expects arguments as an object, not a string.
                m["tool_calls"] = [
                    {
                        "function": {
                            "name": tc["function"]["name"],
                            "arguments": _loads_or_empty(tc["function"].get("arguments")),
                        },
                    }
                    for tc in msg["tool_calls"]
                ]
            wire_messages.append(m)

        body: dict = {
            "model": self.settings.model,
            "messages": wire_messages,
            "stream": stream,
        }
        options: dict = {}
        if self.settings.temperature is not None:
            options["temperature"] = self.settings.temperature
        if self.settings.max_output_tokens is not None:
            options["num_predict"] = self.settings.max_output_tokens
        if options:
            body["options"] = options
        if tools:
            body["tools"] = tools
        body.update(self.settings.extra_body)
        return body

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _stream_request(self, body: dict) -> AsyncIterator[StreamChunk]:
        """
        Ollama streams newline-delimited JSON objects from ``/api/chat``.
        Each line is a complete JSON object.
        """
        url = f"{self._url}/api/chat"

        async with self._client() as client:
            async with client.stream(
                "POST", url, json=body, headers=self.settings.extra_headers or None
            ) as response:
                if response.is_error:
                    await response.aread()
                response.raise_for_status()

                seen_calls = 0
                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue

                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning("Ollama: failed to parse line: %s", line[:200])
                        continue

                    chunk = self._data_to_chunk(data, first_index=seen_calls)
                    if chunk.tool_deltas:
                        seen_calls += len(chunk.tool_deltas)
                    yield chunk
                    if chunk.done:
                        return

                yield StreamChunk(done=True)

    def _data_to_chunk(self, data: dict, first_index: int = 0) -> StreamChunk:
        """Convert a single Ollama JSON object to a ``StreamChunk``."""
        message = data.get("message") or {}

        # Ollama sends each tool call whole, so every call gets its own index.
        tool_deltas: list[RawToolDelta] | None = None
        raw_tool_calls = message.get("tool_calls")
        if raw_tool_calls:
            tool_deltas = []
            for idx, tc in enumerate(raw_tool_calls, start=first_index):
                func = tc.get("function") or {}
                args = func.get("arguments", {})
                tool_deltas.append(
                    RawToolDelta(
                        call_index=idx,
                        id=tc.get("id") or f"ollama_call_{idx}",
                        name=func.get("name") or None,
                        arguments=args if isinstance(args, str) else json.dumps(args),
                    )
                )

        return StreamChunk(
            delta=message.get("content") or "",
            reasoning=message.get("thinking") or "",
            tool_deltas=tool_deltas,
            done=bool(data.get("done", False)),
        )

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def _non_stream_request(self, body: dict) -> StreamChunk:
        url = f"{self._url}/api/chat"

        async with self._client() as client:
            resp = await client.post(
                url, json=body, headers=self.settings.extra_headers or None
            )
            resp.raise_for_status()
            data = resp.json()

        return self._data_to_chunk(data | {"done": True})


def _loads_or_empty(arguments) -> dict:
    if isinstance(arguments, dict):
        return arguments
    try:
        value = json.loads(arguments or "{}")
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}
