"""Abstract base class for LLM providers."""

from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable

import httpx

from modelcli.config import ModelSettings
from modelcli.errors import CompletionCancelled, ConfigError
from modelcli.llm.tool_call_assembler import ToolCallAssembler
from modelcli.llm.types import Message, ProviderResult, StreamChunk

logger = logging.getLogger(__name__)

TextCallback = Callable[[str], None]


class Provider(ABC):
    """
    A provider encapsulates access to a single LLM endpoint.

    Subclasses implement :meth:`events`, an async generator of
    ``StreamChunk`` objects.  :meth:`complete` consumes it, forwards text to
    the callbacks, merges tool-call fragments and returns one
    :class:`ProviderResult` per round.  A provider instance keeps no
    per-round state, so several sessions may share it.

    Parameters
    ----------
    settings:
        Resolved model settings.
    transport:
        Optional ``httpx`` transport, mainly for tests.
    timeout:
        HTTP request timeout in seconds.
    max_retries:
        Number of automatic retries on transient HTTP errors (5xx, 429).
    """

    #: Name used in configuration files to select this adapter.
    name: str = ""

    def __init__(
        self,
        settings: ModelSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 120.0,
        max_retries: int = 2,
    ) -> None:
        self.settings = settings
        self._transport = transport
        self._timeout = timeout
        self._max_retries = max_retries

    # ------------------------------------------------------------------
    # Adapter interface
    # ------------------------------------------------------------------

    @abstractmethod
    async def events(
        self,
        messages: list[dict],
        tools: list[dict] | None = None,
        stream: bool = True,
    ) -> AsyncIterator[StreamChunk]:
        """
        Run one completion request.

        Yields ``StreamChunk`` objects.  In non-streaming mode exactly one
        chunk is yielded.
        """
        ...
        # Make the method an async generator so sub-classes can ``yield``.
        if False:  # pragma: no cover
            yield StreamChunk()  # type: ignore[misc]

    def supports_reasoning_content(self) -> bool:
        return False

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def complete(
        self,
        messages: list[Message] | list[dict],
        *,
        stream: bool = True,
        tools: list[dict] | None = None,
        on_token: TextCallback | None = None,
        on_reasoning: TextCallback | None = None,
        signal: asyncio.Event | None = None,
    ) -> ProviderResult:
        """
        Send *messages* and return the normalised result.

        If *signal* is set before the round finishes the request is torn
        down and :class:`CompletionCancelled` is raised.  Text already passed
        to *on_token* stays delivered; tool-call fragments are dropped.
        """
        wire = self._normalize_messages(messages)
        round_coro = self._run_round(wire, tools, stream, on_token, on_reasoning)
        if signal is None:
            return await round_coro

        if signal.is_set():
            round_coro.close()
            raise CompletionCancelled("Completion aborted by caller")

        task = asyncio.ensure_future(round_coro)
        waiter = asyncio.ensure_future(signal.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.debug("Error while tearing down cancelled request", exc_info=True)
        raise CompletionCancelled("Completion aborted by caller")

    async def _run_round(
        self,
        messages: list[dict],
        tools: list[dict] | None,
        stream: bool,
        on_token: TextCallback | None,
        on_reasoning: TextCallback | None,
    ) -> ProviderResult:
        assembler = ToolCallAssembler()
        content_parts: list[str] = []
        reasoning_parts: list[str] = []

        async for chunk in self.events(messages, tools=tools, stream=stream):
            if chunk.delta:
                content_parts.append(chunk.delta)
                if on_token:
                    on_token(chunk.delta)
            if chunk.reasoning:
                reasoning_parts.append(chunk.reasoning)
                if on_reasoning:
                    on_reasoning(chunk.reasoning)
            if chunk.tool_deltas:
                assembler.feed_all(chunk.tool_deltas)

        reasoning = "".join(reasoning_parts)
        return ProviderResult(
            content="".join(content_parts),
            reasoning=reasoning if reasoning.strip() else None,
            tool_calls=assembler.finish(),
        )

    # ------------------------------------------------------------------
    # Helpers for adapters
    # ------------------------------------------------------------------

    def _require_api_key(self) -> str:
        env_name = self.settings.api_key_env
        if not env_name:
            raise ConfigError(
                f"Provider {self.settings.provider} for model "
                f"{self.settings.name} requires api_key_env"
            )
        value = os.environ.get(env_name)
        if not value:
            raise ConfigError(
                f"Environment variable {env_name} is not set but is required "
                f"for model {self.settings.name}"
            )
        return value

    def _normalize_messages(self, messages: list[Message] | list[dict]) -> list[dict]:
        include_reasoning = self.supports_reasoning_content()
        normalized: list[dict] = []
        for message in messages:
            raw = message.to_wire() if isinstance(message, Message) else dict(message)
            role = raw.get("role")
            if not role:
                raise ConfigError(
                    "Messages must include a role; invalid entry for model "
                    f"{self.settings.name}"
                )
            entry: dict = {"role": role}
            if "content" in raw:
                entry["content"] = "" if raw["content"] is None else str(raw["content"])
            if raw.get("tool_call_id"):
                entry["tool_call_id"] = raw["tool_call_id"]
            if isinstance(raw.get("tool_calls"), list):
                entry["tool_calls"] = raw["tool_calls"]
            if raw.get("name"):
                entry["name"] = raw["name"]
            reasoning = raw.get("reasoning_content")
            if include_reasoning and isinstance(reasoning, str) and reasoning:
                entry["reasoning_content"] = reasoning
            normalized.append(entry)
        return normalized

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self._timeout,
            transport=self._transport,
        )
