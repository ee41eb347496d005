"""
Orchestrator core -- the tool-calling conversation loop.

One call to :meth:`ModelClient.chat` runs a whole turn:

1. Send the session transcript and the model's toolset to the provider.
2. If the reply carries no tool calls, record it and return its text.
3. Otherwise checkpoint the session, record the assistant message and run
   every requested call in order, appending one tool message per call.
4. Go back to 1, at most ``max_tool_passes`` times in a row.

A failure anywhere in step 3 restores the checkpoint, so a tool batch is
either recorded completely or not at all, then the error propagates.  The
user message that started the turn is the caller's to remove.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from modelcli.config import AppConfig, ModelSettings
from modelcli.errors import (
    ConfigError,
    LoopExhaustedError,
    ModelCliError,
    ToolExecutionError,
)
from modelcli.llm.providers import create_provider
from modelcli.llm.providers.base import Provider, TextCallback
from modelcli.llm.repair import parse_tool_arguments
from modelcli.llm.types import ToolCallRequest
from modelcli.session.session import Session
from modelcli.tools.base import Tool, ToolContext
from modelcli.tools.registry import ToolRegistry
from modelcli.types import ToolResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_PASSES = 60

ToolCallCallback = Callable[[str, str, dict], None]
ToolResultCallback = Callable[[str, str, ToolResult], None]


class ModelClient:
    """
    Drives conversations against the configured models.

    Parameters
    ----------
    config : AppConfig
        Model settings, keyed by model name.
    registry : ToolRegistry
        Local and remote tools.  Each model only sees the tools named in its
        settings.
    provider_factory : callable
        ``(provider_name, settings) -> Provider``.  Defaults to the adapter
        table in :mod:`modelcli.llm.providers`.
    max_tool_passes : int
        Consecutive tool-dispatch rounds allowed per turn.
    """

    def __init__(
        self,
        config: AppConfig,
        registry: ToolRegistry,
        provider_factory: Callable[[str, ModelSettings], Provider] = create_provider,
        max_tool_passes: int = DEFAULT_MAX_TOOL_PASSES,
    ) -> None:
        self.config = config
        self.registry = registry
        self.provider_factory = provider_factory
        self.max_tool_passes = max_tool_passes
        self._providers: dict[str, Provider] = {}

    # ------------------------------------------------------------------
    # Model lookup
    # ------------------------------------------------------------------

    def get_model_names(self) -> list[str]:
        return self.config.model_names

    def get_default_model(self) -> str:
        return self.config.get_model(None).name

    def get_provider(self, settings: ModelSettings) -> Provider:
        """Return the cached provider for a model, creating it on first use."""
        provider = self._providers.get(settings.name)
        if provider is None:
            provider = self.provider_factory(settings.provider, settings)
            self._providers[settings.name] = provider
        return provider

    def resolve_toolset(self, settings: ModelSettings) -> list[Tool]:
        return self.registry.resolve(settings.tools)

    # ------------------------------------------------------------------
    # Conversation turn
    # ------------------------------------------------------------------

    async def chat(
        self,
        model_name: str | None,
        session: Session,
        *,
        stream: bool = True,
        use_tools: bool = True,
        on_token: TextCallback | None = None,
        on_reasoning: TextCallback | None = None,
        on_tool_call: ToolCallCallback | None = None,
        on_tool_result: ToolResultCallback | None = None,
        signal: asyncio.Event | None = None,
        max_tool_passes: int | None = None,
    ) -> str:
        """
        Run one turn and return the model's final text.

        Raises
        ------
        ConfigError
            Unknown model, provider or tool, or a missing credential.
        ArgumentParseError
            Tool arguments were not valid JSON, even after repair.
        ToolExecutionError
            A local tool raised, or a tool server connection is closed.
        CompletionCancelled
            *signal* was set while waiting for the provider.
        LoopExhaustedError
            The model asked for tools ``max_tool_passes`` times in a row.
        """
        settings = self.config.get_model(model_name)
        provider = self.get_provider(settings)
        toolset = {t.name: t for t in self.resolve_toolset(settings)} if use_tools else {}
        declarations = [t.to_openai_schema() for t in toolset.values()]
        limit = self.max_tool_passes if max_tool_passes is None else max_tool_passes

        iteration = 0
        while iteration < limit:
            result = await provider.complete(
                session.messages,
                stream=stream,
                tools=declarations or None,
                on_token=on_token,
                on_reasoning=on_reasoning,
                signal=signal,
            )
            final_text = (result.content or "").strip()

            if not result.tool_calls:
                session.add_assistant(final_text, None, result.reasoning)
                return final_text

            checkpoint = session.checkpoint()
            session.add_assistant(final_text, result.tool_calls, result.reasoning)
            try:
                for call in result.tool_calls:
                    await self._dispatch(
                        call,
                        toolset,
                        ToolContext(model=settings.name, session=session, client=self),
                        on_tool_call,
                        on_tool_result,
                    )
            except (Exception, asyncio.CancelledError):
                session.restore(checkpoint)
                raise
            iteration += 1

        logger.warning(
            "Model %s requested tools %d times in a row; aborting turn",
            settings.name,
            limit,
        )
        raise LoopExhaustedError("Too many consecutive tool calls. Aborting.")

    async def _dispatch(
        self,
        call: ToolCallRequest,
        toolset: dict[str, Tool],
        ctx: ToolContext,
        on_tool_call: ToolCallCallback | None,
        on_tool_result: ToolResultCallback | None,
    ) -> None:
        tool = toolset.get(call.name)
        if tool is None:
            raise ConfigError(
                f'Tool "{call.name}" is not registered but was requested by the model'
            )

        arguments = parse_tool_arguments(tool.name, call.arguments)
        if on_tool_call:
            on_tool_call(tool.name, call.id, arguments)

        logger.info("Invoking tool %s (call %s)", tool.name, call.id)
        try:
            result = await tool.invoke(arguments, ctx)
        except ModelCliError:
            raise
        except Exception as e:
            raise ToolExecutionError(tool.name, f"Tool {tool.name} failed: {e}") from e

        if not result.success:
            logger.info("Tool %s reported failure: %s", tool.name, result.error)
        ctx.session.add_tool_result(call.id, result.content)
        if on_tool_result:
            on_tool_result(tool.name, call.id, result)
