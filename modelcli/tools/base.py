from __future__ import annotations

import inspect
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from modelcli.tools.validation import normalize_schema
from modelcli.types import ToolResult

if TYPE_CHECKING:
    from modelcli.session.session import Session


@dataclass
class ToolContext:
    """Passed to every tool invocation.

    ``client`` is the ``ModelClient`` running the conversation, so a tool
    can start a nested completion of its own.
    """

    model: str
    session: Session
    client: Any = None


def stringify_result(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, indent=2)
    return str(value)


class Tool(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict: ...

    @abstractmethod
    async def invoke(self, arguments: dict, ctx: ToolContext) -> ToolResult: ...

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


Handler = Callable[[dict, ToolContext], Any]


class FunctionTool(Tool):
    """A local tool backed by a plain (sync or async) function.

    The handler is called as ``handler(arguments, ctx)``.  Whatever it
    returns is turned into text; exceptions propagate to the caller.
    """

    def __init__(
        self,
        name: str,
        description: str,
        parameters: dict | None,
        handler: Handler,
    ) -> None:
        self._name = name
        self._description = description
        self._parameters = normalize_schema(parameters)
        self._handler = handler

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> dict:
        return self._parameters

    async def invoke(self, arguments: dict, ctx: ToolContext) -> ToolResult:
        value = self._handler(arguments, ctx)
        if inspect.isawaitable(value):
            value = await value
        if isinstance(value, ToolResult):
            return value
        return ToolResult(
            success=True,
            content=stringify_result(value),
            data=value if isinstance(value, (dict, list)) else None,
        )
