from __future__ import annotations

from typing import Iterable

from modelcli.errors import ConfigError
from modelcli.tools.base import FunctionTool, Handler, Tool


class ToolRegistry:
    """Name -> tool mapping shared by local and remote tools."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool, *, overwrite: bool = False) -> None:
        if tool.name in self._tools and not overwrite:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def register_function(
        self,
        name: str,
        description: str,
        parameters: dict | None,
        handler: Handler,
        *,
        overwrite: bool = False,
    ) -> Tool:
        tool = FunctionTool(name, description, parameters, handler)
        self.register(tool, overwrite=overwrite)
        return tool

    def unregister(self, name: str) -> Tool | None:
        return self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        t = self.get(name)
        if not t:
            raise ConfigError(
                f'Tool "{name}" is not registered but was requested by the model'
            )
        return t

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def list(self) -> list[Tool]:
        return sorted(self._tools.values(), key=lambda t: t.name)

    def names(self) -> list[str]:
        return [t.name for t in self.list()]

    def resolve(self, names: Iterable[str] | None) -> list[Tool]:
        """
        Return the tools named in *names*, in that order.

        Unknown names and duplicates are skipped: a model configuration may
        list tools from an external server that failed to start.
        """
        resolved: list[Tool] = []
        seen: set[str] = set()
        for name in names or []:
            tool = self._tools.get(name)
            if tool is None or name in seen:
                continue
            seen.add(name)
            resolved.append(tool)
        return resolved

    def to_openai_schema(self, names: Iterable[str] | None = None) -> list[dict]:
        tools = self.list() if names is None else self.resolve(names)
        return [t.to_openai_schema() for t in tools]
