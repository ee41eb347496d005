"""Local tools available without any external server."""

from __future__ import annotations

from datetime import datetime, timezone

from modelcli.tools.base import ToolContext
from modelcli.tools.registry import ToolRegistry


def get_current_time(arguments: dict, ctx: ToolContext) -> str:
    return datetime.now(timezone.utc).isoformat()


def echo_text(arguments: dict, ctx: ToolContext) -> str:
    text = arguments.get("text")
    return "" if text is None else str(text)


def register_builtin_tools(registry: ToolRegistry) -> None:
    registry.register_function(
        "get_current_time",
        "Return the current timestamp in ISO 8601 format.",
        {"type": "object", "properties": {}},
        get_current_time,
    )
    registry.register_function(
        "echo_text",
        "Echo back the provided text string.",
        {
            "type": "object",
            "properties": {
                "text": {"type": "string", "description": "Text to echo back."},
            },
            "required": ["text"],
        },
        echo_text,
    )
