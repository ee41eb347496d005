"""Error taxonomy for the conversation engine."""

from __future__ import annotations

from modelcli.types import ErrorCode


class ModelCliError(Exception):
    """Base class for errors surfaced by the conversation engine."""

    code = "error"

    def __init__(self, message: str, code: str = ""):
        super().__init__(message)
        if code:
            self.code = code


class ConfigError(ModelCliError):
    """Unknown provider, model or tool, or a missing credential."""

    code = "config_error"


class ArgumentParseError(ModelCliError):
    """Tool-call arguments could not be parsed, even after repair."""

    code = "argument_parse_error"

    def __init__(self, tool_name: str, raw: str, detail: str = ""):
        message = f"Failed to parse arguments for tool {tool_name}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.tool_name = tool_name
        self.raw = raw


class ToolExecutionError(ModelCliError):
    """A local tool handler raised while running."""

    code = ErrorCode.TOOL_EXCEPTION

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class ServerConnectionClosed(ToolExecutionError):
    """The external tool server behind a tool is no longer reachable."""

    code = ErrorCode.CONNECTION_CLOSED

    def __init__(self, server: str, tool_name: str = ""):
        super().__init__(
            tool_name,
            f"Connection to tool server {server!r} is closed",
        )
        self.server = server


class CompletionCancelled(ModelCliError):
    """The caller aborted an in-flight completion."""

    code = "cancelled"


class LoopExhaustedError(ModelCliError):
    """The model kept requesting tools past the iteration cap."""

    code = "loop_exhausted"
