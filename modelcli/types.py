from dataclasses import dataclass, field


@dataclass
class ToolResult:
    success: bool
    content: str
    data: dict | list | None = None
    error: str | None = None
    error_code: str | None = None
    metadata: dict = field(default_factory=dict)


class ErrorCode:
    TOOL_EXCEPTION = "tool_exception"
    REMOTE_ERROR = "remote_error"
    CONNECTION_CLOSED = "connection_closed"
