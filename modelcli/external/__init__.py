"""External tool servers (MCP over stdio) exposed through the tool registry."""

from modelcli.external.bridge import (
    ExternalToolBridge,
    RemoteTool,
    ServerConnection,
    build_tool_identifier,
)
from modelcli.external.config import ServerConfig, load_mcp_config

__all__ = [
    "ExternalToolBridge",
    "RemoteTool",
    "ServerConfig",
    "ServerConnection",
    "build_tool_identifier",
    "load_mcp_config",
]
