"""
Bridge between external MCP tool servers and the tool registry.

Each configured server is started as a subprocess and spoken to over its
standard streams with the ``mcp`` client library.  Its tools are listed
(following pagination cursors to the end) and registered under
``mcp_<server>_<tool>`` so they can never collide with local tools or with
same-named tools of other servers.

From the conversation loop's point of view a remote tool is just another
``Tool``: ``invoke(arguments, ctx)`` returns a ``ToolResult`` whose content
is a single text blob.  A result the server flags with ``isError`` comes back
as ``success=False`` rather than as an exception, so the model gets to see
the failure.  A lost connection is different: the server is marked closed
and every call to its tools raises ``ServerConnectionClosed`` from then on.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import anyio
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError
from mcp.types import CONNECTION_CLOSED, CallToolResult

from modelcli.config import AppConfig
from modelcli.errors import ServerConnectionClosed
from modelcli.external.config import ServerConfig, adjust_command_args, parse_command_url
from modelcli.tools.base import Tool, ToolContext
from modelcli.tools.registry import ToolRegistry
from modelcli.tools.validation import normalize_schema
from modelcli.types import ErrorCode, ToolResult

logger = logging.getLogger(__name__)

_CLOSED_ERRORS = (
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
    ConnectionError,
)

_UNSAFE_CHARS = re.compile(r"[^a-z0-9_-]+")


# ---------------------------------------------------------------------------
# Naming and formatting
# ---------------------------------------------------------------------------

def _normalize_part(value: str | None) -> str:
    return _UNSAFE_CHARS.sub("_", str(value or "").strip().lower())


def build_tool_identifier(server_name: str, tool_name: str) -> str:
    """Registry name for *tool_name* exposed by *server_name*."""
    server = _normalize_part(server_name) or "mcp_server"
    tool = _normalize_part(tool_name) or "tool"
    return f"mcp_{server}_{tool}"


def build_tool_description(server_name: str, tool: Any) -> str:
    annotations = getattr(tool, "annotations", None)
    title = getattr(tool, "title", None) or getattr(annotations, "title", None)
    summary = title or getattr(tool, "description", None) or "MCP tool"
    return f"[{server_name}] {summary}" if server_name else summary


def approx_size(base64_text: str | None) -> str:
    if not base64_text:
        return "unknown size"
    size = round(len(base64_text) * 3 / 4)
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.1f}MB"


def extract_content_text(blocks: list | None) -> str:
    """Render MCP content blocks as lines of text."""
    lines: list[str] = []
    for block in blocks or []:
        kind = getattr(block, "type", None)
        if kind == "text":
            if block.text:
                lines.append(block.text)
        elif kind == "resource_link":
            lines.append(f"Resource link: {block.uri}")
        elif kind == "image":
            lines.append(f"Image ({block.mimeType or 'image'}, {approx_size(block.data)})")
        elif kind == "audio":
            lines.append(f"Audio ({block.mimeType or 'audio'}, {approx_size(block.data)})")
        elif kind == "resource":
            resource = block.resource
            text = getattr(resource, "text", None)
            if text:
                lines.append(text)
            else:
                mime = getattr(resource, "mimeType", None) or "binary"
                lines.append(
                    f"Embedded resource {resource.uri} ({mime}, "
                    f"{approx_size(getattr(resource, 'blob', None))})"
                )
        else:
            lines.append(f"[{kind}]")
    return "\n".join(lines)


def format_call_result(server_name: str, tool_name: str, result: CallToolResult | None) -> ToolResult:
    header = f"[{server_name}/{tool_name}]"
    if result is None:
        return ToolResult(success=True, content=f"{header} The tool returned no result.")

    text = extract_content_text(result.content)
    if result.isError:
        message = text or "Tool execution failed."
        return ToolResult(
            success=False,
            content=f"{header} error: {message}",
            error=message,
            error_code=ErrorCode.REMOTE_ERROR,
        )

    segments = [text] if text else []
    structured = getattr(result, "structuredContent", None)
    if structured:
        segments.append(json.dumps(structured, indent=2, ensure_ascii=False))
    if not segments:
        segments.append("The tool succeeded but produced no text output.")
    return ToolResult(
        success=True,
        content=f"{header}\n" + "\n\n".join(segments),
        data=structured or None,
    )


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------

class ServerConnection:
    """
    A live MCP client session with one tool server.

    The stdio transport and the client session are entered and exited inside
    a dedicated task, since their task groups must be closed by the task
    that opened them.  Calls from any task are safe: the client session
    matches responses to requests by id.

    Parameters
    ----------
    config:
        Server entry from ``mcp.config.json``.
    params:
        How to start the subprocess.  May be omitted when *session* is given.
    session:
        An already initialised session (used by tests and embedders).
    """

    def __init__(
        self,
        config: ServerConfig,
        params: StdioServerParameters | None = None,
        session: ClientSession | None = None,
    ) -> None:
        self.config = config
        self.params = params
        self.session = session
        self._closed = False
        self._ready = asyncio.Event()
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._error: BaseException | None = None

    @property
    def name(self) -> str:
        return self.config.name or "server"

    @property
    def closed(self) -> bool:
        return self._closed

    def mark_closed(self) -> None:
        if not self._closed:
            logger.warning("Connection to tool server %s closed", self.name)
        self._closed = True

    async def start(self, timeout: float = 30.0) -> None:
        """Spawn the server and run the MCP handshake."""
        if self.params is None:
            raise ValueError(f"No launch parameters for tool server {self.name}")
        self._task = asyncio.create_task(self._run(), name=f"mcp-{self.name}")
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            await self.close()
            raise
        if self._error is not None:
            raise self._error
        if self.session is None:
            raise ServerConnectionClosed(self.name)

    async def _run(self) -> None:
        try:
            async with stdio_client(self.params) as (read, write):
                async with ClientSession(read, write) as session:
                    await session.initialize()
                    self.session = session
                    self._ready.set()
                    await self._stop.wait()
        except Exception as e:
            self._error = e
            logger.debug("Tool server %s stopped with error", self.name, exc_info=True)
        finally:
            self.session = None
            self._closed = True
            self._ready.set()

    async def list_all_tools(self) -> list:
        """List every tool, following pagination cursors to the end."""
        collected: list = []
        cursor: str | None = None
        while True:
            if cursor:
                result = await self._request(self._live_session().list_tools(cursor=cursor))
            else:
                result = await self._request(self._live_session().list_tools())
            collected.extend(result.tools or [])
            cursor = result.nextCursor
            if not cursor:
                return collected

    async def call_tool(self, name: str, arguments: dict) -> CallToolResult:
        return await self._request(self._live_session().call_tool(name, arguments))

    def _live_session(self) -> ClientSession:
        if self._closed or self.session is None:
            raise ServerConnectionClosed(self.name)
        return self.session

    async def _request(self, coro):
        try:
            return await coro
        except _CLOSED_ERRORS as e:
            self.mark_closed()
            raise ServerConnectionClosed(self.name) from e
        except McpError as e:
            if e.error.code == CONNECTION_CLOSED:
                self.mark_closed()
                raise ServerConnectionClosed(self.name) from e
            raise

    async def close(self) -> None:
        self._stop.set()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=5.0)
            except asyncio.TimeoutError:
                self._task.cancel()
            self._task = None
        self._closed = True


class RemoteTool(Tool):
    """A tool that lives in an external server."""

    def __init__(self, connection: ServerConnection, remote: Any) -> None:
        self._connection = connection
        self.remote_name: str = remote.name
        self._name = build_tool_identifier(connection.name, remote.name)
        self._description = build_tool_description(connection.name, remote)
        self._parameters = normalize_schema(getattr(remote, "inputSchema", None))

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> dict:
        return self._parameters

    @property
    def server(self) -> str:
        return self._connection.name

    async def invoke(self, arguments: dict, ctx: ToolContext) -> ToolResult:
        try:
            response = await self._connection.call_tool(self.remote_name, arguments)
        except ServerConnectionClosed as e:
            e.tool_name = self._name
            raise
        except McpError as e:
            # JSON-RPC level failure reported by a live server.
            message = e.error.message
            return ToolResult(
                success=False,
                content=f"[{self.server}/{self.remote_name}] error: {message}",
                error=message,
                error_code=ErrorCode.REMOTE_ERROR,
            )
        return format_call_result(self.server, self.remote_name, response)


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------

class ExternalToolBridge:
    """
    Connects configured tool servers and registers their tools.

    Parameters
    ----------
    registry : ToolRegistry
        Registry that receives the remote tools.
    init_timeout : float
        Seconds allowed for a server to start and complete the handshake.
    """

    def __init__(self, registry: ToolRegistry, init_timeout: float = 30.0) -> None:
        self.registry = registry
        self.init_timeout = init_timeout
        self.connections: dict[str, ServerConnection] = {}
        self.tools: list[RemoteTool] = []

    @property
    def tool_names(self) -> list[str]:
        return [t.name for t in self.tools]

    def build_params(
        self,
        server: ServerConfig,
        base_dir: str | Path | None = None,
        session_root: str | Path | None = None,
    ) -> StdioServerParameters:
        command = parse_command_url(server.url)
        env: dict[str, str] = {}
        key = server.api_key_env.strip()
        if key and os.environ.get(key):
            env[key] = os.environ[key]
        return StdioServerParameters(
            command=command.command,
            args=adjust_command_args(command.args, session_root),
            env=env or None,
            cwd=str(base_dir) if base_dir else None,
        )

    async def connect_all(
        self,
        servers: list[ServerConfig],
        base_dir: str | Path | None = None,
        session_root: str | Path | None = None,
    ) -> list[str]:
        """
        Connect every server with a URL.  A server that fails to start is
        logged and skipped.  Returns the names of the registered tools.
        """
        for server in servers:
            if not server.url:
                continue
            if (server.name or "server") in self.connections:
                logger.warning(
                    "Skipping tool server %s: a server with that name is already connected",
                    server.name,
                )
                continue
            connection: ServerConnection | None = None
            try:
                params = self.build_params(server, base_dir, session_root)
                connection = ServerConnection(server, params)
                await connection.start(self.init_timeout)
                await self.add_connection(connection)
            except Exception as e:
                logger.warning(
                    "Cannot connect to tool server %s: %s",
                    server.name or "<unnamed>",
                    e,
                )
                if connection is not None:
                    await self._discard(connection)
        return self.tool_names

    async def _discard(self, connection: ServerConnection) -> None:
        try:
            await connection.close()
        except Exception:
            logger.warning("Error closing tool server %s", connection.name, exc_info=True)

    async def add_connection(self, connection: ServerConnection) -> list[RemoteTool]:
        """Register the tools of an already started connection."""
        if connection.name in self.connections:
            raise ValueError(f"Tool server {connection.name} is already connected")
        remote_tools = await connection.list_all_tools()
        if not remote_tools:
            logger.warning("Tool server %s exposes no tools", connection.name)

        registered: list[RemoteTool] = []
        for remote in remote_tools:
            tool = RemoteTool(connection, remote)
            try:
                self.registry.register(tool)
            except ValueError:
                logger.warning(
                    "Skipping %s from %s: name already registered",
                    tool.name,
                    connection.name,
                )
                continue
            registered.append(tool)

        self.connections[connection.name] = connection
        self.tools.extend(registered)
        logger.info(
            "Tool server %s: %d tools registered", connection.name, len(registered)
        )
        return registered

    def apply_to_config(self, config: AppConfig) -> None:
        """Offer every remote tool to every configured model."""
        for settings in config.models.values():
            for name in self.tool_names:
                if name not in settings.tools:
                    settings.tools.append(name)

    async def shutdown(self) -> None:
        for connection in list(self.connections.values()):
            await self._discard(connection)
        self.connections.clear()
