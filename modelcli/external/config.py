"""
External tool server configuration.

Servers are listed in ``mcp.config.json`` next to the model configuration::

    {
      "servers": [
        {
          "name": "project_files",
          "url": "cmd://python -m modelcli.external.servers.filesystem --root . --mode read",
          "api_key_env": "",
          "description": "Browse project files (read-only)."
        }
      ]
    }

Only ``cmd://`` URLs are supported: the rest of the URL is a shell-style
command line that starts the server as a subprocess speaking MCP on its
standard streams.
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path

from modelcli.errors import ConfigError

logger = logging.getLogger(__name__)

MCP_CONFIG_FILENAME = "mcp.config.json"
CMD_SCHEME = "cmd://"


@dataclass
class ServerConfig:
    name: str
    url: str
    api_key_env: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, entry: dict) -> ServerConfig:
        if not isinstance(entry, dict):
            return cls(name="", url="")
        return cls(
            name=str(entry.get("name") or ""),
            url=str(entry.get("url") or ""),
            api_key_env=str(entry.get("api_key_env") or ""),
            description=str(entry.get("description") or ""),
        )


@dataclass
class ServerCommand:
    command: str
    args: list[str]


def resolve_mcp_path(config_path: str | Path | None) -> Path:
    base_dir = Path(config_path).expanduser().parent if config_path else Path.cwd()
    return base_dir / MCP_CONFIG_FILENAME


def default_servers() -> list[ServerConfig]:
    """The bundled servers, rooted at the session directory."""
    python = shlex.quote(sys.executable)
    entries = [
        (
            "project_files",
            "modelcli.external.servers.filesystem",
            "--root . --mode read --name project_files",
            "Browse and search project files (read-only).",
        ),
        (
            "code_writer",
            "modelcli.external.servers.filesystem",
            "--root . --write --name code_writer",
            "Write or delete files inside the project.",
        ),
        (
            "shell_tasks",
            "modelcli.external.servers.shell",
            "--root . --name shell_tasks",
            "Run shell commands inside the project directory.",
        ),
    ]
    return [
        ServerConfig(name=name, url=f"cmd://{python} -m {module} {args}", description=description)
        for name, module, args, description in entries
    ]


def load_mcp_config(config_path: str | Path | None) -> list[ServerConfig]:
    """
    Read the server list that sits beside *config_path*.

    A missing file means the bundled default servers.  Unreadable or
    malformed files raise ``ConfigError``.
    """
    target = resolve_mcp_path(config_path)
    if not target.is_file():
        logger.debug("No %s, using the bundled tool servers", target)
        return default_servers()
    try:
        raw = target.read_text(encoding="utf-8")
        parsed = json.loads(raw) if raw.strip() else {}
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed to read MCP config {target}: {exc}") from exc
    servers = parsed.get("servers") if isinstance(parsed, dict) else None
    if not isinstance(servers, list):
        return []
    return [ServerConfig.from_dict(entry) for entry in servers]


def parse_command_url(url: str) -> ServerCommand:
    """Split a ``cmd://`` URL into a command and its arguments."""
    trimmed = (url or "").strip()
    if not trimmed.lower().startswith(CMD_SCHEME):
        raise ConfigError(f"Only cmd:// tool server endpoints are supported, got {url!r}")
    command_line = trimmed[len(CMD_SCHEME):].strip()
    if not command_line:
        raise ConfigError("cmd:// URL is missing the command to run")
    try:
        tokens = shlex.split(command_line)
    except ValueError as exc:
        raise ConfigError(f"Cannot parse cmd:// URL {url!r}: {exc}") from exc
    return ServerCommand(command=tokens[0], args=tokens[1:])


def resolve_root_path(value: str, session_root: str | Path) -> str:
    base = Path(session_root)
    if not value or value == ".":
        return str(base)
    if value == "~":
        return str(Path.home())
    path = Path(value.strip("\"'")).expanduser()
    if path.is_absolute():
        return str(path)
    return str((base / path).resolve())


def adjust_command_args(args: list[str], session_root: str | Path | None = None) -> list[str]:
    """Resolve ``--root X`` and ``--root=X`` against the session root."""
    root = session_root or os.getcwd()
    resolved = list(args)
    i = 0
    while i < len(resolved):
        token = resolved[i]
        if token == "--root" and i + 1 < len(resolved):
            resolved[i + 1] = resolve_root_path(resolved[i + 1], root)
            i += 2
            continue
        if token.startswith("--root="):
            resolved[i] = "--root=" + resolve_root_path(token[len("--root="):], root)
        i += 1
    return resolved
