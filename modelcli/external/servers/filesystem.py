"""
Filesystem tool server.

Exposes a directory tree over MCP on stdio.  Every path is resolved
against ``--root`` and may not leave it.  Read tools are always present;
``--write`` (or ``--mode write``) adds tools that modify files.

Usage::

    python -m modelcli.external.servers.filesystem --root . --mode read --name project_files
"""

from __future__ import annotations

import argparse
import logging
import shutil
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional

from mcp.server.fastmcp import FastMCP

from modelcli.external.servers.common import (
    clamp,
    confine,
    format_bytes,
    prepare_root,
    relative,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 256 * 1024
DEFAULT_SEARCH_LIMIT = 40
MAX_LIST_ENTRIES = 200
MAX_SEARCH_FILES = 120


@dataclass
class Workspace:
    root: Path
    allow_writes: bool = False
    max_file_bytes: int = DEFAULT_MAX_BYTES
    search_limit: int = DEFAULT_SEARCH_LIMIT

    def list_directory(self, path: str = ".", depth: int = 1, include_hidden: bool = False) -> str:
        start = confine(self.root, path)
        if not start.is_dir():
            raise ValueError("Target is not a directory or does not exist.")
        depth = clamp(depth, 1, 5, 1)

        lines: list[str] = []
        queue = deque([(start, 0)])
        while queue and len(lines) < MAX_LIST_ENTRIES:
            current, level = queue.popleft()
            try:
                children = sorted(current.iterdir(), key=lambda p: p.name)
            except OSError:
                continue
            for child in children:
                if not include_hidden and child.name.startswith("."):
                    continue
                if child.is_dir():
                    lines.append(f"[dir]  {relative(self.root, child)}")
                    if level + 1 < depth:
                        queue.append((child, level + 1))
                else:
                    size = format_bytes(child.stat().st_size)
                    lines.append(f"[file] {relative(self.root, child)} ({size})")
                if len(lines) >= MAX_LIST_ENTRIES:
                    break
        return "\n".join(lines) if lines else "<empty directory>"

    def read_file(self, path: str) -> str:
        target = confine(self.root, path)
        if not target.is_file():
            raise ValueError("File does not exist or is not a regular file.")
        size = target.stat().st_size
        if size > self.max_file_bytes:
            raise ValueError(
                f"File is too large ({format_bytes(size)}); "
                f"the limit is {format_bytes(self.max_file_bytes)}."
            )
        content = target.read_text(encoding="utf-8", errors="replace")
        return f"# {relative(self.root, target)} (size: {format_bytes(size)})\n\n{content}"

    def search_text(self, query: str, path: str = ".", max_results: int | None = None) -> str:
        if not query:
            raise ValueError("query must not be empty")
        limit = min(max_results or self.search_limit, self.search_limit)
        start = confine(self.root, path)
        if not start.exists():
            raise ValueError("Search start does not exist.")

        matches: list[str] = []
        scanned = 0
        queue = deque([start])
        while queue and len(matches) < limit and scanned < MAX_SEARCH_FILES:
            current = queue.popleft()
            if current.is_dir():
                try:
                    children = sorted(current.iterdir(), key=lambda p: p.name)
                except OSError:
                    continue
                queue.extend(c for c in children if not c.name.startswith("."))
                continue
            if not current.is_file():
                continue
            scanned += 1
            if current.stat().st_size > self.max_file_bytes:
                continue
            try:
                text = current.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            for number, line in enumerate(text.splitlines(), start=1):
                if query in line:
                    matches.append(f"{relative(self.root, current)}:{number} {line.strip()[:200]}")
                    if len(matches) >= limit:
                        break
        return "\n".join(matches) if matches else "No matches found."

    def write_file(self, path: str, contents: str, mode: str = "overwrite") -> str:
        self._require_writes()
        target = confine(self.root, path)
        if target == self.root or target.is_dir():
            raise ValueError("Target is a directory.")
        target.parent.mkdir(parents=True, exist_ok=True)
        if mode == "append":
            with target.open("a", encoding="utf-8") as fh:
                fh.write(contents)
        else:
            target.write_text(contents, encoding="utf-8")
        verb = "Appended to" if mode == "append" else "Wrote"
        return f"{verb} {relative(self.root, target)} ({format_bytes(len(contents.encode('utf-8')))})."

    def delete_path(self, path: str) -> str:
        self._require_writes()
        target = confine(self.root, path)
        if target == self.root:
            raise ValueError("Refusing to delete the root directory.")
        if target.is_dir():
            shutil.rmtree(target)
        elif target.exists():
            target.unlink()
        return f"Deleted {relative(self.root, target)}."

    def _require_writes(self) -> None:
        if not self.allow_writes:
            raise PermissionError("This server was started read-only.")


def build_server(workspace: Workspace, name: str) -> FastMCP:
    server = FastMCP(name, log_level="WARNING")

    @server.tool(title="List directory", structured_output=False)
    def list_directory(path: str = ".", depth: int = 1, include_hidden: bool = False) -> str:
        """List files under a directory of the root (at most 200 entries, depth 1-5)."""
        return workspace.list_directory(path, depth, include_hidden)

    @server.tool(title="Read file", structured_output=False)
    def read_file(path: str) -> str:
        """Return the UTF-8 content of a file relative to the root."""
        return workspace.read_file(path)

    @server.tool(title="Search text", structured_output=False)
    def search_text(query: str, path: str = ".", max_results: Optional[int] = None) -> str:
        """Search text files under a directory for a case-sensitive keyword."""
        return workspace.search_text(query, path, max_results)

    if workspace.allow_writes:

        @server.tool(title="Write file", structured_output=False)
        def write_file(
            path: str,
            contents: str,
            mode: Literal["overwrite", "append"] = "overwrite",
        ) -> str:
            """Write or append text to a file relative to the root."""
            return workspace.write_file(path, contents, mode)

        @server.tool(title="Delete path", structured_output=False)
        def delete_path(path: str) -> str:
            """Delete a file or directory (recursively) relative to the root."""
            return workspace.delete_path(path)

    return server


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Filesystem MCP server")
    parser.add_argument("--root", default=".", help="Directory the tools are confined to")
    parser.add_argument("--write", action="store_true", help="Register tools that modify files")
    parser.add_argument("--mode", default="read", help="'write' is the same as --write")
    parser.add_argument("--name", default=None, help="Server name")
    parser.add_argument("--max-bytes", type=int, default=DEFAULT_MAX_BYTES)
    parser.add_argument("--max-search-results", type=int, default=DEFAULT_SEARCH_LIMIT)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    allow_writes = args.write or "write" in args.mode.lower()
    workspace = Workspace(
        root=prepare_root(args.root, writable=allow_writes),
        allow_writes=allow_writes,
        max_file_bytes=clamp(args.max_bytes, 1024, 1024 * 1024, DEFAULT_MAX_BYTES),
        search_limit=clamp(args.max_search_results, 1, 200, DEFAULT_SEARCH_LIMIT),
    )
    name = args.name or ("code_writer" if allow_writes else "project_files")
    logger.info("[%s] filesystem server ready (root=%s)", name, workspace.root)
    build_server(workspace, name).run()


if __name__ == "__main__":
    main()
