"""
Shell tool server.

Runs shell commands with their working directory confined to ``--root``.

Usage::

    python -m modelcli.external.servers.shell --root . --name shell_tasks
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from mcp.server.fastmcp import FastMCP

from modelcli.external.servers.common import clamp, confine, prepare_root

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 60 * 1000
MAX_TIMEOUT_MS = 10 * 60 * 1000
DEFAULT_MAX_OUTPUT = 2 * 1024 * 1024
MAX_LISTED = 100


@dataclass
class CommandOutcome:
    command: str
    cwd: Path
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    timed_out: bool = False
    truncated: list[str] = field(default_factory=list)

    def render(self) -> str:
        header = [f"$ {self.command}", f"cwd: {self.cwd}"]
        if self.exit_code is not None:
            header.append(f"exit code: {self.exit_code}")
        if self.timed_out:
            header.append("timed out")
        if self.truncated:
            header.append("truncated: " + ", ".join(self.truncated))
        stdout = f"STDOUT:\n{self.stdout}" if self.stdout else "STDOUT: <empty>"
        stderr = f"STDERR:\n{self.stderr}" if self.stderr else "STDERR: <empty>"
        return f"{' | '.join(header)}\n{'-' * 40}\n{stdout}\n\n{stderr}"


@dataclass
class ShellRunner:
    root: Path
    default_timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_output: int = DEFAULT_MAX_OUTPUT
    shell: str | None = None

    async def run(
        self,
        command: str,
        cwd: str = ".",
        timeout_ms: int | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandOutcome:
        if not command.strip():
            raise ValueError("command must not be empty")
        workdir = confine(self.root, cwd)
        if not workdir.is_dir():
            raise ValueError(f"Working directory {cwd} does not exist.")
        timeout = clamp(timeout_ms, 1000, MAX_TIMEOUT_MS, self.default_timeout_ms) / 1000

        proc_env = dict(os.environ)
        proc_env.update({k: v for k, v in (env or {}).items() if isinstance(v, str)})
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(workdir),
            env=proc_env,
            executable=self.shell,
        )
        outcome = CommandOutcome(command=command, cwd=workdir)
        try:
            stdout_raw, stderr_raw = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            try:
                proc.kill()
                await asyncio.wait_for(proc.wait(), timeout=5)
            except (ProcessLookupError, asyncio.TimeoutError):
                pass
            outcome.timed_out = True
            outcome.stderr = f"Command timed out after {timeout:g}s"
            return outcome

        for stream, raw in (("stdout", stdout_raw), ("stderr", stderr_raw)):
            if len(raw) > self.max_output:
                outcome.truncated.append(stream)
            setattr(outcome, stream, raw[: self.max_output].decode("utf-8", errors="replace"))
        outcome.exit_code = proc.returncode
        return outcome

    def list_files(self, path: str = ".") -> str:
        target = confine(self.root, path)
        if not target.is_dir():
            raise ValueError("Target is not a directory.")
        names = sorted(p.name for p in target.iterdir())[:MAX_LISTED]
        return "\n".join(f"- {n}" for n in names) or "<empty directory>"


def build_server(runner: ShellRunner, name: str) -> FastMCP:
    server = FastMCP(name, log_level="WARNING")

    @server.tool(title="Run shell command", structured_output=False)
    async def run_shell_command(
        command: str,
        cwd: str = ".",
        timeout_ms: Optional[int] = None,
        env: Optional[dict[str, str]] = None,
    ) -> str:
        """Run a command inside the root directory and return its stdout and stderr."""
        outcome = await runner.run(command, cwd, timeout_ms, env)
        return outcome.render()

    @server.tool(title="List workspace files", structured_output=False)
    def list_workspace_files(path: str = ".") -> str:
        """List the first level of files and directories under a path of the root."""
        return runner.list_files(path)

    return server


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Shell MCP server")
    parser.add_argument("--root", default=".", help="Directory commands run in")
    parser.add_argument("--name", default="shell_tasks", help="Server name")
    parser.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT_MS, help="Default timeout in ms")
    parser.add_argument("--max-buffer", type=int, default=DEFAULT_MAX_OUTPUT, help="Bytes kept per stream")
    parser.add_argument("--shell", default=os.environ.get("SHELL"), help="Shell used to run commands")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    runner = ShellRunner(
        root=prepare_root(args.root),
        default_timeout_ms=clamp(args.timeout, 1000, 5 * 60 * 1000, DEFAULT_TIMEOUT_MS),
        max_output=clamp(args.max_buffer, 16 * 1024, 8 * 1024 * 1024, DEFAULT_MAX_OUTPUT),
        shell=args.shell,
    )
    logger.info("[%s] shell server ready (root=%s)", args.name, runner.root)
    build_server(runner, args.name).run()


if __name__ == "__main__":
    main()
