"""Tests for the bundled filesystem and shell tool servers."""

from __future__ import annotations

from pathlib import Path

import pytest

import modelcli
from modelcli.external.bridge import ExternalToolBridge
from modelcli.external.config import default_servers
from modelcli.external.servers.common import OutsideRootError, confine, format_bytes
from modelcli.external.servers.filesystem import Workspace, parse_args
from modelcli.external.servers.shell import ShellRunner
from modelcli.session.session import Session
from modelcli.tools.base import ToolContext
from modelcli.tools.registry import ToolRegistry


@pytest.fixture
def tree(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("import os\nprint('needle here')\n", encoding="utf-8")
    (tmp_path / "README.md").write_text("# Project\nno match\n", encoding="utf-8")
    (tmp_path / ".hidden").write_text("needle", encoding="utf-8")
    return tmp_path


class TestConfinement:
    def test_inside_root(self, tmp_path):
        assert confine(tmp_path.resolve(), "a/../b") == tmp_path.resolve() / "b"

    @pytest.mark.parametrize("path", ["..", "../other", "/etc/passwd"])
    def test_outside_root(self, tmp_path, path):
        with pytest.raises(OutsideRootError):
            confine(tmp_path.resolve(), path)

    def test_format_bytes(self):
        assert format_bytes(12) == "12 B"
        assert format_bytes(2048) == "2.0 KB (2048 B)"


class TestWorkspace:
    def test_list_directory(self, tree):
        listing = Workspace(tree.resolve()).list_directory(".", depth=2)
        assert "[dir]  src" in listing
        assert "[file] src/app.py" in listing
        assert ".hidden" not in listing

    def test_list_hidden(self, tree):
        listing = Workspace(tree.resolve()).list_directory(include_hidden=True)
        assert ".hidden" in listing

    def test_read_file(self, tree):
        text = Workspace(tree.resolve()).read_file("src/app.py")
        assert text.startswith("# src/app.py (size:")
        assert "needle here" in text

    def test_read_file_size_limit(self, tree):
        with pytest.raises(ValueError, match="too large"):
            Workspace(tree.resolve(), max_file_bytes=4).read_file("README.md")

    def test_search_skips_hidden_files(self, tree):
        result = Workspace(tree.resolve()).search_text("needle")
        assert result == "src/app.py:2 print('needle here')"

    def test_search_without_matches(self, tree):
        assert Workspace(tree.resolve()).search_text("absent") == "No matches found."

    def test_writes_need_write_mode(self, tree):
        with pytest.raises(PermissionError):
            Workspace(tree.resolve()).write_file("new.txt", "x")

    def test_write_append_and_delete(self, tree):
        ws = Workspace(tree.resolve(), allow_writes=True)
        ws.write_file("out/new.txt", "one\n")
        ws.write_file("out/new.txt", "two\n", mode="append")
        assert (tree / "out" / "new.txt").read_text(encoding="utf-8") == "one\ntwo\n"

        assert ws.delete_path("out") == "Deleted out."
        assert not (tree / "out").exists()
        with pytest.raises(ValueError):
            ws.delete_path(".")

    def test_mode_flag(self):
        args = parse_args(["--root", "/tmp", "--mode", "write"])
        assert args.root == "/tmp"
        assert args.mode == "write"


class TestShellRunner:
    async def test_runs_in_root(self, tree):
        runner = ShellRunner(tree.resolve())
        outcome = await runner.run("ls")
        assert outcome.exit_code == 0
        assert "README.md" in outcome.stdout
        rendered = outcome.render()
        assert rendered.startswith("$ ls | cwd: ")
        assert "exit code: 0" in rendered
        assert "STDERR: <empty>" in rendered

    async def test_nonzero_exit_and_stderr(self, tree):
        outcome = await ShellRunner(tree.resolve()).run("echo oops >&2; exit 3")
        assert outcome.exit_code == 3
        assert outcome.stderr.strip() == "oops"

    async def test_timeout(self, tree):
        outcome = await ShellRunner(tree.resolve()).run("exec sleep 5", timeout_ms=1000)
        assert outcome.timed_out
        assert "timed out" in outcome.render()

    async def test_output_truncated(self, tree):
        outcome = await ShellRunner(tree.resolve(), max_output=4).run("echo abcdefgh")
        assert outcome.stdout == "abcd"
        assert outcome.truncated == ["stdout"]

    async def test_cwd_confined(self, tree):
        with pytest.raises(OutsideRootError):
            await ShellRunner(tree.resolve()).run("ls", cwd="..")

    def test_list_files(self, tree):
        assert ShellRunner(tree.resolve()).list_files() == "- .hidden\n- README.md\n- src"


class TestBundledServersOverStdio:
    async def test_project_files_server(self, tree):
        package_root = Path(modelcli.__file__).resolve().parent.parent
        servers = [s for s in default_servers() if s.name == "project_files"]
        registry = ToolRegistry()
        bridge = ExternalToolBridge(registry)
        ctx = ToolContext(model="mock", session=Session())
        try:
            names = await bridge.connect_all(servers, base_dir=package_root, session_root=tree)
            assert sorted(names) == [
                "mcp_project_files_list_directory",
                "mcp_project_files_read_file",
                "mcp_project_files_search_text",
            ]

            read = await registry.require("mcp_project_files_read_file").invoke({"path": "src/app.py"}, ctx)
            assert read.success
            assert "needle here" in read.content

            escaped = await registry.require("mcp_project_files_read_file").invoke({"path": "../x"}, ctx)
            assert not escaped.success
            assert "outside the allowed root" in escaped.content
        finally:
            await bridge.shutdown()
