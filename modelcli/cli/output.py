"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from modelcli.cli.history import ToolOutput
from modelcli.config import AppConfig
from modelcli.tools.base import Tool
from modelcli.types import ToolResult

_PREVIEW_CHARS = 200


class OutputFormatter:
    """Rich-based output formatting for the mcli CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_model_list(self, config: AppConfig, active: str | None = None) -> None:
        table = Table(title="Configured Models")
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Provider", no_wrap=True)
        table.add_column("Model")
        table.add_column("Tools")

        default = active or config.default_model
        for name, settings in config.models.items():
            label = Text(name, style="bold cyan") if name == default else Text(name)
            table.add_row(
                label,
                settings.provider,
                settings.model,
                ", ".join(settings.tools) or "-",
            )

        self.console.print(table)

    def format_tool_list(self, tools: list[Tool]) -> None:
        if not tools:
            self.console.print("[dim]No tools registered.[/dim]")
            return

        table = Table(title="Registered Tools", show_lines=True)
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Description")
        for t in tools:
            table.add_row(t.name, t.description)

        self.console.print(table)

    def format_tool_info(self, tool: Tool) -> None:
        self.console.print(Panel(tool.description, title=f"Tool: {tool.name}"))
        schema_json = json.dumps(tool.parameters, indent=2)
        self.console.print(Syntax(schema_json, "json", theme="monokai"))

    def format_tool_call(self, tool_name: str, call_id: str, arguments: dict) -> None:
        args = json.dumps(arguments, ensure_ascii=False, default=str)
        if len(args) > _PREVIEW_CHARS:
            args = args[:_PREVIEW_CHARS] + "..."
        self.console.print(
            f"\n  [yellow]->[/yellow] [bold]{tool_name}[/bold] [dim]{call_id}[/dim] {escape(args)}",
            highlight=False,
        )

    def format_tool_result(
        self, tool_name: str, result: ToolResult, entry_id: str | None = None
    ) -> None:
        status = "[green]OK[/green]" if result.success else "[red]FAILED[/red]"
        if entry_id:
            status += f" [dim]({entry_id})[/dim]"
        preview = result.content.replace("\n", " ")[:_PREVIEW_CHARS]
        self.console.print(f"  {escape(f'[{tool_name}]')} {status}: ", end="", highlight=False)
        self.console.print(preview, markup=False, highlight=False)

    def format_reasoning(self, delta: str) -> None:
        self.console.print(delta, end="", style="dim italic", markup=False, highlight=False)

    def format_error(self, error: BaseException) -> None:
        self.console.print(f"\n[red]Error:[/red] {escape(str(error))}", highlight=False)

    def format_tool_history(self, entries: list[ToolOutput]) -> None:
        if not entries:
            self.console.print("[dim]No tool output recorded yet.[/dim]")
            return

        table = Table(title="Recent Tool Output")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Tool")
        table.add_column("Status", no_wrap=True)
        table.add_column("Time", no_wrap=True)
        for entry in entries:
            table.add_row(
                entry.id,
                entry.tool,
                "OK" if entry.result.success else "FAILED",
                entry.timestamp.strftime("%H:%M:%S"),
            )
        self.console.print(table)
        self.console.print("  [dim]Use /tool ID to show the full output.[/dim]")

    def format_tool_output(self, entry: ToolOutput) -> None:
        self.console.print(
            Panel(
                Text(entry.result.content),
                title=escape(f"Tool {entry.tool} ({entry.id})"),
                border_style="green" if entry.result.success else "red",
            )
        )
