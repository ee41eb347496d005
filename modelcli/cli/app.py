"""
Main CLI application for model-cli.

Usage:
    mcli chat [--config PATH] [--model NAME] [--no-stream] [--system TEXT] [--verbose]
    mcli models [--config PATH]
    mcli tools [--config PATH] [--model NAME] [--no-mcp]
    mcli version
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from modelcli import __version__
from modelcli.config import AppConfig, load_config, resolve_default_config_path
from modelcli.errors import ConfigError

app = typer.Typer(name="mcli", help="Chat with tool-calling language models")

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(config_path: Path | None) -> AppConfig:
    try:
        return load_config(config_path or resolve_default_config_path())
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        raise typer.Exit(1)


async def _setup_stack(
    config_path: Path | None,
    model: str | None,
    stream: bool,
    system: str | None,
    connect_mcp: bool = True,
):
    """Wire up the full stack for chat."""
    from modelcli.cli.chat import ChatHandler
    from modelcli.external.bridge import ExternalToolBridge
    from modelcli.external.config import load_mcp_config
    from modelcli.orchestrator.core import ModelClient
    from modelcli.session.session import Session
    from modelcli.session.summary import ConversationSummarizer
    from modelcli.tools.builtin import register_builtin_tools
    from modelcli.tools.registry import ToolRegistry

    cfg = _load(config_path)

    registry = ToolRegistry()
    register_builtin_tools(registry)

    bridge = ExternalToolBridge(registry)
    if connect_mcp:
        try:
            servers = load_mcp_config(cfg.path)
        except ConfigError as e:
            console.print(f"[yellow]Warning:[/yellow] {e}")
            servers = []
        if servers:
            base_dir = cfg.path.parent if cfg.path else Path.cwd()
            await bridge.connect_all(servers, base_dir=base_dir, session_root=Path.cwd())
            bridge.apply_to_config(cfg)

    client = ModelClient(cfg, registry)
    try:
        settings = cfg.get_model(model)
    except ConfigError as e:
        await bridge.shutdown()
        console.print(f"[red]Config error:[/red] {e}")
        raise typer.Exit(1)

    session = Session(system if system is not None else settings.system_prompt)
    handler = ChatHandler(
        client,
        session,
        settings.name,
        console=console,
        stream=stream,
        summarizer=ConversationSummarizer(),
    )
    return handler, bridge


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to models.yaml"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name from the config"),
    no_stream: bool = typer.Option(False, "--no-stream", help="Wait for whole replies"),
    system: Optional[str] = typer.Option(None, "--system", help="Override the system prompt"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Start an interactive chat session."""
    _setup_logging(verbose)

    async def _run():
        handler, bridge = await _setup_stack(config, model, not no_stream, system)
        try:
            await handler.run_loop()
        finally:
            await bridge.shutdown()

    asyncio.run(_run())


@app.command()
def models(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to models.yaml"),
):
    """List configured models."""
    from modelcli.cli.output import OutputFormatter

    cfg = _load(config)
    OutputFormatter(console).format_model_list(cfg)
    if cfg.path:
        console.print(f"  [dim]Loaded from: {cfg.path}[/dim]")


@app.command()
def tools(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to models.yaml"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Only the tools of this model"),
    no_mcp: bool = typer.Option(False, "--no-mcp", help="Skip external tool servers"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """List registered tools, including those of external tool servers."""
    from modelcli.cli.output import OutputFormatter

    _setup_logging(verbose)

    async def _run():
        handler, bridge = await _setup_stack(config, model, True, None, connect_mcp=not no_mcp)
        try:
            client = handler.client
            if model:
                listed = client.resolve_toolset(client.config.get_model(model))
            else:
                listed = client.registry.list()
            OutputFormatter(console).format_tool_list(listed)
        finally:
            await bridge.shutdown()

    asyncio.run(_run())


@app.command()
def version():
    """Show version."""
    console.print(f"model-cli v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
