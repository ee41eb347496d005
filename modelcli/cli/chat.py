"""Interactive chat session handler."""

from __future__ import annotations

import asyncio
import logging
import signal as signals

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape

from modelcli.cli.history import ToolHistory
from modelcli.cli.output import OutputFormatter
from modelcli.errors import CompletionCancelled, ConfigError
from modelcli.orchestrator.core import ModelClient
from modelcli.session.session import Session
from modelcli.session.summary import ConversationSummarizer
from modelcli.types import ToolResult

logger = logging.getLogger(__name__)


class ChatHandler:
    """
    Manages the interactive chat loop.

    Handles streaming output, inline commands, and turning Ctrl-C during a
    completion into a cancellation of that turn.
    """

    def __init__(
        self,
        client: ModelClient,
        session: Session,
        model_name: str,
        console: Console | None = None,
        stream: bool = True,
        summarizer: ConversationSummarizer | None = None,
    ) -> None:
        self.client = client
        self.session = session
        self.model_name = model_name
        self.console = console or Console()
        self.formatter = OutputFormatter(self.console)
        self.stream = stream
        self.summarizer = summarizer
        self.tool_history = ToolHistory()
        self._running = True

    def _system_prompt(self) -> str | None:
        return self.client.config.get_model(self.model_name).system_prompt

    async def handle_command(self, command: str) -> bool:
        """
        Handle inline commands. Returns True if the command was handled.
        """
        parts = command.strip().split(None, 1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        if cmd in ("/quit", "/exit"):
            self._running = False
            self.console.print("[dim]Goodbye.[/dim]")
            return True

        if cmd == "/reset":
            self.session.reset(self._system_prompt())
            if self.summarizer:
                self.summarizer.last_summary_index = 0
            self.console.print("  [dim]Conversation cleared.[/dim]")
            return True

        if cmd == "/tools":
            settings = self.client.config.get_model(self.model_name)
            self.formatter.format_tool_list(self.client.resolve_toolset(settings))
            return True

        if cmd in ("/tool", "/tool_result"):
            if not arg:
                self.formatter.format_tool_history(self.tool_history.list())
                return True
            entry = self.tool_history.get(arg)
            if entry is None:
                self.console.print(f"  [yellow]No tool output with ID {escape(arg)}.[/yellow]")
            else:
                self.formatter.format_tool_output(entry)
            return True

        if cmd == "/model":
            if not arg:
                self.formatter.format_model_list(self.client.config, active=self.model_name)
                return True
            try:
                settings = self.client.config.get_model(arg)
            except ConfigError as e:
                self.formatter.format_error(e)
                return True
            self.model_name = settings.name
            self.session.reset(settings.system_prompt)
            if self.summarizer:
                self.summarizer.last_summary_index = 0
            self.console.print(f"  Switched to model: [bold]{settings.name}[/bold]")
            return True

        if cmd == "/help":
            self.console.print(
                "  [bold]Commands:[/bold]\n"
                "  /quit         - Exit the chat\n"
                "  /reset        - Clear the conversation\n"
                "  /model [NAME] - List models or switch to NAME\n"
                "  /tools        - List the tools of the active model\n"
                "  /tool [ID]    - List recent tool output or show one in full\n"
                "  /help         - Show this help\n"
            )
            return True

        return False

    async def handle_input(self, user_input: str) -> str | None:
        """Run one turn. On any error the session is left as it was before."""
        before = self.session.checkpoint()
        self.session.add_user(user_input)

        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signals.SIGINT, cancel.set)
            installed = True
        except (NotImplementedError, RuntimeError):
            installed = False

        streamed: list[str] = []

        def on_token(delta: str) -> None:
            streamed.append(delta)
            self.console.print(delta, end="", markup=False, highlight=False)

        def on_tool_result(tool_name: str, call_id: str, result: ToolResult) -> None:
            entry_id = self.tool_history.add(tool_name, result)
            self.formatter.format_tool_result(tool_name, result, entry_id)

        try:
            text = await self.client.chat(
                self.model_name,
                self.session,
                stream=self.stream,
                on_token=on_token,
                on_reasoning=self.formatter.format_reasoning,
                on_tool_call=self.formatter.format_tool_call,
                on_tool_result=on_tool_result,
                signal=cancel,
            )
        except CompletionCancelled:
            self.session.restore(before)
            self.console.print("\n[yellow]Cancelled.[/yellow]")
            return None
        except Exception as e:
            self.session.restore(before)
            logger.debug("Turn failed", exc_info=True)
            self.formatter.format_error(e)
            return None
        finally:
            if installed:
                loop.remove_signal_handler(signals.SIGINT)

        if streamed:
            self.console.print()
        elif text:
            self.console.print(Markdown(text))

        if self.summarizer and await self.summarizer.maybe_summarize(
            self.session, self.client, self.model_name
        ):
            self.console.print("[dim](conversation summarised)[/dim]")
        return text

    async def run_loop(self) -> None:
        """Main interactive loop."""
        self.console.print(
            f"[bold]mcli[/bold] - chatting with [cyan]{self.model_name}[/cyan]\n"
            "[dim]Type /help for commands, /quit to exit. "
            "Ctrl-C cancels a running reply.[/dim]\n"
        )

        loop = asyncio.get_running_loop()
        while self._running:
            try:
                user_input = await loop.run_in_executor(
                    None, lambda: input("you> ").strip()
                )
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/dim]")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                handled = await self.handle_command(user_input)
                if handled:
                    continue

            self.console.print("[dim]assistant>[/dim] ", end="")
            await self.handle_input(user_input)
