"""Chatdesk - terminal front end for the Gemini chat controller.

Drives a :class:`~chatdesk.chat.ChatSession` from a polling loop, the same
way a desktop UI would drive it from its redraw tick.
"""

from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path
from typing import List, Optional, Sequence

from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.style import Style
from rich.text import Text

from .app import configure_logging, create_session
from .chat import ChatSession
from .completion import Severity
from .config import get_settings
from .gemini import BackendError, PooledClientMixin
from .schemas.content import GenerationConfig
from .schemas.conversation import Attachment, Turn
from .services.export import ExportFormat
from .services.runtime import BackgroundRuntime

logger = logging.getLogger(__name__)

THOUGHT_STYLE = Style(color="bright_black", italic=True)
STATUS_STYLE = Style(color="cyan", italic=True)
ERROR_STYLE = Style(color="red", bold=True)
INFO_STYLE = Style(color="cyan")

POLL_INTERVAL = 0.05


def render_turn(turn: Turn) -> RenderableType:
    parts: List[RenderableType] = []
    if turn.is_thought:
        parts.append(Text(turn.content, style=THOUGHT_STYLE))
    elif turn.is_error:
        parts.append(Markdown(turn.content, style="red"))
    elif turn.content:
        parts.append(Markdown(turn.content))
    if turn.status_message:
        parts.append(Text(turn.status_message, style=STATUS_STYLE))
    if turn.is_generating and not turn.content and not turn.status_message:
        parts.append(Text("…", style=STATUS_STYLE))
    return Group(*parts)


class ChatShell:
    """Interactive loop around one chat session."""

    def __init__(
        self,
        runtime: BackgroundRuntime,
        *,
        console: Optional[Console] = None,
        model: Optional[str] = None,
        include_thoughts: bool = False,
    ) -> None:
        self.console = console or Console()
        self.runtime = runtime
        self.session: ChatSession = create_session(
            runtime=runtime, alert=self._alert, model=model
        )
        self.session.generation_config = GenerationConfig.from_options(
            include_thoughts=include_thoughts
        )
        self.running = True

    def _alert(self, title: str, body: str, severity: Severity) -> None:
        border = "red" if severity is Severity.ERROR else "yellow"
        self.console.print(Panel(Markdown(body), title=title, border_style=border))

    def _render_since(self, start: int) -> RenderableType:
        return Group(*(render_turn(turn) for turn in self.session.turns[start:]))

    def wait_for_completion(self, start: int) -> None:
        """Poll the session until its completion ends; Ctrl+C stops it early."""

        with Live(console=self.console, refresh_per_second=10, transient=False) as live:
            while True:
                try:
                    self.session.poll()
                    live.update(self._render_since(start))
                    if not self.session.is_generating:
                        break
                    time.sleep(POLL_INTERVAL)
                except KeyboardInterrupt:
                    self.console.print("[dim]Stopping generation...[/dim]")
                    self.session.stop()

        turn = self.session.turns[-1] if self.session.turns else None
        if turn is not None and turn.usage is not None:
            self.console.print(f"[dim]{turn.usage.summary()}[/dim]")

    def send(self, text: str, files: Sequence[Path | Attachment] = ()) -> None:
        if self.session.send_message(text, list(files)):
            self.wait_for_completion(len(self.session.turns) - 1)

    def _show_help(self) -> None:
        help_text = """
[bold]Commands:[/bold]
  /help              Show this help message
  /attach <path>     Attach a file to the next message
  /tokens [text]     Count tokens for the chat plus a draft
  /export <path>     Export the chat (.txt or .json)
  /retry             Resend the last message
  /regenerate [pre]  Regenerate the last answer, optionally with a prefix
  /quit              Exit chatdesk

[bold]Shortcuts:[/bold]
  Ctrl+C             Stop the current generation
  Ctrl+D             Exit chatdesk
"""
        self.console.print(Panel(help_text.strip(), title="Chatdesk Help", border_style="blue"))

    def _last_assistant_index(self) -> Optional[int]:
        for index in range(len(self.session.turns) - 1, -1, -1):
            if not self.session.turns[index].is_user:
                return index
        return None

    def handle_command(self, cmd: str) -> bool:
        """Handle slash commands. Returns True if handled."""

        parts = cmd.strip().split(maxsplit=1)
        if not parts:
            return False
        command = parts[0].lower()
        argument = parts[1] if len(parts) > 1 else ""

        if command == "/help":
            self._show_help()
        elif command == "/quit":
            self.running = False
        elif command == "/attach":
            if not argument:
                self.console.print("[dim]Usage: /attach <path>[/dim]")
            else:
                path = Path(argument).expanduser()
                self.session.files.append(Attachment(path=path))
                self.console.print(f"Attached {path.name}", style=INFO_STYLE)
        elif command == "/tokens":
            try:
                count = self.runtime.run(
                    self.session.count_tokens(argument, list(self.session.files))
                )
            except BackendError as exc:
                logger.warning("Token count failed: %s", exc)
                self.console.print(f"Token count failed: {exc}", style=ERROR_STYLE)
                return True
            if count is None:
                self.console.print("[dim]Token counting is not available for this backend[/dim]")
            else:
                self.console.print(f"{count} tokens", style=INFO_STYLE)
        elif command == "/export":
            if not argument:
                self.console.print("[dim]Usage: /export <path>[/dim]")
            else:
                path = Path(argument).expanduser()
                try:
                    message = self.session.export(path, ExportFormat.from_path(path))
                except OSError as exc:
                    logger.warning("Export to %s failed: %s", path, exc)
                    self.console.print(f"Export failed: {exc}", style=ERROR_STYLE)
                else:
                    self.console.print(message, style=INFO_STYLE)
        elif command == "/retry":
            index = self._last_assistant_index()
            if index is not None and self.session.retry(index):
                self.wait_for_completion(len(self.session.turns) - 1)
        elif command == "/regenerate":
            index = self._last_assistant_index()
            if index is not None and self.session.regenerate(index, argument):
                self.wait_for_completion(index)
        else:
            return False
        return True

    def run(self, prompt: Optional[str] = None, files: Sequence[Path] = ()) -> None:
        if prompt:
            self.send(prompt, files)
            return

        self.console.print(
            "[bold]Chatdesk[/bold] - Type /help for commands, Ctrl+D to exit",
            style=INFO_STYLE,
        )
        self.session.files = [Attachment(path=path) for path in files]
        while self.running:
            try:
                user_input = Prompt.ask("[bold blue]You[/bold blue]")
            except EOFError:
                self.console.print("\n[dim]Goodbye![/dim]")
                break
            except KeyboardInterrupt:
                self.console.print()
                continue

            if not user_input.strip():
                continue
            if user_input.startswith("/") and self.handle_command(user_input):
                continue
            self.console.print()
            self.send(user_input, self.session.files)
            self.console.print()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatdesk",
        description="Chatdesk - chat with Gemini from the terminal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  chatdesk                                 Interactive session
  chatdesk "Summarise this" --file a.pdf   One-shot prompt with an attachment

Environment Variables:
  GEMINI_API_KEY    API key for the Gemini API
  AUTH_METHOD       api_key (default) or code_assist
""",
    )
    parser.add_argument("prompt", nargs="?", help="Send one prompt and exit")
    parser.add_argument(
        "--file",
        "-f",
        action="append",
        default=[],
        type=Path,
        help="Attach a file (repeatable)",
    )
    parser.add_argument("--model", "-m", default=None, help="Model to use")
    parser.add_argument(
        "--thoughts",
        action="store_true",
        help="Ask the model to include its reasoning",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point."""

    args = build_parser().parse_args(argv)
    configure_logging(get_settings())

    runtime = BackgroundRuntime()
    shell = ChatShell(runtime, model=args.model, include_thoughts=args.thoughts)
    try:
        shell.run(args.prompt, args.file)
    finally:
        if runtime.is_running:
            runtime.run(PooledClientMixin.aclose_shared(), timeout=5)
        runtime.shutdown()


if __name__ == "__main__":
    main()
