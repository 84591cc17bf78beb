"""
Terminal display for the chat client.

Renders every message kind with rich; code snippets are syntax highlighted.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text as RichText

from meshchat.common.message import (
    ActivityLog, ChatMessage, CodeSnippet, FilePath, FileTransfer, Join, Leave, System, Text
)

HELP_TEXT = """\
Commands:
  /code <language> <code>   share a code snippet
  /path <path> [note]       share a file path
  /send <file>              send a small file
  /activity <text>          log what you are working on
  /history [n]              show the last n messages
  /search <text>            search the chat history
  /who                      list connected machines
  /help                     show this help
  /quit                     leave the chat"""


def format_size(size: int) -> str:
    """Human readable byte count."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def format_stamp(created_at: float) -> str:
    """Local wall-clock time of a message, or a placeholder if it cannot be shown."""
    try:
        return datetime.fromtimestamp(created_at).strftime('%H:%M:%S')
    except (OverflowError, OSError, ValueError):
        return '--:--:--'


class TerminalDisplay:
    """Console renderer used by the client session loop."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(highlight=False)

    def show_message(self, message: ChatMessage):
        for renderable in self.render(message):
            self.console.print(renderable)

    def render(self, message: ChatMessage) -> List:
        """Build the renderables for one message, dispatching on its kind."""
        stamp = format_stamp(message.created_at)
        line = RichText(f"[{stamp}] ", style="dim")
        kind = message.kind

        if isinstance(kind, Text):
            line.append(message.author, style="bold blue")
            if message.origin is not None:
                line.append(f"@{message.origin.hostname}", style="dim blue")
            line.append(f": {message.body}")
            return [line]
        if isinstance(kind, Join):
            line.append("→ ", style="green")
            line.append(message.body, style="yellow")
            return [line]
        if isinstance(kind, Leave):
            line.append("← ", style="red")
            line.append(message.body, style="yellow")
            return [line]
        if isinstance(kind, System):
            line.append("⚡ ", style="cyan")
            line.append(message.body, style="cyan")
            return [line]
        if isinstance(kind, CodeSnippet):
            line.append(message.author, style="bold blue")
            line.append(f" shared {kind.language} code:")
            return [line, Syntax(message.body, kind.language or "text", line_numbers=False)]
        if isinstance(kind, FilePath):
            line.append(message.author, style="bold blue")
            line.append(" 📁 ")
            line.append(kind.path, style="underline magenta")
            if kind.note:
                line.append(f" - {kind.note}")
            return [line]
        if isinstance(kind, FileTransfer):
            line.append(message.author, style="bold blue")
            line.append(f" sent file {kind.name} ({format_size(kind.size)})", style="magenta")
            return [line]
        if isinstance(kind, ActivityLog):
            line.append(message.author, style="bold blue")
            line.append(f" is {kind.activity}", style="italic green")
            return [line]
        raise TypeError(f"Unhandled message kind {type(kind).__name__}")

    def show_history(self, messages: Iterable[ChatMessage]):
        messages = list(messages)
        if not messages:
            self.show_info("No previous messages")
            return
        self.console.rule(f"History: {len(messages)} message(s)", style="dim")
        for message in messages:
            self.show_message(message)
        self.console.rule(style="dim")

    def show_search_results(self, text: str, messages: Iterable[ChatMessage]):
        messages = list(messages)
        self.console.rule(f"Search {text!r}: {len(messages)} match(es)", style="dim")
        for message in messages:
            self.show_message(message)
        self.console.rule(style="dim")

    def show_participants(self, participants: List[dict]):
        table = Table(title=f"Connected ({len(participants)})")
        table.add_column("User", style="bold blue")
        table.add_column("Host")
        table.add_column("OS")
        table.add_column("Role")
        for participant in participants:
            if not isinstance(participant, dict):
                continue
            machine = participant.get('machine')
            if not isinstance(machine, dict):
                machine = {}
            table.add_row(
                str(participant.get('username', '?')),
                str(machine.get('hostname', '-')),
                str(machine.get('os', '-')),
                str(machine.get('role', '-')),
            )
        self.console.print(table)

    def show_info(self, text: str):
        self.console.print(text, style="dim")

    def show_warning(self, text: str):
        self.console.print(f"⚠ {text}", style="yellow")

    def show_error(self, text: str):
        self.console.print(f"✖ {text}", style="bold red")

    def show_help(self):
        self.console.print(HELP_TEXT)
