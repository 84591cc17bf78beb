"""
Input handler for the chat client.

Turns a line typed by the user into an outbound frame, a quit request or a
local help request. The session loop never sees raw command text.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

from meshchat.common.constants import MAX_FILE_TRANSFER_SIZE
from meshchat.common.message import (
    ActivityLog, ChatMessage, CodeSnippet, FilePath, FileTransfer, MachineDescriptor, Text
)
from meshchat.common.protocol_definitions import (
    create_chat_message, create_get_history_message, create_search_message, create_who_message
)


class _Signal:
    def __init__(self, name: str):
        self.name = name

    def __repr__(self):
        return f"<{self.name}>"


QUIT = _Signal('quit')
HELP = _Signal('help')

InputAction = Union[Dict[str, Any], _Signal]


class CommandError(ValueError):
    """A command line the user has to correct."""


class InputHandler:
    """Parses user input lines for one author and machine."""

    def __init__(self, username: str, machine: Optional[MachineDescriptor] = None):
        self.username = username
        self.machine = machine

    def compose(self, body: str, kind=None) -> ChatMessage:
        return ChatMessage.create(self.username, body, kind or Text(), self.machine)

    def parse(self, line: str) -> Optional[InputAction]:
        """
        Parse one input line.

        Returns None for blank input, QUIT or HELP for local actions, and a
        frame dict for anything to be sent. Raises CommandError with a usage
        hint for malformed commands.
        """
        line = line.rstrip('\r\n')
        if not line.strip():
            return None
        if not line.startswith('/'):
            return create_chat_message(self.compose(line))

        command, _, rest = line[1:].partition(' ')
        rest = rest.strip()

        if command in ('quit', 'exit'):
            return QUIT
        if command == 'help':
            return HELP
        if command == 'code':
            language, _, code = rest.partition(' ')
            if not language or not code.strip():
                raise CommandError("Usage: /code <language> <code>")
            return create_chat_message(self.compose(code.replace('\\n', '\n'), CodeSnippet(language)))
        if command == 'path':
            path, _, note = rest.partition(' ')
            if not path:
                raise CommandError("Usage: /path <path> [note]")
            return create_chat_message(self.compose(path, FilePath(path, note.strip() or None)))
        if command == 'send':
            if not rest:
                raise CommandError("Usage: /send <file>")
            return create_chat_message(self._file_message(Path(rest).expanduser()))
        if command == 'activity':
            if not rest:
                raise CommandError("Usage: /activity <text>")
            return create_chat_message(self.compose(rest, ActivityLog(rest)))
        if command == 'history':
            if rest and not rest.isdigit():
                raise CommandError("Usage: /history [n]")
            return create_get_history_message(int(rest) if rest else None)
        if command == 'search':
            if not rest:
                raise CommandError("Usage: /search <text>")
            return create_search_message(rest)
        if command == 'who':
            return create_who_message()
        raise CommandError(f"Unknown command '/{command}'. Type /help for a list of commands")

    def _file_message(self, path: Path) -> ChatMessage:
        try:
            size = path.stat().st_size
            if size > MAX_FILE_TRANSFER_SIZE:
                raise CommandError(f"{path.name} is {size} bytes; the limit is {MAX_FILE_TRANSFER_SIZE}")
            data = path.read_bytes()
        except OSError as e:
            raise CommandError(f"Cannot read {path}: {e}")
        return self.compose(f"sent {path.name}", FileTransfer(path.name, len(data), data))
