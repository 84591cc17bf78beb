#!/usr/bin/env python3
"""
meshchat Client - Main Entry Point

Reads user input from the terminal, keeps it in an outbox, and lets the
reconnect controller keep a chat session alive against the server.
"""

import argparse
import asyncio
import sys
import threading
from typing import Optional

from meshchat.client.chat.chat_client import ChatClient, Outbox
from meshchat.client.chat.reconnect import ConnectionState, ReconnectController, ReconnectState
from meshchat.client.ui.display import TerminalDisplay
from meshchat.client.ui.input_handler import HELP, QUIT, CommandError, InputHandler
from meshchat.client.utils.config import ClientConfig
from meshchat.client.utils.logger import logger
from meshchat.common.constants import (
    DEFAULT_HOST, DEFAULT_PORT, RECONNECT_BASE_DELAY, RECONNECT_MAX_DELAY, RECONNECT_JITTER,
    CONNECT_TIMEOUT, DEFAULT_LOG_LEVEL
)
from meshchat.common.errors import ReconnectExhausted
from meshchat.common.message import MachineDescriptor, Role


class MeshChatClient:
    """Main client class that wires input, outbox, display and reconnects."""

    def __init__(self, config: ClientConfig, display=None, sleep=asyncio.sleep):
        self.config = config
        self.machine = MachineDescriptor.local(config.role)
        self.display = display if display is not None else TerminalDisplay()
        self.outbox = Outbox()
        self.input_handler = InputHandler(config.username, self.machine)
        self.controller = ReconnectController(
            self.open_session,
            ReconnectState(config.base_delay, config.max_delay, config.retry_limit),
            sleep=sleep,
            jitter=config.jitter,
            on_state_change=self._on_state_change
        )

    async def open_session(self) -> ChatClient:
        return await ChatClient.open(self.config, self.machine, self.outbox, self.display)

    def submit_line(self, line: str) -> bool:
        """Handle one line of user input; returns False once the user quits."""
        try:
            action = self.input_handler.parse(line)
        except CommandError as e:
            self.display.show_error(str(e))
            return True

        if action is None:
            return True
        if action is HELP:
            self.display.show_help()
            return True
        if action is QUIT:
            self.quit()
            return False

        if self.controller.connection_state is not ConnectionState.CONNECTED:
            self.display.show_info("Not connected; message queued until the server is back")
        self.outbox.put(action)
        return True

    def quit(self):
        self.outbox.put(QUIT)
        self.controller.stop()

    async def read_input(self):
        """Feed stdin lines into submit_line until quit or EOF."""
        loop = asyncio.get_running_loop()
        lines: asyncio.Queue = asyncio.Queue()

        def reader():
            for line in sys.stdin:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            loop.call_soon_threadsafe(lines.put_nowait, None)

        threading.Thread(target=reader, name='meshchat-stdin', daemon=True).start()

        while True:
            line = await lines.get()
            if line is None:
                self.quit()
                return
            if not self.submit_line(line):
                return

    async def run(self):
        """Main client loop."""
        self.display.show_info(f"Connecting to {self.config.host}:{self.config.port} as "
                               f"'{self.config.username}'. Type /help for commands.")
        input_task = asyncio.create_task(self.read_input())
        try:
            await self.controller.run()
        finally:
            input_task.cancel()
            await asyncio.gather(input_task, return_exceptions=True)
            self.display.show_info("Disconnected from server")

    def _on_state_change(self, state: ConnectionState):
        if state is ConnectionState.CONNECTED:
            self.display.show_info("Connected")
        elif state is ConnectionState.DISCONNECTED:
            self.display.show_warning("Disconnected from server; reconnecting...")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='meshchat broadcast chat client')
    parser.add_argument('--host', type=str, default=DEFAULT_HOST,
                        help=f'Server address (default: {DEFAULT_HOST})')
    parser.add_argument('--port', type=int, default=DEFAULT_PORT,
                        help=f'Server port (default: {DEFAULT_PORT})')
    parser.add_argument('--username', type=str, default=None,
                        help='Display name (prompted for when omitted)')
    parser.add_argument('--role', type=str, default=Role.WORKSTATION.value,
                        choices=[role.value for role in Role],
                        help=f'Role announced for this machine (default: {Role.WORKSTATION.value})')
    parser.add_argument('--base-delay', type=float, default=RECONNECT_BASE_DELAY,
                        help=f'First reconnect delay in seconds (default: {RECONNECT_BASE_DELAY})')
    parser.add_argument('--max-delay', type=float, default=RECONNECT_MAX_DELAY,
                        help=f'Maximum reconnect delay in seconds (default: {RECONNECT_MAX_DELAY})')
    parser.add_argument('--retry-limit', type=int, default=None,
                        help='Give up after this many failed retries (default: retry forever)')
    parser.add_argument('--jitter', type=float, default=RECONNECT_JITTER,
                        help='Random extra delay as a fraction of the backoff (default: 0)')
    parser.add_argument('--connect-timeout', type=float, default=CONNECT_TIMEOUT,
                        help=f'Seconds to wait for connect and login (default: {CONNECT_TIMEOUT})')
    parser.add_argument('--log-level', type=str, default=DEFAULT_LOG_LEVEL,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help=f'Logging level (default: {DEFAULT_LOG_LEVEL})')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logger.set_level(args.log_level)

    username: Optional[str] = args.username
    if not username:
        try:
            username = input("Enter username: ").strip()
        except EOFError:
            username = ''
        if not username:
            print("Username cannot be empty!")
            return 1

    try:
        config = ClientConfig(
            host=args.host,
            port=args.port,
            username=username,
            role=Role(args.role),
            base_delay=args.base_delay,
            max_delay=args.max_delay,
            retry_limit=args.retry_limit,
            jitter=args.jitter,
            connect_timeout=args.connect_timeout,
            log_level=args.log_level
        )
    except ValueError as e:
        logger.log_error("client configuration", e)
        return 2

    client = MeshChatClient(config)
    try:
        asyncio.run(client.run())
    except KeyboardInterrupt:
        print("\nClient terminated")
    except ReconnectExhausted as e:
        logger.error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
