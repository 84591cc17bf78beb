#!/usr/bin/env python3
"""
meshchat Server - Main Entry Point

Accepts client connections, runs one session loop per connection and shares
the connection registry, broadcast hub and history store between them.
"""

import argparse
import asyncio
from typing import Optional, Set

from meshchat.common.constants import (
    DEFAULT_SERVER_HOST, DEFAULT_PORT, HISTORY_FILE, MAX_CHAT_HISTORY, DEFAULT_REPLAY_COUNT,
    OUTBOUND_QUEUE_SIZE, HANDSHAKE_TIMEOUT, DEFAULT_LOG_LEVEL
)
from meshchat.common.errors import PersistenceError
from meshchat.server.chat.chat_server import ChatServer
from meshchat.server.chat.session import ServerSession
from meshchat.server.history.history_store import HistoryStore
from meshchat.server.utils.config import ServerConfig
from meshchat.server.utils.logger import logger


class MeshChatServer:
    """Main server class that owns the listener and the shared chat state."""

    def __init__(self, config: ServerConfig, history: Optional[HistoryStore] = None):
        self.config = config
        self.chat_server = ChatServer(config, history)
        self._server: Optional[asyncio.AbstractServer] = None
        self._session_tasks: Set[asyncio.Task] = set()

    @property
    def port(self) -> Optional[int]:
        """Port actually bound, useful when configured with port 0."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Handle individual client connection."""
        task = asyncio.current_task()
        self._session_tasks.add(task)
        try:
            await ServerSession(self.chat_server, reader, writer).run()
        finally:
            self._session_tasks.discard(task)

    async def start(self):
        """Bind the listening socket."""
        self._server = await asyncio.start_server(
            self.handle_client,
            self.config.host,
            self.config.port,
            limit=self.config.max_frame_size
        )
        addr = ', '.join(str(sock.getsockname()) for sock in self._server.sockets)
        logger.info(f"Server listening on {addr}")

    async def serve_forever(self):
        """Start the server and serve until cancelled."""
        if self._server is None:
            await self.start()
        try:
            await self._server.serve_forever()
        finally:
            await self.stop()

    async def stop(self):
        """Stop accepting connections and close every live session."""
        if self._server is None:
            return
        self._server.close()
        tasks = list(self._session_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._server.wait_closed()
        self._server = None
        logger.info("Server stopped")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='meshchat broadcast chat server')
    parser.add_argument('--host', type=str, default=DEFAULT_SERVER_HOST,
                        help=f'Host to bind to (default: {DEFAULT_SERVER_HOST})')
    parser.add_argument('--port', type=int, default=DEFAULT_PORT,
                        help=f'TCP port to listen on (default: {DEFAULT_PORT})')
    parser.add_argument('--history-file', type=str, default=HISTORY_FILE,
                        help=f'JSON Lines file holding chat history (default: {HISTORY_FILE})')
    parser.add_argument('--no-persist', action='store_true',
                        help='Keep history in memory only')
    parser.add_argument('--history-size', type=int, default=MAX_CHAT_HISTORY,
                        help=f'Number of messages retained in history (default: {MAX_CHAT_HISTORY})')
    parser.add_argument('--replay-count', type=int, default=DEFAULT_REPLAY_COUNT,
                        help=f'Messages replayed to a client on connect (default: {DEFAULT_REPLAY_COUNT})')
    parser.add_argument('--queue-size', type=int, default=OUTBOUND_QUEUE_SIZE,
                        help=f'Outbound frames buffered per client (default: {OUTBOUND_QUEUE_SIZE})')
    parser.add_argument('--handshake-timeout', type=float, default=HANDSHAKE_TIMEOUT,
                        help=f'Seconds to wait for a client login (default: {HANDSHAKE_TIMEOUT})')
    parser.add_argument('--log-level', type=str, default=DEFAULT_LOG_LEVEL,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help=f'Logging level (default: {DEFAULT_LOG_LEVEL})')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logger.set_level(args.log_level)

    try:
        config = ServerConfig(
            host=args.host,
            port=args.port,
            history_file=None if args.no_persist else args.history_file,
            max_history=args.history_size,
            replay_count=args.replay_count,
            queue_size=args.queue_size,
            handshake_timeout=args.handshake_timeout,
            log_level=args.log_level
        )
        server = MeshChatServer(config)
    except (ValueError, PersistenceError) as e:
        logger.log_error("server startup", e)
        return 1

    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        logger.info("Server shutting down...")
    except OSError as e:
        logger.log_error("server", e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
