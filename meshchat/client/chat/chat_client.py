"""
Chat client module.

This module handles one client connection: the login handshake, then a
reader that hands server frames to the display and a writer that drains the
outbox of composed input, both torn down together when either ends.
"""

import asyncio
from collections import deque
from enum import Enum
from typing import Any, Dict, Optional

from meshchat.client.ui.input_handler import QUIT, InputAction
from meshchat.client.utils.config import ClientConfig
from meshchat.client.utils.logger import logger
from meshchat.common.constants import MessageTypes
from meshchat.common.errors import HandshakeRejected, HandshakeTimeout, MalformedMessage, TransportError, UnknownVariant
from meshchat.common.message import MachineDescriptor, message_from_dict
from meshchat.common.protocol_definitions import (
    create_login_message, create_logout_message, decode_frame, encode_frame, record_from_dict, record_items
)


class Outbox:
    """
    FIFO of user input waiting to be sent.

    Input keeps accumulating while the client is disconnected; only a
    connected session drains it, so anything composed during an outage goes
    out first, in composition order, after the next handshake.
    """

    def __init__(self):
        self._items = deque()
        self._ready = asyncio.Event()

    def __len__(self) -> int:
        return len(self._items)

    def put(self, item: InputAction):
        self._items.append(item)
        self._ready.set()

    def put_front(self, item: InputAction):
        """Return an item that could not be sent to the head of the queue."""
        self._items.appendleft(item)
        self._ready.set()

    async def get(self) -> InputAction:
        while not self._items:
            self._ready.clear()
            await self._ready.wait()
        return self._items.popleft()


class SessionEnd(Enum):
    QUIT = 'quit'
    LOST = 'lost'


class ChatClient:
    """Client-side chat session over one established connection."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 outbox: Outbox, display, session_id: Optional[str] = None):
        self.reader = reader
        self.writer = writer
        self.outbox = outbox
        self.display = display
        self.session_id = session_id

    @classmethod
    async def open(cls, config: ClientConfig, machine: Optional[MachineDescriptor],
                   outbox: Outbox, display) -> 'ChatClient':
        """
        Connect and complete the login handshake.

        Raises TransportError if the server cannot be reached, HandshakeTimeout
        if it does not confirm the login in time and HandshakeRejected if it
        answers with anything but login_success.
        """
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(config.host, config.port, limit=config.max_frame_size),
                config.connect_timeout
            )
        except asyncio.TimeoutError:
            logger.log_connection(config.host, config.port, False)
            raise TransportError(f"Timed out connecting to {config.host}:{config.port}")
        except OSError as e:
            logger.log_connection(config.host, config.port, False)
            raise TransportError(f"Cannot connect to {config.host}:{config.port}: {e}")

        logger.log_connection(config.host, config.port, True)
        try:
            writer.write(encode_frame(create_login_message(config.username, machine)))
            await writer.drain()
            line = await asyncio.wait_for(reader.readline(), config.connect_timeout)
            if not line:
                raise TransportError("Server closed the connection during login")
            frame = decode_frame(line)
            if frame['type'] != MessageTypes.LOGIN_SUCCESS:
                raise HandshakeRejected(frame.get('message') or f"Unexpected '{frame['type']}' during login")
        except asyncio.TimeoutError:
            await _close_quietly(writer)
            raise HandshakeTimeout("Server did not confirm the login in time")
        except MalformedMessage as e:
            await _close_quietly(writer)
            raise HandshakeRejected(str(e))
        except (ConnectionError, OSError, ValueError) as e:
            await _close_quietly(writer)
            raise TransportError(f"Connection failed during login: {e}")
        except (TransportError, HandshakeRejected):
            await _close_quietly(writer)
            raise

        logger.log_login(config.username, frame.get('session_id'))
        return cls(reader, writer, outbox, display, frame.get('session_id'))

    async def run(self) -> SessionEnd:
        """Run until the user quits or the connection is lost."""
        if len(self.outbox):
            logger.log_flush(len(self.outbox))

        read_task = asyncio.create_task(self._read_loop())
        write_task = asyncio.create_task(self._write_loop())
        try:
            await asyncio.wait({read_task, write_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (read_task, write_task):
                task.cancel()
            results = await asyncio.gather(read_task, write_task, return_exceptions=True)
            await self.close()

        for result in results:
            if isinstance(result, Exception):
                logger.log_error("chat session", result)
        return SessionEnd.QUIT if results[1] is SessionEnd.QUIT else SessionEnd.LOST

    async def close(self):
        await _close_quietly(self.writer)

    async def _read_loop(self):
        while True:
            try:
                line = await self.reader.readline()
            except ValueError as e:
                logger.warning(f"Frame from server too large: {e}")
                return
            except (ConnectionError, OSError) as e:
                logger.info(f"Connection lost: {e}")
                return

            if not line:
                logger.info("Server closed connection")
                return

            try:
                frame = decode_frame(line)
            except MalformedMessage as e:
                logger.warning(f"Malformed frame received: {e}")
                continue
            try:
                self.handle_frame(frame)
            except Exception as e:
                logger.log_error(f"handling '{frame['type']}' frame", e)

    async def _write_loop(self) -> SessionEnd:
        while True:
            item = await self.outbox.get()

            if item is QUIT:
                try:
                    self.writer.write(encode_frame(create_logout_message()))
                    await self.writer.drain()
                except (ConnectionError, OSError) as e:
                    logger.debug(f"Logout not delivered: {e}")
                return SessionEnd.QUIT

            try:
                self.writer.write(encode_frame(item))
                await self.writer.drain()
            except (ConnectionError, OSError) as e:
                self.outbox.put_front(item)
                logger.info(f"Send failed, message kept for reconnect: {e}")
                return SessionEnd.LOST
            except asyncio.CancelledError:
                # Resent after reconnect; the server drops duplicate ids
                self.outbox.put_front(item)
                raise

    def handle_frame(self, frame: Dict[str, Any]):
        """Handle different types of frames from the server."""
        msg_type = frame['type']

        if msg_type == MessageTypes.CHAT:
            try:
                message = message_from_dict(frame.get('message'))
            except UnknownVariant as e:
                logger.warning(f"Dropping message with unknown kind '{e.tag}'")
                return
            except MalformedMessage as e:
                logger.warning(f"Dropping malformed message: {e}")
                return
            self.display.show_message(message)

        elif msg_type == MessageTypes.HISTORY:
            self.display.show_history(self._messages_from(frame))

        elif msg_type == MessageTypes.SEARCH_RESULTS:
            self.display.show_search_results(frame.get('text', ''), self._messages_from(frame))

        elif msg_type == MessageTypes.PARTICIPANT_LIST:
            participants = frame.get('participants')
            self.display.show_participants(participants if isinstance(participants, list) else [])

        elif msg_type == MessageTypes.WARNING:
            self.display.show_warning(str(frame.get('message', 'Server warning')))

        elif msg_type == MessageTypes.ERROR:
            self.display.show_error(str(frame.get('message', 'Unknown error')))

        elif msg_type == MessageTypes.LOGIN_SUCCESS:
            logger.debug("Ignoring repeated login_success")

        else:
            logger.warning(f"Unknown frame type '{msg_type}' from server")

    def _messages_from(self, frame: Dict[str, Any]):
        try:
            items = record_items(frame)
        except MalformedMessage as e:
            logger.warning(str(e))
            return []

        messages = []
        for item in items:
            try:
                messages.append(record_from_dict(item).message)
            except MalformedMessage as e:
                logger.warning(f"Skipping unreadable history record: {e}")
        return messages


async def _close_quietly(writer: asyncio.StreamWriter):
    try:
        writer.close()
        await writer.wait_closed()
    except (ConnectionError, OSError) as e:
        logger.debug(f"Error closing connection: {e}")
