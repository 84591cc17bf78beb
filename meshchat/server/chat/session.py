"""
Server session loop.

One ServerSession runs per accepted connection. It waits for the login
handshake, registers the session, then concurrently reads inbound frames and
drains the session's outbound channel until either side ends.
"""

import asyncio
import uuid
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from meshchat.common.constants import MessageTypes
from meshchat.common.errors import (
    HandshakeRejected, HandshakeTimeout, MalformedMessage, TransportError, UnknownVariant
)
from meshchat.common.message import MachineDescriptor, message_from_dict
from meshchat.common.protocol_definitions import create_error_message, decode_frame, encode_frame
from meshchat.server.chat.broadcast_hub import SessionChannel
from meshchat.server.chat.chat_server import ChatServer
from meshchat.server.chat.registry import Session
from meshchat.server.utils.logger import logger


class SessionState(Enum):
    CONNECTING = 'connecting'
    AUTHENTICATED = 'authenticated'
    ACTIVE = 'active'
    CLOSING = 'closing'
    CLOSED = 'closed'


class ServerSession:
    """Bridges one client socket with the registry and the broadcast hub."""

    def __init__(self, chat_server: ChatServer, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.chat_server = chat_server
        self.reader = reader
        self.writer = writer
        self.session_id = uuid.uuid4().hex
        self.addr = writer.get_extra_info('peername')
        self.state = SessionState.CONNECTING
        self.session: Optional[Session] = None

    async def run(self):
        """Drive the connection from handshake to close."""
        logger.log_connection(self.addr, self.session_id)
        try:
            try:
                username, machine = await self._await_handshake()
            except HandshakeTimeout as e:
                logger.warning(f"Closing {self.addr}: {e}")
                return
            except (HandshakeRejected, MalformedMessage) as e:
                logger.warning(f"Rejected handshake from {self.addr}: {e}")
                await self._send_direct(create_error_message(str(e)))
                return
            except TransportError as e:
                logger.info(f"Connection from {self.addr} ended before login: {e}")
                return

            self._authenticate(username, machine)
            self.chat_server.registry.register(self.session)
            self.state = SessionState.ACTIVE
            await self._serve()
        finally:
            await self._close()

    async def _await_handshake(self) -> Tuple[str, Optional[MachineDescriptor]]:
        timeout = self.chat_server.config.handshake_timeout
        try:
            line = await asyncio.wait_for(self.reader.readline(), timeout)
        except asyncio.TimeoutError:
            raise HandshakeTimeout(f"No login received within {timeout}s")
        except ValueError as e:
            raise MalformedMessage(f"Login frame too large: {e}")
        except (ConnectionError, OSError) as e:
            raise TransportError(str(e))

        if not line:
            raise TransportError("connection closed")

        frame = decode_frame(line)
        if frame['type'] != MessageTypes.LOGIN:
            raise HandshakeRejected(f"Expected login, got '{frame['type']}'")

        username = frame.get('username')
        if not isinstance(username, str) or not username.strip():
            raise HandshakeRejected("Username cannot be empty!")

        machine = frame.get('machine')
        if machine is not None:
            machine = MachineDescriptor.from_dict(machine)
        return username.strip(), machine

    def _authenticate(self, username: str, machine: Optional[MachineDescriptor]):
        self.session = Session(
            session_id=self.session_id,
            display_name=username,
            channel=SessionChannel(self.chat_server.config.queue_size),
            machine=machine,
        )
        self.state = SessionState.AUTHENTICATED

    async def _serve(self):
        read_task = asyncio.create_task(self._read_loop())
        write_task = asyncio.create_task(self._write_loop())
        try:
            await asyncio.wait({read_task, write_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (read_task, write_task):
                task.cancel()
            results = await asyncio.gather(read_task, write_task, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.log_error(f"session {self.session_id}", result)

    async def _read_loop(self):
        """Read inbound frames until EOF, logout or a transport failure."""
        while True:
            try:
                line = await self.reader.readline()
            except ValueError as e:
                logger.warning(f"Frame too large from session={self.session_id}: {e}")
                return
            except (ConnectionError, OSError) as e:
                logger.info(f"Connection lost for session={self.session_id}: {e}")
                return

            if not line:
                return

            try:
                frame = decode_frame(line)
            except MalformedMessage as e:
                logger.warning(f"Malformed frame from session={self.session_id}: {e}")
                self.session.channel.push(encode_frame(create_error_message("Malformed JSON")))
                continue

            if not self._dispatch(frame):
                return

    def _dispatch(self, frame: Dict[str, Any]) -> bool:
        """Handle one inbound frame; returns False when the client logged out."""
        msg_type = frame['type']
        logger.debug(f"Received from session={self.session_id}: {msg_type}")

        if msg_type == MessageTypes.CHAT:
            try:
                message = message_from_dict(frame.get('message'))
            except UnknownVariant as e:
                logger.warning(f"Dropping message with unknown kind '{e.tag}' from session={self.session_id}")
                return True
            except MalformedMessage as e:
                logger.warning(f"Dropping malformed message from session={self.session_id}: {e}")
                self.session.channel.push(encode_frame(create_error_message(f"Malformed message: {e}")))
                return True
            self.chat_server.handle_chat(self.session, message)
        elif msg_type == MessageTypes.GET_HISTORY:
            self.chat_server.handle_get_history(self.session, frame.get('count'))
        elif msg_type == MessageTypes.SEARCH:
            text = frame.get('text')
            if not isinstance(text, str):
                self.session.channel.push(encode_frame(create_error_message("Search text must be a string")))
            else:
                self.chat_server.handle_search(self.session, text)
        elif msg_type == MessageTypes.WHO:
            self.chat_server.handle_who(self.session)
        elif msg_type == MessageTypes.LOGOUT:
            logger.info(f"Logout request from session={self.session_id}")
            return False
        elif msg_type == MessageTypes.LOGIN:
            logger.warning(f"Ignoring repeated login from session={self.session_id}")
        else:
            logger.warning(f"Unknown message type '{msg_type}' from session={self.session_id}")
        return True

    async def _write_loop(self):
        """Drain the outbound channel to the socket."""
        channel = self.session.channel
        while True:
            frame = await channel.get()
            if frame is None:
                return
            try:
                self.writer.write(frame + b''.join(channel.pop_all()))
                await self.writer.drain()
            except (ConnectionError, OSError) as e:
                logger.info(f"Write failed for session={self.session_id}: {e}")
                return

    async def _send_direct(self, frame: Dict[str, Any]):
        """Write a frame to a connection that never registered."""
        try:
            self.writer.write(encode_frame(frame))
            await self.writer.drain()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Could not send to {self.addr}: {e}")

    async def _close(self):
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSING

        if self.session is not None:
            self.chat_server.registry.unregister(self.session_id)
            if self.session.channel.dropped:
                logger.log_drops(self.session.display_name, self.session_id, self.session.channel.dropped)
            logger.log_disconnect(self.session.display_name, self.session_id)

        try:
            self.writer.close()
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error closing connection for session={self.session_id}: {e}")
        self.state = SessionState.CLOSED
