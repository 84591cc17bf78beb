"""
Connection registry module.

Single source of truth for who is currently connected. Registering a session
replays recent history into its channel, attaches it to the hub and announces
the join; unregistering detaches it and announces the leave.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

from meshchat.common.constants import SYSTEM_AUTHOR
from meshchat.common.errors import PersistenceError
from meshchat.common.message import ChatMessage, Join, Leave, MachineDescriptor, System
from meshchat.common.protocol_definitions import (
    HistoryRecord, create_history_message, create_login_success_message, create_record_message,
    encode_frame
)
from meshchat.server.chat.broadcast_hub import BroadcastHub, SessionChannel
from meshchat.server.history.history_store import HistoryStore
from meshchat.server.utils.logger import logger


@dataclass
class Session:
    """Server-side state of one connection."""
    session_id: str
    display_name: str
    channel: SessionChannel
    machine: Optional[MachineDescriptor] = None
    connected_at: float = field(default_factory=time.time)

    @property
    def machine_tag(self) -> Optional[str]:
        return self.machine.hostname if self.machine is not None else None


class ConnectionRegistry:
    """Tracks live sessions and announces their arrival and departure."""

    def __init__(self, hub: BroadcastHub, history: HistoryStore,
                 announce: Callable[[ChatMessage, Optional[str]], HistoryRecord], replay_count: int):
        self._hub = hub
        self._history = history
        self._announce = announce
        self._replay_count = replay_count
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def register(self, session: Session) -> str:
        """
        Add a session and announce it.

        The login confirmation, the history replay and a welcome notice are
        queued before the channel is attached to the hub, so no live message
        can reach the session ahead of its replay.
        """
        with self._lock:
            if session.session_id in self._sessions:
                raise ValueError(f"Session {session.session_id} is already registered")
            self._sessions[session.session_id] = session

            channel = session.channel
            channel.push(encode_frame(create_login_success_message(session.session_id, session.display_name)))
            channel.push(encode_frame(create_history_message(self._history.recent(self._replay_count))))
            welcome = ChatMessage.create(
                SYSTEM_AUTHOR,
                f"Welcome to the chat, {session.display_name}! Type /quit to exit",
                System()
            )
            channel.push(encode_frame(create_record_message(HistoryRecord(0, welcome))))
            self._hub.attach(session.session_id, channel)

        logger.log_login(session.display_name, session.session_id, session.machine)
        self._publish_presence(session, Join(), f"{session.display_name} joined the chat!")
        return session.session_id

    def unregister(self, session_id: str) -> Optional[Session]:
        """Remove a session and announce its departure; unknown ids are ignored."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return None
            self._hub.detach(session_id)

        session.channel.close()
        self._publish_presence(session, Leave(), f"{session.display_name} left the chat!")
        return session

    def list(self) -> Set[Tuple[str, Optional[MachineDescriptor]]]:
        """Return (display_name, machine) pairs of everyone connected."""
        with self._lock:
            return {(session.display_name, session.machine) for session in self._sessions.values()}

    def participants(self) -> List[dict]:
        """Describe connected sessions for a participant_list frame, oldest first."""
        with self._lock:
            sessions = sorted(self._sessions.values(), key=lambda s: s.connected_at)
        return [
            {
                "session_id": session.session_id,
                "username": session.display_name,
                "machine": session.machine.to_dict() if session.machine else None,
                "connected_at": session.connected_at,
            }
            for session in sessions
        ]

    def _publish_presence(self, session: Session, kind, body: str):
        message = ChatMessage.create(session.display_name, body, kind)
        try:
            self._announce(message, session.machine_tag)
        except PersistenceError as e:
            logger.log_persistence_failure(message.id, e)
