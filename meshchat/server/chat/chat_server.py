"""
Chat server module.

This module handles server-side chat messaging functionality: accepting
messages into history, fanning them out, and answering history, search and
participant requests.
"""

from collections import deque
from typing import Iterable, Optional

from meshchat.common.errors import PersistenceError
from meshchat.common.message import ChatMessage
from meshchat.common.protocol_definitions import (
    HistoryRecord, create_history_message, create_participant_list_message,
    create_search_results_message, create_warning_message, encode_frame
)
from meshchat.server.chat.broadcast_hub import BroadcastHub
from meshchat.server.chat.registry import ConnectionRegistry, Session
from meshchat.server.history.history_store import HistoryStore
from meshchat.server.utils.config import ServerConfig
from meshchat.server.utils.logger import logger


class RecentIds:
    """Sliding window of recently accepted message ids."""

    def __init__(self, size: int):
        self.size = size
        self._order = deque()
        self._ids = set()

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._ids

    def add(self, message_id: str) -> bool:
        """Remember an id; returns False if it was already in the window."""
        if message_id in self._ids:
            return False
        self._order.append(message_id)
        self._ids.add(message_id)
        if len(self._order) > self.size:
            self._ids.discard(self._order.popleft())
        return True

    def seed(self, message_ids: Iterable[str]):
        for message_id in message_ids:
            self.add(message_id)


class ChatServer:
    """Server-side chat functionality shared by every session."""

    def __init__(self, config: ServerConfig, history: Optional[HistoryStore] = None):
        self.config = config
        self.history = history if history is not None else HistoryStore(config.history_file, config.max_history)
        self.hub = BroadcastHub()
        self.registry = ConnectionRegistry(self.hub, self.history, self.record_and_publish, config.replay_count)
        # Every retained id stays in the window, so ids are unique within history
        window = max(config.recent_ids_window, self.history.capacity)
        self.recent_ids = RecentIds(window)
        self.recent_ids.seed(record.message.id for record in self.history.recent(window))

    def record_and_publish(self, message: ChatMessage, machine_tag: Optional[str] = None) -> HistoryRecord:
        """
        Append a message to history and publish it to every session.

        The append and the publish happen without a suspension point between
        them, so fan-out order always equals receipt order. If the append
        fails the record is still published and the PersistenceError is
        re-raised afterwards.
        """
        self.recent_ids.add(message.id)
        try:
            record = self.history.append(message, machine_tag)
        except PersistenceError as e:
            self.hub.publish(e.record)
            raise
        self.hub.publish(record)
        return record

    def handle_chat(self, session: Session, message: ChatMessage) -> Optional[HistoryRecord]:
        """Process a chat message and broadcast it to all, the sender included."""
        if not self.recent_ids.add(message.id):
            logger.log_duplicate(message.id, session.session_id)
            return None

        try:
            record = self.record_and_publish(message, session.machine_tag)
        except PersistenceError as e:
            logger.log_persistence_failure(message.id, e)
            session.channel.push(encode_frame(create_warning_message(
                "Your message was delivered but could not be saved to history", message.id
            )))
            return e.record

        logger.log_chat(session.display_name, session.session_id, record.sequence, message.kind.tag)
        return record

    def handle_get_history(self, session: Session, count=None):
        """Send recent history to the requesting session."""
        if not isinstance(count, int) or isinstance(count, bool):
            count = self.config.replay_count
        records = self.history.recent(count)
        logger.info(f"Chat history ({len(records)} record(s)) requested by session={session.session_id}")
        session.channel.push(encode_frame(create_history_message(records)))

    def handle_search(self, session: Session, text: str):
        """Send records matching `text` to the requesting session."""
        records = self.history.search(text)
        logger.info(f"History search for {text!r} by session={session.session_id}: {len(records)} match(es)")
        session.channel.push(encode_frame(create_search_results_message(text, records)))

    def handle_who(self, session: Session):
        """Send the participant list to the requesting session."""
        session.channel.push(encode_frame(create_participant_list_message(self.registry.participants())))
