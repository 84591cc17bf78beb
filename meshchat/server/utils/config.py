"""
Server configuration module.

This module handles server-side configuration settings.
"""

from typing import Optional

from meshchat.common.constants import (
    DEFAULT_SERVER_HOST, DEFAULT_PORT, HISTORY_FILE, MAX_CHAT_HISTORY, DEFAULT_REPLAY_COUNT,
    OUTBOUND_QUEUE_SIZE, HANDSHAKE_TIMEOUT, RECENT_IDS_WINDOW, MAX_FRAME_SIZE, DEFAULT_LOG_LEVEL
)


class ServerConfig:
    """Server configuration class."""

    def __init__(self, host: str = DEFAULT_SERVER_HOST, port: int = DEFAULT_PORT,
                 history_file: Optional[str] = HISTORY_FILE, max_history: int = MAX_CHAT_HISTORY,
                 replay_count: int = DEFAULT_REPLAY_COUNT, queue_size: int = OUTBOUND_QUEUE_SIZE,
                 handshake_timeout: float = HANDSHAKE_TIMEOUT, log_level: str = DEFAULT_LOG_LEVEL):
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")

        self.host = host
        self.port = port

        # History settings; a history_file of None keeps history in memory only
        self.history_file = history_file
        self.max_history = max_history
        self.replay_count = max(0, min(replay_count, max_history))

        # Connection settings
        self.queue_size = queue_size
        self.handshake_timeout = handshake_timeout
        self.recent_ids_window = max(RECENT_IDS_WINDOW, max_history)
        self.max_frame_size = MAX_FRAME_SIZE

        # Logging configuration
        self.log_level = log_level
