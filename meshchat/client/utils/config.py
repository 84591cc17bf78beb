"""
Client configuration module.

This module handles client-side configuration settings.
"""

from typing import Optional

from meshchat.common.constants import (
    DEFAULT_HOST, DEFAULT_PORT, CONNECT_TIMEOUT, RECONNECT_BASE_DELAY, RECONNECT_MAX_DELAY,
    RECONNECT_JITTER, MAX_FRAME_SIZE, DEFAULT_LOG_LEVEL
)
from meshchat.common.message import Role


class ClientConfig:
    """Client configuration class."""

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, username: str = None,
                 role: Role = Role.WORKSTATION, base_delay: float = RECONNECT_BASE_DELAY,
                 max_delay: float = RECONNECT_MAX_DELAY, retry_limit: Optional[int] = None,
                 jitter: float = RECONNECT_JITTER, connect_timeout: float = CONNECT_TIMEOUT,
                 log_level: str = DEFAULT_LOG_LEVEL):
        if base_delay <= 0 or max_delay < base_delay:
            raise ValueError("delays must satisfy 0 < base_delay <= max_delay")
        if retry_limit is not None and retry_limit < 0:
            raise ValueError("retry_limit must not be negative")

        self.host = host
        self.port = port
        self.username = (username or '').strip() or f"user_{id(self) % 10000}"
        self.role = role

        # Reconnect settings
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.retry_limit = retry_limit
        self.jitter = jitter

        # Connection settings
        self.connect_timeout = connect_timeout
        self.max_frame_size = MAX_FRAME_SIZE

        # Logging configuration
        self.log_level = log_level
