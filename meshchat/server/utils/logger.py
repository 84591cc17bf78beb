"""
Server logging module.

This module handles server-side logging functionality.
"""

import logging


class ServerLogger:
    """Server logging class."""

    def __init__(self, log_level: int = logging.INFO):
        # Set up main logger
        self.logger = logging.getLogger('meshchat_server')
        self.logger.setLevel(log_level)

        # Remove existing handlers
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)

        # Create console handler
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)

        # Create formatter
        formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_handler.setFormatter(formatter)

        # Add handler to logger
        self.logger.addHandler(console_handler)

    def set_level(self, level_name: str):
        """Change the level of the logger and its handlers, e.g. 'DEBUG'."""
        level = getattr(logging, level_name.upper(), logging.INFO)
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)

    def info(self, message: str):
        """Log info message."""
        self.logger.info(message)

    def error(self, message: str):
        """Log error message."""
        self.logger.error(message)

    def warning(self, message: str):
        """Log warning message."""
        self.logger.warning(message)

    def debug(self, message: str):
        """Log debug message."""
        self.logger.debug(message)

    def log_connection(self, addr, session_id: str):
        """Log client connection."""
        self.info(f"New connection from {addr}, session={session_id}")

    def log_login(self, username: str, session_id: str, machine=None):
        """Log user login."""
        where = f" from {machine.hostname} ({machine.os}, {machine.role.value})" if machine else ""
        self.info(f"User '{username}' logged in{where}, session={session_id}")

    def log_disconnect(self, username: str, session_id: str):
        """Log user disconnect."""
        self.info(f"User {username} (session={session_id}) disconnected")

    def log_chat(self, username: str, session_id: str, sequence: int, kind_tag: str):
        """Log an accepted chat message."""
        self.debug(f"Chat #{sequence} [{kind_tag}] from {username} (session={session_id})")

    def log_duplicate(self, message_id: str, session_id: str):
        """Log a dropped duplicate message."""
        self.debug(f"Dropping duplicate message id={message_id} from session={session_id}")

    def log_drops(self, username: str, session_id: str, dropped: int):
        """Log outbound frames discarded for a slow session."""
        self.warning(f"Dropped {dropped} outbound frame(s) for slow session {username} (session={session_id})")

    def log_persistence_failure(self, message_id: str, error: Exception):
        """Log a message that was delivered but not durably recorded."""
        self.warning(f"Message id={message_id} broadcast without being persisted: {error}")

    def log_error(self, operation: str, error: Exception):
        """Log error with operation context."""
        self.error(f"Error in {operation}: {error}")


# Global logger instance
logger = ServerLogger()
