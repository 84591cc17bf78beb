"""
Shared constants for the meshchat broadcast chat.

This module contains all constants used across client and server components.
"""

# Network Configuration
DEFAULT_HOST = '127.0.0.1'
DEFAULT_SERVER_HOST = '0.0.0.0'
DEFAULT_PORT = 8080

# Framing
MAX_FRAME_SIZE = 2 * 1024 * 1024  # newline-delimited JSON frames
MAX_FILE_TRANSFER_SIZE = 1024 * 1024  # raw bytes before base64

# Timeouts
HANDSHAKE_TIMEOUT = 10  # seconds the server waits for the login frame
CONNECT_TIMEOUT = 5  # seconds the client waits for connect + login_success

# Chat History
MAX_CHAT_HISTORY = 500
DEFAULT_REPLAY_COUNT = 200
HISTORY_FILE = 'history/chat_history.jsonl'
RECENT_IDS_WINDOW = 1024

# Per-session outbound channel
OUTBOUND_QUEUE_SIZE = 256

# Reconnect backoff
RECONNECT_BASE_DELAY = 2.0
RECONNECT_MAX_DELAY = 60.0
RECONNECT_JITTER = 0.0

# Logging
DEFAULT_LOG_LEVEL = 'INFO'

SYSTEM_AUTHOR = 'System'


# Message Types
class MessageTypes:
    # Client to Server
    LOGIN = 'login'
    CHAT = 'chat'
    GET_HISTORY = 'get_history'
    SEARCH = 'search'
    WHO = 'who'
    LOGOUT = 'logout'

    # Server to Client
    LOGIN_SUCCESS = 'login_success'
    HISTORY = 'history'
    SEARCH_RESULTS = 'search_results'
    PARTICIPANT_LIST = 'participant_list'
    WARNING = 'warning'
    ERROR = 'error'
