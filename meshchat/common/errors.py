"""
Error taxonomy shared by client and server.

Every fault raised by the chat core derives from MeshChatError so callers can
isolate failures to a single frame or a single connection.
"""


class MeshChatError(Exception):
    """Base class for all meshchat errors."""


class TransportError(MeshChatError):
    """Connection refused, reset or timed out."""


class MalformedMessage(MeshChatError):
    """A frame or message that could not be decoded."""


class UnknownVariant(MalformedMessage):
    """A message whose kind tag is not part of the known variant set."""

    def __init__(self, tag):
        super().__init__(f"Unknown message kind '{tag}'")
        self.tag = tag


class PersistenceError(MeshChatError):
    """The history store could not durably record a message."""

    def __init__(self, message: str, record=None):
        super().__init__(message)
        self.record = record


class HandshakeTimeout(MeshChatError):
    """The peer did not complete the login handshake in time."""


class HandshakeRejected(MeshChatError):
    """The peer answered the handshake with something other than success."""


class ReconnectExhausted(MeshChatError):
    """The client exceeded its configured retry limit."""

    def __init__(self, attempts: int):
        super().__init__(f"Gave up reconnecting after {attempts} attempt(s)")
        self.attempts = attempts
