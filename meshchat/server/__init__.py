"""
Server package for the meshchat broadcast chat.

This package contains all server-side functionality including:
- Session lifecycle and handshake
- Message fan-out to connected sessions
- Persistent, bounded chat history
- Configuration and utilities
"""
