"""
Client package for the meshchat broadcast chat.

This package contains all client-side functionality including:
- Chat session over one connection
- Reconnection with exponential backoff
- Terminal display and command input
- Configuration and utilities
"""
