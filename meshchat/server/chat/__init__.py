"""
Chat module for server-side messaging functionality.

Handles:
- Broadcasting to every connected session
- Connection registry and join/leave notices
- Per-connection session loops
- History, search and participant requests
"""
