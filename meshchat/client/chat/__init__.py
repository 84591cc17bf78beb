"""
Chat module for client-side messaging functionality.

Handles:
- Login handshake and the per-connection session loop
- Queuing input composed while disconnected
- Reconnect state machine
"""
