"""
meshchat - server-mediated broadcast chat for a small set of trusted machines.

Packages:
- common: message model, wire protocol, constants and errors
- server: history store, broadcast hub, connection registry, session loop
- client: reconnect controller, session loop, terminal display and input
"""

__version__ = "0.1.0"
