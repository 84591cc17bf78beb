#!/usr/bin/env python3
"""
meshchat Server - Main Entry Point

Usage:
    python main_server.py

Optional arguments:
    --host HOST               Bind address (default: 0.0.0.0)
    --port PORT               TCP port (default: 8080)
    --history-file PATH       JSON Lines history file
    --no-persist              Keep history in memory only
    --history-size N          Messages retained in history (default: 500)
    --replay-count N          Messages replayed on connect (default: 200)
    --queue-size N            Outbound frames buffered per client (default: 256)
    --handshake-timeout SECS  Wait for a client login (default: 10)
    --log-level LEVEL         DEBUG, INFO, WARNING or ERROR
"""

import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

if __name__ == "__main__":
    from meshchat.server.main_server import main
    sys.exit(main())
