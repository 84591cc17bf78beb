#!/usr/bin/env python3
"""
meshchat Client - Main Entry Point

Usage:
    python main_client.py [--username NAME] [--host HOST] [--port PORT]

Optional arguments:
    --role ROLE               workstation, laptop, server or build_agent
    --base-delay SECS         First reconnect delay (default: 2)
    --max-delay SECS          Reconnect delay cap (default: 60)
    --retry-limit N           Give up after N failed retries (default: never)
    --jitter FRACTION         Random extra reconnect delay (default: 0)
    --connect-timeout SECS    Wait for connect and login (default: 5)
    --log-level LEVEL         DEBUG, INFO, WARNING or ERROR
"""

import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

if __name__ == "__main__":
    from meshchat.client.main_client import main
    sys.exit(main())
