"""
CLI configuration for the pit client.

Values are read once from the environment at import time and may be
overridden by the top-level CLI callback before a command runs.

Usage:
    from pitclient.cli import config as cli_config

    cli_config.LOG_LEVEL = "debug"
"""

import os

# -----------------------------------------------------------------------------
# Session files
# -----------------------------------------------------------------------------

# Searched in the working directory first, then in the home directory.
CONNECT_FILE: str = os.environ.get("PIT_CONNECT_FILE", ".pitconnect.txt")
USER_FILE: str = os.environ.get("PIT_USER_FILE", ".pituser.txt")

# Header carrying the session token on HTTP requests and websocket upgrades.
AUTH_HEADER: str = "X-Auth-Token"

# -----------------------------------------------------------------------------
# Network
# -----------------------------------------------------------------------------

HTTP_TIMEOUT: float = float(os.environ.get("PIT_HTTP_TIMEOUT", "10"))
CONNECT_TIMEOUT: float = float(os.environ.get("PIT_CONNECT_TIMEOUT", "10"))

# Local interface the forwarding listeners bind to.
BIND_HOST: str = os.environ.get("PIT_BIND_HOST", "127.0.0.1")

# Bytes read from a local socket per DATA message.
RELAY_CHUNK_SIZE: int = 65536

# -----------------------------------------------------------------------------
# Output
# -----------------------------------------------------------------------------

LOG_LEVEL: str = os.environ.get("PIT_LOG_LEVEL", "warning")
