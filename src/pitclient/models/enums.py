"""
Enumeration types for the pit client.

State machines of the transport, the exec channel and the forwarding tunnel
are spelled out here so every module reports states with the same names.
"""

from enum import Enum


# =============================================================================
# Transport Enums
# =============================================================================


class ChannelKind(str, Enum):
    """Kind of remote session carried by a transport."""

    EXEC = "exec"
    FORWARD = "forward"


class TransportState(str, Enum):
    """
    Transport lifecycle.

    State transitions:
        CONNECTING -> OPEN -> CLOSED
        CONNECTING -> CLOSED (connection attempt failed)
    """

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


# =============================================================================
# Exec Channel Enums
# =============================================================================


class FrameKind(str, Enum):
    """Logical kind of an exec channel frame."""

    CONTROL = "control"
    STDIN = "stdin"
    STDOUT = "stdout"
    STDERR = "stderr"


class QueueState(str, Enum):
    """
    Outbound queue state.

    State transitions:
        BUFFERING -> FLUSHING -> DRAINING
    """

    BUFFERING = "buffering"  # Transport not open yet, frames accumulate
    FLUSHING = "flushing"  # Backlog being sent in submission order
    DRAINING = "draining"  # Frames are sent as they arrive


# =============================================================================
# Forwarding Tunnel Enums
# =============================================================================


class ForwarderState(str, Enum):
    """
    Forwarding tunnel lifecycle for one invocation.

    State transitions:
        INIT -> CONNECTING -> LISTENING -> DRAINING -> TERMINATED
        CONNECTING -> TERMINATED (transport failed)
    """

    INIT = "init"
    CONNECTING = "connecting"
    LISTENING = "listening"
    DRAINING = "draining"
    TERMINATED = "terminated"


class StreamState(str, Enum):
    """Logical stream lifecycle: OPENED -> RELAYING -> CLOSED."""

    OPENED = "opened"
    RELAYING = "relaying"
    CLOSED = "closed"


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels for the pit client.

    Levels (from most to least verbose):
        - DEBUG: Debug messages and above (HTTP requests, transport events)
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
