"""
Forwarding tunnel: local TCP ports relayed to a worker's ports.

Any number of local connections share one Transport, each as an independent
multiplexed stream.
"""

from pitclient.tunnel.forwarder import TunnelForwarder
from pitclient.tunnel.ports import PortMapping, parse_port_mapping, parse_port_mappings
from pitclient.tunnel.protocol import (
    MSG_DATA,
    MSG_DATA_REPLY,
    MSG_END,
    MSG_END_REPLY,
    MSG_ERROR,
    MSG_ERROR_REPLY,
    MSG_OPEN,
    MessageDecoder,
    MuxMessage,
    build_message,
)
from pitclient.tunnel.streams import LogicalStream, StreamTable

__all__ = [
    "MSG_OPEN",
    "MSG_DATA",
    "MSG_DATA_REPLY",
    "MSG_END",
    "MSG_END_REPLY",
    "MSG_ERROR",
    "MSG_ERROR_REPLY",
    "LogicalStream",
    "MessageDecoder",
    "MuxMessage",
    "PortMapping",
    "StreamTable",
    "TunnelForwarder",
    "build_message",
    "parse_port_mapping",
    "parse_port_mappings",
]
