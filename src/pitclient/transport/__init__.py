"""
Duplex transport to a job's worker instance.

One websocket per invocation, addressed by job, worker index and channel
kind, authorized with the session token.
"""

from pitclient.transport.connection import Transport
from pitclient.transport.endpoint import EndpointDescriptor

__all__ = [
    "EndpointDescriptor",
    "Transport",
]
