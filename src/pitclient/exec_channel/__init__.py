"""
Exec channel: interactive remote command execution.

Terminal input and output travel as tagged frames over one Transport, with
a control sub-channel for window resizes.
"""

from pitclient.exec_channel.channel import (
    INTERRUPT_EXIT_CODE,
    ExecChannel,
    OutboundQueue,
)
from pitclient.exec_channel.protocol import (
    TAG_CONTROL,
    TAG_STDERR,
    TAG_STDIO,
    ControlMessage,
    Frame,
    decode_inbound,
    encode_outbound,
)
from pitclient.exec_channel.terminal import RawTerminal, StdinReader, terminal_size

__all__ = [
    "INTERRUPT_EXIT_CODE",
    "TAG_CONTROL",
    "TAG_STDIO",
    "TAG_STDERR",
    "ControlMessage",
    "ExecChannel",
    "Frame",
    "OutboundQueue",
    "RawTerminal",
    "StdinReader",
    "decode_inbound",
    "encode_outbound",
    "terminal_size",
]
