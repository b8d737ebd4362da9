"""
Stream multiplexing protocol definitions and utilities.

The forward endpoint treats the websocket as a plain byte stream carrying
multiplexed messages (the format of the ``multiplex`` stream library):

┌────────────────┬────────────────────────────┬──────────────────────┐
│ Length (varint)│ Header (varint)            │  Payload (var)       │
│                │ channel << 3 | type        │                      │
└────────────────┴────────────────────────────┴──────────────────────┘

Length counts the header varint plus the payload. Varints are unsigned
LEB128. Websocket message boundaries carry no meaning; a message may be split
across several websocket messages or share one with others.
"""

from dataclasses import dataclass

from pitclient.exceptions import ProtocolViolationError

# =============================================================================
# Message Types
# =============================================================================

MSG_OPEN: int = 0  # Initiator → Receiver: open stream, payload is its name
MSG_DATA: int = 1  # Initiator → Receiver: relay data
MSG_DATA_REPLY: int = 2  # Receiver → Initiator: relay data
MSG_END: int = 3  # Initiator → Receiver: no more data
MSG_END_REPLY: int = 4  # Receiver → Initiator: no more data
MSG_ERROR: int = 5  # Initiator → Receiver: stream failed, payload is message
MSG_ERROR_REPLY: int = 6  # Receiver → Initiator: stream failed, payload is message

# Types the remote sends on streams this client opened
REPLY_TYPES = frozenset({MSG_DATA_REPLY, MSG_END_REPLY, MSG_ERROR_REPLY})

TYPE_BITS = 3
TYPE_MASK = (1 << TYPE_BITS) - 1

# Longest varint accepted (64-bit values)
MAX_VARINT_BYTES = 10


@dataclass
class MuxMessage:
    """One decoded multiplex message."""

    channel: int
    msg_type: int
    payload: bytes = b""

    @property
    def error_message(self) -> str:
        return self.payload.decode("utf-8", errors="replace")


# =============================================================================
# Varint
# =============================================================================


def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer as an unsigned LEB128 varint."""
    if value < 0:
        raise ValueError("varint must be non-negative")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes | bytearray, offset: int = 0) -> tuple[int, int] | None:
    """
    Decode a varint starting at ``offset``.

    Returns:
        (value, offset after the varint), or None if ``data`` ends first.

    Raises:
        ProtocolViolationError: if the varint is longer than MAX_VARINT_BYTES.
    """
    value = 0
    shift = 0
    for index in range(offset, min(len(data), offset + MAX_VARINT_BYTES)):
        byte = data[index]
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, index + 1
        shift += 7
    if len(data) - offset >= MAX_VARINT_BYTES:
        raise ProtocolViolationError("Varint too long")
    return None


# =============================================================================
# Messages
# =============================================================================


def build_message(channel: int, msg_type: int, payload: bytes = b"") -> bytes:
    """
    Build a multiplex message.

    Args:
        channel: Stream channel number
        msg_type: Message type (MSG_OPEN, MSG_DATA, etc.)
        payload: Stream name, data or error message

    Returns:
        Complete message as bytes
    """
    header = encode_varint(channel << TYPE_BITS | msg_type)
    return encode_varint(len(header) + len(payload)) + header + payload


class MessageDecoder:
    """Incremental decoder turning arbitrary byte chunks into messages."""

    def __init__(self):
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Bytes buffered towards an incomplete message."""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[MuxMessage]:
        self._buffer += data
        messages = []
        while self._buffer:
            length = decode_varint(self._buffer)
            if length is None:
                break
            size, start = length
            if size == 0:
                raise ProtocolViolationError("Empty multiplex message")
            if len(self._buffer) - start < size:
                break

            body = bytes(self._buffer[start : start + size])
            del self._buffer[: start + size]

            header = decode_varint(body)
            if header is None:
                raise ProtocolViolationError("Truncated multiplex header")
            value, payload_start = header
            messages.append(
                MuxMessage(
                    channel=value >> TYPE_BITS,
                    msg_type=value & TYPE_MASK,
                    payload=body[payload_start:],
                )
            )
        return messages
