"""
Exec channel frame definitions and codec.

Wire format (one websocket message per frame):
┌──────────┬──────────────────────────────┐
│ Tag (1B) │  Payload (rest of message)   │
└──────────┴──────────────────────────────┘

No length field: the websocket message boundary ends the payload. The tag
value 1 means stdin going out and stdout coming in.
"""

import json
from dataclasses import dataclass, field

from pitclient.exceptions import ProtocolViolationError
from pitclient.models.enums import FrameKind

# =============================================================================
# Tag Bytes
# =============================================================================

TAG_CONTROL: int = 0x00  # Both directions: JSON control message
TAG_STDIO: int = 0x01  # Client → Server: stdin; Server → Client: stdout
TAG_STDERR: int = 0x02  # Server → Client: stderr

OUTBOUND_TAGS: dict[FrameKind, int] = {
    FrameKind.CONTROL: TAG_CONTROL,
    FrameKind.STDIN: TAG_STDIO,
}

INBOUND_KINDS: dict[int, FrameKind] = {
    TAG_CONTROL: FrameKind.CONTROL,
    TAG_STDIO: FrameKind.STDOUT,
    TAG_STDERR: FrameKind.STDERR,
}

# =============================================================================
# Control Commands
# =============================================================================

CMD_WINDOW_RESIZE = "window-resize"


@dataclass
class ControlMessage:
    """Structured payload of a control frame."""

    command: str
    args: dict[str, str] = field(default_factory=dict)

    @classmethod
    def window_resize(cls, width: int, height: int) -> "ControlMessage":
        # The platform expects the dimensions as decimal strings
        return cls(CMD_WINDOW_RESIZE, {"width": str(width), "height": str(height)})

    def to_bytes(self) -> bytes:
        return json.dumps({"command": self.command, "args": self.args}).encode("utf-8")

    @classmethod
    def from_bytes(cls, payload: bytes) -> "ControlMessage":
        try:
            data = json.loads(payload.decode("utf-8"))
            return cls(command=str(data["command"]), args=dict(data.get("args") or {}))
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise ProtocolViolationError(f"Malformed control payload: {e}") from e


@dataclass
class Frame:
    """One decoded exec channel frame."""

    kind: FrameKind
    payload: bytes = b""

    @classmethod
    def stdin(cls, data: bytes) -> "Frame":
        return cls(FrameKind.STDIN, data)

    @classmethod
    def control(cls, message: ControlMessage) -> "Frame":
        return cls(FrameKind.CONTROL, message.to_bytes())


def encode_outbound(frame: Frame) -> bytes:
    """
    Encode a frame for sending to the worker.

    Raises:
        ProtocolViolationError: for kinds that only ever travel inbound.
    """
    tag = OUTBOUND_TAGS.get(frame.kind)
    if tag is None:
        raise ProtocolViolationError(f"{frame.kind.value} frames cannot be sent")
    return bytes((tag,)) + frame.payload


def decode_inbound(data: bytes) -> Frame | None:
    """
    Decode a message received from the worker.

    Returns:
        The frame, or None for empty messages and unknown tags, which are
        skipped so newer servers can add frame kinds.
    """
    if not data:
        return None
    kind = INBOUND_KINDS.get(data[0])
    if kind is None:
        return None
    return Frame(kind, bytes(data[1:]))
