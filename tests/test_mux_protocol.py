"""Tests for the stream multiplexing wire format."""

from __future__ import annotations

import pytest

from pitclient.exceptions import ProtocolViolationError
from pitclient.tunnel.protocol import (
    MSG_DATA,
    MSG_DATA_REPLY,
    MSG_END,
    MSG_OPEN,
    MessageDecoder,
    MuxMessage,
    build_message,
    decode_varint,
    encode_varint,
)


class TestVarint:
    @pytest.mark.parametrize(
        "value,encoded",
        [(0, b"\x00"), (1, b"\x01"), (127, b"\x7f"), (128, b"\x80\x01"), (300, b"\xac\x02")],
    )
    def test_known_encodings(self, value: int, encoded: bytes) -> None:
        assert encode_varint(value) == encoded
        assert decode_varint(encoded) == (value, len(encoded))

    def test_incomplete(self) -> None:
        assert decode_varint(b"\x80") is None

    def test_offset(self) -> None:
        assert decode_varint(b"\xff\xac\x02", 1) == (300, 3)

    def test_too_long(self) -> None:
        with pytest.raises(ProtocolViolationError):
            decode_varint(b"\xff" * 11)

    def test_negative_rejected(self) -> None:
        with pytest.raises(ValueError):
            encode_varint(-1)


class TestBuildMessage:
    def test_open_message_layout(self) -> None:
        # length = header(1) + "0-80"(4); header = 0 << 3 | 0
        assert build_message(0, MSG_OPEN, b"0-80") == b"\x05\x00" + b"0-80"

    def test_header_packs_channel_and_type(self) -> None:
        assert build_message(2, MSG_DATA, b"x") == b"\x02\x11x"

    def test_end_has_no_payload(self) -> None:
        assert build_message(1, MSG_END) == b"\x01\x0b"

    def test_large_channel_uses_multibyte_header(self) -> None:
        message = build_message(100, MSG_DATA, b"abc")
        # header 100 << 3 | 1 = 801 needs two varint bytes
        assert message[0] == 5
        assert MessageDecoder().feed(message) == [MuxMessage(100, MSG_DATA, b"abc")]


class TestMessageDecoder:
    def test_several_messages_in_one_chunk(self) -> None:
        stream = build_message(0, MSG_DATA_REPLY, b"hello") + build_message(
            1, MSG_DATA_REPLY, b"world"
        )
        assert MessageDecoder().feed(stream) == [
            MuxMessage(0, MSG_DATA_REPLY, b"hello"),
            MuxMessage(1, MSG_DATA_REPLY, b"world"),
        ]

    def test_byte_by_byte_feeding(self) -> None:
        payload = bytes(range(256)) * 4
        stream = build_message(3, MSG_DATA_REPLY, payload) + build_message(3, MSG_END)
        decoder = MessageDecoder()
        messages = []
        for i in range(len(stream)):
            messages.extend(decoder.feed(stream[i : i + 1]))
        assert messages == [
            MuxMessage(3, MSG_DATA_REPLY, payload),
            MuxMessage(3, MSG_END, b""),
        ]
        assert decoder.pending == 0

    def test_partial_message_is_buffered(self) -> None:
        message = build_message(0, MSG_DATA_REPLY, b"abcdef")
        decoder = MessageDecoder()
        assert decoder.feed(message[:4]) == []
        assert decoder.pending == 4
        assert decoder.feed(message[4:]) == [MuxMessage(0, MSG_DATA_REPLY, b"abcdef")]

    def test_error_payload_text(self) -> None:
        (message,) = MessageDecoder().feed(build_message(0, 6, b"connect ECONNREFUSED"))
        assert message.error_message == "connect ECONNREFUSED"

    def test_zero_length_message_is_a_violation(self) -> None:
        with pytest.raises(ProtocolViolationError):
            MessageDecoder().feed(b"\x00")
