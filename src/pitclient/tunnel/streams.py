"""
Logical streams multiplexed on the forwarding transport.

Each accepted local connection becomes one LogicalStream with an id that is
unique for the lifetime of the transport. The StreamTable is the only place
ids are allocated; the accept path inserts and the relay-completion path
removes.
"""

import asyncio
import threading
from dataclasses import dataclass, field

from pitclient.exceptions import StreamRelayError
from pitclient.models.enums import StreamState


@dataclass(eq=False)
class LogicalStream:
    """
    One local socket paired with one multiplexed stream.

    ``inbound`` holds data received for the local socket: bytes, None for
    remote end-of-stream, or a StreamRelayError when the remote failed.
    """

    id: int
    remote_port: int
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    state: StreamState = StreamState.OPENED
    inbound: asyncio.Queue = field(default_factory=asyncio.Queue)

    @property
    def name(self) -> str:
        """Stream name announced to the worker, encoding the target port."""
        return f"{self.id}-{self.remote_port}"

    def deliver(self, item: bytes | StreamRelayError | None) -> None:
        """Queue inbound data without blocking the transport read loop."""
        if self.state is not StreamState.CLOSED:
            self.inbound.put_nowait(item)


class StreamTable:
    """Lock-guarded map of active stream ids to streams."""

    def __init__(self):
        self._lock = threading.Lock()
        self._streams: dict[int, LogicalStream] = {}
        self._next_id = 0

    @property
    def allocated(self) -> int:
        """Number of ids handed out so far."""
        with self._lock:
            return self._next_id

    def open(
        self,
        remote_port: int,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> LogicalStream:
        """Allocate a fresh id and register a new stream under it."""
        with self._lock:
            stream = LogicalStream(self._next_id, remote_port, reader, writer)
            self._next_id += 1
            self._streams[stream.id] = stream
        return stream

    def get(self, stream_id: int) -> LogicalStream | None:
        with self._lock:
            return self._streams.get(stream_id)

    def remove(self, stream_id: int) -> LogicalStream | None:
        """Drop a stream; its id is never handed out again."""
        with self._lock:
            stream = self._streams.pop(stream_id, None)
        if stream is not None:
            stream.state = StreamState.CLOSED
        return stream

    def active(self) -> list[LogicalStream]:
        with self._lock:
            return list(self._streams.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._streams)

    def __contains__(self, stream_id: int) -> bool:
        with self._lock:
            return stream_id in self._streams
