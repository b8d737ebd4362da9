"""
Exec channel: one remote command execution relayed over one Transport.

Input is captured from the moment the channel starts. Frames produced while
the transport is still connecting wait in the OutboundQueue and go out as one
ordered burst once it opens:

    BUFFERING --transport open--> FLUSHING --backlog sent--> DRAINING
"""

import asyncio
from collections import deque
from typing import AsyncIterable, Awaitable, BinaryIO, Callable

from pitclient.exceptions import ConnectionFailedError, ProtocolViolationError
from pitclient.exec_channel.protocol import (
    ControlMessage,
    Frame,
    decode_inbound,
    encode_outbound,
)
from pitclient.models.enums import FrameKind, QueueState
from pitclient.transport import Transport
from pitclient.utils.logger import get_logger

logger = get_logger(__name__)

INTERRUPT_BYTE = 0x03  # Ctrl+C in raw mode
INTERRUPT_EXIT_CODE = 130


class OutboundQueue:
    """
    Ordered queue of encoded frames waiting for the transport.

    ``submit`` is synchronous, so frames leave in exactly the order stdin
    chunks and resize events were submitted.
    """

    def __init__(self):
        self.state = QueueState.BUFFERING
        self._frames: deque[bytes] = deque()
        self._wakeup = asyncio.Event()

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def pending(self) -> list[bytes]:
        """Snapshot of the encoded frames not yet sent."""
        return list(self._frames)

    def submit(self, frame: Frame) -> None:
        """
        Encode and enqueue a frame.

        Raises:
            ProtocolViolationError: if the frame kind is never sent outbound.
        """
        self._frames.append(encode_outbound(frame))
        self._wakeup.set()

    async def drain_into(self, send: Callable[[bytes], Awaitable[None]]) -> None:
        """Flush the backlog, then keep sending frames as they are submitted."""
        self.state = QueueState.FLUSHING
        logger.debug(f"Flushing {len(self._frames)} queued frame(s)")
        await self._send_pending(send)

        self.state = QueueState.DRAINING
        while True:
            await self._wakeup.wait()
            await self._send_pending(send)

    async def _send_pending(self, send: Callable[[bytes], Awaitable[None]]) -> None:
        self._wakeup.clear()
        while self._frames:
            await send(self._frames.popleft())


class ExecChannel:
    """
    Relays one remote command between local streams and a Transport.

    Args:
        transport: Unopened transport for the exec endpoint.
        input_chunks: Local input, already started so it captures early input.
        stdout: Binary stream receiving remote stdout.
        stderr: Binary stream receiving remote stderr.
        intercept_interrupt: Treat 0x03 in the input as a local interrupt
            (set when the input is a raw-mode terminal).
    """

    def __init__(
        self,
        transport: Transport,
        input_chunks: AsyncIterable[bytes],
        stdout: BinaryIO,
        stderr: BinaryIO,
        intercept_interrupt: bool = False,
    ):
        self._transport = transport
        self._input = input_chunks
        self._stdout = stdout
        self._stderr = stderr
        self._intercept_interrupt = intercept_interrupt
        self._outbound = OutboundQueue()
        self._interrupted = asyncio.Event()

    @property
    def outbound(self) -> OutboundQueue:
        return self._outbound

    def resize(self, width: int, height: int) -> None:
        """Queue exactly one window-resize control frame."""
        self._outbound.submit(Frame.control(ControlMessage.window_resize(width, height)))

    def interrupt(self) -> None:
        """End the session immediately, as if the interrupt key was pressed."""
        self._interrupted.set()

    async def run(self) -> int:
        """
        Run the session until the remote side closes it.

        Returns:
            0 when the remote closed the connection (any close code),
            INTERRUPT_EXIT_CODE on local interrupt.

        Raises:
            ConnectionFailedError: if the transport cannot be opened or drops
                without a close frame.
        """
        session = asyncio.create_task(self._run_session())
        interrupted = asyncio.create_task(self._interrupted.wait())
        try:
            done, _ = await asyncio.wait(
                {session, interrupted}, return_when=asyncio.FIRST_COMPLETED
            )
            if session in done:
                return session.result()
            logger.debug("Interrupted locally")
            return INTERRUPT_EXIT_CODE
        finally:
            for task in (session, interrupted):
                task.cancel()
            await asyncio.gather(session, interrupted, return_exceptions=True)
            await self._transport.close()

    async def _run_session(self) -> int:
        pump = asyncio.create_task(self._pump_input())
        sender = None
        try:
            await self._transport.open()
            sender = asyncio.create_task(self._outbound.drain_into(self._transport.send))
            await self._receive()
        finally:
            tasks = [t for t in (pump, sender) if t is not None]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        # Any close frame ends the session normally, whatever its code
        if not self._transport.close_frame_received:
            raise ConnectionFailedError(
                f"Connection to pit lost: {self._transport.close_reason}"
            )
        return 0

    async def _pump_input(self) -> None:
        async for chunk in self._input:
            if self._intercept_interrupt and INTERRUPT_BYTE in chunk:
                head = chunk[: chunk.index(INTERRUPT_BYTE)]
                if head:
                    self._outbound.submit(Frame.stdin(head))
                self._interrupted.set()
                return
            self._outbound.submit(Frame.stdin(chunk))
        logger.debug("Local input reached EOF")

    async def _receive(self) -> None:
        async for message in self._transport.messages():
            frame = decode_inbound(message)
            if frame is None:
                logger.debug(f"Ignoring message with unknown tag ({len(message)} bytes)")
                continue

            if frame.kind is FrameKind.STDOUT:
                self._write(self._stdout, frame.payload)
            elif frame.kind is FrameKind.STDERR:
                self._write(self._stderr, frame.payload)
            else:
                try:
                    control = ControlMessage.from_bytes(frame.payload)
                    logger.debug(f"Ignoring control message {control.command!r}")
                except ProtocolViolationError as e:
                    logger.debug(f"Ignoring control frame: {e}")

    @staticmethod
    def _write(stream: BinaryIO, payload: bytes) -> None:
        stream.write(payload)
        stream.flush()
