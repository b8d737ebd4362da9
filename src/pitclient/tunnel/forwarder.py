"""
Port forwarding over a single persistent Transport.

One local TCP listener per PortMapping; every accepted connection becomes a
logical stream named ``{id}-{remotePort}`` on the shared transport.

Architecture:
    local client ←→ listener ─┐
    local client ←→ listener ─┼─ multiplexed streams ─ Transport ←→ worker
    local client ←→ listener ─┘

Invocation states:
    INIT -> CONNECTING -> LISTENING -> DRAINING -> TERMINATED

Each stream relays in its own tasks. Inbound data is queued per stream and
written to the local socket by that stream's writer, so a slow local client
only holds up its own stream. A failing stream is reported and torn down
without touching its siblings.
"""

import asyncio
from functools import partial

from pitclient.cli import config as cli_config
from pitclient.cli.output import console, print_error, print_success, print_warning
from pitclient.exceptions import (
    ConnectionFailedError,
    ProtocolViolationError,
    StreamRelayError,
)
from pitclient.models.enums import ForwarderState, StreamState
from pitclient.transport import Transport
from pitclient.tunnel.ports import PortMapping
from pitclient.tunnel.protocol import (
    MSG_DATA,
    MSG_DATA_REPLY,
    MSG_END,
    MSG_END_REPLY,
    MSG_ERROR,
    MSG_ERROR_REPLY,
    MSG_OPEN,
    REPLY_TYPES,
    MessageDecoder,
    MuxMessage,
    build_message,
)
from pitclient.tunnel.streams import LogicalStream, StreamTable
from pitclient.utils.logger import get_logger

logger = get_logger(__name__)


class TunnelForwarder:
    """
    Exposes N worker ports as N local ports over one Transport.

    The forwarder is the resource handle of a forward invocation: signal
    handlers call ``request_shutdown`` on it, and ``run`` releases every
    listener, socket and the transport before returning.
    """

    def __init__(
        self,
        transport: Transport,
        mappings: list[PortMapping],
        host: str | None = None,
        worker_index: int = 0,
        chunk_size: int | None = None,
    ):
        self._transport = transport
        self._mappings = mappings
        self._host = host or cli_config.BIND_HOST
        self._worker_index = worker_index
        self._chunk_size = chunk_size or cli_config.RELAY_CHUNK_SIZE

        self.state = ForwarderState.INIT
        self._streams = StreamTable()
        self._decoder = MessageDecoder()
        self._servers: dict[PortMapping, asyncio.Server] = {}
        self._relays: set[asyncio.Task] = set()
        self._send_lock = asyncio.Lock()
        self._shutdown = asyncio.Event()
        self._listening = asyncio.Event()
        self._stream_failures = 0

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def streams(self) -> StreamTable:
        return self._streams

    @property
    def bound_ports(self) -> list[int]:
        """Local ports with an active listener."""
        return [
            server.sockets[0].getsockname()[1]
            for server in self._servers.values()
            if server.sockets
        ]

    async def wait_listening(self) -> None:
        """Wait until listeners are bound (or the run ended without any)."""
        await self._listening.wait()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def request_shutdown(self) -> None:
        """Stop forwarding; safe to call from a signal handler."""
        self._shutdown.set()

    async def run(self) -> int:
        """
        Forward until shutdown is requested or the transport closes.

        Returns:
            Process exit code.

        Raises:
            ConnectionFailedError: if the transport cannot be opened. No
                listener has been bound at that point.
        """
        self.state = ForwarderState.CONNECTING
        try:
            await self._transport.open()
        except ConnectionFailedError:
            self.state = ForwarderState.TERMINATED
            self._listening.set()
            raise

        receive = None
        shutdown = None
        try:
            await self._start_listeners()
            self._listening.set()
            if not self._servers:
                print_error("None of the requested ports could be forwarded.")
                return 1

            self.state = ForwarderState.LISTENING
            console.print("Hit Ctrl-C to stop forwarding.")

            receive = asyncio.create_task(self._receive_loop())
            shutdown = asyncio.create_task(self._shutdown.wait())
            await asyncio.wait({receive, shutdown}, return_when=asyncio.FIRST_COMPLETED)

            if shutdown.done():
                return self._exit_code(0)
            try:
                receive.result()
            except ProtocolViolationError as e:
                print_error(f"Problem with remote end - Closing ({e})")
                return 1
            if not self._transport.closed_cleanly:
                print_error(
                    f"Problem with remote end - Closing ({self._transport.close_reason})"
                )
                return 1
            print_warning("Tunnel connection closed by pit.")
            return self._exit_code(0)
        finally:
            for task in (receive, shutdown):
                if task is not None:
                    task.cancel()
            await asyncio.gather(
                *(t for t in (receive, shutdown) if t is not None),
                return_exceptions=True,
            )
            await self._drain()

    def _exit_code(self, default: int) -> int:
        opened = self._streams.allocated
        if opened and self._stream_failures >= opened:
            return 1
        return default

    async def _start_listeners(self) -> None:
        for mapping in self._mappings:
            try:
                server = await asyncio.start_server(
                    partial(self._handle_client, mapping),
                    self._host,
                    mapping.local_port,
                )
            except OSError as e:
                print_error(
                    f"Unable to forward port {mapping.local_port}: {e.strerror or e}"
                )
                continue
            self._servers[mapping] = server
            print_success(
                f"Forwarding port {mapping.remote_port} of worker "
                f"{self._worker_index} to port {mapping.local_port} on localhost..."
            )

    async def _drain(self) -> None:
        """Tear down every listener, in-flight stream and the transport."""
        self.state = ForwarderState.DRAINING
        for server in self._servers.values():
            server.close()

        for stream in self._streams.active():
            stream.writer.close()
        relays = list(self._relays)
        for task in relays:
            task.cancel()
        await asyncio.gather(*relays, return_exceptions=True)

        for server in self._servers.values():
            await server.wait_closed()
        self._servers.clear()

        await self._transport.close()
        self.state = ForwarderState.TERMINATED
        logger.debug("Forwarder terminated")

    # -------------------------------------------------------------------------
    # Transport Side
    # -------------------------------------------------------------------------

    async def _send(self, data: bytes) -> None:
        async with self._send_lock:
            await self._transport.send(data)

    async def _receive_loop(self) -> None:
        async for chunk in self._transport.messages():
            for message in self._decoder.feed(chunk):
                self._dispatch(message)

    def _dispatch(self, message: MuxMessage) -> None:
        """Route one inbound message to its stream; never blocks."""
        if message.msg_type not in REPLY_TYPES:
            logger.debug(
                f"Ignoring type {message.msg_type} message for remote-initiated "
                f"channel {message.channel}"
            )
            return

        stream = self._streams.get(message.channel)
        if stream is None:
            logger.debug(f"Dropping message for closed stream {message.channel}")
            return

        if message.msg_type == MSG_DATA_REPLY:
            stream.deliver(message.payload)
        elif message.msg_type == MSG_END_REPLY:
            stream.deliver(None)
        elif message.msg_type == MSG_ERROR_REPLY:
            reason = message.error_message or "problem"
            stream.deliver(StreamRelayError(f"Remote {reason}", stream.id))

    # -------------------------------------------------------------------------
    # Local Side
    # -------------------------------------------------------------------------

    async def _handle_client(
        self,
        mapping: PortMapping,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Relay one accepted local connection as one logical stream."""
        task = asyncio.current_task()
        self._relays.add(task)
        stream = self._streams.open(mapping.remote_port, reader, writer)
        peer = writer.get_extra_info("peername")
        logger.debug(f"New connection from {peer} as stream {stream.name}")

        try:
            await self._send(build_message(stream.id, MSG_OPEN, stream.name.encode()))
            stream.state = StreamState.RELAYING
            await self._relay(stream)
        except StreamRelayError as e:
            self._stream_failures += 1
            print_error(str(e))
        except ConnectionFailedError as e:
            # The transport is gone; the receive loop ends the invocation
            logger.debug(f"Stream {stream.name} stopped: {e}")
        finally:
            self._streams.remove(stream.id)
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
            self._relays.discard(task)
            logger.debug(f"Stream {stream.name} closed")

    async def _relay(self, stream: LogicalStream) -> None:
        """Run both directions until both ended or one failed."""
        upstream = asyncio.create_task(self._local_to_remote(stream))
        downstream = asyncio.create_task(self._remote_to_local(stream))
        tasks = {upstream, downstream}
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                task.result()
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _local_to_remote(self, stream: LogicalStream) -> None:
        try:
            while True:
                data = await stream.reader.read(self._chunk_size)
                if not data:
                    break
                await self._send(build_message(stream.id, MSG_DATA, data))
        except OSError as e:
            await self._send(build_message(stream.id, MSG_ERROR, str(e).encode()))
            raise StreamRelayError(f"Local {e}", stream.id) from e
        # Half-close: remote data keeps flowing until the remote ends too
        await self._send(build_message(stream.id, MSG_END))

    async def _remote_to_local(self, stream: LogicalStream) -> None:
        writer = stream.writer
        while True:
            item = await stream.inbound.get()
            if item is None:
                break
            if isinstance(item, StreamRelayError):
                raise item
            try:
                writer.write(item)
                await writer.drain()
            except OSError as e:
                await self._send(build_message(stream.id, MSG_ERROR, str(e).encode()))
                raise StreamRelayError(f"Local {e}", stream.id) from e

        try:
            if writer.can_write_eof():
                writer.write_eof()
        except OSError:
            pass
