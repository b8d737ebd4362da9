"""Shared fixtures: an in-process fake of the pit worker endpoints."""

from __future__ import annotations

import asyncio
import json
import socket
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Awaitable, Callable
from urllib.parse import parse_qs, urlsplit

import pytest
from websockets.asyncio.server import ServerConnection, serve

from pitclient.cli.session import SessionDescriptor
from pitclient.tunnel.protocol import (
    MSG_DATA,
    MSG_DATA_REPLY,
    MSG_END,
    MSG_END_REPLY,
    MSG_ERROR,
    MSG_ERROR_REPLY,
    MSG_OPEN,
    MessageDecoder,
    build_message,
)

TOKEN = "secret-token"


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


# =============================================================================
# Fake pit server
# =============================================================================


ExecHandler = Callable[[ServerConnection, dict], Awaitable[None]]


@dataclass
class FakePit:
    """Worker endpoints of a fake pit; records what clients did."""

    exec_handler: ExecHandler | None = None
    forward_targets: dict[int, int] = field(default_factory=dict)
    valid_tokens: set[str] = field(default_factory=lambda: {TOKEN})
    port: int = 0
    upgrade_attempts: int = 0
    paths: list[str] = field(default_factory=list)
    exec_contexts: list[dict] = field(default_factory=list)
    opened_streams: list[str] = field(default_factory=list)
    connections: list[ServerConnection] = field(default_factory=list)

    def session(self, token: str = TOKEN) -> SessionDescriptor:
        return SessionDescriptor(base_url=f"http://127.0.0.1:{self.port}", token=token)

    def process_request(self, connection, request):
        self.upgrade_attempts += 1
        if request.headers.get("X-Auth-Token") not in self.valid_tokens:
            return connection.respond(HTTPStatus.UNAUTHORIZED, "Unauthorized\n")
        return None

    async def close_connections(self) -> None:
        for ws in self.connections:
            await ws.close()

    async def handler(self, ws: ServerConnection) -> None:
        self.connections.append(ws)
        path = ws.request.path
        self.paths.append(path)
        parts = urlsplit(path)
        if parts.path.endswith("/exec"):
            context = json.loads(parse_qs(parts.query)["context"][0])
            self.exec_contexts.append(context)
            await self.exec_handler(ws, context)
        elif parts.path.endswith("/forward"):
            await MuxEndpoint(self, ws).serve()


class MuxEndpoint:
    """Receiving side of the multiplex protocol, relaying to local targets."""

    def __init__(self, pit: FakePit, ws: ServerConnection):
        self._pit = pit
        self._ws = ws
        self._decoder = MessageDecoder()
        self._targets: dict[int, asyncio.StreamWriter] = {}
        self._tasks: set[asyncio.Task] = set()

    async def serve(self) -> None:
        try:
            async for chunk in self._ws:
                for message in self._decoder.feed(chunk):
                    await self._handle(message)
        finally:
            for task in self._tasks:
                task.cancel()
            for writer in self._targets.values():
                writer.close()

    async def _handle(self, message) -> None:
        channel = message.channel
        if message.msg_type == MSG_OPEN:
            name = message.payload.decode()
            self._pit.opened_streams.append(name)
            remote_port = int(name.split("-")[1])
            target = self._pit.forward_targets.get(remote_port)
            if target is None:
                await self._ws.send(
                    build_message(channel, MSG_ERROR_REPLY, b"connect ECONNREFUSED")
                )
                return
            reader, writer = await asyncio.open_connection("127.0.0.1", target)
            self._targets[channel] = writer
            task = asyncio.create_task(self._pump(channel, reader))
            self._tasks.add(task)
        elif message.msg_type == MSG_DATA:
            writer = self._targets.get(channel)
            if writer is not None:
                writer.write(message.payload)
                await writer.drain()
        elif message.msg_type == MSG_END:
            writer = self._targets.get(channel)
            if writer is not None and writer.can_write_eof():
                writer.write_eof()
        elif message.msg_type == MSG_ERROR:
            writer = self._targets.pop(channel, None)
            if writer is not None:
                writer.close()

    async def _pump(self, channel: int, reader: asyncio.StreamReader) -> None:
        while True:
            data = await reader.read(4096)
            if not data:
                break
            await self._ws.send(build_message(channel, MSG_DATA_REPLY, data))
        await self._ws.send(build_message(channel, MSG_END_REPLY))


@pytest.fixture
async def fake_pit():
    """Start a fake pit; configure it through the returned FakePit."""
    pit = FakePit()
    async with serve(
        pit.handler, "127.0.0.1", 0, process_request=pit.process_request
    ) as server:
        pit.port = server.sockets[0].getsockname()[1]
        yield pit


@pytest.fixture
async def echo_server():
    """Factory of TCP echo servers; returns the bound port."""
    servers = []

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        try:
            while True:
                data = await reader.read(4096)
                if not data:
                    break
                writer.write(data)
                await writer.drain()
        except OSError:
            pass
        finally:
            writer.close()

    async def start() -> int:
        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        servers.append(server)
        return server.sockets[0].getsockname()[1]

    yield start

    for server in servers:
        server.close()
