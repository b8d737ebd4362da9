"""End-to-end tests of port forwarding against the fake pit."""

from __future__ import annotations

import asyncio
import os
import socket

import pytest

from pitclient.exceptions import ConnectionFailedError
from pitclient.models.enums import ChannelKind, ForwarderState
from pitclient.transport import EndpointDescriptor, Transport
from pitclient.tunnel import PortMapping, TunnelForwarder

from conftest import free_port, wait_until


async def start_forwarder(fake_pit, mappings, session=None):
    transport = Transport(
        session or fake_pit.session(),
        EndpointDescriptor("1234", 0, ChannelKind.FORWARD),
    )
    forwarder = TunnelForwarder(transport, mappings)
    task = asyncio.create_task(forwarder.run())
    await asyncio.wait_for(forwarder.wait_listening(), 5)
    return forwarder, task


async def stop_forwarder(forwarder, task) -> int:
    forwarder.request_shutdown()
    return await asyncio.wait_for(task, 5)


async def roundtrip(port: int, payload: bytes):
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(payload)
    await writer.drain()
    echoed = await asyncio.wait_for(reader.readexactly(len(payload)), 5)
    return reader, writer, echoed


async def test_two_mappings_with_close_isolation(fake_pit, echo_server) -> None:
    fake_pit.forward_targets = {80: await echo_server(), 9090: await echo_server()}
    first, second = free_port(), free_port()
    forwarder, task = await start_forwarder(
        fake_pit, [PortMapping(first, 80), PortMapping(second, 9090)]
    )
    assert sorted(forwarder.bound_ports) == sorted([first, second])
    assert forwarder.state is ForwarderState.LISTENING

    _, writer_a, echoed_a = await roundtrip(first, b"hello")
    reader_b, writer_b, echoed_b = await roundtrip(second, b"world")
    assert (echoed_a, echoed_b) == (b"hello", b"world")
    assert len(forwarder.streams) == 2

    writer_a.close()
    await wait_until(lambda: len(forwarder.streams) == 1)

    writer_b.write(b"still here")
    await writer_b.drain()
    assert await asyncio.wait_for(reader_b.readexactly(10), 5) == b"still here"

    writer_b.close()
    assert await stop_forwarder(forwarder, task) == 0
    assert forwarder.state is ForwarderState.TERMINATED
    assert fake_pit.opened_streams == ["0-80", "1-9090"]


async def test_large_payload_keeps_order(fake_pit, echo_server) -> None:
    fake_pit.forward_targets = {80: await echo_server()}
    local = free_port()
    forwarder, task = await start_forwarder(fake_pit, [PortMapping(local, 80)])

    payload = os.urandom(1024 * 1024)
    reader, writer = await asyncio.open_connection("127.0.0.1", local)

    async def send():
        for offset in range(0, len(payload), 10_000):
            writer.write(payload[offset : offset + 10_000])
            await writer.drain()

    sender = asyncio.create_task(send())
    received = await asyncio.wait_for(reader.readexactly(len(payload)), 15)
    await sender
    assert received == payload

    writer.close()
    assert await stop_forwarder(forwarder, task) == 0


async def test_half_close_keeps_remote_data_flowing(fake_pit) -> None:
    async def reply_after_eof(reader, writer):
        request = await reader.read()
        writer.write(request.upper())
        await writer.drain()
        writer.close()

    server = await asyncio.start_server(reply_after_eof, "127.0.0.1", 0)
    fake_pit.forward_targets = {80: server.sockets[0].getsockname()[1]}
    local = free_port()
    forwarder, task = await start_forwarder(fake_pit, [PortMapping(local, 80)])

    reader, writer = await asyncio.open_connection("127.0.0.1", local)
    writer.write(b"request")
    writer.write_eof()
    assert await asyncio.wait_for(reader.read(), 5) == b"REQUEST"

    writer.close()
    await wait_until(lambda: len(forwarder.streams) == 0)
    assert await stop_forwarder(forwarder, task) == 0
    server.close()


async def test_remote_refusal_closes_only_that_stream(fake_pit, echo_server) -> None:
    fake_pit.forward_targets = {80: await echo_server()}
    good, refused = free_port(), free_port()
    forwarder, task = await start_forwarder(
        fake_pit, [PortMapping(good, 80), PortMapping(refused, 81)]
    )

    reader_ok, writer_ok, echoed = await roundtrip(good, b"ping")
    assert echoed == b"ping"

    reader_bad, writer_bad = await asyncio.open_connection("127.0.0.1", refused)
    assert await asyncio.wait_for(reader_bad.read(), 5) == b""
    await wait_until(lambda: len(forwarder.streams) == 1)

    writer_ok.write(b"pong")
    await writer_ok.drain()
    assert await asyncio.wait_for(reader_ok.readexactly(4), 5) == b"pong"

    writer_ok.close()
    writer_bad.close()
    # One of two streams failed, so the run still ends successfully
    assert await stop_forwarder(forwarder, task) == 0


async def test_every_stream_failing_exits_nonzero(fake_pit) -> None:
    local = free_port()
    forwarder, task = await start_forwarder(fake_pit, [PortMapping(local, 81)])

    reader, writer = await asyncio.open_connection("127.0.0.1", local)
    assert await asyncio.wait_for(reader.read(), 5) == b""
    writer.close()
    await wait_until(lambda: len(forwarder.streams) == 0)

    assert await stop_forwarder(forwarder, task) == 1


async def test_stream_names_are_unique(fake_pit, echo_server) -> None:
    fake_pit.forward_targets = {80: await echo_server()}
    local = free_port()
    forwarder, task = await start_forwarder(fake_pit, [PortMapping(local, 80)])

    for _ in range(3):
        _, writer, echoed = await roundtrip(local, b"x")
        assert echoed == b"x"
        writer.close()
        await wait_until(lambda: len(forwarder.streams) == 0)

    assert fake_pit.opened_streams == ["0-80", "1-80", "2-80"]
    assert forwarder.streams.allocated == 3
    assert await stop_forwarder(forwarder, task) == 0


async def test_transport_failure_binds_nothing(fake_pit) -> None:
    fake_pit.valid_tokens = set()
    local = free_port()
    transport = Transport(
        fake_pit.session(), EndpointDescriptor("1234", 0, ChannelKind.FORWARD)
    )
    forwarder = TunnelForwarder(transport, [PortMapping(local, 80)])

    with pytest.raises(ConnectionFailedError):
        await asyncio.wait_for(forwarder.run(), 5)

    assert forwarder.bound_ports == []
    assert forwarder.state is ForwarderState.TERMINATED
    with pytest.raises(OSError):
        await asyncio.open_connection("127.0.0.1", local)


async def test_busy_port_is_skipped(fake_pit, echo_server) -> None:
    fake_pit.forward_targets = {80: await echo_server()}
    busy = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    busy.bind(("127.0.0.1", 0))
    busy.listen()
    try:
        free = free_port()
        forwarder, task = await start_forwarder(
            fake_pit,
            [PortMapping(busy.getsockname()[1], 80), PortMapping(free, 80)],
        )
        assert forwarder.bound_ports == [free]
        assert await stop_forwarder(forwarder, task) == 0
    finally:
        busy.close()


async def test_no_port_bound_exits_nonzero(fake_pit) -> None:
    busy = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    busy.bind(("127.0.0.1", 0))
    busy.listen()
    try:
        forwarder, task = await start_forwarder(
            fake_pit, [PortMapping(busy.getsockname()[1], 80)]
        )
        assert await asyncio.wait_for(task, 5) == 1
        assert forwarder.state is ForwarderState.TERMINATED
    finally:
        busy.close()


async def test_remote_close_ends_forwarding(fake_pit, echo_server) -> None:
    fake_pit.forward_targets = {80: await echo_server()}
    local = free_port()
    forwarder, task = await start_forwarder(fake_pit, [PortMapping(local, 80)])

    await wait_until(lambda: len(fake_pit.connections) == 1)
    await fake_pit.close_connections()
    assert await asyncio.wait_for(task, 5) == 0
    assert forwarder.state is ForwarderState.TERMINATED


async def test_slow_consumer_does_not_starve_other_streams(fake_pit, echo_server) -> None:
    flood_chunk = b"z" * 65536

    async def flood(reader, writer):
        try:
            for _ in range(256):
                writer.write(flood_chunk)
                await writer.drain()
        except OSError:
            pass
        finally:
            writer.close()

    flood_server = await asyncio.start_server(flood, "127.0.0.1", 0)
    fake_pit.forward_targets = {
        80: flood_server.sockets[0].getsockname()[1],
        90: await echo_server(),
    }
    slow, fast = free_port(), free_port()
    forwarder, task = await start_forwarder(
        fake_pit, [PortMapping(slow, 80), PortMapping(fast, 90)]
    )

    # Connected but never read from
    _, slow_writer = await asyncio.open_connection("127.0.0.1", slow)
    await wait_until(lambda: len(forwarder.streams) == 1)
    await asyncio.sleep(0.2)

    _, fast_writer, echoed = await roundtrip(fast, b"still responsive")
    assert echoed == b"still responsive"

    fast_writer.close()
    slow_writer.close()
    assert await stop_forwarder(forwarder, task) == 0
    flood_server.close()
