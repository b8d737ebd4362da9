"""
Port forwarding command for reaching services on a job's worker.

All local connections share a single persistent connection to the worker,
each multiplexed as its own stream.

Example:
    # Forward local 8080 to worker port 80, and local 7022 to port 22
    pit forward 1234 8080:80 7022:22

    # Same port locally and remotely, on the second worker
    pit forward -w 1 1234 8080
"""

import asyncio
import signal
from typing import Annotated, Callable

import typer

from pitclient.cli.output import print_error
from pitclient.cli.session import SessionDescriptor, SessionResolver
from pitclient.exceptions import ConnectionFailedError, InvalidArgumentError, SessionError
from pitclient.models.enums import ChannelKind
from pitclient.transport import EndpointDescriptor, Transport
from pitclient.tunnel import PortMapping, TunnelForwarder, parse_port_mappings

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def forward(
    job_number: Annotated[str, typer.Argument(help="Job number")],
    ports: Annotated[
        list[str],
        typer.Argument(
            help="Ports to forward, each as localPort or localPort:remotePort",
            show_default=False,
        ),
    ],
    worker: Annotated[
        int,
        typer.Option("--worker", "-w", help="Index of the target worker", min=0),
    ] = 0,
):
    """
    Forward ports of a job's worker to localhost.

    Each port is either one number (same port locally and remotely) or a
    colon-separated pair of local and remote port.
    """
    try:
        mappings = parse_port_mappings(ports)
        endpoint = EndpointDescriptor(job_number, worker, ChannelKind.FORWARD)
    except InvalidArgumentError as e:
        print_error(str(e))
        raise typer.Exit(2)

    resolver = SessionResolver()
    try:
        session = resolver.resolve()
        code = asyncio.run(_run_forwarder(resolver, session, endpoint, mappings))
    except (ConnectionFailedError, SessionError) as e:
        print_error(str(e))
        raise typer.Exit(1)
    except KeyboardInterrupt:
        code = 0
    raise typer.Exit(code)


async def _run_forwarder(
    resolver: SessionResolver,
    session: SessionDescriptor,
    endpoint: EndpointDescriptor,
    mappings: list[PortMapping],
) -> int:
    """Run one forwarder, owned by this invocation and its signal handlers."""

    async def reauthenticate() -> SessionDescriptor:
        return await asyncio.to_thread(resolver.reauthenticate)

    transport = Transport(session, endpoint, reauthenticate)
    forwarder = TunnelForwarder(transport, mappings, worker_index=endpoint.worker_index)

    loop = asyncio.get_running_loop()
    installed = _add_signal_handlers(loop, forwarder.request_shutdown)
    try:
        return await forwarder.run()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def _add_signal_handlers(
    loop: asyncio.AbstractEventLoop, callback: Callable[[], None]
) -> list[int]:
    installed = []
    for sig in SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, callback)
        except (NotImplementedError, RuntimeError):
            # No loop signal support (Windows); KeyboardInterrupt still applies
            continue
        installed.append(sig)
    return installed
