"""
Remote command execution on a job's worker.

Relays the local terminal to the remote command over one connection. When
stdin is a terminal it runs in raw mode (arrow keys, TUI programs) and
Ctrl+C ends the local client; otherwise input and output are plain streams.

Example:
    pit exec 1234 -- bash
    pit exec 1234 -- ls -la /
    pit exec -w 1 1234 -- cat /data/rw/pit/src/.compute > 1234.compute
"""

import asyncio
import os
import signal
import sys
from typing import Annotated, Any

import typer

from pitclient.cli.output import print_error
from pitclient.cli.session import SessionDescriptor, SessionResolver
from pitclient.exceptions import ConnectionFailedError, InvalidArgumentError, SessionError
from pitclient.exec_channel import (
    INTERRUPT_EXIT_CODE,
    ExecChannel,
    RawTerminal,
    StdinReader,
    terminal_size,
)
from pitclient.models.enums import ChannelKind
from pitclient.transport import EndpointDescriptor, Transport
from pitclient.utils.logger import get_logger

logger = get_logger(__name__)


def exec_command(
    job_number: Annotated[str, typer.Argument(help="Job number")],
    command: Annotated[
        list[str] | None,
        typer.Argument(help="Command to run, after --", show_default=False),
    ] = None,
    worker: Annotated[
        int,
        typer.Option("--worker", "-w", help="Index of the target worker", min=0),
    ] = 0,
):
    """
    Execute a command on a job's worker.

    Without a command the worker's default shell is started.
    """
    terminal = RawTerminal(sys.stdin)
    try:
        endpoint = EndpointDescriptor(
            job_number,
            worker,
            ChannelKind.EXEC,
            build_exec_context(command, terminal.is_tty),
        )
    except InvalidArgumentError as e:
        print_error(str(e))
        raise typer.Exit(2)

    resolver = SessionResolver()
    try:
        session = resolver.resolve()
        code = asyncio.run(_run_exec(resolver, session, endpoint, terminal))
    except (ConnectionFailedError, SessionError) as e:
        print_error(str(e))
        raise typer.Exit(1)
    except KeyboardInterrupt:
        code = INTERRUPT_EXIT_CODE
    raise typer.Exit(code)


def build_exec_context(command: list[str] | None, interactive: bool) -> dict[str, Any]:
    """Describe the remote process: command, TERM, interactivity and size."""
    context: dict[str, Any] = {}
    if command:
        context["command"] = list(command)
    term = os.environ.get("TERM")
    context["environment"] = {"TERM": term} if term else {}
    context["interactive"] = interactive
    size = terminal_size(sys.stdout)
    if size is not None:
        context["width"], context["height"] = size
    return context


async def _run_exec(
    resolver: SessionResolver,
    session: SessionDescriptor,
    endpoint: EndpointDescriptor,
    terminal: RawTerminal,
) -> int:
    """Run one exec session, owned by this invocation and its signal handlers."""
    reader = _start_input()

    async def reauthenticate() -> SessionDescriptor:
        # The password prompt needs the terminal back
        with reader.paused(), terminal.cooked():
            return await asyncio.to_thread(resolver.reauthenticate)

    transport = Transport(session, endpoint, reauthenticate)
    channel = ExecChannel(
        transport,
        reader,
        sys.stdout.buffer,
        sys.stderr.buffer,
        intercept_interrupt=terminal.is_tty,
    )

    def on_resize() -> None:
        size = terminal_size(sys.stdout)
        if size is not None:
            channel.resize(*size)

    loop = asyncio.get_running_loop()
    installed = []
    handlers = [(signal.SIGINT, channel.interrupt), (signal.SIGTERM, channel.interrupt)]
    if hasattr(signal, "SIGWINCH"):
        handlers.append((signal.SIGWINCH, on_resize))
    for sig, handler in handlers:
        try:
            loop.add_signal_handler(sig, handler)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            continue

    try:
        with terminal:
            return await channel.run()
    finally:
        reader.stop()
        for sig in installed:
            loop.remove_signal_handler(sig)


def _start_input() -> StdinReader:
    try:
        fd = sys.stdin.fileno()
    except (OSError, ValueError):
        fd = os.open(os.devnull, os.O_RDONLY)
    reader = StdinReader(fd)
    reader.start()
    return reader
