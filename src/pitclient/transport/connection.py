"""
Persistent duplex connection to a worker endpoint.

One Transport carries exactly one channel (exec or forward) for the lifetime
of an invocation. It is opened once, never reconnected, and never reused
after it closed.

    CONNECTING --open()--> OPEN --server close / close()--> CLOSED
        \\--attempt failed--> CLOSED
"""

import asyncio
from typing import AsyncIterator, Awaitable, Callable

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
)

from pitclient.cli import config as cli_config
from pitclient.cli.session import SessionDescriptor
from pitclient.exceptions import ConnectionFailedError
from pitclient.models.enums import TransportState
from pitclient.transport.endpoint import EndpointDescriptor
from pitclient.utils.logger import get_logger

logger = get_logger(__name__)

Reauthenticator = Callable[[], Awaitable[SessionDescriptor]]


class Transport:
    """
    Websocket connection to ``{job}/instances/{worker}/{exec|forward}``.

    A 401 answer to the upgrade request calls ``reauthenticate`` once and
    retries the upgrade with the refreshed session.
    """

    def __init__(
        self,
        session: SessionDescriptor,
        endpoint: EndpointDescriptor,
        reauthenticate: Reauthenticator | None = None,
        open_timeout: float | None = None,
    ):
        self.session = session
        self.endpoint = endpoint
        self._reauthenticate = reauthenticate
        self._open_timeout = (
            cli_config.CONNECT_TIMEOUT if open_timeout is None else open_timeout
        )
        self._ws = None
        self.state = TransportState.CONNECTING
        self.close_reason: str | None = None
        self.closed_cleanly = False
        # False when the connection dropped without a close frame (code 1006)
        self.close_frame_received = False

    @property
    def url(self) -> str:
        return self.session.url(self.endpoint.path, websocket=True)

    @property
    def is_open(self) -> bool:
        return self.state is TransportState.OPEN

    async def open(self) -> None:
        """Perform the connection attempt; raises ConnectionFailedError."""
        if self.state is not TransportState.CONNECTING:
            raise ConnectionFailedError(f"Transport is {self.state.value}")

        for attempt in range(2):
            url = self.url
            logger.debug(f"Opening {self.endpoint.describe()} at {url}")
            try:
                self._ws = await websockets.connect(
                    url,
                    additional_headers=self.session.auth_headers(),
                    ssl=self.session.ssl_context() if url.startswith("wss:") else None,
                    open_timeout=self._open_timeout,
                    max_size=None,
                )
            except InvalidStatus as e:
                status = e.response.status_code
                if status == 401 and attempt == 0 and self._reauthenticate:
                    logger.info("Upgrade refused with 401, re-authenticating")
                    self.session = await self._reauthenticate()
                    continue
                self._mark_closed(f"HTTP {status}")
                raise ConnectionFailedError(
                    f"Problem opening connection to pit: HTTP {status}"
                ) from e
            except (OSError, asyncio.TimeoutError, InvalidHandshake, InvalidURI) as e:
                reason = str(e) or type(e).__name__
                self._mark_closed(reason)
                raise ConnectionFailedError(
                    f"Problem opening connection to pit: {reason}"
                ) from e

            self.state = TransportState.OPEN
            logger.debug(f"Transport open: {self.endpoint.describe()}")
            return

    async def send(self, data: bytes) -> None:
        """Send one binary message, preserving submission order."""
        if self.state is not TransportState.OPEN:
            raise ConnectionFailedError(f"Transport is {self.state.value}")
        try:
            await self._ws.send(data)
        except ConnectionClosed as e:
            self._mark_closed(
                self._reason_of(e), isinstance(e, ConnectionClosedOK), e.rcvd is not None
            )
            raise ConnectionFailedError(f"Connection to pit lost: {self.close_reason}") from e

    async def messages(self) -> AsyncIterator[bytes]:
        """Yield inbound messages until the connection closes."""
        if self.state is not TransportState.OPEN:
            raise ConnectionFailedError(f"Transport is {self.state.value}")
        try:
            async for message in self._ws:
                if isinstance(message, str):
                    message = message.encode("utf-8")
                yield message
        except ConnectionClosed as e:
            self._mark_closed(self._reason_of(e), False, e.rcvd is not None)
        else:
            self._mark_closed(self._reason_of(None), True, True)

    async def close(self) -> None:
        """Close the connection; safe to call in any state."""
        if self._ws is not None:
            await self._ws.close()
        if self.state is not TransportState.CLOSED:
            self._mark_closed("closed locally", clean=True)

    def _reason_of(self, exc: ConnectionClosed | None) -> str:
        code = self._ws.close_code if self._ws is not None else None
        reason = self._ws.close_reason if self._ws is not None else None
        if exc is not None and code is None:
            return str(exc)
        return f"code {code}" + (f" ({reason})" if reason else "")

    def _mark_closed(
        self, reason: str, clean: bool = False, frame_received: bool = False
    ) -> None:
        if self.state is TransportState.CLOSED:
            return
        self.state = TransportState.CLOSED
        self.close_reason = reason
        self.closed_cleanly = clean
        self.close_frame_received = frame_received
        logger.debug(f"Transport closed ({reason})")
