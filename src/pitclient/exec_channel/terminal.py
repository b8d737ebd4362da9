"""
Local terminal handling for exec sessions.

- RawTerminal: raw mode for the lifetime of a session, restored on every
  exit path.
- StdinReader: reads the input descriptor on a daemon thread so a blocked
  read never holds up the event loop or interpreter exit.

Raw mode needs termios and is a no-op elsewhere.
"""

import asyncio
import os
import select
import sys
import threading
from contextlib import contextmanager
from typing import IO, AsyncIterator

IS_WINDOWS = sys.platform == "win32"

if not IS_WINDOWS:
    import termios
    import tty


def terminal_size(stream: IO) -> tuple[int, int] | None:
    """Return (columns, rows) of the terminal behind ``stream``, if any."""
    try:
        fd = stream.fileno()
        if not os.isatty(fd):
            return None
        size = os.get_terminal_size(fd)
    except (OSError, ValueError):
        return None
    return size.columns, size.lines


# =============================================================================
# Raw Mode
# =============================================================================


class RawTerminal:
    """
    Context manager switching an input terminal to raw mode.

    Raw mode passes every keystroke through unbuffered and unechoed, so
    arrow keys and control characters reach the remote program.
    """

    def __init__(self, stream: IO):
        try:
            self._fd = stream.fileno()
            self._is_tty = os.isatty(self._fd)
        except (OSError, ValueError):
            self._fd = -1
            self._is_tty = False
        self._old_settings = None

    @property
    def is_tty(self) -> bool:
        return self._is_tty

    def enter_raw_mode(self) -> None:
        if not self._is_tty or IS_WINDOWS:
            return
        self._old_settings = termios.tcgetattr(self._fd)
        tty.setraw(self._fd)

    def exit_raw_mode(self) -> None:
        if self._old_settings is None:
            return
        termios.tcsetattr(self._fd, termios.TCSADRAIN, self._old_settings)
        self._old_settings = None

    @contextmanager
    def cooked(self):
        """Temporarily restore the original settings, e.g. for a password prompt."""
        if self._old_settings is None:
            yield
            return
        saved = self._old_settings
        termios.tcsetattr(self._fd, termios.TCSADRAIN, saved)
        try:
            yield
        finally:
            tty.setraw(self._fd)

    def __enter__(self) -> "RawTerminal":
        self.enter_raw_mode()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.exit_raw_mode()


# =============================================================================
# Input Reader
# =============================================================================


class StdinReader:
    """
    Async iterator over chunks read from a file descriptor.

    Reading starts with ``start()``, before the transport is open, so early
    keystrokes are captured. ``paused()`` stops consuming input while another
    reader (a password prompt) needs the terminal. Iteration ends on EOF.
    """

    def __init__(self, fd: int, chunk_size: int = 1024, poll_interval: float = 0.1):
        self._fd = fd
        self._chunk_size = chunk_size
        self._poll_interval = poll_interval
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._running = threading.Event()
        self._stopped = threading.Event()

    @property
    def buffered(self) -> int:
        """Chunks read from the descriptor but not consumed yet."""
        return self._queue.qsize()

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._running.set()
        self._thread = threading.Thread(
            target=self._read_loop, name="pit-stdin", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        self._running.set()

    @contextmanager
    def paused(self):
        self._running.clear()
        try:
            yield
        finally:
            self._running.set()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk

    def _deliver(self, chunk: bytes | None) -> bool:
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, chunk)
        except RuntimeError:
            # Event loop already closed
            return False
        return True

    def _read_loop(self) -> None:
        while not self._stopped.is_set():
            if not self._running.wait(self._poll_interval):
                continue
            try:
                ready, _, _ = select.select([self._fd], [], [], self._poll_interval)
            except (OSError, ValueError):
                break
            if not ready or not self._running.is_set() or self._stopped.is_set():
                continue
            try:
                data = os.read(self._fd, self._chunk_size)
            except OSError:
                data = b""
            if not self._deliver(data or None) or not data:
                return
        self._deliver(None)
