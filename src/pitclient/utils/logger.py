"""
Logging setup for the pit client.

Module loggers are obtained with ``get_logger(__name__)``. Records go to
stderr through rich so they never mix with relayed stdout data.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

from pitclient.models.enums import LogLevel

_ROOT_NAME = "pitclient"
_configured = False


def _configure_root() -> logging.Logger:
    global _configured

    root = logging.getLogger(_ROOT_NAME)
    if not _configured:
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=False,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        root.addHandler(handler)
        root.setLevel(logging.WARNING)
        root.propagate = False
        _configured = True
    return root


def get_logger(name: str) -> logging.Logger:
    """Get a logger below the pitclient namespace."""
    _configure_root()
    if name != _ROOT_NAME and not name.startswith(_ROOT_NAME + "."):
        name = f"{_ROOT_NAME}.{name}"
    return logging.getLogger(name)


def set_log_level(level: LogLevel | str) -> None:
    """Set the verbosity of every pitclient logger."""
    if not isinstance(level, LogLevel):
        level = LogLevel(level.lower())
    _configure_root().setLevel(level.value.upper())
