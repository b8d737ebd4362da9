"""Parsing of ``localPort[:remotePort]`` arguments."""

from dataclasses import dataclass

from pitclient.exceptions import InvalidArgumentError

MAX_PORT = 65535


@dataclass(frozen=True)
class PortMapping:
    """One local listening port forwarded to one port on the worker."""

    local_port: int
    remote_port: int

    def __str__(self) -> str:
        return f"{self.local_port}:{self.remote_port}"


def _parse_port(text: str, arg: str) -> int:
    text = text.strip()
    if not (text.isascii() and text.isdigit()):
        raise InvalidArgumentError(f"Wrong port pair format: {arg!r}")
    port = int(text)
    if not 0 < port <= MAX_PORT:
        raise InvalidArgumentError(f"Port out of range in {arg!r}")
    return port


def parse_port_mapping(arg: str) -> PortMapping:
    """
    Parse ``"8080:80"`` or ``"9090"`` (remote port defaults to the local one).

    Raises:
        InvalidArgumentError: on malformed, zero or out-of-range ports.
    """
    local, sep, remote = arg.partition(":")
    local_port = _parse_port(local, arg)
    if not sep or not remote.strip():
        return PortMapping(local_port, local_port)
    return PortMapping(local_port, _parse_port(remote, arg))


def parse_port_mappings(args: list[str]) -> list[PortMapping]:
    """Parse all mappings of one invocation; local ports must be distinct."""
    if not args:
        raise InvalidArgumentError("No ports to forward given")
    mappings = []
    seen = set()
    for arg in args:
        mapping = parse_port_mapping(arg)
        if mapping.local_port in seen:
            raise InvalidArgumentError(f"Local port {mapping.local_port} given twice")
        seen.add(mapping.local_port)
        mappings.append(mapping)
    return mappings
