"""Exception classes shared by the pit client."""


class PitError(Exception):
    """Base exception for pit client operations."""

    pass


class ConnectionFailedError(PitError):
    """The transport could not be established or was lost."""

    pass


class AuthRequiredError(PitError):
    """The platform refused the request with 401 Unauthorized."""

    pass


class InvalidArgumentError(PitError, ValueError):
    """Malformed port mapping or target, detected before any network activity."""

    pass


class SessionError(PitError):
    """Connectivity or credential files are missing or unusable."""

    pass


class StreamRelayError(PitError):
    """Relay failure confined to a single logical stream."""

    def __init__(self, message: str, stream_id: int):
        self.stream_id = stream_id
        super().__init__(f"Stream {stream_id}: {message}")


class ProtocolViolationError(PitError):
    """Unexpected frame tag or malformed control payload."""

    pass
