"""
Session resolution for the pit client.

Produces the SessionDescriptor every command uses to reach the platform:
- Connectivity file: first line is the pit URL, any following lines are the
  PEM CA bundle used to verify it.
- Credential file: ``username`` and ``token`` on two lines, mode 0600.

Both files are looked up in the working directory first, then in the home
directory. A 401 from the platform is recovered by ``reauthenticate``, which
asks for the password once per invocation and stores the fresh token.
"""

import os
import ssl
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable
from urllib.parse import urlsplit, urlunsplit

import httpx
import typer

from pitclient.cli import config as cli_config
from pitclient.exceptions import SessionError
from pitclient.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Session Descriptor
# =============================================================================


@dataclass(frozen=True)
class SessionDescriptor:
    """Resolved connection settings; read-only to everything but the resolver."""

    base_url: str
    token: str
    ca: str | None = None

    @property
    def ws_base_url(self) -> str:
        """Base URL with the http(s) scheme swapped for ws(s)."""
        parts = urlsplit(self.base_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        return urlunsplit(parts._replace(scheme=scheme))

    def url(self, resource: str, websocket: bool = False) -> str:
        """Join a resource path onto the (websocket) base URL."""
        base = self.ws_base_url if websocket else self.base_url
        return f"{base.rstrip('/')}/{resource.lstrip('/')}"

    def auth_headers(self) -> dict[str, str]:
        return {cli_config.AUTH_HEADER: self.token}

    def ssl_context(self) -> ssl.SSLContext | None:
        """SSL context trusting the custom CA, or None for system defaults."""
        if not self.ca:
            return None
        return ssl.create_default_context(cadata=self.ca)

    def httpx_verify(self) -> ssl.SSLContext | bool:
        return self.ssl_context() or True


# =============================================================================
# Session Files
# =============================================================================


def find_session_file(name: str) -> Path | None:
    """Locate a session file in the working directory, then in home."""
    local = Path(name)
    if local.exists():
        return local
    home = Path.home() / name
    if home.exists():
        return home
    return None


def load_connection(path: Path) -> tuple[str, str | None]:
    """Read the pit URL and optional CA material from a connectivity file."""
    lines = path.read_text(encoding="utf-8").split("\n")
    url = lines[0].strip()
    if not url:
        raise SessionError(f"Connectivity file {path} does not contain a pit URL.")
    ca = "\n".join(lines[1:]).strip()
    return url, (ca + "\n") if ca else None


def load_credentials(path: Path) -> tuple[str, str]:
    """Read username and token from a credential file."""
    lines = path.read_text(encoding="utf-8").split("\n")
    username = lines[0].strip()
    token = lines[1].strip() if len(lines) > 1 else ""
    return username, token


def save_credentials(path: Path, username: str, token: str) -> None:
    """Store username and token with owner-only permissions."""
    path.write_text(f"{username}\n{token}", encoding="utf-8")
    os.chmod(path, 0o600)


# =============================================================================
# Resolver
# =============================================================================


class SessionResolver:
    """
    Resolves and refreshes the session for one CLI invocation.

    The prompt callables default to interactive typer prompts and can be
    replaced for non-interactive use.
    """

    def __init__(
        self,
        prompt_username: Callable[[], str] | None = None,
        prompt_password: Callable[[], str] | None = None,
    ):
        self._prompt_username = prompt_username or (
            lambda: typer.prompt("Please enter an existing username")
        )
        self._prompt_password = prompt_password or (
            lambda: typer.prompt("Please enter password", hide_input=True)
        )
        self._password: str | None = None
        self._username: str | None = None
        self._user_file: Path | None = None
        self._session: SessionDescriptor | None = None

    @property
    def session(self) -> SessionDescriptor | None:
        return self._session

    def resolve(self) -> SessionDescriptor:
        """Load connectivity and credentials, logging in if none are stored."""
        if self._session is not None:
            return self._session

        connect_file = find_session_file(cli_config.CONNECT_FILE)
        if connect_file is None:
            raise SessionError(
                "Unable to find connectivity info about your pit. "
                f'Place a "{cli_config.CONNECT_FILE}" file in your home '
                "directory or the project root."
            )
        base_url, ca = load_connection(connect_file)
        logger.debug(f"Using connectivity file {connect_file} ({base_url})")

        user_file = find_session_file(cli_config.USER_FILE)
        if user_file is not None:
            self._user_file = user_file
            self._username, token = load_credentials(user_file)
            self._session = SessionDescriptor(base_url=base_url, token=token, ca=ca)
            return self._session

        # First login from this machine
        self._user_file = Path(cli_config.USER_FILE)
        self._session = SessionDescriptor(base_url=base_url, token="", ca=ca)
        self._username = self._prompt_username()
        self._check_user_exists(self._username)
        return self.reauthenticate()

    def reauthenticate(self) -> SessionDescriptor:
        """Obtain a fresh token for the current user and store it."""
        if self._session is None:
            return self.resolve()
        if not self._username:
            self._username = self._prompt_username()
        if self._password is None:
            self._password = self._prompt_password()

        session = self._session
        url = session.url(f"users/{self._username}/authenticate")
        logger.debug(f"POST {url}")
        try:
            response = httpx.post(
                url,
                json={"password": self._password},
                verify=session.httpx_verify(),
                timeout=cli_config.HTTP_TIMEOUT,
            )
        except httpx.RequestError as e:
            raise SessionError(f"Unable to reach pit: {e}") from e

        if response.status_code != 200:
            raise SessionError(
                f'Unable to authenticate. If user "{self._username}" is not valid '
                f'anymore, remove "{cli_config.USER_FILE}" and start over.'
            )

        try:
            token = str(response.json()["token"])
        except (ValueError, KeyError, TypeError) as e:
            raise SessionError("Unexpected answer from pit while authenticating.") from e

        try:
            save_credentials(self._user_file, self._username, token)
        except OSError as e:
            raise SessionError(f"Unable to store user info: {e}") from e

        self._session = replace(session, token=token)
        return self._session

    def _check_user_exists(self, username: str) -> None:
        session = self._session
        url = session.url(f"users/{username}/exists")
        logger.debug(f"GET {url}")
        try:
            response = httpx.get(
                url, verify=session.httpx_verify(), timeout=cli_config.HTTP_TIMEOUT
            )
        except httpx.RequestError as e:
            raise SessionError(f"Unable to reach pit: {e}") from e
        if response.status_code != 200:
            raise SessionError(f'Found no user named "{username}".')
