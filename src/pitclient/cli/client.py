"""
API client for CLI commands.

Plain request/response access to the pit API. Every request carries the
session token; a 401 triggers one re-authentication and one retry.
"""

from contextlib import contextmanager
from typing import Iterator

import httpx

from pitclient.cli import config as cli_config
from pitclient.cli.session import SessionResolver
from pitclient.exceptions import AuthRequiredError, PitError
from pitclient.utils.logger import get_logger

logger = get_logger(__name__)


class APIError(PitError):
    """API request error with status code and detail."""

    def __init__(
        self, message: str, status_code: int | None = None, detail: str | None = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


def _handle_http_error(response: httpx.Response, context: str = "request") -> None:
    """Raise APIError for a failed response with consistent logging."""
    status = response.status_code
    try:
        detail = response.json()
        detail_str = detail.get("message", str(detail))
    except Exception:
        detail_str = response.reason_phrase or str(status)

    logger.debug(f"HTTP {status} on {context}: {detail_str}")
    raise APIError(f"HTTP {status}: {detail_str}", status_code=status, detail=detail_str)


# =============================================================================
# Requests
# =============================================================================


@contextmanager
def _open(
    resolver: SessionResolver, method: str, resource: str, **kwargs
) -> Iterator[httpx.Response]:
    """Open a response with an unread body, re-authenticating once on 401."""
    session = resolver.resolve()
    extra_headers = kwargs.pop("headers", {})

    for attempt in range(2):
        url = session.url(resource)
        headers = {**extra_headers, **session.auth_headers()}
        logger.debug(f"{method.upper()} {url}")

        with httpx.Client(
            verify=session.httpx_verify(), timeout=cli_config.HTTP_TIMEOUT
        ) as http:
            try:
                req = http.build_request(method.upper(), url, headers=headers, **kwargs)
                response = http.send(req, stream=True)
            except httpx.RequestError as e:
                raise APIError(f"Unable to reach pit: {e}") from e

            logger.debug(f"Received {response.status_code} for {url}")
            if response.status_code == 401:
                response.close()
                if attempt == 0:
                    session = resolver.reauthenticate()
                continue

            try:
                yield response
            finally:
                response.close()
            return

    raise AuthRequiredError(f"Not authorized to access {resource}")


def request(
    resolver: SessionResolver, method: str, resource: str, **kwargs
) -> httpx.Response:
    """Perform a request and return the fully read response."""
    with _open(resolver, method, resource, **kwargs) as response:
        response.read()
    if response.status_code > 299:
        _handle_http_error(response, f"{method.upper()} {resource}")
    return response


@contextmanager
def stream(
    resolver: SessionResolver, method: str, resource: str, **kwargs
) -> Iterator[httpx.Response]:
    """Perform a request and yield the response while its body streams in."""
    with _open(resolver, method, resource, **kwargs) as response:
        if response.status_code > 299:
            response.read()
            _handle_http_error(response, f"{method.upper()} {resource}")
        yield response


# =============================================================================
# Job Operations
# =============================================================================


def iter_job_log(resolver: SessionResolver, job_number: str) -> Iterator[bytes]:
    """Yield chunks of a job's log as the platform produces them."""
    with stream(resolver, "get", f"jobs/{job_number}/log") as response:
        yield from response.iter_bytes()
