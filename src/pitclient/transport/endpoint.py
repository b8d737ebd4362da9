"""Addressing of the duplex endpoints exposed for a job's worker."""

import json
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from pitclient.exceptions import InvalidArgumentError
from pitclient.models.enums import ChannelKind


@dataclass(frozen=True)
class EndpointDescriptor:
    """
    Target of one transport.

    Attributes:
        job_id: Job number on the platform.
        worker_index: Index of the worker instance within the job.
        kind: Channel carried by the connection.
        context: Exec context (command, environment, interactivity, size);
            None for forward, whose multiplexing is negotiated client-side.
    """

    job_id: str
    worker_index: int
    kind: ChannelKind
    context: dict[str, Any] | None = None

    def __post_init__(self):
        if not self.job_id.isdigit():
            raise InvalidArgumentError(f"Invalid job number: {self.job_id!r}")
        if self.worker_index < 0:
            raise InvalidArgumentError(f"Invalid worker index: {self.worker_index}")

    @property
    def path(self) -> str:
        path = f"jobs/{self.job_id}/instances/{self.worker_index}/{self.kind.value}"
        if self.kind is ChannelKind.EXEC:
            context = json.dumps(self.context or {}, separators=(",", ":"))
            path += f"?context={quote(context, safe='')}"
        return path

    def describe(self) -> str:
        return f"{self.kind.value} on worker {self.worker_index} of job {self.job_id}"
