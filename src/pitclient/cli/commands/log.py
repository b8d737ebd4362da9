"""Job log streaming command."""

import sys
from typing import Annotated

import typer

from pitclient.cli import client
from pitclient.cli.output import print_error
from pitclient.cli.session import SessionResolver
from pitclient.exceptions import AuthRequiredError, SessionError


def log(
    job_number: Annotated[str, typer.Argument(help="Job number")],
):
    """Show a job's log, following it while the job produces output."""
    resolver = SessionResolver()
    out = sys.stdout.buffer
    try:
        for chunk in client.iter_job_log(resolver, job_number):
            out.write(chunk)
            out.flush()
    except (client.APIError, AuthRequiredError, SessionError) as e:
        print_error(str(e))
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass
