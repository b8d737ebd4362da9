"""
pit command-line client entry point.

Usage:
    pit [OPTIONS] COMMAND [ARGS]...

Commands:
    exec      Execute a command on a job's worker
    forward   Forward ports of a job's worker to localhost
    log       Show a job's log
    version   Show version information
"""

from typing import Annotated

import typer

from pitclient.cli import config as cli_config
from pitclient.cli.commands import exec_cmd, forward, log
from pitclient.cli.output import console
from pitclient.models.enums import LogLevel
from pitclient.utils.logger import set_log_level

app = typer.Typer(
    name="pit",
    help="pit compute-job platform client",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Register commands
app.command("exec", help="Execute a command on a job's worker")(exec_cmd.exec_command)
app.command("forward", help="Forward ports of a job's worker to localhost")(
    forward.forward
)
app.command("log", help="Show a job's log")(log.log)


@app.callback()
def main(
    debug: Annotated[
        bool,
        typer.Option("--debug", "-d", help="Log requests and connection events"),
    ] = False,
    log_level: Annotated[
        LogLevel | None,
        typer.Option("--log-level", help="Logging verbosity", envvar="PIT_LOG_LEVEL"),
    ] = None,
):
    """
    pit compute-job platform client.

    Run commands on job workers and forward their ports.
    """
    if log_level is not None:
        cli_config.LOG_LEVEL = log_level.value
    if debug:
        cli_config.LOG_LEVEL = LogLevel.DEBUG.value
    set_log_level(cli_config.LOG_LEVEL)


@app.command("version")
def version():
    """Show version information."""
    from pitclient import __version__

    console.print(f"pit client v{__version__}")


def run():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
