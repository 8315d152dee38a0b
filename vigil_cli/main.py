"""The ``vigil`` command."""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from vigil_cli import __app_name__, __version__
from vigil_cli.cli import config, jobs, run
from vigil_cli.cli.exit_codes import ExitCode

app = typer.Typer(
    name=__app_name__,
    help="Vigil - Scheduled job runner for compliance and risk background work.",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.add_typer(run.app, name="run")
app.add_typer(jobs.app, name="jobs")
app.add_typer(config.app, name="config")

# Set once per invocation by the root callback
_global_state: dict[str, bool] = {
    "verbose": False,
    "debug": False,
    "json": False,
    "quiet": False,
}

_PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DEBUG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"

# APScheduler logs every tick at INFO
_CHATTY_LOGGERS = ("apscheduler.executors", "apscheduler.scheduler")


def version_callback(value: bool) -> None:
    if value:
        console.print(f"{__app_name__} v{__version__}")
        raise typer.Exit(code=ExitCode.SUCCESS)


def _setup_logging(
    verbose: bool = False,
    debug: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None,
) -> None:
    """Configure the root logger for one CLI invocation.

    The console gets WARNING by default, INFO with ``verbose``, DEBUG
    with ``debug`` and only ERROR with ``quiet``. A log file, when
    given, always receives DEBUG so a daemon run can be inspected after
    the fact.
    """
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING

    handlers: list[logging.Handler] = []
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    if not quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        handlers.append(console_handler)
    elif not log_file:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=level,
        format=_DEBUG_FORMAT if debug else _PLAIN_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging at {logging.getLevelName(level)}")


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Log job runs and lock activity (INFO level).",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Log everything and show full tracebacks on errors.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Print job data as JSON where supported.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Only log errors.",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Also write DEBUG logs to this file.",
    ),
) -> None:
    """Vigil - Scheduled job runner.

    Runs recurring background jobs exactly once per due occurrence, even
    with several runners sharing one database.

    [bold]Core Commands:[/bold]

    • [cyan]run[/cyan] - Start the daemon that triggers due jobs
    • [cyan]jobs[/cyan] - Create, inspect, pause and trigger jobs
    • [cyan]config[/cyan] - Manage configuration

    [bold]Examples:[/bold]

        vigil jobs create --type history_cleanup --schedule "every 1d"
        vigil --json jobs list --status FAILED
        vigil jobs run 3f2a
        vigil run --daemon
    """
    if quiet and (verbose or debug):
        flag = "--verbose" if verbose else "--debug"
        console.print(f"[red]Error:[/red] --quiet and {flag} are mutually exclusive")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    _global_state.update(verbose=verbose, debug=debug, json=json_output, quiet=quiet)
    _setup_logging(verbose=verbose, debug=debug, quiet=quiet, log_file=log_file)
    logging.getLogger(__name__).debug(f"Vigil v{__version__}")


def is_debug() -> bool:
    """Whether ``--debug`` was given."""
    return _global_state["debug"]


def is_json() -> bool:
    """Whether ``--json`` was given."""
    return _global_state["json"]


__all__ = [
    "app",
    "console",
    "is_debug",
    "is_json",
]


if __name__ == "__main__":
    app()
