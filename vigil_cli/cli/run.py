"""Vigil run command - Start the job runner daemon."""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from vigil_cli.cli.exit_codes import ExitCode

app = typer.Typer(help="Start the Vigil daemon that triggers due jobs.")
console = Console()


@app.callback(invoke_without_command=True)
def run(
    ctx: typer.Context,
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    daemon: bool = typer.Option(
        False,
        "--daemon",
        "-d",
        help="Run in background as daemon.",
    ),
    tick_interval: Optional[int] = typer.Option(
        None,
        "--tick-interval",
        "-t",
        help="Seconds between due-job checks (overrides configuration).",
        min=1,
    ),
) -> None:
    """Start the Vigil daemon.

    Every tick the daemon runs each job whose next run time has passed.
    Several daemons may share one database; execution locks keep each
    occurrence to a single run.

    Example:
        vigil run
        vigil run --daemon
        vigil run --tick-interval 15
    """
    if ctx.invoked_subcommand is not None:
        return

    from vigil_cli.config import ensure_directories, load_config, set_config
    from vigil_cli.daemon.pid import PIDFile
    from vigil_cli.daemon.service import daemonize, run_daemon

    config = load_config(config_file)
    set_config(config)
    ensure_directories(config)
    if tick_interval:
        config.scheduler.tick_interval = tick_interval

    if not config.scheduler.enabled:
        console.print("[yellow]Scheduler is disabled (scheduler.enabled = false)[/yellow]")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)

    pid_file = PIDFile.for_data_dir(config.data_dir)
    if pid_file.is_running():
        console.print("[red]Error: Daemon is already running[/red]")
        console.print(f"[yellow]PID: {pid_file.read()}[/yellow]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)
    pid_file.clear_if_stale()

    console.print("[bold green]Starting Vigil daemon...[/bold green]")
    console.print(f"[dim]Database: {config.database_url}[/dim]")
    console.print(f"[dim]Tick interval: {config.scheduler.tick_interval}s[/dim]")

    if daemon:
        if sys.platform == "win32":
            console.print("[yellow]Warning: Daemon mode not supported on Windows, running in foreground[/yellow]")
        else:
            log_file = config.logging.file or config.data_dir / "daemon.log"
            console.print(f"[dim]Forking to background, logging to {log_file}[/dim]")
            daemonize(Path(log_file))
            logging.basicConfig(
                level=config.logging.level,
                format=config.logging.format,
                handlers=[logging.FileHandler(log_file)],
                force=True,
            )

    try:
        pid_file.create()
    except OSError as e:
        console.print(f"[red]Error: Failed to create PID file: {e}[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    try:
        asyncio.run(run_daemon(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
    except Exception as e:
        logging.exception("Daemon error")
        console.print(f"[red]Daemon error: {e}[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)
    finally:
        pid_file.remove()


@app.command()
def status(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Check daemon status.

    Example:
        vigil run status
    """
    from vigil_cli.config import load_config
    from vigil_cli.daemon.pid import PIDFile

    config = load_config(config_file)
    pid_file = PIDFile.for_data_dir(config.data_dir)

    if pid_file.is_running():
        console.print(f"[green]● Daemon is running[/green] (PID: {pid_file.read()})")
        console.print(f"  Data directory: {config.data_dir}")
        console.print(f"  Tick interval: {config.scheduler.tick_interval}s")
    else:
        console.print("[yellow]○ Daemon is not running[/yellow]")
        if pid_file.clear_if_stale():
            console.print("[dim]  (removed stale PID file)[/dim]")


@app.command()
def stop(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Ask the running daemon to shut down.

    In-flight runs are cancelled and recorded as aborted.

    Example:
        vigil run stop
    """
    from vigil_cli.config import load_config
    from vigil_cli.daemon.pid import PIDFile

    config = load_config(config_file)
    pid_file = PIDFile.for_data_dir(config.data_dir)

    pid = pid_file.read()
    if pid is None:
        console.print("[yellow]Daemon is not running (no PID file found)[/yellow]")
        raise typer.Exit()

    if not pid_file.is_running():
        console.print("[yellow]Daemon is not running (stale PID file)[/yellow]")
        pid_file.remove()
        raise typer.Exit()

    try:
        os.kill(pid, signal.SIGTERM)
        console.print(f"[green]Shutdown signal sent to daemon (PID: {pid})[/green]")
    except ProcessLookupError:
        console.print("[yellow]Daemon process not found (already stopped)[/yellow]")
        pid_file.remove()
    except OSError as e:
        console.print(f"[red]Error signaling daemon: {e}[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)
