"""Vigil config command - Configuration management."""

from typing import Optional

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from vigil_cli.cli.error_handler import ValidationError, handle_errors
from vigil_cli.cli.exit_codes import ExitCode

app = typer.Typer(help="Manage Vigil configuration.")
console = Console()


@app.command("show")
@handle_errors
def show_config(
    section: Optional[str] = typer.Argument(
        None,
        help="Configuration section to show (scheduler, logging, paths).",
    ),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, yaml, json).",
    ),
    unmask: bool = typer.Option(
        False,
        "--unmask",
        help="Show the database password (use with caution).",
    ),
) -> None:
    """Show current configuration.

    Example:
        vigil config show
        vigil config show scheduler
        vigil config show --format yaml
    """
    from vigil_cli.config import _config_to_dict, export_config_json, export_config_yaml, get_config

    config = get_config()

    if format == "yaml":
        console.print(Syntax(export_config_yaml(config, mask_secrets=not unmask), "yaml", theme="monokai"))
        return
    elif format == "json":
        console.print(Syntax(export_config_json(config, mask_secrets=not unmask), "json", theme="monokai"))
        return
    elif format != "table":
        raise ValidationError(f"Unknown format: {format}. Choose from: table, yaml, json")

    data = _config_to_dict(config, mask_secrets=not unmask)
    sections = {
        "scheduler": data["scheduler"],
        "logging": data["logging"],
        "paths": {
            "config_dir": data["config_dir"],
            "data_dir": data["data_dir"],
            "database_url": data["database_url"],
        },
    }

    if section and section not in sections:
        raise ValidationError(
            f"Unknown section: {section}",
            details={"available": ", ".join(sections)},
        )

    console.print(f"[bold]Configuration: {section}[/bold]" if section else "[bold]Vigil Configuration[/bold]")
    console.print()

    for name in [section] if section else sections:
        table = Table(title=name.capitalize())
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")
        for key, value in sections[name].items():
            table.add_row(key, "" if value is None else str(value))
        console.print(table)
        console.print()


@app.command("init")
@handle_errors
def init_config(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration.",
    ),
    interactive: bool = typer.Option(
        True,
        "--interactive/--no-interactive",
        "-i/-I",
        help="Prompt for scheduler settings.",
    ),
) -> None:
    """Write a configuration file with default values.

    Example:
        vigil config init
        vigil config init --no-interactive --force
    """
    from vigil_cli.config import VigilConfig, _load_from_env, ensure_directories, get_config_path, save_config
    from vigil_cli.scheduler.schedule import validate_schedule

    config_path = get_config_path()

    if config_path.exists() and not force:
        console.print(f"[yellow]Configuration already exists at {config_path}[/yellow]")
        console.print("Use --force to overwrite")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)

    # Defaults, with VIGIL_* environment overrides applied
    config = _load_from_env(VigilConfig(config_dir=config_path.parent), "VIGIL_")

    if interactive:
        console.print("[bold cyan]Scheduler Configuration[/bold cyan]")
        config.scheduler.tick_interval = typer.prompt(
            "  Seconds between due-job checks",
            default=config.scheduler.tick_interval,
            type=int,
        )
        config.scheduler.lock_max_duration = typer.prompt(
            "  Maximum run duration in seconds",
            default=config.scheduler.lock_max_duration,
            type=int,
        )
        default_schedule = typer.prompt(
            "  Default schedule for new jobs",
            default=config.scheduler.default_schedule,
        )
        if not validate_schedule(default_schedule):
            raise ValidationError(f"Invalid schedule: {default_schedule}")
        config.scheduler.default_schedule = default_schedule

        console.print()
        console.print("[bold cyan]Storage[/bold cyan]")
        config.database_url = typer.prompt("  Database URL", default=config.database_url)

        console.print()
        console.print("[bold cyan]Logging Configuration[/bold cyan]")
        config.logging.level = typer.prompt("  Log level", default=config.logging.level).upper()

    ensure_directories(config)
    save_config(config, config_path)
    # Database URLs may carry credentials
    config_path.chmod(0o600)

    console.print()
    console.print(f"[green]✓[/green] Configuration initialized at {config_path}")


@app.command("path")
def config_path() -> None:
    """Show configuration file path.

    Example:
        vigil config path
    """
    from vigil_cli.config import get_config_path

    path = get_config_path()
    console.print(f"[bold]Config directory:[/bold] {path.parent}")
    console.print(f"[bold]Config file:[/bold] {path}")
    console.print(f"[bold]Exists:[/bold] {path.exists()}")


@app.command("validate")
@handle_errors
def validate_config() -> None:
    """Validate current configuration.

    Example:
        vigil config validate
    """
    from vigil_cli.config import get_config, get_config_path, validate_config as do_validate

    config = get_config()
    path = get_config_path()

    console.print("[bold]Validating configuration...[/bold]")
    console.print()
    mark = "[green]✓[/green]" if path.exists() else "[yellow]![/yellow]"
    console.print(f"  {mark} Config file {'found' if path.exists() else 'not found, using defaults'}")

    all_passed = True
    errors = do_validate(config)
    if errors:
        console.print()
        console.print("[bold yellow]Validation Results:[/bold yellow]")
        for error in errors:
            if error.severity == "error":
                status = "[red]✗[/red]"
                all_passed = False
            else:
                status = "[yellow]![/yellow]"
            console.print(f"  {status} [{error.severity.upper()}] {error.field}: {error.message}")

    console.print()
    if all_passed:
        console.print("[green]Configuration is valid[/green]")
    else:
        console.print("[red]Configuration has errors[/red]")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)


@app.command("env")
def show_env_vars() -> None:
    """Show supported environment variables.

    Example:
        vigil config env
    """
    console.print("[bold]Supported Environment Variables[/bold]")
    console.print()

    env_vars = [
        ("VIGIL_DATABASE_URL", "Database connection URL", "sqlite:///..."),
        ("VIGIL_TICK_INTERVAL", "Seconds between due-job checks", "60"),
        ("VIGIL_LOCK_MAX_DURATION", "Execution budget and lock lifetime (seconds)", "300"),
        ("VIGIL_DEFAULT_SCHEDULE", "Schedule for jobs created without one", "0 */6 * * *"),
        ("VIGIL_INSTANCE_ID", "Lock holder prefix for this process", "worker-1"),
        ("VIGIL_SCHEDULER_ENABLED", "Enable/disable the daemon tick", "true/false"),
        ("VIGIL_LOG_LEVEL", "Logging level", "DEBUG/INFO/WARNING/ERROR"),
        ("VIGIL_CONFIG_DIR", "Configuration directory path", "~/.config/vigil"),
        ("VIGIL_DATA_DIR", "Data directory path", "~/.local/share/vigil"),
    ]

    table = Table()
    table.add_column("Variable", style="cyan")
    table.add_column("Description", style="white")
    table.add_column("Example Value", style="green")

    for var, desc, example in env_vars:
        table.add_row(var, desc, example)

    console.print(table)
