"""Output formatting helpers for Vigil CLI commands."""

import json
from datetime import datetime
from typing import Any, Dict, Optional

from rich.console import Console
from rich.json import JSON as RichJSON

# Default console for output
console = Console()

STATUS_STYLES = {
    "ACTIVE": "green",
    "RUNNING": "cyan",
    "FAILED": "red",
    "PAUSED": "yellow",
    "success": "green",
    "failed": "red",
    "busy": "yellow",
    "locked": "yellow",
    "skipped": "dim",
}


def print_json(data: Any, console_instance: Optional[Console] = None) -> None:
    """Print data as formatted JSON.

    Args:
        data: Data to print; datetimes and other objects are stringified
        console_instance: Optional custom console instance
    """
    prog_console = console_instance or console
    # Long lines must be neither folded nor cropped
    prog_console.print(RichJSON(json.dumps(data, indent=2, default=str)), soft_wrap=True)


def print_result(
    success: bool,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    console_instance: Optional[Console] = None,
) -> None:
    """Print an operation result with a check or cross.

    Example:
        print_result(True, "Job created", {"Next run": job.next_run_at})
    """
    prog_console = console_instance or console

    icon = "[green]✓[/green]" if success else "[red]✗[/red]"
    prog_console.print(f"{icon} {message}")

    if details:
        for key, value in details.items():
            if value is not None:
                prog_console.print(f"  [dim]{key}:[/dim] {format_value(value)}")


def print_key_value(
    data: Dict[str, Any],
    title: Optional[str] = None,
    key_style: str = "cyan",
    console_instance: Optional[Console] = None,
) -> None:
    """Print aligned key-value pairs.

    Args:
        data: Dictionary of key-value pairs
        title: Optional title
        key_style: Style for keys
        console_instance: Optional custom console instance
    """
    prog_console = console_instance or console

    if title:
        prog_console.print(f"[bold]{title}[/bold]")
        prog_console.print()

    max_key_len = max(len(str(k)) for k in data.keys()) if data else 0

    for key, value in data.items():
        padded_key = str(key).ljust(max_key_len)
        prog_console.print(f"  [{key_style}]{padded_key}[/{key_style}] : {format_value(value)}")


def format_value(value: Any) -> str:
    """Render a scalar for human-readable output."""
    if value is None:
        return "[dim]N/A[/dim]"
    if isinstance(value, bool):
        return "[green]Yes[/green]" if value else "[red]No[/red]"
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def format_timestamp(value: Optional[datetime], empty: str = "Never") -> str:
    """Format a UTC timestamp for tables."""
    if value is None:
        return empty
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


def format_status(status: str) -> str:
    """Color a job or outcome status."""
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def format_duration(seconds: Optional[float]) -> str:
    """Format a duration in human-readable form.

    Example:
        format_duration(90)  # Returns "1m 30s"
    """
    if seconds is None:
        return ""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"
