"""Global exception handling for Vigil CLI.

This module provides centralized error handling through custom exception
classes and a decorator that ensures consistent error reporting and
exit codes across all CLI commands.
"""

from functools import wraps
from typing import Callable, TypeVar, Any
import logging

import typer
from rich.console import Console
from sqlalchemy.exc import SQLAlchemyError

from vigil_cli.cli.exit_codes import ExitCode

# Console for error output (stderr)
console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class VigilError(Exception):
    """Base exception for Vigil.

    All custom exceptions in Vigil, including the job runner's own
    error taxonomy, inherit from this class so the CLI can map them
    to exit codes.

    Attributes:
        message: Error message
        exit_code: Exit code to use when exiting
        details: Optional dictionary of additional error details
    """

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            exit_code: Optional override for exit code
            details: Optional dictionary of additional error details
        """
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(VigilError):
    """Configuration-related error.

    Examples:
        - Invalid configuration file format
        - Configuration validation failure
    """

    exit_code = ExitCode.CONFIGURATION_ERROR


class StorageError(VigilError):
    """Database or storage error.

    Examples:
        - Database unavailable
        - Schema missing
    """

    exit_code = ExitCode.STORAGE_ERROR


class ValidationError(VigilError):
    """Validation error for user input.

    Examples:
        - Malformed JSON job config
        - Ambiguous job ID prefix
    """

    exit_code = ExitCode.INVALID_ARGUMENT


class NotFoundError(VigilError):
    """Resource not found error.

    Examples:
        - Job not found
        - Lock not found
    """

    exit_code = ExitCode.NOT_FOUND


def _report(error: VigilError) -> None:
    logger.error(
        f"{type(error).__name__}: {error.message}",
        extra={"exit_code": error.exit_code, "details": error.details},
    )
    console.print(f"[red]Error:[/red] {error.message}")
    if error.details:
        for key, value in error.details.items():
            console.print(f"  [dim]{key}:[/dim] {value}")


def _debug_enabled() -> bool:
    from vigil_cli.main import is_debug

    return is_debug()


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling across CLI commands.

    This decorator catches all exceptions and converts them to appropriate
    error messages and exit codes. It handles:

    - VigilError subclasses: Display error message with appropriate exit code
    - SQLAlchemyError: Reported as a storage error
    - KeyboardInterrupt: Show cancellation message with exit code 130
    - Other exceptions: Show generic error with option for verbose details

    Args:
        func: The function to wrap

    Returns:
        Wrapped function with error handling

    Example:
        @app.command()
        @handle_errors
        def my_command():
            raise ConfigurationError("Invalid config")
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except VigilError as e:
            _report(e)
            raise typer.Exit(code=e.exit_code)

        except SQLAlchemyError as e:
            logger.exception("Database error")
            console.print(f"[red]Storage error:[/red] {e}")
            raise typer.Exit(code=ExitCode.STORAGE_ERROR)

        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user.[/yellow]")
            logger.info("Operation cancelled by user (KeyboardInterrupt)")
            raise typer.Exit(code=ExitCode.CANCELLED)

        except (typer.Exit, typer.Abort):
            raise

        except Exception as e:
            logger.exception("Unexpected error occurred")
            console.print(f"[red]Unexpected error:[/red] {e}")
            if _debug_enabled():
                console.print_exception()
            else:
                console.print("[dim]Run with --debug for the full traceback[/dim]")
            raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    return wrapper  # type: ignore[return-value]
