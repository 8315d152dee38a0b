"""CLI command modules for Vigil.

Command modules (config, jobs, run) are imported by ``vigil_cli.main``;
this package only exports the shared error handling pieces.
"""

from vigil_cli.cli.exit_codes import ExitCode
from vigil_cli.cli.error_handler import (
    VigilError,
    ConfigurationError,
    StorageError,
    ValidationError,
    NotFoundError,
    handle_errors,
)

__all__ = [
    "ExitCode",
    "VigilError",
    "ConfigurationError",
    "StorageError",
    "ValidationError",
    "NotFoundError",
    "handle_errors",
]
