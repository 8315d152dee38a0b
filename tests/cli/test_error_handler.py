"""Tests for error handler module."""

from unittest.mock import patch

import pytest
import typer
from sqlalchemy.exc import OperationalError

from vigil_cli.cli.error_handler import (
    ConfigurationError,
    NotFoundError,
    StorageError,
    ValidationError,
    VigilError,
    handle_errors,
)
from vigil_cli.cli.exit_codes import ExitCode
from vigil_cli.scheduler.exceptions import (
    HandlerError,
    InvalidScheduleError,
    JobBusyError,
    JobLockedError,
    JobNotFoundError,
    UnknownJobTypeError,
)


class TestVigilError:
    """Test base VigilError class."""

    def test_basic_error(self) -> None:
        """Test basic error creation."""
        error = VigilError("Test error")
        assert error.message == "Test error"
        assert error.exit_code == ExitCode.GENERAL_ERROR
        assert error.details == {}

    def test_error_with_exit_code(self) -> None:
        """Test error with custom exit code."""
        error = VigilError("Test error", exit_code=ExitCode.CONFIGURATION_ERROR)
        assert error.exit_code == ExitCode.CONFIGURATION_ERROR

    def test_error_str_with_details(self) -> None:
        """Test string representation with details."""
        error = VigilError("Test error", details={"key": "value"})
        assert str(error) == "Test error (key=value)"


class TestErrorExitCodes:
    """Test default exit codes of the error taxonomy."""

    @pytest.mark.parametrize(
        "error,code",
        [
            (ConfigurationError("bad"), ExitCode.CONFIGURATION_ERROR),
            (StorageError("disk"), ExitCode.STORAGE_ERROR),
            (ValidationError("arg"), ExitCode.INVALID_ARGUMENT),
            (NotFoundError("gone"), ExitCode.NOT_FOUND),
            (UnknownJobTypeError("mystery"), ExitCode.CONFIGURATION_ERROR),
            (InvalidScheduleError("x", "bad"), ExitCode.CONFIGURATION_ERROR),
            (JobBusyError("busy"), ExitCode.JOB_CONTENTION),
            (JobLockedError("locked"), ExitCode.JOB_CONTENTION),
            (HandlerError("failed"), ExitCode.HANDLER_ERROR),
            (JobNotFoundError("job-1"), ExitCode.NOT_FOUND),
        ],
    )
    def test_default_exit_code(self, error: VigilError, code: int) -> None:
        assert error.exit_code == code

    def test_job_errors_name_the_job(self) -> None:
        assert str(JobNotFoundError("job-1")) == "Job not found (job: job-1)"
        assert str(JobBusyError("busy")) == "busy"


class TestHandleErrors:
    """Test handle_errors decorator."""

    def test_successful_execution(self) -> None:
        """Test decorator with successful execution."""

        @handle_errors
        def test_func():
            return "success"

        assert test_func() == "success"

    def test_vigil_error_handling(self) -> None:
        """Test decorator maps VigilError to its exit code."""

        @handle_errors
        def test_func():
            raise JobBusyError("Job is already running", "job-1")

        with pytest.raises(typer.Exit) as exc_info:
            with patch("vigil_cli.cli.error_handler.console"):
                test_func()

        assert exc_info.value.exit_code == ExitCode.JOB_CONTENTION

    def test_database_error_handling(self) -> None:
        """Test decorator reports SQLAlchemy errors as storage errors."""

        @handle_errors
        def test_func():
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        with pytest.raises(typer.Exit) as exc_info:
            with patch("vigil_cli.cli.error_handler.console"):
                test_func()

        assert exc_info.value.exit_code == ExitCode.STORAGE_ERROR

    def test_keyboard_interrupt_handling(self) -> None:
        """Test decorator handles KeyboardInterrupt."""

        @handle_errors
        def test_func():
            raise KeyboardInterrupt()

        with pytest.raises(typer.Exit) as exc_info:
            with patch("vigil_cli.cli.error_handler.console"):
                test_func()

        assert exc_info.value.exit_code == ExitCode.CANCELLED

    def test_generic_exception_handling(self) -> None:
        """Test decorator handles generic exceptions."""

        @handle_errors
        def test_func():
            raise ValueError("Test error")

        with pytest.raises(typer.Exit) as exc_info:
            with patch("vigil_cli.cli.error_handler.console") as mock_console:
                with patch("vigil_cli.cli.error_handler._debug_enabled", return_value=True):
                    test_func()

        assert exc_info.value.exit_code == ExitCode.GENERAL_ERROR
        mock_console.print_exception.assert_called_once()

    def test_typer_exit_re_raised(self) -> None:
        """Test that typer.Exit is re-raised as-is."""

        @handle_errors
        def test_func():
            raise typer.Exit(code=42)

        with pytest.raises(typer.Exit) as exc_info:
            test_func()

        assert exc_info.value.exit_code == 42

    def test_typer_abort_re_raised(self) -> None:
        @handle_errors
        def test_func():
            raise typer.Abort()

        with pytest.raises(typer.Abort):
            test_func()
