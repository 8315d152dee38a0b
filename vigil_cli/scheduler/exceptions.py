"""Exceptions raised by the job runner."""

from typing import Any

from vigil_cli.cli.error_handler import VigilError
from vigil_cli.cli.exit_codes import ExitCode


class JobRunnerError(VigilError):
    """Base exception for job runner errors."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.job_id = job_id

    def __str__(self) -> str:
        if self.job_id:
            return f"{self.message} (job: {self.job_id})"
        return self.message


class UnknownJobTypeError(JobRunnerError):
    """Raised when no handler is registered for a job type."""

    exit_code = ExitCode.CONFIGURATION_ERROR

    def __init__(self, job_type: str, job_id: str | None = None) -> None:
        super().__init__(f"No handler registered for job type: {job_type}", job_id)
        self.job_type = job_type


class InvalidScheduleError(JobRunnerError):
    """Raised when a schedule specification cannot be parsed."""

    exit_code = ExitCode.CONFIGURATION_ERROR

    def __init__(self, schedule: str, reason: str, job_id: str | None = None) -> None:
        super().__init__(f"Invalid schedule '{schedule}': {reason}", job_id)
        self.schedule = schedule
        self.reason = reason


class JobBusyError(JobRunnerError):
    """Raised when a trigger finds the job already RUNNING."""

    exit_code = ExitCode.JOB_CONTENTION


class JobLockedError(JobRunnerError):
    """Raised when the execution lock is held by another runner."""

    exit_code = ExitCode.JOB_CONTENTION


class HandlerError(JobRunnerError):
    """Raised by handlers to report a failure.

    The runner records it into job state; it never reaches the
    trigger caller.
    """

    exit_code = ExitCode.HANDLER_ERROR

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, job_id, details=detail)
        self.detail = detail or {}


class AlreadyRunningError(JobRunnerError):
    """Raised when begin_run finds the job already RUNNING.

    Seeing this means the lock manager let two executions through.
    """


class InvalidTransitionError(JobRunnerError):
    """Raised when a job is not in a state that allows the transition."""


class JobNotFoundError(JobRunnerError):
    """Raised when a job id does not exist."""

    exit_code = ExitCode.NOT_FOUND

    def __init__(self, job_id: str) -> None:
        super().__init__("Job not found", job_id)
