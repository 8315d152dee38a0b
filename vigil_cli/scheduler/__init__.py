"""Scheduled job runner.

Runs named units of background work exactly once per due occurrence,
even when a periodic tick and a manual "run now" race each other.
"""

from vigil_cli.scheduler.catalog import JobCatalog
from vigil_cli.scheduler.exceptions import (
    AlreadyRunningError,
    HandlerError,
    InvalidScheduleError,
    InvalidTransitionError,
    JobBusyError,
    JobLockedError,
    JobNotFoundError,
    JobRunnerError,
    UnknownJobTypeError,
)
from vigil_cli.scheduler.handlers import (
    HistoryCleanupHandler,
    LockCleanupHandler,
    create_default_registry,
)
from vigil_cli.scheduler.job import (
    ExecutionOutcome,
    ExecutionResult,
    JobDefinition,
    JobStatus,
    OutcomeStatus,
    TriggerSource,
)
from vigil_cli.scheduler.lock_manager import LockInfo, LockManager
from vigil_cli.scheduler.registry import FunctionHandler, HandlerRegistry, JobHandler
from vigil_cli.scheduler.runner import JobRunner
from vigil_cli.scheduler.schedule import next_run_time, parse_schedule, validate_schedule
from vigil_cli.scheduler.state_machine import JobStateMachine

__all__ = [
    # Data types
    "ExecutionOutcome",
    "ExecutionResult",
    "JobDefinition",
    "JobStatus",
    "OutcomeStatus",
    "TriggerSource",
    # Components
    "FunctionHandler",
    "HandlerRegistry",
    "JobCatalog",
    "JobHandler",
    "JobRunner",
    "JobStateMachine",
    "LockInfo",
    "LockManager",
    "create_default_registry",
    "next_run_time",
    "parse_schedule",
    "validate_schedule",
    # Built-in handlers
    "HistoryCleanupHandler",
    "LockCleanupHandler",
    # Errors
    "AlreadyRunningError",
    "HandlerError",
    "InvalidScheduleError",
    "InvalidTransitionError",
    "JobBusyError",
    "JobLockedError",
    "JobNotFoundError",
    "JobRunnerError",
    "UnknownJobTypeError",
]
