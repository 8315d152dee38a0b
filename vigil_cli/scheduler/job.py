"""Job runner data types.

JobDefinition is the in-memory view of one schedulable unit of work.
ExecutionResult is what a handler hands back, and ExecutionOutcome is
what a trigger caller receives.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class JobStatus(str, Enum):
    """Lifecycle status of a job."""

    ACTIVE = "ACTIVE"  # Idle, healthy
    RUNNING = "RUNNING"  # Execution in progress
    FAILED = "FAILED"  # Idle, last attempt failed
    PAUSED = "PAUSED"  # Skipped by the tick, manual trigger still allowed

    @property
    def is_idle(self) -> bool:
        return self is not JobStatus.RUNNING


# Statuses the periodic tick picks up
SCHEDULABLE_STATUSES = (JobStatus.ACTIVE, JobStatus.FAILED)

# Statuses begin_run accepts
STARTABLE_STATUSES = (JobStatus.ACTIVE, JobStatus.FAILED, JobStatus.PAUSED)


class TriggerSource(str, Enum):
    """Where a trigger attempt came from."""

    SCHEDULE = "schedule"
    MANUAL = "manual"


@dataclass
class ExecutionResult:
    """Result of one handler invocation.

    Attributes:
        success: Whether the handler succeeded
        message: Short human-readable summary
        detail: Handler-specific structured payload
        duration: Wall-clock seconds spent in the handler
        executed_at: When the handler finished
    """

    success: bool
    message: str = ""
    detail: Dict[str, Any] = field(default_factory=dict)
    duration: Optional[float] = None
    executed_at: Optional[datetime] = None

    @classmethod
    def ok(cls, message: str = "", **detail: Any) -> "ExecutionResult":
        return cls(success=True, message=message, detail=detail)

    @classmethod
    def failure(cls, message: str, **detail: Any) -> "ExecutionResult":
        return cls(success=False, message=message, detail=detail)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON payload stored in last_result."""
        return {
            "success": self.success,
            "message": self.message,
            "detail": self.detail,
            "duration": self.duration,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionResult":
        executed_at = data.get("executed_at")
        return cls(
            success=bool(data.get("success", False)),
            message=data.get("message", ""),
            detail=data.get("detail") or {},
            duration=data.get("duration"),
            executed_at=datetime.fromisoformat(executed_at) if executed_at else None,
        )


@dataclass
class JobDefinition:
    """Definition and runtime state of a scheduled job.

    Attributes:
        id: Unique job identifier
        job_type: Handler registry key, immutable after creation
        schedule: Cron or interval schedule specification
        name: Human-readable job name
        organization_id: Owning tenant
        config: Handler-specific settings
        status: Current lifecycle status
        last_run_at: When the job last finished a run
        next_run_at: When the job is next due
        last_result: Payload of the most recent ExecutionResult
        error_count: Consecutive failures
        run_count: Total finished runs
        created_at: When the job was created
        updated_at: When the job was last modified
    """

    job_type: str
    schedule: str
    id: str = field(default_factory=lambda: str(uuid4()))
    name: str = ""
    organization_id: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.ACTIVE
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    last_result: Optional[Dict[str, Any]] = None
    error_count: int = 0
    run_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.status is JobStatus.RUNNING

    @property
    def last_execution(self) -> Optional[ExecutionResult]:
        """The last result as an ExecutionResult, if any."""
        if self.last_result is None:
            return None
        return ExecutionResult.from_dict(self.last_result)

    def is_due(self, now: datetime) -> bool:
        """Whether the periodic tick should pick this job up at ``now``."""
        if self.status not in SCHEDULABLE_STATUSES or self.next_run_at is None:
            return False
        return ensure_utc(self.next_run_at) <= ensure_utc(now)


class OutcomeStatus(str, Enum):
    """Summary status returned to trigger callers."""

    SUCCESS = "success"
    FAILED = "failed"
    BUSY = "busy"
    LOCKED = "locked"
    SKIPPED = "skipped"  # Tick only: another runner already handled the occurrence


@dataclass
class ExecutionOutcome:
    """What a trigger caller gets back.

    Attributes:
        job_id: The job that was triggered
        status: Summary of the attempt
        result: The recorded ExecutionResult, when the job actually ran
        message: Human-readable explanation
    """

    job_id: str
    status: OutcomeStatus
    result: Optional[ExecutionResult] = None
    message: str = ""

    @property
    def ran(self) -> bool:
        """Whether the handler was actually invoked."""
        return self.status in (OutcomeStatus.SUCCESS, OutcomeStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "message": self.message,
            "result": self.result.to_dict() if self.result else None,
        }
