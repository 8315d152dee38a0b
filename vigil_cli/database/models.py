"""
SQLAlchemy models for the Vigil database.

Three tables back the job runner:
- scheduled_jobs: one row per JobDefinition
- execution_locks: at most one row per job id, the exclusive run claim
- job_executions: run history for operational visibility
"""

from datetime import datetime, timezone
from typing import Optional, Any, Dict

from sqlalchemy import (
    Integer,
    String,
    Boolean,
    Float,
    DateTime,
    Text,
    JSON,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, declarative_base
from sqlalchemy.types import TypeDecorator

# Create base class for all models
Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """DateTime that always round-trips as an aware UTC datetime.

    SQLite drops tzinfo, so values are stored as naive UTC and tagged
    with UTC again on the way out. Naive inputs are taken to be UTC.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class ScheduledJob(Base):
    """
    Scheduled job model.

    Stores the definition (type, schedule, handler config) and the
    runtime state (status, run timestamps, last result, error counter)
    of one job. State transitions are single-row conditional updates.
    """

    __tablename__ = "scheduled_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    organization_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False, default="")
    job_type: Mapped[str] = mapped_column(String, nullable=False, index=True)

    # Cron ("0 9 * * 1") or interval ("every 5m") specification
    schedule: Mapped[str] = mapped_column(String, nullable=False)

    # Handler-specific settings
    job_config: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON, default=dict, name="config"
    )

    # State
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE", index=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    last_result: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Statistics
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    run_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=_utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert scheduled job to dictionary representation."""
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "job_type": self.job_type,
            "schedule": self.schedule,
            "config": self.job_config,
            "status": self.status,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "last_result": self.last_result,
            "error_count": self.error_count,
            "run_count": self.run_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ExecutionLock(Base):
    """
    Exclusive execution claim on a job.

    The primary key on job_id makes creation a create-if-absent
    operation. A row whose expires_at has passed counts as absent and
    may be taken over by a conditional update.
    """

    __tablename__ = "execution_locks"

    job_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    holder: Mapped[str] = mapped_column(String(100), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert lock to dictionary representation."""
        return {
            "job_id": self.job_id,
            "holder": self.holder,
            "acquired_at": self.acquired_at.isoformat() if self.acquired_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


class JobExecution(Base):
    """
    Job execution history model.

    One row per finished or aborted run. Rows are kept when the job
    itself is deleted.
    """

    __tablename__ = "job_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    job_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    trigger: Mapped[str] = mapped_column(String(16), nullable=False, default="schedule")

    # Execution timing
    started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Results
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    aborted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Handler-specific detail
    # Named 'execution_detail' to avoid clashing with SQLAlchemy's reserved 'metadata'
    execution_detail: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True, name="detail")

    def to_dict(self) -> Dict[str, Any]:
        """Convert job execution to dictionary representation."""
        return {
            "id": self.id,
            "job_id": self.job_id,
            "job_type": self.job_type,
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration": self.duration,
            "success": self.success,
            "aborted": self.aborted,
            "message": self.message,
            "detail": self.execution_detail,
        }


# Additional indexes for common queries
Index("ix_scheduled_jobs_due", ScheduledJob.status, ScheduledJob.next_run_at)
Index("ix_job_executions_completed_at", JobExecution.completed_at.desc())
