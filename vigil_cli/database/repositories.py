"""
Repository classes for database operations.

Repositories wrap a session and never commit on their own; the owning
``Database.session()`` block commits. Every state change is a single-row
statement so concurrent runners only contend per job.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, desc, update
from sqlalchemy.orm import Session

from vigil_cli.database.models import ExecutionLock, JobExecution, ScheduledJob

# The scheduler package imports these repositories, so its types are
# only imported where they are used at runtime
if TYPE_CHECKING:
    from vigil_cli.scheduler.job import JobDefinition, JobStatus


class JobRepository:
    """
    Repository for scheduled job persistence.

    Provides CRUD operations for job definitions plus the conditional
    status transitions the state machine relies on.
    """

    # Map JobDefinition/kwarg names to model attributes
    _FIELD_MAPPING = {
        "config": "job_config",
    }

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def create(self, job: JobDefinition) -> ScheduledJob:
        """
        Persist a new job definition.

        Args:
            job: Job definition to store

        Returns:
            Created ScheduledJob instance
        """
        db_job = ScheduledJob(
            id=job.id,
            organization_id=job.organization_id,
            name=job.name,
            job_type=job.job_type,
            schedule=job.schedule,
            job_config=job.config or {},
            status=job.status.value,
            last_run_at=job.last_run_at,
            next_run_at=job.next_run_at,
            last_result=job.last_result,
            error_count=job.error_count,
            run_count=job.run_count,
        )
        self.session.add(db_job)
        self.session.flush()
        return db_job

    def get_by_id(self, job_id: str) -> Optional[ScheduledJob]:
        """
        Get a job by its ID.

        Args:
            job_id: Job ID

        Returns:
            ScheduledJob if found, None otherwise
        """
        return self.session.get(ScheduledJob, str(job_id))

    def find_by_prefix(self, prefix: str) -> List[ScheduledJob]:
        """
        Find jobs whose ID starts with a prefix.

        Args:
            prefix: Leading characters of the job ID

        Returns:
            Matching jobs
        """
        return self.session.query(ScheduledJob).filter(
            ScheduledJob.id.startswith(prefix, autoescape=True)
        ).order_by(ScheduledJob.id).all()

    def get_all(
        self,
        organization_id: Optional[str] = None,
        statuses: Optional[Iterable[JobStatus]] = None,
    ) -> List[ScheduledJob]:
        """
        Get jobs, optionally filtered by tenant and status.

        Returns:
            List of scheduled jobs ordered by name
        """
        query = self.session.query(ScheduledJob)
        if organization_id is not None:
            query = query.filter(ScheduledJob.organization_id == organization_id)
        if statuses is not None:
            query = query.filter(ScheduledJob.status.in_([s.value for s in statuses]))
        return query.order_by(ScheduledJob.name, ScheduledJob.id).all()

    def get_due(
        self,
        now: datetime,
        statuses: Iterable[JobStatus],
        limit: Optional[int] = None,
    ) -> List[ScheduledJob]:
        """
        Get jobs whose next run is due.

        Args:
            now: Reference time
            statuses: Statuses eligible for automatic triggering
            limit: Maximum number of jobs

        Returns:
            Due jobs, earliest next_run_at first
        """
        query = self.session.query(ScheduledJob).filter(
            ScheduledJob.status.in_([s.value for s in statuses]),
            ScheduledJob.next_run_at.is_not(None),
            ScheduledJob.next_run_at <= now,
        ).order_by(ScheduledJob.next_run_at, ScheduledJob.id)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def update(self, job_id: str, **kwargs: Any) -> Optional[ScheduledJob]:
        """
        Update a job's attributes.

        Args:
            job_id: ID of the job to update
            **kwargs: Attributes to update

        Returns:
            Updated ScheduledJob or None if not found
        """
        db_job = self.get_by_id(job_id)
        if not db_job:
            return None

        for key, value in kwargs.items():
            attr_name = self._FIELD_MAPPING.get(key, key)
            if isinstance(value, Enum):
                value = value.value
            if hasattr(db_job, attr_name):
                setattr(db_job, attr_name, value)

        self.session.flush()
        return db_job

    def transition(
        self,
        job_id: str,
        from_statuses: Iterable[JobStatus],
        to_status: JobStatus,
        **values: Any,
    ) -> bool:
        """
        Atomically move a job to a new status if its current status matches.

        Args:
            job_id: Job to update
            from_statuses: Statuses the row must currently have
            to_status: New status
            **values: Other columns to set in the same statement

        Returns:
            True if the row was updated
        """
        columns = {self._FIELD_MAPPING.get(k, k): v for k, v in values.items()}
        result = self.session.execute(
            update(ScheduledJob)
            .where(
                ScheduledJob.id == str(job_id),
                ScheduledJob.status.in_([s.value for s in from_statuses]),
            )
            .values(status=to_status.value, **columns)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def delete(self, job_id: str) -> bool:
        """
        Delete a job.

        Args:
            job_id: ID of the job to delete

        Returns:
            True if deleted, False if not found
        """
        db_job = self.get_by_id(job_id)
        if not db_job:
            return False

        self.session.delete(db_job)
        self.session.flush()
        return True

    @staticmethod
    def to_definition(db_job: ScheduledJob) -> JobDefinition:
        """
        Convert a database row to a JobDefinition.

        Args:
            db_job: ScheduledJob model instance

        Returns:
            JobDefinition dataclass instance
        """
        from vigil_cli.scheduler.job import JobDefinition, JobStatus

        return JobDefinition(
            id=db_job.id,
            job_type=db_job.job_type,
            schedule=db_job.schedule,
            name=db_job.name,
            organization_id=db_job.organization_id,
            config=dict(db_job.job_config or {}),
            status=JobStatus(db_job.status),
            last_run_at=db_job.last_run_at,
            next_run_at=db_job.next_run_at,
            last_result=db_job.last_result,
            error_count=db_job.error_count,
            run_count=db_job.run_count,
            created_at=db_job.created_at,
            updated_at=db_job.updated_at,
        )


class LockRepository:
    """
    Repository for execution lock rows.

    Each method is one statement against one row. Callers run insert()
    in its own session because a primary key conflict aborts the
    transaction.
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def insert(
        self,
        job_id: str,
        holder: str,
        acquired_at: datetime,
        expires_at: datetime,
    ) -> ExecutionLock:
        """
        Create a lock row; raises IntegrityError if one already exists.
        """
        lock = ExecutionLock(
            job_id=str(job_id),
            holder=holder,
            acquired_at=acquired_at,
            expires_at=expires_at,
        )
        self.session.add(lock)
        self.session.flush()
        return lock

    def take_over_expired(
        self,
        job_id: str,
        holder: str,
        now: datetime,
        expires_at: datetime,
    ) -> bool:
        """
        Claim an existing lock row only if it has expired.

        Returns:
            True if the row was claimed
        """
        result = self.session.execute(
            update(ExecutionLock)
            .where(
                ExecutionLock.job_id == str(job_id),
                ExecutionLock.expires_at <= now,
            )
            .values(holder=holder, acquired_at=now, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def delete_held(self, job_id: str, holder: str) -> bool:
        """
        Delete a lock row only if it belongs to ``holder``.

        Returns:
            True if a row was deleted
        """
        result = self.session.execute(
            delete(ExecutionLock)
            .where(
                ExecutionLock.job_id == str(job_id),
                ExecutionLock.holder == holder,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def delete(self, job_id: str) -> bool:
        """Delete a lock row regardless of holder."""
        result = self.session.execute(
            delete(ExecutionLock)
            .where(ExecutionLock.job_id == str(job_id))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def get(self, job_id: str) -> Optional[ExecutionLock]:
        """Get the lock row for a job, expired or not."""
        return self.session.get(ExecutionLock, str(job_id))

    def get_active(self, now: datetime) -> List[ExecutionLock]:
        """List locks that have not expired, oldest first."""
        return self.session.query(ExecutionLock).filter(
            ExecutionLock.expires_at > now
        ).order_by(ExecutionLock.acquired_at).all()

    def delete_expired(self, now: datetime) -> int:
        """
        Delete all expired lock rows.

        Returns:
            Number of rows deleted
        """
        result = self.session.execute(
            delete(ExecutionLock)
            .where(ExecutionLock.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class JobExecutionRepository:
    """
    Repository for job execution history.

    Provides methods for recording and querying job executions.
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def create(
        self,
        job_id: str,
        job_type: str,
        completed_at: datetime,
        success: bool,
        trigger: str = "schedule",
        started_at: Optional[datetime] = None,
        duration: Optional[float] = None,
        message: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
        aborted: bool = False,
    ) -> JobExecution:
        """
        Record a job execution.

        Args:
            job_id: ID of the job
            job_type: Type of the job
            completed_at: When the run finished or was aborted
            success: Whether execution succeeded
            trigger: "schedule" or "manual"
            started_at: When the run started
            duration: Seconds spent in the handler
            message: Result message
            detail: Handler-specific result detail
            aborted: Whether the run was aborted rather than completed

        Returns:
            Created JobExecution instance
        """
        execution = JobExecution(
            job_id=str(job_id),
            job_type=job_type,
            trigger=trigger,
            started_at=started_at,
            completed_at=completed_at,
            duration=duration,
            success=success,
            aborted=aborted,
            message=message,
            execution_detail=detail,
        )
        self.session.add(execution)
        self.session.flush()
        return execution

    def get_history(
        self,
        job_id: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[JobExecution]:
        """
        Get execution history.

        Args:
            job_id: Filter by job ID (optional)
            limit: Maximum number of results
            offset: Number of results to skip

        Returns:
            List of job executions, most recent first
        """
        query = self.session.query(JobExecution).order_by(
            desc(JobExecution.completed_at), desc(JobExecution.id)
        )

        if job_id:
            query = query.filter(JobExecution.job_id == str(job_id))

        return query.offset(offset).limit(limit).all()

    def get_success_count(self, job_id: Optional[str] = None) -> int:
        """Get count of successful executions."""
        query = self.session.query(JobExecution).filter(
            JobExecution.success.is_(True)
        )
        if job_id:
            query = query.filter(JobExecution.job_id == str(job_id))
        return query.count()

    def get_failure_count(self, job_id: Optional[str] = None) -> int:
        """Get count of failed executions."""
        query = self.session.query(JobExecution).filter(
            JobExecution.success.is_(False)
        )
        if job_id:
            query = query.filter(JobExecution.job_id == str(job_id))
        return query.count()

    def delete_old_executions(self, before: datetime) -> int:
        """
        Delete executions older than a given date.

        Args:
            before: Delete executions completed before this time

        Returns:
            Number of executions deleted
        """
        result = self.session.execute(
            delete(JobExecution)
            .where(JobExecution.completed_at < before)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
