"""Job status transitions.

Every transition is one conditional UPDATE on the job row, guarded by
the statuses it may start from:

    ACTIVE | FAILED | PAUSED --begin_run--> RUNNING
    RUNNING --complete_run--> ACTIVE (success) | FAILED (failure)
    RUNNING --abort_run-->    FAILED
    ACTIVE | FAILED --pause--> PAUSED
    PAUSED --resume-->         ACTIVE

The in-memory JobDefinition passed in is refreshed from the row after
each transition so callers always see what was stored.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from vigil_cli.database.connection import Database
from vigil_cli.database.models import ScheduledJob
from vigil_cli.database.repositories import JobExecutionRepository, JobRepository
from vigil_cli.scheduler.exceptions import (
    AlreadyRunningError,
    InvalidScheduleError,
    InvalidTransitionError,
    JobNotFoundError,
)
from vigil_cli.scheduler.job import (
    STARTABLE_STATUSES,
    ExecutionResult,
    JobDefinition,
    JobStatus,
    TriggerSource,
    utcnow,
)
from vigil_cli.scheduler.schedule import next_run_time

logger = logging.getLogger(__name__)

ABORT_PREFIX = "Execution aborted"


def _stored_schedule(jobs: JobRepository, job: JobDefinition) -> str:
    # set-schedule may have run while the job was RUNNING
    db_job = jobs.get_by_id(job.id)
    return db_job.schedule if db_job is not None else job.schedule


def _refresh(job: JobDefinition, db_job: ScheduledJob) -> JobDefinition:
    stored = JobRepository.to_definition(db_job)
    for name in (
        "schedule",
        "status",
        "last_run_at",
        "next_run_at",
        "last_result",
        "error_count",
        "run_count",
        "updated_at",
    ):
        setattr(job, name, getattr(stored, name))
    return job


class JobStateMachine:
    """Persists job lifecycle transitions.

    Args:
        database: Database holding the job table
        clock: Source of the current time
    """

    def __init__(self, database: Database, clock: Callable[[], datetime] = utcnow) -> None:
        self.database = database
        self._clock = clock

    def _fail_transition(
        self,
        jobs: JobRepository,
        job: JobDefinition,
        action: str,
        allowed: Iterable[JobStatus],
    ) -> None:
        db_job = jobs.get_by_id(job.id)
        if db_job is None:
            raise JobNotFoundError(job.id)
        current = JobStatus(db_job.status)
        allowed_names = ", ".join(s.value for s in allowed)
        raise InvalidTransitionError(
            f"Cannot {action} a {current.value} job (expected {allowed_names})",
            job.id,
            details={"status": current.value},
        )

    def begin_run(self, job: JobDefinition) -> datetime:
        """Mark a job RUNNING.

        Returns:
            The start time

        Raises:
            AlreadyRunningError: If the job is already RUNNING
            InvalidTransitionError: If the job cannot start from its status
            JobNotFoundError: If the job no longer exists
        """
        started_at = self._clock()
        with self.database.session() as session:
            jobs = JobRepository(session)
            if not jobs.transition(job.id, STARTABLE_STATUSES, JobStatus.RUNNING):
                db_job = jobs.get_by_id(job.id)
                if db_job is not None and db_job.status == JobStatus.RUNNING.value:
                    # Only reachable if two runners both hold the lock
                    logger.critical(
                        f"Job {job.id} is already RUNNING while starting a new run; "
                        "execution lock was bypassed"
                    )
                    raise AlreadyRunningError("Job is already running", job.id)
                self._fail_transition(jobs, job, "start", STARTABLE_STATUSES)
            _refresh(job, jobs.get_by_id(job.id))

        logger.debug(f"Job {job.id} is RUNNING")
        return started_at

    def complete_run(
        self,
        job: JobDefinition,
        result: ExecutionResult,
        trigger: TriggerSource = TriggerSource.SCHEDULE,
        started_at: Optional[datetime] = None,
    ) -> JobDefinition:
        """Record a finished run and schedule the next one.

        On success the error counter resets to 0; on failure it goes up
        by one. ``next_run_at`` is recomputed from now either way, using
        the schedule as stored at completion time.

        Raises:
            InvalidScheduleError: If the job's schedule cannot be evaluated;
                nothing is written in that case
            InvalidTransitionError: If the job is not RUNNING
        """
        now = self._clock()
        new_status = JobStatus.ACTIVE if result.success else JobStatus.FAILED
        error_count = ScheduledJob.error_count + 1 if not result.success else 0

        with self.database.session() as session:
            jobs = JobRepository(session)
            next_run_at = next_run_time(_stored_schedule(jobs, job), now)
            if result.executed_at is None:
                result.executed_at = now
            moved = jobs.transition(
                job.id,
                (JobStatus.RUNNING,),
                new_status,
                last_run_at=now,
                next_run_at=next_run_at,
                last_result=result.to_dict(),
                error_count=error_count,
                run_count=ScheduledJob.run_count + 1,
                updated_at=now,
            )
            if not moved:
                self._fail_transition(jobs, job, "complete", (JobStatus.RUNNING,))

            JobExecutionRepository(session).create(
                job_id=job.id,
                job_type=job.job_type,
                completed_at=now,
                success=result.success,
                trigger=TriggerSource(trigger).value,
                started_at=started_at,
                duration=result.duration,
                message=result.message,
                detail=result.detail or None,
            )
            _refresh(job, jobs.get_by_id(job.id))

        if result.success:
            logger.info(f"Job {job.id} succeeded, next run at {next_run_at.isoformat()}")
        else:
            logger.error(
                f"Job {job.id} failed ({job.error_count} consecutive): {result.message}"
            )
        return job

    def abort_run(
        self,
        job: JobDefinition,
        reason: str,
        trigger: TriggerSource = TriggerSource.SCHEDULE,
        started_at: Optional[datetime] = None,
    ) -> JobDefinition:
        """Move a RUNNING job to FAILED without a handler result.

        A synthetic failed result carrying ``reason`` is stored. If the
        schedule cannot be evaluated ``next_run_at`` is cleared so the
        job is not picked up again until its schedule is fixed.

        Raises:
            InvalidTransitionError: If the job is not RUNNING
        """
        now = self._clock()
        result = ExecutionResult(
            success=False,
            message=f"{ABORT_PREFIX}: {reason}",
            detail={"aborted": True},
            executed_at=now,
        )

        with self.database.session() as session:
            jobs = JobRepository(session)
            try:
                next_run_at: Optional[datetime] = next_run_time(_stored_schedule(jobs, job), now)
            except InvalidScheduleError as e:
                logger.error(f"Job {job.id} has an invalid schedule, not rescheduling: {e}")
                next_run_at = None

            moved = jobs.transition(
                job.id,
                (JobStatus.RUNNING,),
                JobStatus.FAILED,
                last_result=result.to_dict(),
                next_run_at=next_run_at,
                error_count=ScheduledJob.error_count + 1,
                updated_at=now,
            )
            if not moved:
                self._fail_transition(jobs, job, "abort", (JobStatus.RUNNING,))

            JobExecutionRepository(session).create(
                job_id=job.id,
                job_type=job.job_type,
                completed_at=now,
                success=False,
                trigger=TriggerSource(trigger).value,
                started_at=started_at,
                message=result.message,
                aborted=True,
            )
            _refresh(job, jobs.get_by_id(job.id))

        logger.warning(f"Job {job.id} aborted: {reason}")
        return job

    def pause(self, job: JobDefinition) -> JobDefinition:
        """Exclude an idle job from automatic scheduling.

        ``next_run_at`` is left as it was.

        Raises:
            InvalidTransitionError: If the job is RUNNING or already PAUSED
        """
        allowed = (JobStatus.ACTIVE, JobStatus.FAILED)
        with self.database.session() as session:
            jobs = JobRepository(session)
            if not jobs.transition(job.id, allowed, JobStatus.PAUSED, updated_at=self._clock()):
                self._fail_transition(jobs, job, "pause", allowed)
            _refresh(job, jobs.get_by_id(job.id))

        logger.info(f"Paused job {job.id}")
        return job

    def resume(self, job: JobDefinition) -> JobDefinition:
        """Return a PAUSED job to ACTIVE with ``next_run_at`` recomputed from now.

        Raises:
            InvalidScheduleError: If the job's schedule cannot be evaluated
            InvalidTransitionError: If the job is not PAUSED
        """
        now = self._clock()
        next_run_at = next_run_time(job.schedule, now)
        with self.database.session() as session:
            jobs = JobRepository(session)
            moved = jobs.transition(
                job.id,
                (JobStatus.PAUSED,),
                JobStatus.ACTIVE,
                next_run_at=next_run_at,
                updated_at=now,
            )
            if not moved:
                self._fail_transition(jobs, job, "resume", (JobStatus.PAUSED,))
            _refresh(job, jobs.get_by_id(job.id))

        logger.info(f"Resumed job {job.id}, next run at {next_run_at.isoformat()}")
        return job
