"""Job definition management.

JobCatalog is the configuration-side API: creating, listing, pausing
and rescheduling jobs. It never runs handlers; that is JobRunner's job.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from vigil_cli.cli.error_handler import NotFoundError, ValidationError
from vigil_cli.database.connection import Database
from vigil_cli.database.repositories import JobExecutionRepository, JobRepository
from vigil_cli.scheduler.exceptions import JobBusyError, JobNotFoundError
from vigil_cli.scheduler.job import JobDefinition, JobStatus, utcnow
from vigil_cli.scheduler.registry import HandlerRegistry
from vigil_cli.scheduler.schedule import next_run_time, parse_schedule
from vigil_cli.scheduler.state_machine import JobStateMachine

logger = logging.getLogger(__name__)


class JobCatalog:
    """CRUD and lifecycle operations on stored jobs.

    Args:
        database: Database holding the job tables
        registry: When given, create_job() rejects unregistered job types
        clock: Source of the current time
    """

    def __init__(
        self,
        database: Database,
        registry: Optional[HandlerRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.database = database
        self.registry = registry
        self._clock = clock
        self.state_machine = JobStateMachine(database, clock=clock)

    def create_job(
        self,
        job_type: str,
        schedule: str,
        name: str = "",
        config: Optional[Dict[str, Any]] = None,
        organization_id: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> JobDefinition:
        """Create and store a new job.

        Args:
            job_type: Handler registry key
            schedule: Cron or interval specification
            name: Human-readable name (defaults to the job type)
            config: Handler-specific settings
            organization_id: Owning tenant
            job_id: Explicit ID (a UUID is generated otherwise)

        Returns:
            The stored job with its first next_run_at

        Raises:
            InvalidScheduleError: If the schedule does not parse
            UnknownJobTypeError: If a registry is attached and lacks the type
        """
        parse_schedule(schedule)
        if self.registry is not None:
            self.registry.resolve(job_type)

        now = self._clock()
        job = JobDefinition(
            job_type=job_type,
            schedule=schedule,
            name=name or job_type,
            config=dict(config or {}),
            organization_id=organization_id,
            next_run_at=next_run_time(schedule, now),
        )
        if job_id:
            job.id = job_id

        with self.database.session() as session:
            db_job = JobRepository(session).create(job)
            stored = JobRepository.to_definition(db_job)

        logger.info(f"Created job {stored.name} ({stored.id}) with schedule '{schedule}'")
        return stored

    def get(self, job_id: str) -> JobDefinition:
        """Get a job by ID.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        with self.database.session() as session:
            db_job = JobRepository(session).get_by_id(job_id)
            if db_job is None:
                raise JobNotFoundError(job_id)
            return JobRepository.to_definition(db_job)

    def find_by_prefix(self, prefix: str) -> List[JobDefinition]:
        """Jobs whose ID starts with ``prefix``."""
        with self.database.session() as session:
            return [JobRepository.to_definition(j) for j in JobRepository(session).find_by_prefix(prefix)]

    def resolve_id(self, id_or_prefix: str) -> JobDefinition:
        """Find exactly one job by full ID or unique ID prefix.

        Raises:
            NotFoundError: If nothing matches
            ValidationError: If the prefix matches several jobs
        """
        matches = self.find_by_prefix(id_or_prefix)
        exact = [job for job in matches if job.id == id_or_prefix]
        if exact:
            return exact[0]
        if not matches:
            raise NotFoundError(f"Job not found: {id_or_prefix}")
        if len(matches) > 1:
            raise ValidationError(
                f"Ambiguous job ID prefix '{id_or_prefix}' matches {len(matches)} jobs",
                details={"matches": ", ".join(job.id for job in matches)},
            )
        return matches[0]

    def list_jobs(
        self,
        organization_id: Optional[str] = None,
        statuses: Optional[Iterable[JobStatus]] = None,
    ) -> List[JobDefinition]:
        """List jobs ordered by name."""
        with self.database.session() as session:
            rows = JobRepository(session).get_all(organization_id=organization_id, statuses=statuses)
            return [JobRepository.to_definition(row) for row in rows]

    def update_schedule(self, job_id: str, schedule: str) -> JobDefinition:
        """Change a job's schedule and recompute next_run_at from now.

        Raises:
            InvalidScheduleError: If the schedule does not parse
            JobNotFoundError: If the job does not exist
        """
        next_run_at = next_run_time(schedule, self._clock())
        with self.database.session() as session:
            db_job = JobRepository(session).update(job_id, schedule=schedule, next_run_at=next_run_at)
            if db_job is None:
                raise JobNotFoundError(job_id)
            job = JobRepository.to_definition(db_job)

        logger.info(f"Job {job_id} schedule set to '{schedule}'")
        return job

    def update_config(self, job_id: str, config: Dict[str, Any]) -> JobDefinition:
        """Replace a job's handler settings.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        with self.database.session() as session:
            db_job = JobRepository(session).update(job_id, config=dict(config))
            if db_job is None:
                raise JobNotFoundError(job_id)
            return JobRepository.to_definition(db_job)

    def delete(self, job_id: str) -> None:
        """Delete a job. Its execution history is kept.

        Raises:
            JobBusyError: If the job is RUNNING
            JobNotFoundError: If the job does not exist
        """
        with self.database.session() as session:
            jobs = JobRepository(session)
            db_job = jobs.get_by_id(job_id)
            if db_job is None:
                raise JobNotFoundError(job_id)
            if db_job.status == JobStatus.RUNNING.value:
                raise JobBusyError("Cannot delete a running job", job_id)
            jobs.delete(job_id)

        logger.info(f"Deleted job {job_id}")

    def pause(self, job_id: str) -> JobDefinition:
        """Exclude a job from automatic scheduling.

        Pausing an already paused job is a no-op.

        Raises:
            JobBusyError: If the job is RUNNING
            JobNotFoundError: If the job does not exist
        """
        job = self.get(job_id)
        if job.status is JobStatus.PAUSED:
            return job
        if job.is_running:
            raise JobBusyError("Cannot pause a running job", job_id)
        return self.state_machine.pause(job)

    def resume(self, job_id: str) -> JobDefinition:
        """Return a paused job to automatic scheduling.

        Resuming a job that is not paused is a no-op.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = self.get(job_id)
        if job.status is not JobStatus.PAUSED:
            return job
        return self.state_machine.resume(job)

    def history(
        self,
        job_id: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Execution history, most recent first."""
        with self.database.session() as session:
            rows = JobExecutionRepository(session).get_history(job_id=job_id, limit=limit, offset=offset)
            return [row.to_dict() for row in rows]

    def stats(self, job_id: Optional[str] = None) -> Dict[str, int]:
        """Success and failure counts from history."""
        with self.database.session() as session:
            executions = JobExecutionRepository(session)
            return {
                "success": executions.get_success_count(job_id),
                "failure": executions.get_failure_count(job_id),
            }

    def cleanup_old_history(self, days: int = 30) -> int:
        """Delete execution history older than ``days``.

        Returns:
            Number of executions deleted
        """
        cutoff = self._clock() - timedelta(days=days)
        with self.database.session() as session:
            deleted = JobExecutionRepository(session).delete_old_executions(cutoff)
        logger.info(f"Cleaned up {deleted} old execution records")
        return deleted
