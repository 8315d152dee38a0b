"""Job runner orchestrator.

One attempt at running a job goes:

    busy check -> resolve handler -> acquire lock -> begin_run
        -> handler (bounded by max_duration) -> confirm lock -> complete_run
        -> release

A run whose lock expired or was taken over before it finished is aborted
instead of completed.

Anything that interrupts the attempt between begin_run and complete_run,
including task cancellation at shutdown, aborts the run so the job never
stays RUNNING. The lock is always released.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from datetime import datetime
from typing import Callable, List, Optional

from vigil_cli.database.connection import Database
from vigil_cli.database.repositories import JobRepository
from vigil_cli.scheduler.exceptions import (
    AlreadyRunningError,
    HandlerError,
    JobBusyError,
    JobLockedError,
    JobNotFoundError,
    UnknownJobTypeError,
)
from vigil_cli.scheduler.job import (
    SCHEDULABLE_STATUSES,
    ExecutionOutcome,
    ExecutionResult,
    JobDefinition,
    JobStatus,
    OutcomeStatus,
    TriggerSource,
    utcnow,
)
from vigil_cli.scheduler.lock_manager import LockManager
from vigil_cli.scheduler.registry import HandlerRegistry, JobHandler
from vigil_cli.scheduler.state_machine import JobStateMachine

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Job execution timeout"
LOCK_LOST_REASON = "execution lock lost"

# Part of max_duration kept back so a timed-out run is recorded before its lock expires
COMPLETION_RESERVE = 0.1
MAX_COMPLETION_RESERVE = 5.0


class JobRunner:
    """Runs jobs exclusively and records their outcome.

    Example:
        runner = JobRunner(database, registry, LockManager(database))
        outcome = await runner.trigger_job(job_id)
        if outcome.status is OutcomeStatus.BUSY:
            print("Already running")
    """

    def __init__(
        self,
        database: Database,
        registry: HandlerRegistry,
        lock_manager: LockManager,
        state_machine: Optional[JobStateMachine] = None,
        max_duration: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the runner.

        Args:
            database: Database holding jobs and locks
            registry: Handlers by job type
            lock_manager: Execution lock manager
            state_machine: Status transition recorder (built from database if omitted)
            max_duration: Execution budget and lock lifetime in seconds
                (defaults to the lock manager's)
            clock: Source of the current time
        """
        self.database = database
        self.registry = registry
        self.lock_manager = lock_manager
        self.state_machine = state_machine or JobStateMachine(database, clock=clock)
        self.max_duration = max_duration or lock_manager.default_max_duration
        self._clock = clock

    # === Lookup ===

    def get_job(self, job_id: str) -> JobDefinition:
        """Load a job definition.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        with self.database.session() as session:
            db_job = JobRepository(session).get_by_id(job_id)
            if db_job is None:
                raise JobNotFoundError(job_id)
            return JobRepository.to_definition(db_job)

    def get_due_jobs(self, now: Optional[datetime] = None) -> List[JobDefinition]:
        """Jobs the tick would run at ``now``, earliest first."""
        now = now or self._clock()
        with self.database.session() as session:
            rows = JobRepository(session).get_due(now, SCHEDULABLE_STATUSES)
            return [JobRepository.to_definition(row) for row in rows]

    def _reload(self, job: JobDefinition) -> None:
        stored = self.get_job(job.id)
        job.__dict__.update(stored.__dict__)

    # === Execution ===

    def _handler_budget(self) -> float:
        """Seconds a handler may run, leaving time to record its result."""
        return self.max_duration - min(self.max_duration * COMPLETION_RESERVE, MAX_COMPLETION_RESERVE)

    async def _invoke(self, handler: JobHandler, job: JobDefinition, deadline: float) -> ExecutionResult:
        """Call the handler until ``deadline`` (event loop time).

        Exceptions and timeouts become failed results. Sync handlers run in a
        worker thread; on timeout that thread is abandoned, not stopped.
        """
        started = time.monotonic()
        budget = asyncio.timeout_at(deadline)
        try:
            async with budget:
                if handler.is_async:
                    result = await handler.execute(job)
                else:
                    result = await asyncio.to_thread(handler.execute, job)
                    if inspect.isawaitable(result):
                        result = await result
        except Exception as e:
            # A TimeoutError raised by the handler itself is an ordinary failure
            if isinstance(e, TimeoutError) and budget.expired():
                logger.error(f"Job {job.id} exceeded {self.max_duration}s")
                result = ExecutionResult.failure(TIMEOUT_MESSAGE, timeout=self.max_duration)
            elif isinstance(e, HandlerError):
                result = ExecutionResult(success=False, message=e.message, detail=dict(e.detail))
            else:
                logger.exception(f"Handler for job {job.id} raised")
                result = ExecutionResult.failure(str(e) or type(e).__name__, error_type=type(e).__name__)

        if result is None:
            result = ExecutionResult.ok()
        elif not isinstance(result, ExecutionResult):
            result = ExecutionResult.failure(
                f"Handler returned {type(result).__name__}, expected ExecutionResult"
            )
        if result.duration is None:
            result.duration = round(time.monotonic() - started, 3)
        return result

    async def _attempt(
        self,
        job: JobDefinition,
        trigger: TriggerSource,
        due_at: Optional[datetime] = None,
    ) -> Optional[ExecutionResult]:
        if job.is_running:
            raise JobBusyError("Job is already running", job.id)

        try:
            handler = self.registry.resolve(job.job_type)
        except UnknownJobTypeError as e:
            e.job_id = job.id
            raise

        token = self.lock_manager.new_token()
        # The budget runs from acquisition, as the lock's lifetime does
        deadline = asyncio.get_running_loop().time() + self._handler_budget()
        if not self.lock_manager.acquire(job.id, self.max_duration, holder=token):
            raise JobLockedError("Execution lock is held by another runner", job.id)

        started_at: Optional[datetime] = None
        finished = False
        try:
            # The caller's copy may predate another runner's completed run
            self._reload(job)
            if job.is_running:
                raise JobBusyError("Job is already running", job.id)
            if due_at is not None and not job.is_due(due_at):
                logger.debug(f"Job {job.id} no longer due, skipping")
                return None

            started_at = self.state_machine.begin_run(job)
            logger.info(f"Running job {job.id} ({job.job_type}, {TriggerSource(trigger).value})")
            result = await self._invoke(handler, job, deadline)

            if not self.lock_manager.is_held(job.id, holder=token):
                logger.error(f"Job {job.id} lost its execution lock before completing")
                self.state_machine.abort_run(job, LOCK_LOST_REASON, trigger, started_at)
                finished = True
                return ExecutionResult.from_dict(job.last_result)

            self.state_machine.complete_run(job, result, trigger, started_at)
            finished = True
            return result
        except BaseException as e:
            if started_at is not None and not finished:
                self._abort(job, e, trigger, started_at)
            raise
        finally:
            self.lock_manager.release(job.id, holder=token)

    def _abort(
        self,
        job: JobDefinition,
        error: BaseException,
        trigger: TriggerSource,
        started_at: datetime,
    ) -> None:
        if isinstance(error, asyncio.CancelledError):
            reason = "cancelled"
        else:
            reason = str(error) or type(error).__name__
        try:
            self.state_machine.abort_run(job, reason, trigger, started_at)
        except Exception as abort_error:
            logger.critical(f"Could not abort run of job {job.id}: {abort_error}")

    async def run_job(
        self,
        job: JobDefinition,
        trigger: TriggerSource = TriggerSource.MANUAL,
    ) -> ExecutionResult:
        """Run one attempt of a job.

        Args:
            job: Job to run; refreshed in place with the stored outcome
            trigger: What started the attempt

        Returns:
            The recorded ExecutionResult

        Raises:
            JobBusyError: If the job is RUNNING
            JobLockedError: If another runner holds the execution lock
            UnknownJobTypeError: If no handler is registered (job untouched)
            InvalidScheduleError: If the schedule cannot be evaluated
                (the run is aborted and the job left FAILED)
        """
        return await self._attempt(job, trigger)

    async def trigger_job(
        self,
        job_id: str,
        trigger: TriggerSource = TriggerSource.MANUAL,
    ) -> ExecutionOutcome:
        """Run a job now and summarise what happened.

        Contention is reported through the outcome status instead of
        raised; configuration and storage errors propagate.

        Raises:
            JobNotFoundError: If the job does not exist
            UnknownJobTypeError: If no handler is registered
            InvalidScheduleError: If the schedule cannot be evaluated
        """
        job = self.get_job(job_id)
        try:
            result = await self.run_job(job, trigger)
        except (JobBusyError, AlreadyRunningError) as e:
            logger.info(f"Job {job_id} is busy: {e.message}")
            return ExecutionOutcome(job_id, OutcomeStatus.BUSY, message=e.message)
        except JobLockedError as e:
            logger.info(f"Job {job_id} is locked: {e.message}")
            return ExecutionOutcome(job_id, OutcomeStatus.LOCKED, message=e.message)

        status = OutcomeStatus.SUCCESS if result.success else OutcomeStatus.FAILED
        return ExecutionOutcome(job_id, status, result=result, message=result.message)

    async def run_due_jobs(self, now: Optional[datetime] = None) -> List[ExecutionOutcome]:
        """Run every due job once, one after another.

        Per-job errors are logged and reported as FAILED outcomes so one
        broken job cannot stop the rest of the tick.

        Args:
            now: Reference time (defaults to the clock)

        Returns:
            One outcome per due job
        """
        now = now or self._clock()
        self.recover_stale_jobs()

        outcomes: List[ExecutionOutcome] = []
        due = self.get_due_jobs(now)
        if due:
            logger.info(f"{len(due)} job(s) due")

        for job in due:
            try:
                result = await self._attempt(job, TriggerSource.SCHEDULE, due_at=now)
            except (JobBusyError, AlreadyRunningError) as e:
                outcomes.append(ExecutionOutcome(job.id, OutcomeStatus.BUSY, message=e.message))
                continue
            except JobLockedError as e:
                outcomes.append(ExecutionOutcome(job.id, OutcomeStatus.LOCKED, message=e.message))
                continue
            except Exception as e:
                logger.error(f"Job {job.id} could not run: {e}")
                outcomes.append(ExecutionOutcome(job.id, OutcomeStatus.FAILED, message=str(e)))
                continue

            if result is None:
                outcomes.append(ExecutionOutcome(job.id, OutcomeStatus.SKIPPED, message="No longer due"))
            else:
                status = OutcomeStatus.SUCCESS if result.success else OutcomeStatus.FAILED
                outcomes.append(ExecutionOutcome(job.id, status, result=result, message=result.message))

        return outcomes

    def recover_stale_jobs(self) -> int:
        """Abort RUNNING jobs whose execution lock has expired or vanished.

        A runner that died mid-run leaves its job RUNNING; once its lock
        can be taken again, nobody is executing the job any more.

        Returns:
            Number of jobs recovered
        """
        with self.database.session() as session:
            rows = JobRepository(session).get_all(statuses=(JobStatus.RUNNING,))
            stuck = [JobRepository.to_definition(row) for row in rows]

        recovered = 0
        for job in stuck:
            token = self.lock_manager.new_token()
            if not self.lock_manager.acquire(job.id, self.max_duration, holder=token):
                continue
            try:
                self._reload(job)
                if job.is_running:
                    self.state_machine.abort_run(job, "execution lock expired while running")
                    recovered += 1
            except JobNotFoundError:
                logger.debug(f"Job {job.id} deleted during recovery")
            finally:
                self.lock_manager.release(job.id, holder=token)

        if recovered:
            logger.warning(f"Recovered {recovered} stale RUNNING job(s)")
        return recovered
