"""Tests for the job runner."""

import asyncio
import threading
import time
from datetime import timedelta

import pytest

from vigil_cli.database.repositories import JobExecutionRepository, JobRepository
from vigil_cli.scheduler.exceptions import (
    HandlerError,
    InvalidScheduleError,
    JobBusyError,
    JobLockedError,
    JobNotFoundError,
    UnknownJobTypeError,
)
from vigil_cli.scheduler.job import ExecutionResult, JobStatus, OutcomeStatus, TriggerSource
from vigil_cli.scheduler.lock_manager import LockManager
from vigil_cli.scheduler.registry import HandlerRegistry, JobHandler
from vigil_cli.scheduler.runner import TIMEOUT_MESSAGE, JobRunner


class RecordingHandler(JobHandler):
    """Counts calls and returns a canned result."""

    def __init__(self, result=None):
        self.calls = []
        self.result = result if result is not None else ExecutionResult.ok("done")

    def execute(self, job):
        self.calls.append(job.id)
        return self.result


def _history(database, job_id):
    with database.session() as session:
        return [row.to_dict() for row in JobExecutionRepository(session).get_history(job_id)]


class TestTriggerJob:
    """Tests for manual triggering."""

    @pytest.mark.asyncio
    async def test_success_end_to_end(self, runner, registry, catalog, clock) -> None:
        """Created at T with every 5m, triggered at T+1s, next run is T+5m."""
        handler = registry.register("echo", RecordingHandler())
        job = catalog.create_job("echo", "every 5m")
        t = clock.now

        clock.advance(1)
        outcome = await runner.trigger_job(job.id)

        assert outcome.status is OutcomeStatus.SUCCESS
        assert outcome.result.success
        assert outcome.message == "done"
        assert handler.calls == [job.id]

        stored = catalog.get(job.id)
        assert stored.status is JobStatus.ACTIVE
        assert stored.run_count == 1
        assert stored.error_count == 0
        assert stored.last_run_at == t + timedelta(seconds=1)
        assert stored.next_run_at == t + timedelta(minutes=5)
        assert not runner.lock_manager.is_locked(job.id)

    @pytest.mark.asyncio
    async def test_async_handler(self, runner, registry, catalog) -> None:
        async def handler(job):
            await asyncio.sleep(0)
            return ExecutionResult.ok("async", job_type=job.job_type)

        registry.register("echo", handler)
        job = catalog.create_job("echo", "@hourly")

        outcome = await runner.trigger_job(job.id)
        assert outcome.status is OutcomeStatus.SUCCESS
        assert outcome.result.detail == {"job_type": "echo"}

    @pytest.mark.asyncio
    async def test_handler_returning_none_succeeds(self, runner, registry, catalog) -> None:
        registry.register("noop", lambda job: None)
        job = catalog.create_job("noop", "@hourly")
        outcome = await runner.trigger_job(job.id)
        assert outcome.status is OutcomeStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_handler_returning_wrong_type_fails(self, runner, registry, catalog) -> None:
        registry.register("bad", lambda job: "ok")
        job = catalog.create_job("bad", "@hourly")
        outcome = await runner.trigger_job(job.id)
        assert outcome.status is OutcomeStatus.FAILED
        assert "expected ExecutionResult" in outcome.message

    @pytest.mark.asyncio
    async def test_failed_result(self, runner, registry, catalog) -> None:
        registry.register("echo", RecordingHandler(ExecutionResult.failure("no feed")))
        job = catalog.create_job("echo", "every 5m")

        outcome = await runner.trigger_job(job.id)
        assert outcome.status is OutcomeStatus.FAILED

        stored = catalog.get(job.id)
        assert stored.status is JobStatus.FAILED
        assert stored.error_count == 1
        assert stored.last_result["message"] == "no feed"

    @pytest.mark.asyncio
    async def test_handler_raising(self, runner, registry, catalog) -> None:
        """An exception from the handler becomes a failed result."""

        def explode(job):
            raise RuntimeError("database unreachable")

        registry.register("echo", explode)
        job = catalog.create_job("echo", "every 5m")

        outcome = await runner.trigger_job(job.id)
        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.result.message == "database unreachable"
        assert outcome.result.detail == {"error_type": "RuntimeError"}

        stored = catalog.get(job.id)
        assert stored.status is JobStatus.FAILED
        assert stored.error_count == 1
        assert stored.next_run_at is not None
        assert not runner.lock_manager.is_locked(job.id)

    @pytest.mark.asyncio
    async def test_handler_error_detail(self, runner, registry, catalog) -> None:
        def reject(job):
            raise HandlerError("threshold exceeded", detail={"score": 91})

        registry.register("echo", reject)
        job = catalog.create_job("echo", "every 5m")

        outcome = await runner.trigger_job(job.id)
        assert outcome.result.message == "threshold exceeded"
        assert outcome.result.detail == {"score": 91}

    @pytest.mark.asyncio
    async def test_handler_error_detail_with_message_key(self, runner, registry, catalog) -> None:
        """A detail payload may carry its own "message" entry."""

        def reject(job):
            raise HandlerError("feed down", detail={"message": "upstream 503"})

        registry.register("echo", reject)
        job = catalog.create_job("echo", "every 5m")

        outcome = await runner.trigger_job(job.id)
        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.result.message == "feed down"
        assert outcome.result.detail == {"message": "upstream 503"}

        stored = catalog.get(job.id)
        assert stored.status is JobStatus.FAILED
        assert stored.last_result["detail"] == {"message": "upstream 503"}

    @pytest.mark.asyncio
    async def test_handler_timeout_error_is_not_a_budget_timeout(self, runner, registry, catalog) -> None:
        """A TimeoutError raised by the handler is reported as its own failure."""

        async def dial(job):
            raise TimeoutError("connect timed out")

        registry.register("echo", dial)
        job = catalog.create_job("echo", "every 5m")

        outcome = await runner.trigger_job(job.id)
        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.result.message == "connect timed out"
        assert outcome.result.detail == {"error_type": "TimeoutError"}

    @pytest.mark.asyncio
    async def test_schedule_changed_during_run(self, runner, registry, catalog, clock) -> None:
        """The next run follows a schedule edited while the job was running."""

        def reschedule(job):
            catalog.update_schedule(job.id, "every 1h")

        registry.register("echo", reschedule)
        job = catalog.create_job("echo", "every 5m")

        await runner.trigger_job(job.id)

        stored = catalog.get(job.id)
        assert stored.schedule == "every 1h"
        assert stored.next_run_at == clock.now.replace(hour=10, minute=0)

    @pytest.mark.asyncio
    async def test_error_count_resets(self, runner, registry, catalog) -> None:
        results = [ExecutionResult.failure("a"), ExecutionResult.failure("b"), ExecutionResult.ok()]
        registry.register("flaky", lambda job: results.pop(0))
        job = catalog.create_job("flaky", "every 5m")

        counts = []
        for _ in range(3):
            await runner.trigger_job(job.id)
            counts.append(catalog.get(job.id).error_count)
        assert counts == [1, 2, 0]

    @pytest.mark.asyncio
    async def test_unknown_type_leaves_job_untouched(self, runner, catalog) -> None:
        job = catalog.create_job("unregistered", "every 5m")

        with pytest.raises(UnknownJobTypeError) as exc_info:
            await runner.trigger_job(job.id)
        assert exc_info.value.job_id == job.id

        stored = catalog.get(job.id)
        assert stored.status is JobStatus.ACTIVE
        assert stored.run_count == 0
        assert stored.last_result is None
        assert not runner.lock_manager.is_locked(job.id)

    @pytest.mark.asyncio
    async def test_missing_job(self, runner) -> None:
        with pytest.raises(JobNotFoundError):
            await runner.trigger_job("does-not-exist")

    @pytest.mark.asyncio
    async def test_running_job_is_busy(self, runner, registry, catalog, state_machine) -> None:
        handler = registry.register("echo", RecordingHandler())
        job = catalog.create_job("echo", "every 5m")
        state_machine.begin_run(job)

        outcome = await runner.trigger_job(job.id)
        assert outcome.status is OutcomeStatus.BUSY
        assert handler.calls == []

    @pytest.mark.asyncio
    async def test_locked_job(self, runner, registry, catalog, lock_manager) -> None:
        handler = registry.register("echo", RecordingHandler())
        job = catalog.create_job("echo", "every 5m")
        lock_manager.acquire(job.id, holder="other-runner")

        outcome = await runner.trigger_job(job.id)
        assert outcome.status is OutcomeStatus.LOCKED
        assert handler.calls == []
        assert lock_manager.get_lock(job.id).holder == "other-runner"
        assert catalog.get(job.id).status is JobStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_run_job_raises_contention(self, runner, registry, catalog, lock_manager) -> None:
        registry.register("echo", RecordingHandler())
        job = catalog.create_job("echo", "every 5m")
        lock_manager.acquire(job.id, holder="other-runner")

        with pytest.raises(JobLockedError):
            await runner.run_job(job)

    @pytest.mark.asyncio
    async def test_stale_copy_is_refreshed(self, runner, registry, catalog, state_machine) -> None:
        """A caller holding an old ACTIVE copy still sees the stored RUNNING status."""
        registry.register("echo", RecordingHandler())
        job = catalog.create_job("echo", "every 5m")
        state_machine.begin_run(catalog.get(job.id))

        with pytest.raises(JobBusyError):
            await runner.run_job(job)

    @pytest.mark.asyncio
    async def test_paused_job_can_be_triggered(self, runner, registry, catalog) -> None:
        registry.register("echo", RecordingHandler())
        job = catalog.create_job("echo", "every 5m")
        catalog.pause(job.id)

        outcome = await runner.trigger_job(job.id)
        assert outcome.status is OutcomeStatus.SUCCESS
        assert catalog.get(job.id).status is JobStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_history_records_trigger(self, runner, registry, catalog, database) -> None:
        registry.register("echo", RecordingHandler())
        job = catalog.create_job("echo", "every 5m")
        await runner.trigger_job(job.id)

        history = _history(database, job.id)
        assert history[0]["trigger"] == "manual"
        assert history[0]["success"] is True
        assert history[0]["duration"] is not None


class TestTimeoutAndAbort:
    """Tests for execution budget, cancellation and bad schedules."""

    @pytest.fixture
    def fast_runner(self, database, registry, lock_manager, state_machine, clock) -> JobRunner:
        return JobRunner(
            database,
            registry,
            lock_manager,
            state_machine=state_machine,
            max_duration=0.1,
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_async_timeout(self, fast_runner, registry, catalog) -> None:
        async def slow(job):
            await asyncio.sleep(5)

        registry.register("slow", slow)
        job = catalog.create_job("slow", "every 5m")

        outcome = await fast_runner.trigger_job(job.id)
        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.message == TIMEOUT_MESSAGE

        stored = catalog.get(job.id)
        assert stored.status is JobStatus.FAILED
        assert stored.error_count == 1
        assert stored.last_result["message"] == "Job execution timeout"

    @pytest.mark.asyncio
    async def test_sync_timeout(self, fast_runner, registry, catalog) -> None:
        registry.register("slow", lambda job: time.sleep(0.5))
        job = catalog.create_job("slow", "every 5m")

        outcome = await fast_runner.trigger_job(job.id)
        assert outcome.message == TIMEOUT_MESSAGE
        assert catalog.get(job.id).status is JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_cancellation_aborts_run(self, runner, registry, catalog, database) -> None:
        started = asyncio.Event()

        async def hang(job):
            started.set()
            await asyncio.sleep(60)

        registry.register("hang", hang)
        job = catalog.create_job("hang", "every 5m")

        task = asyncio.create_task(runner.trigger_job(job.id))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        stored = catalog.get(job.id)
        assert stored.status is JobStatus.FAILED
        assert stored.error_count == 1
        assert stored.last_result["message"] == "Execution aborted: cancelled"
        assert _history(database, job.id)[0]["aborted"] is True
        assert not runner.lock_manager.is_locked(job.id)

    @pytest.mark.asyncio
    async def test_lost_lock_aborts_run(self, runner, registry, catalog, lock_manager) -> None:
        """A run whose lock was taken over is aborted, not completed."""

        def usurp(job):
            lock_manager.force_release(job.id)
            assert lock_manager.acquire(job.id, holder="other-runner")
            return ExecutionResult.ok("done")

        registry.register("echo", usurp)
        job = catalog.create_job("echo", "every 5m")

        outcome = await runner.trigger_job(job.id)
        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.message == "Execution aborted: execution lock lost"

        stored = catalog.get(job.id)
        assert stored.status is JobStatus.FAILED
        assert stored.run_count == 0
        assert stored.error_count == 1
        assert lock_manager.get_lock(job.id).holder == "other-runner"

    @pytest.mark.asyncio
    async def test_expired_lock_aborts_run(self, runner, registry, catalog, clock) -> None:
        def overrun(job):
            clock.advance(301)

        registry.register("echo", overrun)
        job = catalog.create_job("echo", "every 5m")

        outcome = await runner.trigger_job(job.id)
        assert outcome.status is OutcomeStatus.FAILED
        assert catalog.get(job.id).last_result["message"] == "Execution aborted: execution lock lost"

    def test_handler_budget_leaves_time_to_record(self, runner, fast_runner) -> None:
        assert runner._handler_budget() == 295
        assert fast_runner._handler_budget() == pytest.approx(0.09)

    @pytest.mark.asyncio
    async def test_invalid_schedule_on_completion(self, runner, registry, catalog, database) -> None:
        """A schedule that stops parsing aborts the run and clears next_run_at."""
        registry.register("echo", RecordingHandler())
        job = catalog.create_job("echo", "every 5m")
        with database.session() as session:
            JobRepository(session).update(job.id, schedule="every sometimes")

        with pytest.raises(InvalidScheduleError):
            await runner.trigger_job(job.id)

        stored = catalog.get(job.id)
        assert stored.status is JobStatus.FAILED
        assert stored.next_run_at is None
        assert stored.last_result["message"].startswith("Execution aborted")
        assert not runner.lock_manager.is_locked(job.id)


class TestRunDueJobs:
    """Tests for the periodic sweep."""

    @pytest.mark.asyncio
    async def test_runs_only_due_jobs(self, runner, registry, catalog, clock) -> None:
        handler = registry.register("echo", RecordingHandler())
        due = catalog.create_job("echo", "every 5m", name="due")
        later = catalog.create_job("echo", "every 1h", name="later")
        paused = catalog.create_job("echo", "every 5m", name="paused")
        catalog.pause(paused.id)

        clock.advance(5 * 60)
        outcomes = await runner.run_due_jobs()

        assert [o.job_id for o in outcomes] == [due.id]
        assert outcomes[0].status is OutcomeStatus.SUCCESS
        assert handler.calls == [due.id]
        assert catalog.get(later.id).run_count == 0
        assert catalog.get(paused.id).run_count == 0

    @pytest.mark.asyncio
    async def test_records_schedule_trigger(self, runner, registry, catalog, database, clock) -> None:
        registry.register("echo", RecordingHandler())
        job = catalog.create_job("echo", "every 5m")
        clock.advance(5 * 60)
        await runner.run_due_jobs()
        assert _history(database, job.id)[0]["trigger"] == "schedule"

    @pytest.mark.asyncio
    async def test_failed_jobs_are_retried(self, runner, registry, catalog, clock) -> None:
        registry.register("echo", RecordingHandler(ExecutionResult.failure("nope")))
        job = catalog.create_job("echo", "every 5m")

        clock.advance(5 * 60)
        await runner.run_due_jobs()
        clock.advance(5 * 60)
        outcomes = await runner.run_due_jobs()

        assert outcomes[0].status is OutcomeStatus.FAILED
        assert catalog.get(job.id).error_count == 2

    @pytest.mark.asyncio
    async def test_one_bad_job_does_not_stop_the_tick(self, runner, registry, catalog, clock) -> None:
        handler = registry.register("echo", RecordingHandler())
        broken = catalog.create_job("missing", "every 5m", name="a-broken")
        healthy = catalog.create_job("echo", "every 5m", name="b-healthy")

        clock.advance(5 * 60)
        outcomes = {o.job_id: o for o in await runner.run_due_jobs()}

        assert outcomes[broken.id].status is OutcomeStatus.FAILED
        assert "No handler registered" in outcomes[broken.id].message
        assert outcomes[healthy.id].status is OutcomeStatus.SUCCESS
        assert handler.calls == [healthy.id]

    @pytest.mark.asyncio
    async def test_locked_job_reported(self, runner, registry, catalog, lock_manager, clock) -> None:
        registry.register("echo", RecordingHandler())
        job = catalog.create_job("echo", "every 5m")
        lock_manager.acquire(job.id, max_duration=3600, holder="elsewhere")

        clock.advance(5 * 60)
        outcomes = await runner.run_due_jobs()
        assert outcomes[0].status is OutcomeStatus.LOCKED

    @pytest.mark.asyncio
    async def test_occurrence_already_handled_is_skipped(self, runner, registry, catalog, clock) -> None:
        """A due list gathered before another runner finished does not rerun the job."""
        handler = registry.register("echo", RecordingHandler())
        job = catalog.create_job("echo", "every 5m")
        clock.advance(5 * 60)
        now = clock.now

        stale = runner.get_due_jobs(now)
        await runner.trigger_job(job.id, TriggerSource.SCHEDULE)
        result = await runner._attempt(stale[0], TriggerSource.SCHEDULE, due_at=now)

        assert result is None
        assert handler.calls == [job.id]

    @pytest.mark.asyncio
    async def test_recovers_stale_running_jobs(self, runner, registry, catalog, state_machine, lock_manager, clock) -> None:
        """A job left RUNNING by a dead runner is aborted once its lock expires."""
        registry.register("echo", RecordingHandler())
        job = catalog.create_job("echo", "every 5m")
        lock_manager.acquire(job.id, max_duration=60, holder="dead-runner")
        state_machine.begin_run(job)

        assert runner.recover_stale_jobs() == 0
        clock.advance(120)
        assert runner.recover_stale_jobs() == 1

        stored = catalog.get(job.id)
        assert stored.status is JobStatus.FAILED
        assert "lock expired" in stored.last_result["message"]
        assert not lock_manager.is_locked(job.id)


class TestExclusiveExecution:
    """Concurrent triggers of one job from separate runners."""

    def test_no_overlapping_runs(self, database, catalog) -> None:
        job = catalog.create_job("slow", "every 5m")
        active = []
        overlaps = []
        guard = threading.Lock()

        def slow(job):
            with guard:
                active.append(job.id)
                if len(active) > 1:
                    overlaps.append(len(active))
            time.sleep(0.5)
            with guard:
                active.remove(job.id)
            return ExecutionResult.ok()

        barrier = threading.Barrier(5)
        outcomes = []

        def trigger(index: int) -> None:
            registry = HandlerRegistry()
            registry.register("slow", slow)
            runner = JobRunner(
                database,
                registry,
                LockManager(database, default_max_duration=30, instance_id=f"runner-{index}"),
            )
            barrier.wait()
            outcomes.append(asyncio.run(runner.trigger_job(job.id)))

        threads = [threading.Thread(target=trigger, args=(i,)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(outcomes) == 5
        statuses = sorted(o.status.value for o in outcomes)
        assert overlaps == []
        assert statuses.count("success") == 1
        assert all(s in ("success", "busy", "locked") for s in statuses)
        assert catalog.get(job.id).run_count == 1
