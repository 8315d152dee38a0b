"""Vigil daemon service.

The daemon owns one JobRunner and an APScheduler AsyncIOScheduler that
calls ``JobRunner.run_due_jobs`` every ``scheduler.tick_interval``
seconds. Ticks never overlap within one daemon; several daemons against
the same database coordinate through the execution locks.
"""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from vigil_cli.config import VigilConfig
from vigil_cli.database.connection import Database
from vigil_cli.scheduler.job import ExecutionOutcome, OutcomeStatus, utcnow
from vigil_cli.scheduler.runner import JobRunner

logger = logging.getLogger(__name__)

TICK_JOB_ID = "vigil-tick"


def build_runner(config: VigilConfig, database: Optional[Database] = None) -> JobRunner:
    """Wire a JobRunner from configuration.

    Args:
        config: Vigil configuration
        database: Database to use (defaults to one built from ``config.database_url``)

    Returns:
        A runner with a sealed default handler registry
    """
    from vigil_cli.scheduler.handlers import create_default_registry
    from vigil_cli.scheduler.lock_manager import LockManager

    if database is None:
        database = Database(config.database_url)
        database.create_tables()

    lock_manager = LockManager(
        database,
        default_max_duration=config.scheduler.lock_max_duration,
        instance_id=config.scheduler.instance_id,
    )
    registry = create_default_registry(database, config, lock_manager=lock_manager)
    registry.seal()
    return JobRunner(database, registry, lock_manager)


class VigilDaemon:
    """Long-running service that triggers due jobs.

    Attributes:
        _config: Vigil configuration
        _runner: Job runner (built on start() if not supplied)
        _scheduler: APScheduler instance driving the tick
        _running: Whether the daemon is running
        _shutdown_event: Event to signal shutdown
        _in_flight: Tick tasks currently executing

    Example:
        daemon = VigilDaemon(config)

        await daemon.start()
        await daemon.run_until_shutdown()
        await daemon.stop()
    """

    def __init__(self, config: VigilConfig, runner: Optional[JobRunner] = None):
        """Initialize the daemon service.

        Args:
            config: Vigil configuration
            runner: Pre-built job runner (tests and embedding applications)
        """
        self._config = config
        self._runner = runner
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._in_flight: Set[asyncio.Task] = set()
        self._tick_count = 0

    async def start(self) -> None:
        """Start the periodic tick.

        The first tick fires immediately.
        """
        logger.info("Starting Vigil daemon...")

        if self._runner is None:
            self._runner = build_runner(self._config)
        logger.info(f"Registered job types: {', '.join(self._runner.registry.job_types)}")

        interval = self._config.scheduler.tick_interval
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=interval, timezone="UTC"),
            id=TICK_JOB_ID,
            name="Run due jobs",
            max_instances=1,
            coalesce=True,
            next_run_time=utcnow(),
        )
        self._scheduler.start()

        self._running = True
        logger.info(f"Vigil daemon started (tick every {interval}s)")

    async def tick(self) -> List[ExecutionOutcome]:
        """Run all due jobs once.

        Returns:
            Outcomes of the jobs that were due
        """
        if self._runner is None:
            raise RuntimeError("Daemon has not been started")

        task = asyncio.current_task()
        if task is not None:
            self._in_flight.add(task)
        try:
            outcomes = await self._runner.run_due_jobs()
        finally:
            if task is not None:
                self._in_flight.discard(task)

        self._tick_count += 1
        failed = sum(1 for o in outcomes if o.status is OutcomeStatus.FAILED)
        if outcomes:
            logger.info(f"Tick finished: {len(outcomes)} job(s), {failed} failed")
        return outcomes

    async def stop(self) -> None:
        """Stop the tick and cancel in-flight runs.

        Cancelled runs are aborted, leaving their jobs FAILED with the
        lock released.
        """
        logger.info("Stopping Vigil daemon...")
        self._running = False

        if self._scheduler is not None:
            try:
                self._scheduler.shutdown(wait=False)
            except Exception as e:
                logger.warning(f"Error stopping scheduler: {e}")

        tasks = list(self._in_flight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Vigil daemon stopped")

    async def run_until_shutdown(self) -> None:
        """Block until request_shutdown() is called."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request daemon shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def runner(self) -> Optional[JobRunner]:
        return self._runner

    @property
    def scheduler(self) -> Optional[AsyncIOScheduler]:
        return self._scheduler

    @property
    def tick_count(self) -> int:
        return self._tick_count


async def run_daemon(config: VigilConfig, runner: Optional[JobRunner] = None) -> None:
    """Run the daemon until SIGTERM or SIGINT.

    Args:
        config: Vigil configuration
        runner: Optional pre-built job runner
    """
    daemon = VigilDaemon(config, runner=runner)
    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        daemon.request_shutdown()

    installed = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
            installed.append(sig)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda signum, frame: handle_signal(signal.Signals(signum)))

    try:
        await daemon.start()
        await daemon.run_until_shutdown()
    finally:
        await daemon.stop()
        for sig in installed:
            loop.remove_signal_handler(sig)


def daemonize(log_file: Optional[Path] = None) -> None:
    """Detach into the background with the classic double fork.

    Args:
        log_file: Where stdout/stderr go; /dev/null if None

    Note:
        Unix only. On Windows this logs a warning and returns.
    """
    if sys.platform == "win32":
        logger.warning("Daemon mode not supported on Windows")
        return

    if os.fork() > 0:
        sys.exit(0)
    os.setsid()
    if os.fork() > 0:
        sys.exit(0)

    sys.stdout.flush()
    sys.stderr.flush()

    with open(os.devnull, "r") as devnull:
        os.dup2(devnull.fileno(), sys.stdin.fileno())

    target = log_file or Path(os.devnull)
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "a+") as out:
        os.dup2(out.fileno(), sys.stdout.fileno())
        os.dup2(out.fileno(), sys.stderr.fileno())

    logger.info(f"Daemon process started (PID: {os.getpid()})")
