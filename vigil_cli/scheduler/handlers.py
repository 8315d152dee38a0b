"""Built-in job handlers and the default registry."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from vigil_cli.config import VigilConfig, get_config
from vigil_cli.database.connection import Database
from vigil_cli.database.repositories import JobExecutionRepository
from vigil_cli.scheduler.exceptions import HandlerError
from vigil_cli.scheduler.job import ExecutionResult, JobDefinition, utcnow
from vigil_cli.scheduler.lock_manager import LockManager
from vigil_cli.scheduler.registry import HandlerRegistry, JobHandler

logger = logging.getLogger(__name__)


class HistoryCleanupHandler(JobHandler):
    """Delete execution history older than ``max_age_days``.

    Job config:
        max_age_days: Age limit in days (default from
            ``scheduler.history_retention_days``)
    """

    job_type = "history_cleanup"
    description = "Delete old job execution history"

    def __init__(self, database: Database, default_max_age_days: int = 30) -> None:
        self.database = database
        self.default_max_age_days = default_max_age_days

    def execute(self, job: JobDefinition) -> ExecutionResult:
        max_age_days = job.config.get("max_age_days", self.default_max_age_days)
        try:
            max_age_days = int(max_age_days)
        except (TypeError, ValueError):
            raise HandlerError(
                f"max_age_days must be an integer, got {max_age_days!r}",
                job.id,
                detail={"max_age_days": max_age_days},
            ) from None
        if max_age_days < 1:
            raise HandlerError("max_age_days must be at least 1", job.id)

        cutoff = utcnow() - timedelta(days=max_age_days)
        with self.database.session() as session:
            deleted = JobExecutionRepository(session).delete_old_executions(cutoff)

        logger.info(f"Deleted {deleted} execution record(s) older than {max_age_days} days")
        return ExecutionResult.ok(
            f"Deleted {deleted} execution record(s)",
            deleted=deleted,
            max_age_days=max_age_days,
            cutoff=cutoff.isoformat(),
        )


class LockCleanupHandler(JobHandler):
    """Delete expired execution lock rows."""

    job_type = "lock_cleanup"
    description = "Delete expired execution locks"

    def __init__(self, lock_manager: LockManager) -> None:
        self.lock_manager = lock_manager

    def execute(self, job: JobDefinition) -> ExecutionResult:
        removed = self.lock_manager.cleanup_expired_locks()
        return ExecutionResult.ok(f"Removed {removed} expired lock(s)", removed=removed)


def create_default_registry(
    database: Database,
    config: Optional[VigilConfig] = None,
    lock_manager: Optional[LockManager] = None,
    load_entry_points: Optional[bool] = None,
) -> HandlerRegistry:
    """Build a registry with the built-in handlers.

    Args:
        database: Database the built-in handlers operate on
        config: Vigil configuration (uses global if not provided)
        lock_manager: Lock manager for the lock cleanup handler
        load_entry_points: Also load ``vigil.handlers`` entry points
            (defaults to ``scheduler.load_entry_points``)

    Returns:
        An unsealed registry; seal it once application handlers are added
    """
    config = config or get_config()
    lock_manager = lock_manager or LockManager(
        database,
        default_max_duration=config.scheduler.lock_max_duration,
        instance_id=config.scheduler.instance_id,
    )

    registry = HandlerRegistry()
    registry.register(
        HistoryCleanupHandler.job_type,
        HistoryCleanupHandler(database, config.scheduler.history_retention_days),
    )
    registry.register(LockCleanupHandler.job_type, LockCleanupHandler(lock_manager))

    if load_entry_points is None:
        load_entry_points = config.scheduler.load_entry_points
    if load_entry_points:
        count = registry.discover_entry_points()
        if count:
            logger.info(f"Loaded {count} handler(s) from entry points")

    return registry
