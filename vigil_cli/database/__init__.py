"""Database layer for Vigil.

SQLAlchemy models, connection management and repositories for job
definitions, execution locks and execution history.
"""

from vigil_cli.database.connection import Database, get_database, set_database
from vigil_cli.database.models import Base, ExecutionLock, JobExecution, ScheduledJob
from vigil_cli.database.repositories import (
    JobExecutionRepository,
    JobRepository,
    LockRepository,
)

__all__ = [
    "Base",
    "Database",
    "ExecutionLock",
    "JobExecution",
    "JobExecutionRepository",
    "JobRepository",
    "LockRepository",
    "ScheduledJob",
    "get_database",
    "set_database",
]
