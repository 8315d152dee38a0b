"""Database-backed execution locks.

One row per job in ``execution_locks``. Acquisition is an INSERT on the
primary key; a row whose ``expires_at`` has passed is treated as absent
and can be taken over with a conditional UPDATE. Release deletes the
row only when the caller's holder token matches, so a runner whose lock
expired can never remove a lock someone else has since claimed.
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError

from vigil_cli.database.connection import Database
from vigil_cli.database.models import ExecutionLock
from vigil_cli.database.repositories import LockRepository
from vigil_cli.scheduler.job import utcnow

logger = logging.getLogger(__name__)


def default_instance_id() -> str:
    """Identifier for this process, used as the default holder prefix."""
    return f"{socket.gethostname()}:{os.getpid()}"


@dataclass
class LockInfo:
    """Snapshot of one execution lock."""

    job_id: str
    holder: str
    acquired_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "holder": self.holder,
            "acquired_at": self.acquired_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_model(cls, lock: ExecutionLock) -> "LockInfo":
        return cls(
            job_id=lock.job_id,
            holder=lock.holder,
            acquired_at=lock.acquired_at,
            expires_at=lock.expires_at,
        )


class LockManager:
    """Exclusive per-job execution locks with expiry.

    Example:
        locks = LockManager(database, default_max_duration=300)
        token = locks.new_token()
        if locks.acquire(job.id, holder=token):
            try:
                ...
            finally:
                locks.release(job.id, holder=token)
    """

    def __init__(
        self,
        database: Database,
        default_max_duration: float = 300,
        instance_id: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize lock manager.

        Args:
            database: Database holding the lock table
            default_max_duration: Lock lifetime in seconds when acquire() gets none
            instance_id: Identifier for this process. Auto-generated if not provided.
            clock: Source of the current time
        """
        if default_max_duration <= 0:
            raise ValueError("default_max_duration must be positive")
        self.database = database
        self.default_max_duration = default_max_duration
        self.instance_id = instance_id or default_instance_id()
        self._clock = clock

    def new_token(self) -> str:
        """Create a unique holder token for one acquisition."""
        return f"{self.instance_id}:{uuid4().hex[:12]}"

    def acquire(
        self,
        job_id: str,
        max_duration: Optional[float] = None,
        holder: Optional[str] = None,
    ) -> bool:
        """Try to take the exclusive lock for a job.

        Args:
            job_id: Job to lock
            max_duration: Seconds until the lock expires
            holder: Holder token (defaults to the instance id)

        Returns:
            True if the lock was acquired, False if someone else holds it
        """
        holder = holder or self.instance_id
        now = self._clock()
        expires_at = now + timedelta(seconds=max_duration or self.default_max_duration)

        try:
            with self.database.session() as session:
                LockRepository(session).insert(job_id, holder, now, expires_at)
            logger.debug(f"Acquired lock for job {job_id} ({holder})")
            return True
        except IntegrityError:
            pass

        # A row exists; claim it only if it has expired
        with self.database.session() as session:
            taken = LockRepository(session).take_over_expired(job_id, holder, now, expires_at)

        if taken:
            logger.info(f"Took over expired lock for job {job_id} ({holder})")
        else:
            logger.debug(f"Lock already held for job {job_id}")
        return taken

    def release(self, job_id: str, holder: Optional[str] = None) -> bool:
        """Release a lock held by ``holder``.

        Releasing a lock that does not exist or belongs to someone else
        does nothing.

        Returns:
            True if a lock was deleted
        """
        holder = holder or self.instance_id
        with self.database.session() as session:
            released = LockRepository(session).delete_held(job_id, holder)

        if released:
            logger.debug(f"Released lock for job {job_id}")
        else:
            logger.debug(f"No lock held by {holder} for job {job_id}")
        return released

    def is_locked(self, job_id: str) -> bool:
        """Check if a job has an unexpired lock."""
        return self.get_lock(job_id) is not None

    def is_held(self, job_id: str, holder: Optional[str] = None) -> bool:
        """Check that ``holder`` still owns an unexpired lock on a job."""
        info = self.get_lock(job_id)
        return info is not None and info.holder == (holder or self.instance_id)

    def get_lock(self, job_id: str) -> Optional[LockInfo]:
        """Get the unexpired lock for a job, if any."""
        with self.database.session() as session:
            lock = LockRepository(session).get(job_id)
            if lock is None:
                return None
            info = LockInfo.from_model(lock)
        return None if info.is_expired(self._clock()) else info

    def list_active_locks(self) -> List[LockInfo]:
        """List all unexpired locks, oldest first."""
        with self.database.session() as session:
            return [LockInfo.from_model(lock) for lock in LockRepository(session).get_active(self._clock())]

    def cleanup_expired_locks(self) -> int:
        """Delete expired lock rows.

        Returns:
            Number of locks removed
        """
        with self.database.session() as session:
            count = LockRepository(session).delete_expired(self._clock())
        if count > 0:
            logger.info(f"Cleaned up {count} expired locks")
        return count

    def force_release(self, job_id: str) -> bool:
        """Delete a job's lock regardless of holder.

        Only for operator recovery; the job's status is not touched.

        Returns:
            True if a lock was deleted
        """
        with self.database.session() as session:
            released = LockRepository(session).delete(job_id)
        if released:
            logger.warning(f"Force released lock for job {job_id}")
        return released
