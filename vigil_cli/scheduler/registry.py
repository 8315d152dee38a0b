"""Handler registry mapping job types to executable handlers.

The registry is an ordinary object built once at startup and handed to
the JobRunner. Handlers come from three places:
- Built-in handlers (see ``vigil_cli.scheduler.handlers``)
- Entry points in the ``vigil.handlers`` group (installed packages)
- Explicit ``register()`` calls by the embedding application
"""

from __future__ import annotations

import inspect
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from vigil_cli.scheduler.exceptions import UnknownJobTypeError
from vigil_cli.scheduler.job import ExecutionResult, JobDefinition

logger = logging.getLogger(__name__)

HandlerReturn = Union[ExecutionResult, Awaitable[ExecutionResult]]


class JobHandler(ABC):
    """Abstract base class for job handlers.

    A handler receives the JobDefinition (including its ``config``) and
    returns an ExecutionResult. It may be a plain or an ``async`` method.
    Raising an exception counts as a failed run; raise HandlerError to
    attach structured detail.

    Example:
        class DigestHandler(JobHandler):
            description = "Send the weekly risk digest"

            async def execute(self, job: JobDefinition) -> ExecutionResult:
                sent = await send_digest(job.config["recipients"])
                return ExecutionResult.ok(f"Sent {sent} digests", sent=sent)
    """

    description: str = ""

    @abstractmethod
    def execute(self, job: JobDefinition) -> HandlerReturn:
        """Run the job once."""

    @property
    def is_async(self) -> bool:
        """Whether execute() returns a coroutine."""
        return inspect.iscoroutinefunction(self.execute)


class FunctionHandler(JobHandler):
    """Adapts a plain function or coroutine function to JobHandler."""

    def __init__(
        self,
        func: Callable[[JobDefinition], HandlerReturn],
        description: str = "",
    ) -> None:
        self._func = func
        self.description = description or (inspect.getdoc(func) or "").split("\n")[0]

    def execute(self, job: JobDefinition) -> HandlerReturn:
        return self._func(job)

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self._func)

    def __repr__(self) -> str:
        name = getattr(self._func, "__qualname__", repr(self._func))
        return f"FunctionHandler({name})"


def as_handler(obj: Any) -> JobHandler:
    """Coerce a handler instance, handler class or callable to a JobHandler.

    Raises:
        TypeError: If ``obj`` cannot act as a handler
    """
    if isinstance(obj, JobHandler):
        return obj
    if isinstance(obj, type) and issubclass(obj, JobHandler):
        return obj()
    if callable(getattr(obj, "execute", None)):
        return FunctionHandler(obj.execute, getattr(obj, "description", ""))
    if callable(obj):
        return FunctionHandler(obj)
    raise TypeError(f"Not a job handler: {obj!r}")


class HandlerRegistry:
    """Registry of job handlers keyed by job type.

    Populate it at startup, optionally seal() it, then share it. Lookups
    are plain dict reads and safe from any thread; registration takes a
    lock.

    Example:
        registry = HandlerRegistry()
        registry.register("risk_snapshot", RiskSnapshotHandler())
        registry.register("feed_check", check_regulatory_feeds)
        registry.seal()

        handler = registry.resolve("risk_snapshot")
    """

    # Entry point group for third-party handlers
    ENTRY_POINT_GROUP = "vigil.handlers"

    def __init__(self) -> None:
        self._handlers: Dict[str, JobHandler] = {}
        self._lock = threading.Lock()
        self._sealed = False

    def register(self, job_type: str, handler: Any, replace: bool = False) -> JobHandler:
        """Associate a job type with a handler.

        Args:
            job_type: Job type key
            handler: JobHandler instance or class, object with execute(), or callable
            replace: Allow overriding an existing registration

        Returns:
            The registered JobHandler

        Raises:
            RuntimeError: If the registry has been sealed
            ValueError: If the job type is empty or already registered
        """
        if not job_type:
            raise ValueError("Job type must be a non-empty string")

        resolved = as_handler(handler)

        with self._lock:
            if self._sealed:
                raise RuntimeError(
                    f"Handler registry is sealed, cannot register '{job_type}'"
                )
            if job_type in self._handlers and not replace:
                raise ValueError(f"Handler already registered for job type: {job_type}")
            # Copy-on-write so concurrent readers never see a dict mid-update
            handlers = dict(self._handlers)
            handlers[job_type] = resolved
            self._handlers = handlers

        logger.info(f"Registered job handler: {job_type}")
        return resolved

    def resolve(self, job_type: str) -> JobHandler:
        """Get the handler for a job type.

        Raises:
            UnknownJobTypeError: If no handler is registered
        """
        handler = self._handlers.get(job_type)
        if handler is None:
            raise UnknownJobTypeError(job_type)
        return handler

    def get(self, job_type: str) -> Optional[JobHandler]:
        """Get the handler for a job type, or None."""
        return self._handlers.get(job_type)

    def seal(self) -> None:
        """Reject any further registration."""
        with self._lock:
            self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def job_types(self) -> List[str]:
        """Registered job types, sorted."""
        return sorted(self._handlers)

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def discover_entry_points(self) -> int:
        """Register handlers advertised by installed packages.

        Each entry point's name is the job type; its object may be a
        JobHandler class or instance or a plain callable. Job types that
        are already registered are left alone.

        Returns:
            Number of handlers registered
        """
        from importlib.metadata import entry_points

        count = 0
        for ep in entry_points(group=self.ENTRY_POINT_GROUP):
            if ep.name in self._handlers:
                logger.debug(f"Skipping entry point {ep.name}: already registered")
                continue
            try:
                self.register(ep.name, ep.load())
                count += 1
            except Exception as e:
                logger.warning(f"Failed to load job handler entry point '{ep.name}': {e}")
        return count
