"""
Async Pool Executor for Node Materialization

This module provides a bounded executor for asyncio work. Each submitted unit of
work becomes its own task; at most ``max_in_flight`` of them run at once so a
large graph cannot flood the provider with concurrent requests.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, TypeVar

from ..config import get_config
from ..errors import DispatchCancelledError
from ..logging import get_logger
from ..utils.timers import async_time_operation

logger = get_logger(__name__)

R = TypeVar("R")


@dataclass
class ExecutionContext:
    """Context information for one running unit of work."""

    key: str
    start_time: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)


class AsyncPoolExecutor:
    """
    Bounded asyncio executor with monitoring.

    Features:
    - Respects the configured maximum number of in-flight units
    - Tracks active work, peak concurrency and durations
    - ``stop()`` prevents queued-but-unstarted work from starting while letting
      work that already started run to completion
    """

    def __init__(self, max_in_flight: Optional[int] = None, name_prefix: str = "stackgraph"):
        """
        Initialize the executor.

        Args:
            max_in_flight: Maximum number of concurrently running units (from config if None)
            name_prefix: Prefix for task names
        """
        self.config = get_config()

        self.max_in_flight = max_in_flight or self.config.execution.max_in_flight
        self.name_prefix = name_prefix

        self._semaphore = asyncio.Semaphore(self.max_in_flight)
        self._tasks: Set[asyncio.Task] = set()
        self._stopping = False

        self.active: Dict[str, ExecutionContext] = {}
        self.durations: Dict[str, float] = {}

        # Statistics
        self.total_submitted = 0
        self.total_completed = 0
        self.total_failed = 0
        self.total_not_started = 0
        self.peak_in_flight = 0

        logger.debug("Async pool executor initialized", max_in_flight=self.max_in_flight)

    def submit(self, key: str, work: Callable[[], Awaitable[R]]) -> "asyncio.Task[R]":
        """
        Submit a unit of work.

        Args:
            key: Identifier of the work (the node name)
            work: Zero-argument coroutine function performing the work

        Returns:
            Task resolving to the work's result. If the executor is stopped before
            the work starts, the task raises ``DispatchCancelledError``.
        """
        self.total_submitted += 1
        task = asyncio.create_task(self._run(key, work), name=f"{self.name_prefix}:{key}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, key: str, work: Callable[[], Awaitable[R]]) -> R:
        async with self._semaphore:
            if self._stopping:
                self.total_not_started += 1
                raise DispatchCancelledError(key)

            self.active[key] = ExecutionContext(key=key, start_time=datetime.now(timezone.utc))
            self.peak_in_flight = max(self.peak_in_flight, len(self.active))

            timer = None
            try:
                async with async_time_operation("materialize", {"node": key}) as timer:
                    result = await work()
                self.total_completed += 1
                return result
            except Exception:
                self.total_failed += 1
                raise
            finally:
                if timer is not None and timer.result is not None:
                    self.durations[key] = timer.result.duration_seconds
                del self.active[key]

    def stop(self):
        """Stop starting new work. Work already running is not interrupted."""
        if not self._stopping:
            logger.info(
                "Executor stopping",
                in_flight=len(self.active),
                pending=len(self._tasks) - len(self.active),
            )
        self._stopping = True

    @property
    def stopping(self) -> bool:
        return self._stopping

    @property
    def in_flight(self) -> int:
        return len(self.active)

    def get_active(self) -> List[Dict[str, Any]]:
        """Information about currently running work."""
        now = datetime.now(timezone.utc)
        return [
            {
                "key": key,
                "start_time": context.start_time.isoformat(),
                "runtime_seconds": (now - context.start_time).total_seconds(),
            }
            for key, context in self.active.items()
        ]

    def get_stats(self) -> Dict[str, Any]:
        """Get executor statistics."""
        finished = self.total_completed + self.total_failed
        return {
            "executor_type": "asyncpool",
            "max_in_flight": self.max_in_flight,
            "in_flight": len(self.active),
            "total_submitted": self.total_submitted,
            "total_completed": self.total_completed,
            "total_failed": self.total_failed,
            "total_not_started": self.total_not_started,
            "success_rate": self.total_completed / max(finished, 1),
            "peak_in_flight": self.peak_in_flight,
            "total_duration_seconds": sum(self.durations.values()),
        }

    async def shutdown(self):
        """Stop and wait for every submitted task to finish."""
        self.stop()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.debug("Async pool executor shutdown complete", **self.get_stats())

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
