"""
Timing utilities for measuring node materialization and run durations.
"""

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..logging import get_logger

logger = get_logger(__name__)


@dataclass
class TimingResult:
    """Result of a timing operation."""

    operation: str
    start_time: datetime
    end_time: datetime
    duration_seconds: float
    success: bool
    metadata: Dict[str, Any]

    @property
    def duration_ms(self) -> float:
        """Duration in milliseconds."""
        return self.duration_seconds * 1000


class AsyncTimer:
    """High-precision timer for async operations."""

    def __init__(self, operation: str, metadata: Optional[Dict[str, Any]] = None):
        self.operation = operation
        self.metadata = metadata or {}
        self.start_time: Optional[float] = None
        self.start_datetime: Optional[datetime] = None
        self.result: Optional[TimingResult] = None
        self.success = True

    async def start(self) -> "AsyncTimer":
        """Start the timer."""
        self.start_time = time.perf_counter()
        self.start_datetime = datetime.now(timezone.utc)
        return self

    async def stop(self) -> TimingResult:
        """Stop the timer and return results."""
        if self.start_time is None:
            raise ValueError("Timer not started")

        duration = time.perf_counter() - self.start_time

        self.result = TimingResult(
            operation=self.operation,
            start_time=self.start_datetime,
            end_time=datetime.now(timezone.utc),
            duration_seconds=duration,
            success=self.success,
            metadata=self.metadata,
        )
        return self.result

    def mark_failure(self):
        """Mark the operation as failed."""
        self.success = False

    async def __aenter__(self) -> "AsyncTimer":
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.mark_failure()
        await self.stop()


@asynccontextmanager
async def async_time_operation(operation: str, metadata: Optional[Dict[str, Any]] = None):
    """Async context manager for timing operations."""
    timer = AsyncTimer(operation, metadata)
    try:
        await timer.start()
        yield timer
    except BaseException:
        timer.mark_failure()
        raise
    finally:
        result = await timer.stop()
        logger.debug(
            "Operation timed",
            operation=operation,
            duration_ms=round(result.duration_ms, 3),
            success=result.success,
            **(metadata or {}),
        )
