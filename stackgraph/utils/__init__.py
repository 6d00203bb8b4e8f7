"""
Utility modules for stackgraph.
"""

from .randfail import FailureConfig, FailureInjector, FailureType
from .timers import AsyncTimer, TimingResult, async_time_operation

__all__ = [
    "AsyncTimer",
    "TimingResult",
    "async_time_operation",
    "FailureConfig",
    "FailureInjector",
    "FailureType",
]
