"""
Seeded failure injection for provider calls.

Lets tests and demos reproduce provider failures (throttling, timeouts, quota and
permission errors) deterministically, either with a probability drawn from a
seeded generator or for the first N matching calls.
"""

import asyncio
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import PermanentProviderError, ProviderError, TransientProviderError
from ..logging import get_logger

logger = get_logger(__name__)


class FailureType(Enum):
    """Types of provider failures that can be injected."""

    THROTTLED = "throttled"
    TIMEOUT = "timeout"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_REQUEST = "invalid_request"
    ACCESS_DENIED = "access_denied"

    @property
    def transient(self) -> bool:
        return self in (FailureType.THROTTLED, FailureType.TIMEOUT)


@dataclass
class FailureConfig:
    """Configuration for failures injected into one operation."""

    failure_type: FailureType
    probability: float = 1.0  # 0.0 to 1.0
    times: Optional[int] = None  # Fail at most this many calls, then stop
    delay_seconds: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not 0.0 <= self.probability <= 1.0:
            raise ValueError("Failure probability must be between 0.0 and 1.0")

        if self.times is not None and self.times < 0:
            raise ValueError("times cannot be negative")


class FailureInjector:
    """Seeded failure injector keyed by operation.

    Operations are strings such as ``"create:network"`` (any network create) or
    ``"create:network:vpc"`` (the create of the resource named ``vpc``). The
    most specific configured key wins.
    """

    def __init__(self, seed: int = 42):
        self.seed = seed
        self.rng = random.Random(seed)
        self.failure_configs: Dict[str, FailureConfig] = {}
        self.injection_counts: Dict[str, int] = {}
        self.injection_history: List[Dict[str, Any]] = []
        self.enabled = True

    def configure_failure(self, operation: str, config: FailureConfig):
        """Configure failure injection for an operation."""
        self.failure_configs[operation] = config
        self.injection_counts.setdefault(operation, 0)
        logger.debug(
            "Failure injection configured",
            operation=operation,
            failure_type=config.failure_type.value,
            probability=config.probability,
            times=config.times,
        )

    def _match(self, operation: str) -> Optional[str]:
        parts = operation.split(":")
        for end in range(len(parts), 0, -1):
            key = ":".join(parts[:end])
            if key in self.failure_configs:
                return key
        return None

    def should_inject_failure(self, operation: str) -> Optional[str]:
        """Return the matching configuration key if a failure should be injected."""
        if not self.enabled:
            return None

        key = self._match(operation)
        if key is None:
            return None

        config = self.failure_configs[key]
        if config.times is not None and self.injection_counts[key] >= config.times:
            return None

        if self.rng.random() < config.probability:
            return key
        return None

    async def inject_failure(self, operation: str) -> None:
        """Raise the configured provider error for ``operation``, if one is due."""
        key = self.should_inject_failure(operation)
        if key is None:
            return

        config = self.failure_configs[key]
        self.injection_counts[key] += 1

        if config.delay_seconds:
            await asyncio.sleep(config.delay_seconds)

        self.injection_history.append(
            {
                "timestamp": time.time(),
                "operation": operation,
                "failure_type": config.failure_type.value,
                "metadata": config.metadata,
            }
        )

        messages = {
            FailureType.THROTTLED: "Rate exceeded",
            FailureType.TIMEOUT: "Request timed out",
            FailureType.QUOTA_EXCEEDED: "Resource quota exceeded",
            FailureType.INVALID_REQUEST: "Invalid request parameters",
            FailureType.ACCESS_DENIED: "Access denied",
        }
        message = messages[config.failure_type]

        logger.warning(
            "Failure injected",
            operation=operation,
            failure_type=config.failure_type.value,
        )

        error_class = (
            TransientProviderError if config.failure_type.transient else PermanentProviderError
        )
        error: ProviderError = error_class(
            operation, message, failure_type=config.failure_type.value, **config.metadata
        )
        raise error

    def enable(self):
        """Enable failure injection."""
        self.enabled = True

    def disable(self):
        """Disable failure injection."""
        self.enabled = False

    def reset(self):
        """Reset generator, counters and history."""
        self.rng = random.Random(self.seed)
        self.injection_counts = {key: 0 for key in self.failure_configs}
        self.injection_history.clear()
