"""Configuration Management for stackgraph

This module provides centralized configuration management using Pydantic
settings for the backend section and validated dataclasses for the operational
sections. The backend section is immutable once loaded.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import raise_configuration_error

VALID_STATE_BACKENDS = ("file", "memory")

# Hard ceiling on concurrent provider calls, regardless of configuration.
MAX_IN_FLIGHT_CAP = 256


class BackendConfig(BaseSettings):
    """Immutable backend configuration: where state lives and which region is targeted."""

    state_backend: str = Field(default="file", description="Recorded state backend (file|memory)")
    state_path: str = Field(
        default=".stackgraph/state.json", description="Path of the JSON state file"
    )
    region: str = Field(default="us-east-1", description="Target provider region")

    @field_validator("state_backend")
    @classmethod
    def validate_state_backend(cls, v):
        v = v.lower().strip()
        if v not in VALID_STATE_BACKENDS:
            raise ValueError(f"STATE_BACKEND must be one of {', '.join(VALID_STATE_BACKENDS)}")
        return v

    @field_validator("region")
    @classmethod
    def validate_region(cls, v):
        if not v:
            raise ValueError("REGION cannot be empty")
        return v

    model_config = SettingsConfigDict(env_prefix="STACKGRAPH_", frozen=True, extra="ignore")


@dataclass
class ExecutionConfig:
    """Configuration for graph execution."""

    max_in_flight: int = 32
    run_timeout_seconds: Optional[float] = None

    def __post_init__(self):
        """Validate execution configuration."""
        if self.max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")

        if self.max_in_flight > MAX_IN_FLIGHT_CAP:
            raise ValueError(f"max_in_flight cannot exceed {MAX_IN_FLIGHT_CAP}")

        if self.run_timeout_seconds is not None and self.run_timeout_seconds <= 0:
            raise ValueError("run_timeout_seconds must be positive")


@dataclass
class RetryConfig:
    """Retry policy for transient provider errors."""

    max_attempts: int = 3
    backoff_base_seconds: float = 0.5
    backoff_factor: float = 2.0
    max_backoff_seconds: float = 30.0

    def __post_init__(self):
        """Validate retry configuration."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        if self.backoff_base_seconds < 0:
            raise ValueError("backoff_base_seconds must be non-negative")

        if self.backoff_factor < 1.0:
            raise ValueError("backoff_factor must be at least 1.0")

        if self.max_backoff_seconds < self.backoff_base_seconds:
            raise ValueError("max_backoff_seconds cannot be smaller than backoff_base_seconds")

    def backoff_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        delay = self.backoff_base_seconds * (self.backoff_factor ** (attempt - 1))
        return min(delay, self.max_backoff_seconds)


@dataclass
class LoggingConfig:
    """Configuration for logging and auditing."""

    log_level: str = "INFO"
    log_format: str = "console"
    audit_log_path: Optional[str] = None

    def __post_init__(self):
        """Validate logging configuration."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level not in valid_levels:
            raise ValueError(f"Invalid log level: {self.log_level}")

        valid_formats = ["console", "json"]
        if self.log_format not in valid_formats:
            raise ValueError(f"Invalid log format: {self.log_format}")


@dataclass
class StackGraphConfig:
    """Main configuration class for stackgraph."""

    backend: BackendConfig = field(default_factory=BackendConfig)

    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    debug: bool = False

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "StackGraphConfig":
        """Load configuration from environment variables."""

        if env_file:
            cls._load_env_file(env_file)

        backend = BackendConfig()

        timeout = os.getenv("STACKGRAPH_RUN_TIMEOUT_SECONDS")
        execution = ExecutionConfig(
            max_in_flight=cls._get_int_env("STACKGRAPH_MAX_IN_FLIGHT", 32),
            run_timeout_seconds=float(timeout) if timeout else None,
        )

        retry = RetryConfig(
            max_attempts=cls._get_int_env("STACKGRAPH_RETRY_ATTEMPTS", 3),
            backoff_base_seconds=cls._get_float_env("STACKGRAPH_RETRY_BACKOFF_SECONDS", 0.5),
            backoff_factor=cls._get_float_env("STACKGRAPH_RETRY_BACKOFF_FACTOR", 2.0),
            max_backoff_seconds=cls._get_float_env("STACKGRAPH_RETRY_MAX_BACKOFF_SECONDS", 30.0),
        )

        logging = LoggingConfig(
            log_level=os.getenv("STACKGRAPH_LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("STACKGRAPH_LOG_FORMAT", "console").lower(),
            audit_log_path=os.getenv("STACKGRAPH_AUDIT_LOG") or None,
        )

        debug = cls._get_bool_env("STACKGRAPH_DEBUG", False)

        return cls(
            backend=backend,
            execution=execution,
            retry=retry,
            logging=logging,
            debug=debug,
        )

    @staticmethod
    def _load_env_file(env_file: str):
        """Load environment variables from file."""
        env_path = Path(env_file)
        if not env_path.exists():
            return

        with open(env_path, "r") as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, value = line.split("=", 1)
                    os.environ[key.strip()] = value.strip()

    @staticmethod
    def _get_bool_env(key: str, default: bool) -> bool:
        """Get boolean environment variable."""
        value = os.getenv(key, str(default)).lower()
        return value in ("true", "1", "yes", "on")

    @staticmethod
    def _get_int_env(key: str, default: int) -> int:
        """Get integer environment variable."""
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            return default

    @staticmethod
    def _get_float_env(key: str, default: float) -> float:
        """Get float environment variable."""
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            return default

    def validate(self) -> List[str]:
        """Validate the entire configuration and return any errors."""
        errors = []

        if self.backend.state_backend == "file" and not self.backend.state_path:
            errors.append("File state backend requires a state_path")

        if (
            self.execution.run_timeout_seconds is not None
            and self.execution.run_timeout_seconds < self.retry.backoff_base_seconds
        ):
            errors.append("run_timeout_seconds is shorter than a single retry backoff")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "backend": {
                "state_backend": self.backend.state_backend,
                "state_path": self.backend.state_path,
                "region": self.backend.region,
            },
            "execution": {
                "max_in_flight": self.execution.max_in_flight,
                "run_timeout_seconds": self.execution.run_timeout_seconds,
            },
            "retry": {
                "max_attempts": self.retry.max_attempts,
                "backoff_base_seconds": self.retry.backoff_base_seconds,
                "backoff_factor": self.retry.backoff_factor,
                "max_backoff_seconds": self.retry.max_backoff_seconds,
            },
            "logging": {
                "log_level": self.logging.log_level,
                "log_format": self.logging.log_format,
                "audit_log_path": self.logging.audit_log_path,
            },
            "debug": self.debug,
        }

    def __str__(self) -> str:
        return (
            f"StackGraphConfig(state={self.backend.state_backend}, "
            f"max_in_flight={self.execution.max_in_flight})"
        )


# Global configuration instance
_global_config: Optional[StackGraphConfig] = None


def get_config() -> StackGraphConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = StackGraphConfig.from_env()
    return _global_config


def set_config(config: StackGraphConfig):
    """Set the global configuration instance."""
    global _global_config

    errors = config.validate()
    if errors:
        raise_configuration_error("config", "; ".join(errors), "a consistent configuration")

    _global_config = config


def reset_config():
    """Reset the global configuration to default."""
    global _global_config
    _global_config = None
