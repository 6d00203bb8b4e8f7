"""
Structured Logging for stackgraph

This module configures structlog on top of the standard library, attaches a
per-run correlation id to every event, redacts secret values before rendering,
and provides an audit logger that records one event per reconciliation action.
"""

import contextvars
import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from .config import get_config

REDACTED = "[secret]"

# Event keys whose values are always redacted, whatever their type.
SENSITIVE_KEYS = frozenset({"password", "token", "auth_token", "secret", "authorization"})

_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "stackgraph_correlation_id", default=None
)


class CorrelationContext:
    """Manages the correlation id shared by all log events of one run.

    Backed by a context variable so concurrent node tasks spawned from a run
    inherit the run's id.
    """

    @staticmethod
    def get_correlation_id() -> str:
        """Get the current correlation ID, creating one if needed."""
        correlation_id = _correlation_id.get()
        if correlation_id is None:
            correlation_id = str(uuid.uuid4())[:8]
            _correlation_id.set(correlation_id)
        return correlation_id

    @staticmethod
    def set_correlation_id(correlation_id: str) -> contextvars.Token:
        """Set the correlation ID for the current context."""
        return _correlation_id.set(correlation_id)

    @staticmethod
    def reset(token: contextvars.Token):
        """Restore the correlation ID that was active before ``set_correlation_id``."""
        _correlation_id.reset(token)


def _is_secret(value: Any) -> bool:
    return bool(getattr(value, "__stackgraph_secret__", False))


def _redact(key: Optional[str], value: Any) -> Any:
    if _is_secret(value) or (key is not None and key.lower() in SENSITIVE_KEYS):
        return REDACTED
    if isinstance(value, dict):
        return {k: _redact(k if isinstance(k, str) else None, v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(None, v) for v in value)
    return value


def redact_secrets(logger, method_name, event_dict):
    """structlog processor replacing secret values with a placeholder."""
    return {
        key: (value if key == "event" else _redact(key, value))
        for key, value in event_dict.items()
    }


def add_correlation_id(logger, method_name, event_dict):
    """structlog processor adding the run correlation id."""
    event_dict.setdefault("correlation_id", CorrelationContext.get_correlation_id())
    return event_dict


class AuditLogger:
    """Logger for the audit trail of reconciliation actions."""

    def __init__(self, name: str = "stackgraph.audit", audit_file: Optional[str] = None):
        self.logger = structlog.get_logger(name)
        config = get_config()
        path = audit_file or config.logging.audit_log_path
        self.audit_file: Optional[Path] = Path(path) if path else None
        if self.audit_file:
            self.audit_file.parent.mkdir(parents=True, exist_ok=True)

    def log_action_event(
        self, node: str, kind: str, action: str, outcome: str, **details
    ):
        """Log a reconciliation action taken for a node."""
        event = {
            "event_type": "reconcile",
            "node": node,
            "kind": kind,
            "action": action,
            "outcome": outcome,
            "correlation_id": CorrelationContext.get_correlation_id(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details,
        }

        if outcome == "failed":
            self.logger.warning("Reconcile action failed", **event)
        else:
            self.logger.info("Reconcile action", **event)
        self._write_to_audit_file(event)

    def log_run_event(self, stack: str, event_type: str, **details):
        """Log a stack-level run event (started, finished, cancelled)."""
        event = {
            "event_type": "run",
            "stack": stack,
            "run_event": event_type,
            "correlation_id": CorrelationContext.get_correlation_id(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details,
        }

        self.logger.info("Run event", **event)
        self._write_to_audit_file(event)

    def _write_to_audit_file(self, event: Dict[str, Any]):
        """Write event to audit file."""
        if self.audit_file:
            try:
                with open(self.audit_file, "a") as f:
                    f.write(json.dumps(_redact(None, event), default=str) + "\n")
            except OSError as e:
                # The audit trail is best effort; the run itself must not fail on it.
                self.logger.error("Failed to write audit log", error=str(e))


def setup_logging():
    """Setup structured logging for stackgraph."""
    config = get_config()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            add_correlation_id,
            redact_secrets,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            (
                structlog.processors.JSONRenderer(default=str)
                if config.logging.log_format == "json"
                else structlog.dev.ConsoleRenderer()
            ),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    stackgraph_logger = logging.getLogger("stackgraph")
    stackgraph_logger.setLevel(getattr(logging, config.logging.log_level))

    for handler in stackgraph_logger.handlers[:]:
        stackgraph_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    stackgraph_logger.addHandler(console_handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def get_audit_logger() -> AuditLogger:
    """Get an audit logger bound to the configured audit file."""
    return AuditLogger()


# Initialize logging on module import
setup_logging()
