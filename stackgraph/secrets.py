"""
Secret sources.

A secret source produces secret Outputs: values such as registry passwords that
flow into resource inputs but must never appear in logs, CLI output, or recorded
state. Outputs derived from a secret Output stay secret.
"""

import base64
import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .errors import StackGraphError
from .logging import get_logger
from .output import Output

logger = get_logger(__name__)


class Secret:
    """Wrapper that keeps a value out of reprs and logs.

    The logging redaction processor recognizes instances through the
    ``__stackgraph_secret__`` marker.
    """

    __stackgraph_secret__ = True
    __slots__ = ("_value",)

    def __init__(self, value: Any):
        self._value = value

    def reveal(self) -> Any:
        return self._value

    def __eq__(self, other):
        if not isinstance(other, Secret):
            return NotImplemented
        return hmac.compare_digest(str(self._value), str(other._value))

    def __hash__(self):
        return hash(("secret", str(self._value)))

    def __repr__(self) -> str:
        return "Secret([secret])"

    __str__ = __repr__


@dataclass(frozen=True)
class RegistryAuthorization:
    """Registry credentials, as returned by a registry token call."""

    registry_id: str
    user_name: str
    password: str
    proxy_endpoint: str
    expires_at: str

    def __repr__(self) -> str:
        return (
            f"RegistryAuthorization(registry_id={self.registry_id!r}, "
            f"user_name={self.user_name!r}, password=[secret], "
            f"proxy_endpoint={self.proxy_endpoint!r})"
        )


class SecretSource(ABC):
    """Produces secret Outputs."""

    @abstractmethod
    def get(self, key: str, context: Optional[Output] = None) -> Output:
        """Secret Output for ``key``, optionally derived from a context Output."""


class StaticSecretSource(SecretSource):
    """Secrets supplied up front (environment, a vault read done by the caller)."""

    def __init__(self, values: Optional[Dict[str, Any]] = None):
        self._values = dict(values or {})

    def get(self, key: str, context: Optional[Output] = None) -> Output:
        if key not in self._values:
            raise StackGraphError(f"Unknown secret {key}", {"key": key})
        return Output.secret(self._values[key], name=f"secret:{key}")


class RegistryTokenSource(SecretSource):
    """
    Simulated registry authorization tokens.

    The token for a registry is derived from the registry id with an HMAC keyed by
    ``signing_key``, so it is stable across runs for the same registry. That
    keeps resources consuming it unchanged between identical runs.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        signing_key: str = "stackgraph-simulated-registry",
        validity_hours: int = 12,
    ):
        self.region = region
        self._signing_key = signing_key.encode("utf-8")
        self.validity_hours = validity_hours
        self.issued = 0

    def get(self, key: str, context: Optional[Output] = None) -> Output:
        if key != "authorization_token":
            raise StackGraphError(f"Unknown registry secret {key}", {"key": key})
        if context is None:
            raise StackGraphError("authorization_token requires a registry id Output")
        return self.authorization_token(context)

    def authorization_token(self, registry_id: Output) -> Output:
        """Secret Output of the ``RegistryAuthorization`` for a registry id Output."""
        token = registry_id.map(self._issue, name=f"{registry_id.name}:authorization_token")
        token.is_secret = True
        return token

    def _issue(self, registry_id: str) -> RegistryAuthorization:
        self.issued += 1
        signature = hmac.new(
            self._signing_key, registry_id.encode("utf-8"), hashlib.sha256
        ).hexdigest()
        password = base64.b64encode(f"AWS:{signature}".encode("utf-8")).decode("ascii")
        expires_at = datetime.now(timezone.utc) + timedelta(hours=self.validity_hours)

        logger.info("Registry authorization issued", registry_id=registry_id)

        return RegistryAuthorization(
            registry_id=registry_id,
            user_name="AWS",
            password=password,
            proxy_endpoint=f"https://{registry_id}.dkr.ecr.{self.region}.amazonaws.com",
            expires_at=expires_at.isoformat(),
        )
