"""
Provider capability and the simulated in-memory provider.

The engine talks to infrastructure only through the ``Provider`` interface:
create, update and delete, each asynchronous and each allowed to fail with a
``TransientProviderError`` (worth retrying) or a ``PermanentProviderError``.

``SimulatedProvider`` implements the interface in memory. It returns outputs
shaped like the real ones (VPC and subnet ids, load balancer DNS names,
registry URLs, ARNs), records every call, and can inject seeded failures.
"""

import asyncio
import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from .errors import PermanentProviderError
from .logging import get_logger
from .resources.schema import ResourceKind
from .utils.randfail import FailureInjector

logger = get_logger(__name__)

MUTATING_OPERATIONS = ("create", "update", "delete")


@dataclass
class ProviderResult:
    """Physical identity and output values reported by a provider."""

    physical_id: str
    outputs: Dict[str, Any] = field(default_factory=dict)


class Provider(ABC):
    """Infrastructure provider consumed by the reconciler."""

    @abstractmethod
    async def create(self, kind: ResourceKind, name: str, inputs: Dict[str, Any]) -> ProviderResult:
        """Create a resource and report its identity and outputs."""

    @abstractmethod
    async def update(
        self,
        kind: ResourceKind,
        physical_id: str,
        old_inputs: Dict[str, Any],
        new_inputs: Dict[str, Any],
    ) -> ProviderResult:
        """Update a resource in place."""

    @abstractmethod
    async def delete(self, kind: ResourceKind, physical_id: str) -> None:
        """Delete a resource. Deleting an absent resource is not an error."""


@dataclass
class ProviderCall:
    """One call received by the simulated provider."""

    operation: str
    kind: str
    target: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SimulatedResource:
    kind: ResourceKind
    name: str
    inputs: Dict[str, Any]
    outputs: Dict[str, Any]


class SimulatedProvider(Provider):
    """
    In-memory provider producing realistic identifiers.

    Identifiers are derived from a hash of the logical name and a per-provider
    counter, so they are deterministic for a given call sequence and a
    replacement always yields a new identity.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        account_id: str = "123456789012",
        injector: Optional[FailureInjector] = None,
        latency_seconds: float = 0.0,
    ):
        self.region = region
        self.account_id = account_id
        self.injector = injector or FailureInjector()
        self.latency_seconds = latency_seconds

        self.resources: Dict[str, SimulatedResource] = {}
        self.calls: List[ProviderCall] = []
        self._counter = 0
        self._revisions: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    async def create(self, kind: ResourceKind, name: str, inputs: Dict[str, Any]) -> ProviderResult:
        kind = ResourceKind(kind)
        self.calls.append(ProviderCall("create", kind.value, name))
        await self._simulate(f"create:{kind.value}:{name}")

        physical_id, outputs = self._materialize(kind, name, inputs)
        self.resources[physical_id] = SimulatedResource(kind, name, dict(inputs), outputs)

        logger.debug("Simulated create", kind=kind.value, resource=name, physical_id=physical_id)
        return ProviderResult(physical_id, dict(outputs))

    async def update(
        self,
        kind: ResourceKind,
        physical_id: str,
        old_inputs: Dict[str, Any],
        new_inputs: Dict[str, Any],
    ) -> ProviderResult:
        kind = ResourceKind(kind)
        self.calls.append(ProviderCall("update", kind.value, physical_id))
        existing = self.resources.get(physical_id)
        await self._simulate(f"update:{kind.value}:{existing.name if existing else physical_id}")

        if existing is None:
            raise PermanentProviderError(
                "update", f"{kind.value} {physical_id} does not exist", physical_id=physical_id
            )

        outputs = self._refresh_outputs(kind, existing, new_inputs)
        existing.inputs = dict(new_inputs)
        existing.outputs = outputs

        logger.debug("Simulated update", kind=kind.value, physical_id=physical_id)
        return ProviderResult(physical_id, dict(outputs))

    async def delete(self, kind: ResourceKind, physical_id: str) -> None:
        kind = ResourceKind(kind)
        self.calls.append(ProviderCall("delete", kind.value, physical_id))
        existing = self.resources.get(physical_id)
        await self._simulate(f"delete:{kind.value}:{existing.name if existing else physical_id}")

        if self.resources.pop(physical_id, None) is None:
            logger.info("Simulated delete of absent resource", kind=kind.value, physical_id=physical_id)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def mutating_calls(self) -> List[ProviderCall]:
        return [call for call in self.calls if call.operation in MUTATING_OPERATIONS]

    def calls_for(self, target: str) -> List[ProviderCall]:
        """Calls whose target is the given logical name or physical id."""
        return [call for call in self.calls if call.target == target]

    def restore(self, records: Iterable[Any]) -> int:
        """Seed the simulation with previously recorded resources.

        ``records`` are ``ResourceRecord``-like objects. Lets a fresh process
        update or delete what an earlier process created.
        """
        restored = 0
        for record in records:
            if record.physical_id in self.resources:
                continue
            kind = ResourceKind(record.kind)
            self.resources[record.physical_id] = SimulatedResource(
                kind, record.name, dict(record.inputs), dict(record.outputs)
            )
            if kind == ResourceKind.TASK_DEFINITION:
                family = record.outputs.get("family")
                revision = record.outputs.get("revision") or 0
                self._revisions[family] = max(self._revisions.get(family, 0), revision)
            restored += 1
        return restored

    def find(self, name: str) -> Optional[SimulatedResource]:
        """The live simulated resource created for a logical name, if any."""
        for resource in self.resources.values():
            if resource.name == name:
                return resource
        return None

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    async def _simulate(self, operation: str):
        await self.injector.inject_failure(operation)
        # Always yield once so concurrent node tasks interleave as with real I/O.
        await asyncio.sleep(self.latency_seconds)

    def _token(self, name: str, length: int) -> str:
        self._counter += 1
        digest = hashlib.sha1(f"{name}:{self._counter}".encode("utf-8")).hexdigest()
        return digest[:length]

    def _arn(self, service: str, resource: str, global_service: bool = False) -> str:
        region = "" if global_service else self.region
        return f"arn:aws:{service}:{region}:{self.account_id}:{resource}"

    def _auto_name(self, name: str, requested: Optional[str], max_length: int = 32) -> str:
        if requested:
            return requested
        suffix = self._token(name, 7)
        return f"{name[: max_length - 8]}-{suffix}"

    def _materialize(self, kind: ResourceKind, name: str, inputs: Dict[str, Any]):
        if kind == ResourceKind.NETWORK:
            vpc_id = f"vpc-{self._token(name, 17)}"
            zones = inputs.get("availability_zones") or 2
            outputs = {
                "vpc_id": vpc_id,
                "public_subnet_ids": [f"subnet-{self._token(name, 17)}" for _ in range(zones)],
                "private_subnet_ids": [f"subnet-{self._token(name, 17)}" for _ in range(zones)],
                "cidr_block": inputs["cidr_block"],
            }
            return vpc_id, outputs

        if kind == ResourceKind.SECURITY_GROUP:
            group_id = f"sg-{self._token(name, 17)}"
            outputs = {
                "arn": self._arn("ec2", f"security-group/{group_id}"),
                "name": self._auto_name(name, None, 255),
            }
            return group_id, outputs

        if kind == ResourceKind.TARGET_GROUP:
            tg_name = self._auto_name(name, None)
            arn = self._arn(
                "elasticloadbalancing", f"targetgroup/{tg_name}/{self._token(name, 16)}"
            )
            return arn, {"arn": arn, "name": tg_name}

        if kind == ResourceKind.LOAD_BALANCER:
            lb_name = self._auto_name(name, inputs.get("name"))
            prefix = "app" if inputs.get("load_balancer_type", "application") == "application" else "net"
            arn = self._arn(
                "elasticloadbalancing", f"loadbalancer/{prefix}/{lb_name}/{self._token(name, 16)}"
            )
            scheme = "internal-" if inputs.get("internal") else ""
            number = int(self._token(name, 8), 16) % 10**10
            outputs = {
                "arn": arn,
                "dns_name": f"{scheme}{lb_name}-{number}.{self.region}.elb.amazonaws.com",
                "zone_id": "Z35SXDOTRQ7X7K",
            }
            return arn, outputs

        if kind == ResourceKind.LISTENER:
            lb_path = inputs["load_balancer_arn"].split("loadbalancer/", 1)[-1]
            arn = self._arn(
                "elasticloadbalancing", f"listener/{lb_path}/{self._token(name, 16)}"
            )
            return arn, {"arn": arn}

        if kind == ResourceKind.REPOSITORY:
            repo_name = inputs["name"]
            outputs = {
                "arn": self._arn("ecr", f"repository/{repo_name}"),
                "repository_url": (
                    f"{self.account_id}.dkr.ecr.{self.region}.amazonaws.com/{repo_name}"
                ),
                "registry_id": self.account_id,
            }
            return repo_name, outputs

        if kind == ResourceKind.IMAGE:
            return self._push_image(name, inputs)

        if kind == ResourceKind.LOG_GROUP:
            group_name = self._auto_name(name, inputs.get("name"), 512)
            return group_name, {
                "arn": self._arn("logs", f"log-group:{group_name}"),
                "name": group_name,
            }

        if kind == ResourceKind.CLUSTER:
            cluster_name = self._auto_name(name, inputs.get("name"), 255)
            arn = self._arn("ecs", f"cluster/{cluster_name}")
            return arn, {"arn": arn, "name": cluster_name}

        if kind == ResourceKind.ROLE:
            role_name = self._auto_name(name, inputs.get("name"), 64)
            return role_name, {
                "arn": self._arn("iam", f"role/{role_name}", global_service=True),
                "name": role_name,
            }

        if kind == ResourceKind.POLICY_ATTACHMENT:
            return f"{inputs['role']}-{self._token(name, 20)}", {}

        if kind == ResourceKind.TASK_DEFINITION:
            family = inputs["family"]
            revision = self._revisions.get(family, 0) + 1
            self._revisions[family] = revision
            arn = self._arn("ecs", f"task-definition/{family}:{revision}")
            return arn, {"arn": arn, "family": family, "revision": revision}

        if kind == ResourceKind.SERVICE:
            cluster_name = inputs["cluster"].rsplit("/", 1)[-1]
            service_name = self._auto_name(name, None, 255)
            arn = self._arn("ecs", f"service/{cluster_name}/{service_name}")
            return arn, {"arn": arn, "name": service_name}

        raise PermanentProviderError("create", f"unsupported kind {kind.value}")

    def _push_image(self, name: str, inputs: Dict[str, Any]):
        registry = inputs.get("registry")
        if registry is not None and not registry.get("password"):
            raise PermanentProviderError(
                "push", "registry authentication failed: no password", resource=name
            )

        image_name = inputs["image_name"]
        build = inputs.get("build") or {}
        digest = hashlib.sha256(
            f"{image_name}:{sorted(build.items())}:{self._token(name, 8)}".encode("utf-8")
        ).hexdigest()
        repo_digest = f"{image_name.rsplit(':', 1)[0]}@sha256:{digest}"
        return repo_digest, {"image_name": image_name, "repo_digest": repo_digest}

    def _refresh_outputs(
        self, kind: ResourceKind, existing: SimulatedResource, new_inputs: Dict[str, Any]
    ) -> Dict[str, Any]:
        outputs = dict(existing.outputs)
        if kind == ResourceKind.IMAGE:
            _, outputs = self._push_image(existing.name, new_inputs)
        return outputs
