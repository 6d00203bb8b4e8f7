"""
Resource kinds and their input/output schemas.

The set of kinds is closed: every resource a stack can declare is one of the
``ResourceKind`` members, and each member has exactly one ``KindSchema`` that
lists its input fields (type, default, whether a change can be applied in place)
and the output fields a provider reports after materialization.
"""

import ipaddress
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import AbstractSet, Any, Callable, Dict, Optional, Sequence, Tuple

from ..errors import InputValidationError
from ..logging import REDACTED
from ..output import UNKNOWN, Output, collect_outputs

_MISSING = object()


class ResourceKind(str, Enum):
    """Kinds of infrastructure a stack can declare."""

    NETWORK = "network"
    SECURITY_GROUP = "security_group"
    TARGET_GROUP = "target_group"
    LOAD_BALANCER = "load_balancer"
    LISTENER = "listener"
    REPOSITORY = "repository"
    IMAGE = "image"
    LOG_GROUP = "log_group"
    CLUSTER = "cluster"
    ROLE = "role"
    POLICY_ATTACHMENT = "policy_attachment"
    TASK_DEFINITION = "task_definition"
    SERVICE = "service"


@dataclass(frozen=True)
class FieldSpec:
    """Schema of one input field."""

    types: Tuple[type, ...]
    required: bool = False
    default: Any = _MISSING
    mutable: bool = True
    choices: Optional[Tuple[Any, ...]] = None
    check: Optional[Callable[[Any], Optional[str]]] = None

    @property
    def has_default(self) -> bool:
        return self.default is not _MISSING

    def problem_with(self, value: Any) -> Optional[str]:
        """Describe why ``value`` is unacceptable, or return None if it is fine."""
        if value is None and not self.required:
            return None
        if isinstance(value, bool) and bool not in self.types:
            return f"type {'/'.join(t.__name__ for t in self.types)}"
        if not isinstance(value, self.types):
            return f"type {'/'.join(t.__name__ for t in self.types)}"
        if self.choices is not None and value not in self.choices:
            return f"one of {', '.join(map(str, self.choices))}"
        if self.check is not None:
            return self.check(value)
        return None


@dataclass(frozen=True)
class KindSchema:
    """Input and output schema of one resource kind."""

    kind: ResourceKind
    inputs: Dict[str, FieldSpec]
    outputs: Tuple[str, ...] = ()
    description: str = ""

    @property
    def output_fields(self) -> Tuple[str, ...]:
        """All output fields, including the physical ``id`` every kind exposes."""
        return ("id",) + tuple(f for f in self.outputs if f != "id")

    @property
    def immutable_fields(self) -> Tuple[str, ...]:
        return tuple(name for name, spec in self.inputs.items() if not spec.mutable)

    def with_defaults(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """Copy of ``inputs`` with defaults filled in for absent optional fields."""
        filled = dict(inputs)
        for name, spec in self.inputs.items():
            if name not in filled and spec.has_default:
                default = spec.default
                filled[name] = default.copy() if isinstance(default, (dict, list)) else default
        return filled

    def validate(self, resource: str, inputs: Dict[str, Any]):
        """Validate declared inputs.

        Literal values are checked in full. Values that are, or contain, Outputs
        are checked once resolved (see ``validate_resolved``).
        """
        for name in inputs:
            if name not in self.inputs:
                raise InputValidationError(
                    resource, name, inputs[name], f"known {self.kind.value} input"
                )

        for name, spec in self.inputs.items():
            if name not in inputs:
                if spec.required:
                    raise InputValidationError(resource, name, None, "required")
                continue

            value = inputs[name]
            if isinstance(value, Output):
                continue
            if collect_outputs(value):
                # Only the container type can be checked before resolution.
                if not isinstance(value, spec.types):
                    raise InputValidationError(
                        resource, name, value, f"type {'/'.join(t.__name__ for t in spec.types)}"
                    )
                continue

            problem = spec.problem_with(value)
            if problem:
                raise InputValidationError(resource, name, value, problem)

    def validate_resolved(
        self, resource: str, inputs: Dict[str, Any], secret_fields: AbstractSet[str] = frozenset()
    ):
        """Validate fully resolved inputs. UNKNOWN values are accepted.

        Values of ``secret_fields`` are reported as ``[secret]`` in errors.
        """
        for name, spec in self.inputs.items():
            value = inputs.get(name)
            if value is UNKNOWN or name not in inputs:
                continue
            if isinstance(value, (list, dict)) and UNKNOWN in _leaves(value):
                continue
            problem = spec.problem_with(value)
            if problem:
                shown = REDACTED if name in secret_fields else value
                raise InputValidationError(resource, name, shown, problem)


def _leaves(value: Any) -> list:
    if isinstance(value, dict):
        return [leaf for v in value.values() for leaf in _leaves(v)]
    if isinstance(value, (list, tuple)):
        return [leaf for v in value for leaf in _leaves(v)]
    return [value]


# ---------------------------------------------------------------------------
# Field checks
# ---------------------------------------------------------------------------


def _cidr(value: str) -> Optional[str]:
    try:
        ipaddress.ip_network(value)
    except ValueError:
        return "valid CIDR block"
    return None


def _port(value: int) -> Optional[str]:
    if not 0 <= value <= 65535:
        return "port between 0 and 65535"
    return None


def _non_negative(value: int) -> Optional[str]:
    if value < 0:
        return "non-negative"
    return None


def _json_document(value: str) -> Optional[str]:
    try:
        json.loads(value)
    except ValueError:
        return "valid JSON document"
    return None


def _rules(value: Sequence[Any]) -> Optional[str]:
    for rule in value:
        if isinstance(rule, Output):
            continue
        if not isinstance(rule, dict):
            return "list of rule mappings"
        missing = {"protocol", "from_port", "to_port"} - set(rule)
        if missing:
            return f"rule with {', '.join(sorted(missing))}"
    return None


def _str_list(value: Sequence[Any]) -> Optional[str]:
    if not all(isinstance(item, str) for item in value):
        return "list of strings"
    return None


STR = (str,)
INT = (int,)
BOOL = (bool,)
LIST = (list, tuple)
DICT = (dict,)


SCHEMAS: Dict[ResourceKind, KindSchema] = {
    ResourceKind.NETWORK: KindSchema(
        kind=ResourceKind.NETWORK,
        description="VPC with public and private subnets across availability zones",
        inputs={
            "cidr_block": FieldSpec(STR, required=True, mutable=False, check=_cidr),
            "enable_dns_hostnames": FieldSpec(BOOL, default=True),
            "subnet_strategy": FieldSpec(
                STR, default="Auto", mutable=False, choices=("Auto", "Exact", "Legacy")
            ),
            "availability_zones": FieldSpec(INT, default=2, mutable=False, check=_non_negative),
            "tags": FieldSpec(DICT, default={}),
        },
        outputs=("vpc_id", "public_subnet_ids", "private_subnet_ids", "cidr_block"),
    ),
    ResourceKind.SECURITY_GROUP: KindSchema(
        kind=ResourceKind.SECURITY_GROUP,
        description="Stateful firewall attached to a VPC",
        inputs={
            "vpc_id": FieldSpec(STR, required=True, mutable=False),
            "description": FieldSpec(STR, default="Managed by stackgraph", mutable=False),
            "ingress": FieldSpec(LIST, default=[], check=_rules),
            "egress": FieldSpec(LIST, default=[], check=_rules),
            "tags": FieldSpec(DICT, default={}),
        },
        outputs=("arn", "name"),
    ),
    ResourceKind.TARGET_GROUP: KindSchema(
        kind=ResourceKind.TARGET_GROUP,
        description="Load balancer target group",
        inputs={
            "port": FieldSpec(INT, required=True, mutable=False, check=_port),
            "protocol": FieldSpec(
                STR, default="HTTP", mutable=False, choices=("HTTP", "HTTPS", "TCP", "UDP")
            ),
            "target_type": FieldSpec(
                STR, default="ip", mutable=False, choices=("ip", "instance", "lambda", "alb")
            ),
            "ip_address_type": FieldSpec(
                STR, default="ipv4", mutable=False, choices=("ipv4", "ipv6")
            ),
            "vpc_id": FieldSpec(STR, required=True, mutable=False),
            "health_check": FieldSpec(DICT, default=None),
        },
        outputs=("arn", "name"),
    ),
    ResourceKind.LOAD_BALANCER: KindSchema(
        kind=ResourceKind.LOAD_BALANCER,
        description="Application or network load balancer",
        inputs={
            "name": FieldSpec(STR, default=None, mutable=False),
            "internal": FieldSpec(BOOL, default=False, mutable=False),
            "load_balancer_type": FieldSpec(
                STR, default="application", mutable=False, choices=("application", "network")
            ),
            "ip_address_type": FieldSpec(STR, default="ipv4", choices=("ipv4", "dualstack")),
            "subnets": FieldSpec(LIST, required=True),
            "security_groups": FieldSpec(LIST, default=[]),
        },
        outputs=("arn", "dns_name", "zone_id"),
    ),
    ResourceKind.LISTENER: KindSchema(
        kind=ResourceKind.LISTENER,
        description="Load balancer listener",
        inputs={
            "load_balancer_arn": FieldSpec(STR, required=True, mutable=False),
            "port": FieldSpec(INT, required=True, check=_port),
            "protocol": FieldSpec(STR, default="HTTP", choices=("HTTP", "HTTPS", "TCP", "UDP")),
            "default_actions": FieldSpec(LIST, required=True),
        },
        outputs=("arn",),
    ),
    ResourceKind.REPOSITORY: KindSchema(
        kind=ResourceKind.REPOSITORY,
        description="Container image registry repository",
        inputs={
            "name": FieldSpec(STR, required=True, mutable=False),
            "scan_on_push": FieldSpec(BOOL, default=False),
            "image_tag_mutability": FieldSpec(
                STR, default="MUTABLE", choices=("MUTABLE", "IMMUTABLE")
            ),
        },
        outputs=("arn", "repository_url", "registry_id"),
    ),
    ResourceKind.IMAGE: KindSchema(
        kind=ResourceKind.IMAGE,
        description="Container image built from local sources and pushed to a registry",
        inputs={
            "image_name": FieldSpec(STR, required=True, mutable=False),
            "build": FieldSpec(DICT, default={}),
            "registry": FieldSpec(DICT, default=None),
        },
        outputs=("image_name", "repo_digest"),
    ),
    ResourceKind.LOG_GROUP: KindSchema(
        kind=ResourceKind.LOG_GROUP,
        description="Log group",
        inputs={
            "name": FieldSpec(STR, default=None, mutable=False),
            "retention_in_days": FieldSpec(INT, default=None, check=_non_negative),
        },
        outputs=("arn", "name"),
    ),
    ResourceKind.CLUSTER: KindSchema(
        kind=ResourceKind.CLUSTER,
        description="Container cluster",
        inputs={
            "name": FieldSpec(STR, default=None, mutable=False),
            "configuration": FieldSpec(DICT, default=None),
        },
        outputs=("arn", "name"),
    ),
    ResourceKind.ROLE: KindSchema(
        kind=ResourceKind.ROLE,
        description="Identity role with a trust policy",
        inputs={
            "name": FieldSpec(STR, default=None, mutable=False),
            "assume_role_policy": FieldSpec(STR, required=True, check=_json_document),
            "description": FieldSpec(STR, default=None),
        },
        outputs=("arn", "name"),
    ),
    ResourceKind.POLICY_ATTACHMENT: KindSchema(
        kind=ResourceKind.POLICY_ATTACHMENT,
        description="Managed policy attached to a role",
        inputs={
            "role": FieldSpec(STR, required=True, mutable=False),
            "policy_arn": FieldSpec(STR, required=True, mutable=False),
        },
    ),
    ResourceKind.TASK_DEFINITION: KindSchema(
        kind=ResourceKind.TASK_DEFINITION,
        description="Container task definition (immutable revisions)",
        inputs={
            "family": FieldSpec(STR, required=True, mutable=False),
            "container_definitions": FieldSpec(
                STR, required=True, mutable=False, check=_json_document
            ),
            "cpu": FieldSpec(STR, default="256", mutable=False),
            "memory": FieldSpec(STR, default="512", mutable=False),
            "network_mode": FieldSpec(
                STR, default="awsvpc", mutable=False, choices=("awsvpc", "bridge", "host", "none")
            ),
            "requires_compatibilities": FieldSpec(
                LIST, default=["FARGATE"], mutable=False, check=_str_list
            ),
            "execution_role_arn": FieldSpec(STR, default=None, mutable=False),
            "task_role_arn": FieldSpec(STR, default=None, mutable=False),
        },
        outputs=("arn", "family", "revision"),
    ),
    ResourceKind.SERVICE: KindSchema(
        kind=ResourceKind.SERVICE,
        description="Long-running container service",
        inputs={
            "cluster": FieldSpec(STR, required=True, mutable=False),
            "task_definition": FieldSpec(STR, required=True),
            "desired_count": FieldSpec(INT, default=1, check=_non_negative),
            "launch_type": FieldSpec(
                STR, default="FARGATE", mutable=False, choices=("FARGATE", "EC2", "EXTERNAL")
            ),
            "network_configuration": FieldSpec(DICT, default=None),
            "load_balancers": FieldSpec(LIST, default=[]),
        },
        outputs=("arn", "name"),
    ),
}


def get_schema(kind: ResourceKind) -> KindSchema:
    """Return the schema of ``kind``."""
    return SCHEMAS[ResourceKind(kind)]
