"""
Declaration functions for the AWS-shaped resource kinds.

Each function declares one resource on an explicit builder (a ``ResourceGraph``
or a ``StackContext``) and returns the ``Resource``, whose ``outputs`` can be
passed as inputs of later declarations::

    vpc = network(ctx, "vpc", cidr_block="10.0.0.0/16")
    sg = security_group(ctx, "web-sg", vpc_id=vpc.output("vpc_id"), ingress=[allow_tcp(80)])

Keyword arguments left as ``None`` fall back to the kind's schema defaults.
"""

from typing import Any, Dict, List, Optional, Sequence

from .resource import Resource
from .schema import ResourceKind

ANYWHERE = "0.0.0.0/0"


def _declare(
    builder, name: str, kind: ResourceKind, depends_on: Sequence[Resource], /, **inputs
):
    graph = getattr(builder, "graph", builder)
    return graph.declare(
        name,
        kind,
        {key: value for key, value in inputs.items() if value is not None},
        depends_on=depends_on,
    )


def allow_tcp(port: int, cidr_blocks: Sequence[str] = (ANYWHERE,)) -> Dict[str, Any]:
    """Ingress or egress rule allowing one TCP port."""
    return {
        "protocol": "tcp",
        "from_port": port,
        "to_port": port,
        "cidr_blocks": list(cidr_blocks),
    }


def allow_all(cidr_blocks: Sequence[str] = (ANYWHERE,)) -> Dict[str, Any]:
    """Rule allowing every protocol and port."""
    return {
        "protocol": "-1",
        "from_port": 0,
        "to_port": 0,
        "cidr_blocks": list(cidr_blocks),
    }


def network(
    builder,
    name: str,
    *,
    cidr_block: Any,
    enable_dns_hostnames: Optional[bool] = None,
    subnet_strategy: Optional[str] = None,
    availability_zones: Optional[int] = None,
    tags: Optional[Dict[str, str]] = None,
    depends_on: Sequence[Resource] = (),
) -> Resource:
    """VPC with one public and one private subnet per availability zone."""
    return _declare(
        builder,
        name,
        ResourceKind.NETWORK,
        depends_on,
        cidr_block=cidr_block,
        enable_dns_hostnames=enable_dns_hostnames,
        subnet_strategy=subnet_strategy,
        availability_zones=availability_zones,
        tags=tags,
    )


def security_group(
    builder,
    name: str,
    *,
    vpc_id: Any,
    description: Optional[str] = None,
    ingress: Optional[List[Any]] = None,
    egress: Optional[List[Any]] = None,
    tags: Optional[Dict[str, str]] = None,
    depends_on: Sequence[Resource] = (),
) -> Resource:
    return _declare(
        builder,
        name,
        ResourceKind.SECURITY_GROUP,
        depends_on,
        vpc_id=vpc_id,
        description=description,
        ingress=ingress,
        egress=egress,
        tags=tags,
    )


def target_group(
    builder,
    name: str,
    *,
    port: Any,
    vpc_id: Any,
    protocol: Optional[str] = None,
    target_type: Optional[str] = None,
    ip_address_type: Optional[str] = None,
    health_check: Optional[Dict[str, Any]] = None,
    depends_on: Sequence[Resource] = (),
) -> Resource:
    return _declare(
        builder,
        name,
        ResourceKind.TARGET_GROUP,
        depends_on,
        port=port,
        vpc_id=vpc_id,
        protocol=protocol,
        target_type=target_type,
        ip_address_type=ip_address_type,
        health_check=health_check,
    )


def load_balancer(
    builder,
    name: str,
    *,
    subnets: Any,
    security_groups: Optional[List[Any]] = None,
    internal: Optional[bool] = None,
    load_balancer_type: Optional[str] = None,
    ip_address_type: Optional[str] = None,
    lb_name: Optional[str] = None,
    depends_on: Sequence[Resource] = (),
) -> Resource:
    """Load balancer. ``lb_name`` pins the physical name; otherwise one is generated."""
    return _declare(
        builder,
        name,
        ResourceKind.LOAD_BALANCER,
        depends_on,
        name=lb_name,
        subnets=subnets,
        security_groups=security_groups,
        internal=internal,
        load_balancer_type=load_balancer_type,
        ip_address_type=ip_address_type,
    )


def listener(
    builder,
    name: str,
    *,
    load_balancer_arn: Any,
    port: Any,
    default_actions: List[Any],
    protocol: Optional[str] = None,
    depends_on: Sequence[Resource] = (),
) -> Resource:
    return _declare(
        builder,
        name,
        ResourceKind.LISTENER,
        depends_on,
        load_balancer_arn=load_balancer_arn,
        port=port,
        protocol=protocol,
        default_actions=default_actions,
    )


def forward_to(target_group_arn: Any) -> Dict[str, Any]:
    """Listener action forwarding to a target group."""
    return {"type": "forward", "target_group_arn": target_group_arn}


def repository(
    builder,
    name: str,
    *,
    repository_name: Optional[str] = None,
    scan_on_push: Optional[bool] = None,
    image_tag_mutability: Optional[str] = None,
    depends_on: Sequence[Resource] = (),
) -> Resource:
    """Image repository, named after the logical name unless ``repository_name`` is set."""
    return _declare(
        builder,
        name,
        ResourceKind.REPOSITORY,
        depends_on,
        name=repository_name or name,
        scan_on_push=scan_on_push,
        image_tag_mutability=image_tag_mutability,
    )


def image(
    builder,
    name: str,
    *,
    image_name: Any,
    build: Optional[Dict[str, Any]] = None,
    registry: Any = None,
    depends_on: Sequence[Resource] = (),
) -> Resource:
    return _declare(
        builder,
        name,
        ResourceKind.IMAGE,
        depends_on,
        image_name=image_name,
        build=build,
        registry=registry,
    )


def log_group(
    builder,
    name: str,
    *,
    log_group_name: Optional[str] = None,
    retention_in_days: Optional[int] = None,
    depends_on: Sequence[Resource] = (),
) -> Resource:
    return _declare(
        builder,
        name,
        ResourceKind.LOG_GROUP,
        depends_on,
        name=log_group_name,
        retention_in_days=retention_in_days,
    )


def cluster(
    builder,
    name: str,
    *,
    cluster_name: Optional[str] = None,
    configuration: Any = None,
    depends_on: Sequence[Resource] = (),
) -> Resource:
    return _declare(
        builder,
        name,
        ResourceKind.CLUSTER,
        depends_on,
        name=cluster_name,
        configuration=configuration,
    )


def role(
    builder,
    name: str,
    *,
    assume_role_policy: Any,
    role_name: Optional[str] = None,
    description: Optional[str] = None,
    depends_on: Sequence[Resource] = (),
) -> Resource:
    return _declare(
        builder,
        name,
        ResourceKind.ROLE,
        depends_on,
        name=role_name,
        assume_role_policy=assume_role_policy,
        description=description,
    )


def policy_attachment(
    builder,
    name: str,
    *,
    role: Any,
    policy_arn: Any,
    depends_on: Sequence[Resource] = (),
) -> Resource:
    return _declare(
        builder,
        name,
        ResourceKind.POLICY_ATTACHMENT,
        depends_on,
        role=role,
        policy_arn=policy_arn,
    )


def task_definition(
    builder,
    name: str,
    *,
    family: Any,
    container_definitions: Any,
    cpu: Optional[str] = None,
    memory: Optional[str] = None,
    network_mode: Optional[str] = None,
    requires_compatibilities: Optional[List[str]] = None,
    execution_role_arn: Any = None,
    task_role_arn: Any = None,
    depends_on: Sequence[Resource] = (),
) -> Resource:
    return _declare(
        builder,
        name,
        ResourceKind.TASK_DEFINITION,
        depends_on,
        family=family,
        container_definitions=container_definitions,
        cpu=cpu,
        memory=memory,
        network_mode=network_mode,
        requires_compatibilities=requires_compatibilities,
        execution_role_arn=execution_role_arn,
        task_role_arn=task_role_arn,
    )


def service(
    builder,
    name: str,
    *,
    cluster: Any,
    task_definition: Any,
    desired_count: Optional[int] = None,
    launch_type: Optional[str] = None,
    network_configuration: Any = None,
    load_balancers: Optional[List[Any]] = None,
    depends_on: Sequence[Resource] = (),
) -> Resource:
    return _declare(
        builder,
        name,
        ResourceKind.SERVICE,
        depends_on,
        cluster=cluster,
        task_definition=task_definition,
        desired_count=desired_count,
        launch_type=launch_type,
        network_configuration=network_configuration,
        load_balancers=load_balancers,
    )
