"""
Containerized web service behind an application load balancer.

Declares a VPC, an internet-facing load balancer with an HTTP listener, a
container repository with an image built from local sources, a cluster, the task
execution role, a task definition and a service running one task. Exports the
load balancer DNS name as ``url``.
"""

import json

from ..output import Output
from ..resources import aws

TASK_EXECUTION_POLICY_ARN = (
    "arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"
)

TASK_EXECUTION_TRUST_POLICY = json.dumps(
    {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"Service": "ecs-tasks.amazonaws.com"},
                "Action": "sts:AssumeRole",
            }
        ],
    },
    indent=2,
)

CONTAINER_NAME = "web-app"
CONTAINER_PORT = 80
LOG_STREAM_PREFIX = "fargate-service"


def container_definitions(image_name: str, log_group_name: str, region: str) -> str:
    """JSON container definitions for a single web container logging to a log group."""
    return json.dumps(
        [
            {
                "name": CONTAINER_NAME,
                "image": image_name,
                "portMappings": [
                    {
                        "containerPort": CONTAINER_PORT,
                        "hostPort": CONTAINER_PORT,
                        "protocol": "tcp",
                    }
                ],
                "logConfiguration": {
                    "logDriver": "awslogs",
                    "options": {
                        "awslogs-create-group": "true",
                        "awslogs-group": log_group_name,
                        "awslogs-region": region,
                        "awslogs-stream-prefix": LOG_STREAM_PREFIX,
                    },
                },
            }
        ],
        indent=2,
    )


def program(ctx, region: str = "us-east-1"):
    """Declare the service stack on ``ctx``."""
    vpc = aws.network(
        ctx,
        "vpc",
        cidr_block="10.0.0.0/16",
        enable_dns_hostnames=True,
        subnet_strategy="Auto",
    )

    target_group = aws.target_group(
        ctx,
        "web-target-group",
        port=CONTAINER_PORT,
        protocol="HTTP",
        # awsvpc tasks register by ENI address, not by instance.
        target_type="ip",
        ip_address_type="ipv4",
        vpc_id=vpc.output("vpc_id"),
    )

    web_sg = aws.security_group(
        ctx,
        "web-sg",
        description="Allow HTTP inbound traffic",
        vpc_id=vpc.output("vpc_id"),
        ingress=[aws.allow_tcp(80)],
        egress=[aws.allow_all()],
    )

    alb = aws.load_balancer(
        ctx,
        "web-alb",
        lb_name="web-alb",
        internal=False,
        ip_address_type="ipv4",
        load_balancer_type="application",
        subnets=vpc.output("public_subnet_ids"),
        security_groups=[web_sg.id],
    )

    aws.listener(
        ctx,
        "web-alb-listener",
        load_balancer_arn=alb.output("arn"),
        port=80,
        protocol="HTTP",
        default_actions=[aws.forward_to(target_group.output("arn"))],
    )

    repo = aws.repository(
        ctx, "app-repo", repository_name="web-app-repository", scan_on_push=True
    )

    auth = ctx.secrets.get("authorization_token", repo.output("registry_id"))
    image_name = repo.output("repository_url").map(lambda url: f"{url}:latest")

    app_image = aws.image(
        ctx,
        "app-image",
        image_name=image_name,
        build={
            "args": {"BUILDKIT_INLINE_CACHE": "1"},
            "cache_from": [image_name],
            "context": "./",
            "dockerfile": "Dockerfile",
            "platform": "linux/arm64",
        },
        registry={
            "server": repo.output("repository_url"),
            "username": "AWS",
            "password": auth.map(lambda token: token.password),
        },
    )

    logs = aws.log_group(ctx, "app-logs")

    ecs_cluster = aws.cluster(
        ctx,
        "app-cluster",
        configuration={
            "execute_command": {
                "logging": "OVERRIDE",
                "log_configuration": {
                    "cloud_watch_encryption_enabled": True,
                    "cloud_watch_log_group_name": logs.output("name"),
                },
            }
        },
    )

    definitions = Output.combine(
        app_image.output("image_name"), logs.output("name"), name="container_definitions"
    ).map(lambda values: container_definitions(values[0], values[1], region))

    exec_role = aws.role(
        ctx,
        "task-exec-role",
        assume_role_policy=TASK_EXECUTION_TRUST_POLICY,
        description="Lets the container agent pull images and write logs",
    )

    attachment = aws.policy_attachment(
        ctx,
        "task-exec-policy",
        role=exec_role.output("name"),
        policy_arn=TASK_EXECUTION_POLICY_ARN,
    )

    task = aws.task_definition(
        ctx,
        "app-task",
        family="web-app-task",
        container_definitions=definitions,
        cpu="256",
        memory="512",
        network_mode="awsvpc",
        requires_compatibilities=["FARGATE"],
        execution_role_arn=exec_role.output("arn"),
        depends_on=[attachment],
    )

    aws.service(
        ctx,
        "app-service",
        cluster=ecs_cluster.output("arn"),
        task_definition=task.output("arn"),
        desired_count=1,
        launch_type="FARGATE",
        network_configuration={
            "assign_public_ip": True,
            "security_groups": [web_sg.id],
            "subnets": vpc.output("public_subnet_ids"),
        },
        load_balancers=[
            {
                "target_group_arn": target_group.output("arn"),
                "container_name": CONTAINER_NAME,
                "container_port": CONTAINER_PORT,
            }
        ],
    )

    ctx.export("url", alb.output("dns_name"))
