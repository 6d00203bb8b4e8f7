"""Shared test fixtures for stackgraph."""

import pytest

from stackgraph.config import get_config, reset_config
from stackgraph.provider import SimulatedProvider
from stackgraph.resources import aws
from stackgraph.stack import Stack
from stackgraph.state import MemoryStateBackend
from stackgraph.utils.randfail import FailureInjector

_ENV_VARS = (
    "STACKGRAPH_MAX_IN_FLIGHT",
    "STACKGRAPH_RUN_TIMEOUT_SECONDS",
    "STACKGRAPH_RETRY_ATTEMPTS",
    "STACKGRAPH_RETRY_BACKOFF_SECONDS",
    "STACKGRAPH_RETRY_BACKOFF_FACTOR",
    "STACKGRAPH_RETRY_MAX_BACKOFF_SECONDS",
    "STACKGRAPH_LOG_LEVEL",
    "STACKGRAPH_LOG_FORMAT",
    "STACKGRAPH_STATE_BACKEND",
    "STACKGRAPH_STATE_PATH",
    "STACKGRAPH_REGION",
    "STACKGRAPH_AUDIT_LOG",
    "STACKGRAPH_DEBUG",
)


@pytest.fixture(autouse=True)
def _reset_global_config(monkeypatch):
    """Reset global config and make retries immediate for all tests."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("STACKGRAPH_RETRY_BACKOFF_SECONDS", "0")
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config():
    """Return the default StackGraphConfig."""
    return get_config()


@pytest.fixture
def injector():
    return FailureInjector(seed=7)


@pytest.fixture
def provider(injector):
    """Simulated provider with a failure injector the test can configure."""
    return SimulatedProvider(injector=injector)


@pytest.fixture
def backend():
    return MemoryStateBackend()


@pytest.fixture
def stack(provider, backend):
    return Stack("test", provider, backend)


def web_program(ctx):
    """Network, security group and load balancer; exports the load balancer DNS name."""
    vpc = aws.network(ctx, "vpc", cidr_block="10.0.0.0/16")
    sg = aws.security_group(
        ctx, "web-sg", vpc_id=vpc.output("vpc_id"), ingress=[aws.allow_tcp(80)]
    )
    alb = aws.load_balancer(
        ctx, "alb", subnets=vpc.output("public_subnet_ids"), security_groups=[sg.id]
    )
    ctx.export("url", alb.output("dns_name"))


def independent_program(ctx):
    """Repository and log group with no relation to each other."""
    aws.repository(ctx, "repo")
    aws.log_group(ctx, "logs")


def secret_program(ctx):
    """Image pushed with a registry password from a secret source."""
    repo = aws.repository(ctx, "repo")
    auth = ctx.secrets.get("authorization_token", repo.output("registry_id"))
    aws.image(
        ctx,
        "image",
        image_name=repo.output("repository_url").map(lambda url: f"{url}:latest"),
        registry={
            "server": repo.output("repository_url"),
            "username": "AWS",
            "password": auth.map(lambda token: token.password),
        },
    )
    ctx.export("password", auth.map(lambda token: token.password))


@pytest.fixture
def web():
    return web_program


@pytest.fixture
def independent():
    return independent_program


@pytest.fixture
def secret_image():
    return secret_program
