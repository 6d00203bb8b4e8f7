"""Tests for secret sources and log redaction."""

import pytest

from stackgraph.errors import StackGraphError
from stackgraph.logging import REDACTED, redact_secrets
from stackgraph.output import Output
from stackgraph.secrets import RegistryTokenSource, Secret, StaticSecretSource


class TestSecret:
    def test_repr_hides_value(self):
        secret = Secret("hunter2")
        assert "hunter2" not in repr(secret)
        assert "hunter2" not in str(secret)
        assert secret.reveal() == "hunter2"

    def test_equality_by_value(self):
        assert Secret("a") == Secret("a")
        assert Secret("a") != Secret("b")


class TestStaticSecretSource:
    def test_returns_secret_output(self):
        out = StaticSecretSource({"db_password": "pw"}).get("db_password")
        assert out.is_secret
        assert out.result() == "pw"

    def test_unknown_key(self):
        with pytest.raises(StackGraphError):
            StaticSecretSource().get("missing")


class TestRegistryTokenSource:
    def test_token_is_secret_and_stable(self):
        source = RegistryTokenSource()
        first = source.get("authorization_token", Output.from_value("123456789012"))
        second = source.get("authorization_token", Output.from_value("123456789012"))

        assert first.is_secret
        assert first.result().password == second.result().password
        assert first.result().user_name == "AWS"
        assert source.issued == 2

    def test_token_waits_for_registry_id(self):
        source = RegistryTokenSource()
        registry_id = Output(name="repo.registry_id")
        token = source.authorization_token(registry_id)
        assert token.is_pending

        registry_id.set_value("123456789012")
        assert token.result().proxy_endpoint.startswith("https://123456789012.dkr.ecr.")

    def test_repr_redacts_password(self):
        auth = RegistryTokenSource().get("authorization_token", Output.from_value("1")).result()
        assert auth.password not in repr(auth)

    def test_requires_context(self):
        with pytest.raises(StackGraphError):
            RegistryTokenSource().get("authorization_token")


class TestRedaction:
    def test_secret_values_and_sensitive_keys(self):
        event = redact_secrets(
            None,
            "info",
            {
                "event": "pushing",
                "password": "hunter2",
                "credentials": Secret("s3cr3t"),
                "registry": {"server": "r", "token": "abc"},
                "port": 80,
            },
        )
        assert event["event"] == "pushing"
        assert event["password"] == REDACTED
        assert event["credentials"] == REDACTED
        assert event["registry"] == {"server": "r", "token": REDACTED}
        assert event["port"] == 80
