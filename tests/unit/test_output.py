"""Tests for the Output value engine."""

import asyncio

import pytest

from stackgraph.errors import OutputAlreadySetError, OutputError, StackGraphError
from stackgraph.output import UNKNOWN, Output, collect_outputs, referenced_resources


class TestSingleAssignment:
    def test_from_value_is_resolved(self):
        out = Output.from_value(42)
        assert out.is_resolved
        assert out.result() == 42

    def test_pending_result_raises(self):
        out = Output(name="vpc.id")
        assert out.is_pending
        with pytest.raises(StackGraphError, match="not resolved yet"):
            out.result()

    def test_second_set_value_rejected(self):
        out = Output(name="vpc.id")
        out.set_value("vpc-1")
        with pytest.raises(OutputAlreadySetError):
            out.set_value("vpc-2")
        assert out.result() == "vpc-1"

    def test_set_error_after_value_rejected(self):
        out = Output.from_value(1)
        with pytest.raises(OutputAlreadySetError):
            out.set_error(ValueError("late"))

    def test_failure_wraps_cause(self):
        out = Output(name="vpc.id")
        cause = RuntimeError("boom")
        out.set_error(cause)
        assert out.is_failed
        assert isinstance(out.error, OutputError)
        assert out.error.cause is cause
        with pytest.raises(OutputError):
            out.result()


class TestMap:
    def test_continuation_runs_once_on_resolution(self):
        calls = []
        source = Output(name="repo.url")
        derived = source.map(lambda url: calls.append(url) or f"{url}:latest")

        assert derived.is_pending
        assert calls == []

        source.set_value("registry/app")
        assert calls == ["registry/app"]
        assert derived.result() == "registry/app:latest"

    def test_continuation_never_runs_on_failure(self):
        calls = []
        source = Output(name="repo.url")
        derived = source.map(lambda url: calls.append(url), name="image_name")

        cause = ValueError("create failed")
        source.set_error(cause)

        assert calls == []
        assert derived.is_failed
        assert derived.error.root_cause is cause
        assert derived.error.chain == ["image_name"]

    def test_failure_chain_grows_downstream(self):
        source = Output(name="a")
        last = source.map(str, name="b").map(str, name="c")
        source.set_error(KeyError("x"))
        assert last.error.chain == ["b", "c"]

    def test_exception_in_continuation_fails_output(self):
        source = Output.from_value(0)
        derived = source.map(lambda v: 1 / v, name="ratio")
        assert derived.is_failed
        assert isinstance(derived.error.root_cause, ZeroDivisionError)

    def test_returning_output_is_flattened(self):
        inner = Output(name="inner")
        derived = Output.from_value(1).map(lambda _: inner)
        assert derived.is_pending
        inner.set_value("done")
        assert derived.result() == "done"

    def test_unknown_short_circuits(self):
        calls = []
        derived = Output.from_value(UNKNOWN).map(lambda v: calls.append(v))
        assert calls == []
        assert derived.result() is UNKNOWN
        assert derived.is_unknown

    def test_getitem(self):
        subnets = Output.from_value(["subnet-a", "subnet-b"])
        assert subnets[1].result() == "subnet-b"

    def test_no_truth_value(self):
        with pytest.raises(TypeError):
            bool(Output(name="pending"))

    def test_not_iterable(self):
        with pytest.raises(TypeError):
            list(Output.from_value([1, 2]))


class TestCombine:
    def test_values_in_argument_order(self):
        a, b = Output(name="a"), Output(name="b")
        combined = Output.combine(a, b)
        b.set_value(2)
        assert combined.is_pending
        a.set_value(1)
        assert combined.result() == (1, 2)

    def test_fails_when_any_input_fails(self):
        a, b = Output(name="a"), Output(name="b")
        combined = Output.combine(a, b, name="pair")
        a.set_error(RuntimeError("a failed"))
        assert combined.is_failed
        assert combined.error.chain == ["pair"]
        b.set_value(2)
        assert combined.is_failed

    def test_empty_combine_resolves(self):
        assert Output.combine().result() == ()

    def test_resources_are_unioned(self):
        a = Output(name="a", resources={"vpc"})
        b = Output(name="b", resources={"sg"})
        assert Output.combine(a, b).resources == frozenset({"vpc", "sg"})

    def test_all_substitutes_nested_structure(self):
        vpc_id = Output(name="vpc_id")
        structure = {"vpc": vpc_id, "rules": [{"port": 80, "sg": vpc_id}], "name": "web"}
        resolved = Output.all(structure)
        vpc_id.set_value("vpc-123")
        assert resolved.result() == {
            "vpc": "vpc-123",
            "rules": [{"port": 80, "sg": "vpc-123"}],
            "name": "web",
        }

    def test_all_keeps_known_values_next_to_unknown(self):
        resolved = Output.all({"a": Output.from_value(UNKNOWN), "b": Output.from_value(1)})
        assert resolved.result() == {"a": UNKNOWN, "b": 1}


class TestSecrets:
    def test_secret_propagates_through_map(self):
        token = Output.secret("hunter2")
        assert token.map(str.upper).is_secret

    def test_secret_propagates_through_combine(self):
        combined = Output.combine(Output.from_value(1), Output.secret("s"))
        assert combined.is_secret

    def test_repr_redacts_secret(self):
        assert "hunter2" not in repr(Output.secret("hunter2"))


class TestResolve:
    def test_resolve_waits_for_value(self):
        async def scenario():
            out = Output(name="later")
            asyncio.get_running_loop().call_later(0.01, out.set_value, "ready")
            return await out.resolve()

        assert asyncio.run(scenario()) == "ready"

    def test_resolve_raises_failure(self):
        async def scenario():
            out = Output(name="later")
            asyncio.get_running_loop().call_soon(out.set_error, ValueError("no"))
            await out.resolve()

        with pytest.raises(OutputError):
            asyncio.run(scenario())


class TestHelpers:
    def test_collect_outputs_deduplicates(self):
        a = Output(name="a")
        assert collect_outputs({"x": a, "y": [a, 1]}) == [a]

    def test_referenced_resources(self):
        a = Output(name="a", resources={"vpc"})
        b = Output(name="b", resources={"repo"}).map(str)
        assert referenced_resources([a, {"k": b}]) == frozenset({"vpc", "repo"})
