"""Tests for recorded state, backends and the serialized state store."""

import asyncio
import json

import pytest

from stackgraph.errors import StateBackendError
from stackgraph.secrets import RegistryAuthorization
from stackgraph.state import (
    SECRET_MARKER,
    STATE_VERSION,
    FileStateBackend,
    MemoryStateBackend,
    RecordedState,
    ResourceRecord,
    StateStore,
    get_state_backend,
    mask_secrets,
    secret_digest,
)


def _record(name, dependencies=(), **kwargs):
    return ResourceRecord(
        name=name,
        kind=kwargs.pop("kind", "log_group"),
        physical_id=kwargs.pop("physical_id", f"{name}-id"),
        dependencies=list(dependencies),
        **kwargs,
    )


class TestMasking:
    def test_secret_fields_become_digests(self):
        masked = mask_secrets({"password": "hunter2", "port": 80}, {"password"})
        assert masked["port"] == 80
        assert set(masked["password"]) == {SECRET_MARKER}
        assert "hunter2" not in json.dumps(masked)

    def test_digest_is_stable_and_value_sensitive(self):
        assert secret_digest("a") == secret_digest("a")
        assert secret_digest("a") != secret_digest("b")

    def test_digest_covers_dataclass_fields(self):
        def auth(password):
            return RegistryAuthorization("123", "AWS", password, "https://r", "2030-01-01")

        assert secret_digest(auth("one")) != secret_digest(auth("two"))

    def test_values_are_normalized(self):
        masked = mask_secrets({"subnets": ("a", "b")}, ())
        assert masked["subnets"] == ["a", "b"]


class TestRecordedState:
    def test_deletion_order_puts_dependents_first(self):
        state = RecordedState(
            resources={
                "vpc": _record("vpc"),
                "sg": _record("sg", ["vpc"]),
                "alb": _record("alb", ["vpc", "sg"]),
                "repo": _record("repo"),
            }
        )
        order = state.deletion_order(["vpc", "sg", "alb", "repo"])

        assert sorted(order) == ["alb", "repo", "sg", "vpc"]
        assert order.index("alb") < order.index("sg") < order.index("vpc")

    def test_deletion_order_of_subset(self):
        state = RecordedState(resources={"vpc": _record("vpc"), "sg": _record("sg", ["vpc"])})
        assert state.deletion_order(["vpc"]) == ["vpc"]


class TestBackends:
    def test_memory_backend_returns_copies(self):
        backend = MemoryStateBackend()
        state = RecordedState(resources={"vpc": _record("vpc")})
        backend.save(state)
        state.resources.clear()

        assert "vpc" in backend.load().resources
        assert backend.save_count == 1

    def test_file_backend_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        backend = FileStateBackend(str(path))
        backend.save(RecordedState(stack="dev", serial=3, resources={"vpc": _record("vpc")}))

        loaded = backend.load()
        assert loaded.stack == "dev"
        assert loaded.serial == 3
        assert loaded.resources["vpc"].physical_id == "vpc-id"
        assert [p.name for p in path.parent.iterdir()] == ["state.json"]

    def test_file_backend_failed_save_leaves_no_temp_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.mkdir()

        with pytest.raises(StateBackendError):
            FileStateBackend(str(path)).save(RecordedState(stack="dev"))

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]
        assert path.is_dir()

    def test_file_backend_missing_file_is_empty(self, tmp_path):
        loaded = FileStateBackend(str(tmp_path / "absent.json")).load()
        assert loaded.resources == {}

    def test_file_backend_corrupt_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text('{"resources": {"vpc": {"name": 1}}}')
        with pytest.raises(StateBackendError, match="corrupt"):
            FileStateBackend(str(path)).load()

    def test_file_backend_rejects_newer_version(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"version": STATE_VERSION + 1}))
        with pytest.raises(StateBackendError, match="unsupported state version"):
            FileStateBackend(str(path)).load()

    def test_factory(self, tmp_path):
        assert isinstance(get_state_backend("memory"), MemoryStateBackend)
        assert isinstance(get_state_backend("file", str(tmp_path / "s.json")), FileStateBackend)
        with pytest.raises(ValueError):
            get_state_backend("s3")


class TestStateStore:
    def test_record_persists_and_bumps_serial(self):
        backend = MemoryStateBackend()

        async def scenario():
            store = StateStore(backend, "dev")
            store.load()
            await store.record(_record("vpc"))
            await store.record(_record("sg", ["vpc"]))
            return store

        store = asyncio.run(scenario())
        assert store.write_count == 2
        assert backend.state.serial == 2
        assert set(backend.state.resources) == {"vpc", "sg"}
        assert backend.state.stack == "dev"

    def test_rerecord_keeps_created_at(self):
        backend = MemoryStateBackend()

        async def scenario():
            store = StateStore(backend, "dev")
            store.load()
            await store.record(_record("vpc", created_at="2020-01-01T00:00:00+00:00"))
            await store.record(_record("vpc", physical_id="vpc-2"))
            return store.get("vpc")

        record = asyncio.run(scenario())
        assert record.physical_id == "vpc-2"
        assert record.created_at == "2020-01-01T00:00:00+00:00"

    def test_failed_save_rolls_back(self):
        backend = MemoryStateBackend()
        backend.fail_on_save = True

        async def scenario():
            store = StateStore(backend, "dev")
            store.load()
            with pytest.raises(StateBackendError):
                await store.record(_record("vpc"))
            return store

        store = asyncio.run(scenario())
        assert store.get("vpc") is None
        assert store.state.serial == 0

    def test_forget(self):
        backend = MemoryStateBackend(RecordedState(resources={"vpc": _record("vpc")}))

        async def scenario():
            store = StateStore(backend, "dev")
            store.load()
            await store.forget("vpc")
            await store.forget("never-recorded")
            return store

        store = asyncio.run(scenario())
        assert store.get("vpc") is None
        assert store.write_count == 1

    def test_concurrent_writes_are_serialized(self):
        backend = MemoryStateBackend()

        async def scenario():
            store = StateStore(backend, "dev")
            store.load()
            await asyncio.gather(*(store.record(_record(f"logs-{i}")) for i in range(20)))

        asyncio.run(scenario())
        assert backend.state.serial == 20
        assert len(backend.state.resources) == 20
