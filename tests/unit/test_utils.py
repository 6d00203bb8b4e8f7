"""Tests for utility modules (timers, randfail)."""

import asyncio

import pytest

from stackgraph.errors import PermanentProviderError, TransientProviderError
from stackgraph.utils.randfail import FailureConfig, FailureInjector, FailureType
from stackgraph.utils.timers import AsyncTimer, TimingResult, async_time_operation


class TestAsyncTimer:
    def test_basic_timing(self):
        async def scenario():
            timer = await AsyncTimer("op").start()
            await asyncio.sleep(0.01)
            return await timer.stop()

        result = asyncio.run(scenario())
        assert isinstance(result, TimingResult)
        assert result.duration_seconds >= 0.01
        assert result.success is True

    def test_stop_without_start_raises(self):
        with pytest.raises(ValueError, match="Timer not started"):
            asyncio.run(AsyncTimer("op").stop())

    def test_context_manager_marks_failure(self):
        timers = []

        async def scenario():
            async with async_time_operation("op", {"node": "vpc"}) as timer:
                timers.append(timer)
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            asyncio.run(scenario())
        assert timers[0].result.success is False
        assert timers[0].result.metadata == {"node": "vpc"}


class TestFailureInjector:
    def test_specific_key_wins(self):
        injector = FailureInjector()
        injector.configure_failure("create", FailureConfig(FailureType.THROTTLED))
        injector.configure_failure("create:network:vpc", FailureConfig(FailureType.ACCESS_DENIED))

        assert injector.should_inject_failure("create:network:vpc") == "create:network:vpc"
        assert injector.should_inject_failure("create:network:other") == "create"
        assert injector.should_inject_failure("delete:network:vpc") is None

    def test_transient_and_permanent_errors(self):
        injector = FailureInjector()
        injector.configure_failure("create:network", FailureConfig(FailureType.TIMEOUT))
        injector.configure_failure("create:cluster", FailureConfig(FailureType.QUOTA_EXCEEDED))

        with pytest.raises(TransientProviderError):
            asyncio.run(injector.inject_failure("create:network:vpc"))
        with pytest.raises(PermanentProviderError, match="quota"):
            asyncio.run(injector.inject_failure("create:cluster:app"))

    def test_times_limits_injections(self):
        injector = FailureInjector()
        injector.configure_failure("create", FailureConfig(FailureType.THROTTLED, times=1))

        with pytest.raises(TransientProviderError):
            asyncio.run(injector.inject_failure("create:network:vpc"))
        asyncio.run(injector.inject_failure("create:network:vpc"))
        assert injector.injection_counts["create"] == 1
        assert len(injector.injection_history) == 1

    def test_seeded_probability_is_reproducible(self):
        def draws(seed):
            injector = FailureInjector(seed=seed)
            injector.configure_failure("create", FailureConfig(FailureType.THROTTLED, 0.5))
            return [injector.should_inject_failure("create:x") for _ in range(20)]

        assert draws(3) == draws(3)

    def test_disable_and_reset(self):
        injector = FailureInjector()
        injector.configure_failure("create", FailureConfig(FailureType.THROTTLED, times=1))
        injector.disable()
        assert injector.should_inject_failure("create:x") is None

        injector.enable()
        with pytest.raises(TransientProviderError):
            asyncio.run(injector.inject_failure("create:x"))
        injector.reset()
        assert injector.injection_counts["create"] == 0

    def test_invalid_probability(self):
        with pytest.raises(ValueError):
            FailureConfig(FailureType.THROTTLED, probability=1.5)

    def test_transient_types(self):
        assert FailureType.THROTTLED.transient
        assert not FailureType.ACCESS_DENIED.transient
