"""
Unit tests for AsyncQuotaGate.
"""

import asyncio
import pytest
from unittest.mock import call

from quota_gate.gate import AsyncQuotaGate
from quota_gate.store import SYNC_SCRIPT
from shared.config import QuotaGateConfig
from shared.errors import (
    ConstructionError,
    CounterStoreError,
    RateLimitError,
    ScriptMissingError,
)


class TestAsyncQuotaGate:
    """Test cases for AsyncQuotaGate."""

    @pytest.mark.asyncio
    async def test_create_registers_script(self, mock_async_store, config, metrics):
        """Test create() registers the synchronization script."""
        gate = await AsyncQuotaGate.create("search", "Query", mock_async_store, 10, config=config, metrics=metrics)

        mock_async_store.register_script.assert_awaited_once_with(SYNC_SCRIPT)
        assert gate.script_handle == "sha-1"
        assert gate.redis_key == "quota:search:Query"

    @pytest.mark.asyncio
    async def test_create_rejects_bad_arguments(self, mock_async_store, config, metrics):
        """Test invalid arguments fail before contacting the store."""
        with pytest.raises(ConstructionError):
            await AsyncQuotaGate.create("", "Query", mock_async_store, 10, config=config, metrics=metrics)
        with pytest.raises(ConstructionError):
            await AsyncQuotaGate.create("search", "Query", mock_async_store, 0, config=config, metrics=metrics)
        with pytest.raises(ConstructionError):
            await AsyncQuotaGate.create("search", "Query", None, 10, config=config, metrics=metrics)

        mock_async_store.register_script.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_registration_failure(self, mock_async_store, config, metrics):
        """Test an unreachable store fails construction."""
        mock_async_store.register_script.side_effect = CounterStoreError("redis", "connection refused")

        with pytest.raises(ConstructionError):
            await AsyncQuotaGate.create("search", "Query", mock_async_store, 10, config=config, metrics=metrics)

        assert mock_async_store.register_script.await_count == 1

    @pytest.mark.asyncio
    async def test_batch_accounting(self, async_store, config, metrics):
        """Test each synchronization admits exactly batch_size calls."""
        gate = await AsyncQuotaGate.create("search", "Query", async_store, 100, config=config, metrics=metrics)

        results = [await gate.can_pass() for _ in range(config.batch_size + 1)]

        assert results == [True] * (config.batch_size + 1)
        assert async_store.backend.execute_calls == 2

    @pytest.mark.asyncio
    async def test_over_limit_denies(self, mock_async_store, config, metrics):
        """Test a window at the limit denies and keeps local tokens at zero."""
        mock_async_store.execute.return_value = 3
        gate = await AsyncQuotaGate.create("search", "Query", mock_async_store, 3, config=config, metrics=metrics)

        assert await gate.can_pass() is False
        assert gate.local_tokens == 0
        with pytest.raises(RateLimitError):
            await gate.require_pass()

    @pytest.mark.asyncio
    async def test_decode_error_denies(self, mock_async_store, config, metrics):
        """Test a non-integer counter reply is denied."""
        mock_async_store.execute.return_value = "1"
        gate = await AsyncQuotaGate.create("search", "Query", mock_async_store, 3, config=config, metrics=metrics)

        assert await gate.can_pass() is False

    @pytest.mark.asyncio
    async def test_self_throttle(self, mock_async_store, clock, metrics):
        """Test synchronizations inside the interval skip the store."""
        config = QuotaGateConfig(min_sync_interval_ns=100_000)
        mock_async_store.execute.side_effect = CounterStoreError("redis", "timeout")
        gate = await AsyncQuotaGate.create(
            "search", "Query", mock_async_store, 3, config=config, metrics=metrics, clock=clock
        )

        assert await gate.can_pass() is False
        assert await gate.can_pass() is False
        assert mock_async_store.execute.await_count == 1

        clock.advance(100_000)
        assert await gate.can_pass() is False
        assert mock_async_store.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_script_missing_recovery(self, mock_async_store, config, metrics):
        """Test the script is re-registered and the call retried once."""
        mock_async_store.register_script.side_effect = ["sha-1", "sha-2"]
        mock_async_store.execute.side_effect = [ScriptMissingError(), 1]
        mock_async_store.script_exists.return_value = [False]
        gate = await AsyncQuotaGate.create("search", "Query", mock_async_store, 3, config=config, metrics=metrics)

        assert await gate.can_pass() is True
        assert mock_async_store.execute.await_args_list == [
            call("sha-1", ["quota:search:Query"]),
            call("sha-2", ["quota:search:Query"]),
        ]
        assert gate.script_handle == "sha-2"

    @pytest.mark.asyncio
    async def test_script_missing_registration_exhausted(self, mock_async_store, config, metrics):
        """Test recovery gives up after the retry budget."""
        failure = CounterStoreError("redis", "busy")
        mock_async_store.register_script.side_effect = ["sha-1"] + [failure] * config.script_retry_attempts
        mock_async_store.execute.side_effect = [ScriptMissingError()]
        mock_async_store.script_exists.return_value = [False]
        gate = await AsyncQuotaGate.create("search", "Query", mock_async_store, 3, config=config, metrics=metrics)

        assert await gate.can_pass() is False
        assert mock_async_store.register_script.await_count == 1 + config.script_retry_attempts

    @pytest.mark.asyncio
    async def test_store_restart(self, async_store, config, metrics):
        """Test a gate survives the in-memory store forgetting its scripts."""
        gate = await AsyncQuotaGate.create("search", "Query", async_store, 100, config=config, metrics=metrics)
        await gate.can_pass()
        async_store.backend.flush_scripts()
        for _ in range(config.batch_size):
            assert await gate.can_pass() is True

        assert async_store.backend.register_calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_tasks(self, async_store, config, metrics):
        """Test concurrent tasks never exceed batch_size per synchronization."""
        gate = await AsyncQuotaGate.create("search", "Query", async_store, 4, config=config, metrics=metrics)

        async def worker():
            admitted = 0
            for _ in range(25):
                if await gate.can_pass():
                    admitted += 1
                await asyncio.sleep(0)
            return admitted

        results = await asyncio.gather(*(worker() for _ in range(10)))

        assert sum(results) == 3 * config.batch_size

    @pytest.mark.asyncio
    async def test_get_state(self, mock_async_store, config, metrics):
        """Test the state snapshot."""
        gate = await AsyncQuotaGate.create("search", "Query", mock_async_store, 3, config=config, metrics=metrics)
        await gate.can_pass()

        state = gate.get_state()

        assert state["key"] == "search/Query"
        assert state["local_tokens"] == config.batch_size - 1
