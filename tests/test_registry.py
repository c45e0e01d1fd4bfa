"""
Unit tests for the tenant connection registry
"""
import asyncio

import pytest

from errors import StoreConnectionError
from registry import ConnectionRegistry, registry_key, split_key


class TestRegistryKey:
    """Test cases for composite keys"""

    def test_round_trip(self):
        """Test the key splits back into its parts"""
        key = registry_key("session-a", "mongodb://h:1/db?x=y")
        assert split_key(key) == ("session-a", "mongodb://h:1/db?x=y")

    def test_distinct_sessions_same_address(self):
        """Test the session is part of the key"""
        assert registry_key("a", "db://x") != registry_key("b", "db://x")

    def test_separator_rejected_in_components(self):
        """Test NUL can't be smuggled into either part"""
        with pytest.raises(ValueError):
            registry_key("a\x00b", "db://x")
        with pytest.raises(ValueError):
            registry_key("a", "db://x\x00y")


class TestAcquire:
    """Test cases for ConnectionRegistry.acquire"""

    @pytest.mark.asyncio
    async def test_reuses_live_connection(self, registry, connector):
        """Test repeated acquires create exactly one connection"""
        first = await registry.acquire("s1", "db://x")
        for _ in range(10):
            assert await registry.acquire("s1", "db://x") is first

        assert registry.created_count == 1
        assert len(connector.created) == 1

    @pytest.mark.asyncio
    async def test_sessions_never_share_entries(self, registry):
        """Test two sessions with the same address get separate handles"""
        handle_a = await registry.acquire("a", "db://shared")
        handle_b = await registry.acquire("b", "db://shared")

        assert handle_a is not handle_b
        assert len(registry) == 2

        await registry.release("a")

        assert handle_a.closed
        assert not handle_b.closed
        assert await registry.acquire("b", "db://shared") is handle_b

    @pytest.mark.asyncio
    async def test_dead_connection_replaced(self, registry):
        """Test a handle failing its liveness check is closed and replaced"""
        stale = await registry.acquire("s1", "db://x")
        stale.alive = False

        fresh = await registry.acquire("s1", "db://x")

        assert fresh is not stale
        assert stale.closed
        assert registry.created_count == 2
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_ping_exception_counts_as_dead(self, registry):
        """Test a liveness check that raises is treated as a failure"""
        stale = await registry.acquire("s1", "db://x")

        async def broken_ping():
            raise RuntimeError("socket gone")

        stale.ping = broken_ping

        fresh = await registry.acquire("s1", "db://x")
        assert fresh is not stale

    @pytest.mark.asyncio
    async def test_connect_failure_not_cached(self, registry, connector):
        """Test a failed connect propagates and leaves nothing behind"""
        connector.unreachable.add("db://down")

        with pytest.raises(StoreConnectionError):
            await registry.acquire("s1", "db://down")

        assert len(registry) == 0
        assert registry.created_count == 0

        connector.unreachable.clear()
        assert await registry.acquire("s1", "db://down") is not None
        assert registry.created_count == 1

    @pytest.mark.asyncio
    async def test_unexpected_connect_error_is_classified(self):
        """Test arbitrary connect errors become StoreConnectionError"""

        async def connect(address):
            raise OSError("no route to host")

        registry = ConnectionRegistry(connect)
        with pytest.raises(StoreConnectionError):
            await registry.acquire("s1", "db://x")
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_connect_timeout(self, connector):
        """Test a connect slower than the timeout fails like a refusal"""
        connector.delay = 0.5
        registry = ConnectionRegistry(connector, connect_timeout=0.05)

        with pytest.raises(StoreConnectionError):
            await registry.acquire("s1", "db://slow")
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_single_flight(self, registry, connector):
        """Test concurrent acquires for one key share a single connect"""
        connector.delay = 0.05

        handles = await asyncio.gather(*(registry.acquire("s1", "db://x") for _ in range(5)))

        assert len(connector.created) == 1
        assert all(handle is handles[0] for handle in handles)

    @pytest.mark.asyncio
    async def test_different_keys_connect_independently(self, registry, connector):
        """Test single-flight is per key, not global"""
        connector.delay = 0.05

        handle_a, handle_b = await asyncio.gather(
            registry.acquire("a", "db://x"),
            registry.acquire("b", "db://x"),
        )

        assert handle_a is not handle_b
        assert len(connector.created) == 2


class TestRelease:
    """Test cases for ConnectionRegistry.release"""

    @pytest.mark.asyncio
    async def test_release_all_addresses_of_session(self, registry):
        """Test every address the session touched is closed"""
        first = await registry.acquire("s1", "db://one")
        second = await registry.acquire("s1", "db://two")
        other = await registry.acquire("s2", "db://one")

        released = await registry.release("s1")

        assert released == 2
        assert first.closed and second.closed
        assert not other.closed
        assert registry.keys_for("s1") == []

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, registry):
        """Test releasing twice, or with nothing cached, is harmless"""
        await registry.acquire("s1", "db://x")

        assert await registry.release("s1") == 1
        assert await registry.release("s1") == 0
        assert await registry.release("never-seen") == 0

    @pytest.mark.asyncio
    async def test_acquire_after_release_creates_fresh(self, registry):
        """Test no stale handle is reused after release"""
        old = await registry.acquire("s1", "db://x")
        await registry.release("s1")

        new = await registry.acquire("s1", "db://x")

        assert new is not old
        assert registry.created_count == 2

    @pytest.mark.asyncio
    async def test_release_keep_address(self, registry):
        """Test keep_address spares the entry for that address"""
        old = await registry.acquire("s1", "db://old")
        new = await registry.acquire("s1", "db://new")

        await registry.release("s1", keep_address="db://new")

        assert old.closed
        assert not new.closed
        assert registry.keys_for("s1") == [registry_key("s1", "db://new")]

    @pytest.mark.asyncio
    async def test_release_waits_for_connect_in_flight(self, registry, connector):
        """Test a logout racing a connect still closes the new connection"""
        connector.delay = 0.05

        acquire = asyncio.create_task(registry.acquire("s1", "db://x"))
        await asyncio.sleep(0)
        await registry.release("s1")
        handle = await acquire

        # the release queued behind the connect and closed its result
        assert handle.closed
        assert len(registry) == 0


class TestSweep:
    """Test cases for the periodic sweep"""

    @pytest.mark.asyncio
    async def test_sweep_evicts_only_dead_entries(self, registry):
        """Test live handles survive and dead ones are closed"""
        live = await registry.acquire("a", "db://x")
        dead = await registry.acquire("b", "db://x")
        dead.alive = False

        evicted = await registry.sweep()

        assert evicted == 1
        assert dead.closed
        assert not live.closed
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_sweep_continues_after_close_error(self, registry):
        """Test a handle that fails to close doesn't stop the sweep"""
        first = await registry.acquire("a", "db://x")
        second = await registry.acquire("b", "db://x")
        first.alive = False
        second.alive = False

        async def broken_close():
            raise RuntimeError("close failed")

        first.close = broken_close

        evicted = await registry.sweep()

        assert evicted == 2
        assert second.closed
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_sweep_and_acquire_on_same_key_are_serialized(self, registry, connector):
        """Test a reconnect racing the sweep never loses its fresh handle"""
        stale = await registry.acquire("s1", "db://x")

        async def slow_dead_ping():
            await asyncio.sleep(0.05)
            return False

        stale.ping = slow_dead_ping

        sweep = asyncio.create_task(registry.sweep())
        await asyncio.sleep(0)
        fresh = await registry.acquire("s1", "db://x")

        assert await sweep == 1
        assert stale.closed
        assert fresh is not stale
        assert not fresh.closed
        assert registry.keys_for("s1") == [registry_key("s1", "db://x")]
        assert len(connector.created) == 2

    @pytest.mark.asyncio
    async def test_sweep_skips_connect_in_flight(self, registry, connector):
        connector.delay = 0.05

        acquire = asyncio.create_task(registry.acquire("s1", "db://x"))
        await asyncio.sleep(0)

        assert await registry.sweep() == 0
        handle = await acquire
        assert not handle.closed
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_sweep_empty_registry(self, registry):
        """Test sweeping nothing"""
        assert await registry.sweep() == 0

    @pytest.mark.asyncio
    async def test_close_all(self, registry):
        """Test shutdown closes everything"""
        handles = [await registry.acquire(f"s{i}", "db://x") for i in range(3)]

        await registry.close_all()

        assert all(handle.closed for handle in handles)
        assert len(registry) == 0
