"""
Unit tests for memoria/memory/locks.py
"""

import asyncio
import logging

import pytest


class TestScopeLocks:
    """Tests for ScopeLocks."""

    def test_same_scope_same_lock(self):
        from memoria.memory.locks import ScopeLocks
        from memoria.memory.models import MemoryScope

        locks = ScopeLocks()

        assert locks.get(MemoryScope("alice", "s1")) is locks.get(MemoryScope("alice", "s1"))
        assert locks.get(MemoryScope("alice", "s1")) is not locks.get(MemoryScope("alice"))
        assert len(locks) == 2

    @pytest.mark.asyncio
    async def test_same_scope_is_serialized(self):
        from memoria.memory.locks import ScopeLocks
        from memoria.memory.models import MemoryScope

        locks = ScopeLocks()
        scope = MemoryScope("alice")
        events = []

        async def writer(name):
            async with locks.hold(scope):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(writer("a"), writer("b"))

        assert events == ["a-start", "a-end", "b-start", "b-end"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(self):
        from memoria.memory.locks import ScopeLocks
        from memoria.memory.models import MemoryScope

        locks = ScopeLocks()
        for i in range(50):
            async with locks.hold(MemoryScope(f"anonymous_{i:08x}", "s")):
                assert len(locks) == 1

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_survives_while_waited_on(self):
        from memoria.memory.locks import ScopeLocks
        from memoria.memory.models import MemoryScope

        locks = ScopeLocks()
        scope = MemoryScope("alice")
        release = asyncio.Event()
        seen = []

        async def first():
            async with locks.hold(scope):
                seen.append(locks.get(scope))
                await release.wait()

        async def second():
            async with locks.hold(scope):
                seen.append(locks.get(scope))

        tasks = [asyncio.create_task(first()), asyncio.create_task(second())]
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(*tasks)

        assert seen[0] is seen[1]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_different_scopes_do_not_wait(self):
        from memoria.memory.locks import ScopeLocks
        from memoria.memory.models import MemoryScope

        locks = ScopeLocks()
        entered = asyncio.Event()

        async def holder():
            async with locks.hold(MemoryScope("alice")):
                await entered.wait()

        task = asyncio.create_task(holder())
        await asyncio.sleep(0)

        async with locks.hold(MemoryScope("bob")):
            entered.set()

        await asyncio.wait_for(task, timeout=1.0)


class TestScopedLogging:
    """Tests for scoped() and ScopeLogFilter."""

    @pytest.mark.asyncio
    async def test_scope_info_added_inside_block(self):
        from memoria.memory.locks import ScopeLogFilter, current_scope, scoped
        from memoria.memory.models import MemoryScope

        log_filter = ScopeLogFilter()
        record = logging.LogRecord("memoria", logging.INFO, __file__, 1, "msg", None, None)

        async with scoped(MemoryScope("alice", "s1")):
            assert current_scope.get() == "alice/s1"
            log_filter.filter(record)
            assert record.scope_info == " [alice/s1]"

        assert current_scope.get() == ""
        log_filter.filter(record)
        assert record.scope_info == ""

    @pytest.mark.asyncio
    async def test_scope_is_task_local(self):
        from memoria.memory.locks import current_scope, scoped
        from memoria.memory.models import MemoryScope

        seen = {}

        async def worker(user):
            async with scoped(MemoryScope(user)):
                await asyncio.sleep(0)
                seen[user] = current_scope.get()

        await asyncio.gather(worker("alice"), worker("bob"))

        assert seen == {"alice": "alice/*", "bob": "bob/*"}
