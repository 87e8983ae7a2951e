"""
Per-scope locking and the logging context that names the active scope.
"""

import asyncio
import contextvars
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from .models import MemoryScope

# Scope of the memory operation running in the current task
current_scope: contextvars.ContextVar[str] = contextvars.ContextVar("memory_scope", default="")


class ScopeLogFilter(logging.Filter):
    """Adds scope info to log records when inside a scoped memory operation."""

    def filter(self, record: logging.LogRecord) -> bool:
        scope = current_scope.get()
        record.scope_info = f" [{scope}]" if scope else ""
        return True


class ScopeLocks:
    """
    One asyncio.Lock per exact scope.

    Writes to different scopes never wait on each other; writes to the
    same scope (insert + eviction, update, delete, clear, consolidation)
    are serialized. A lock taken through hold() is dropped once no task
    holds or waits for it, so short-lived sessions do not accumulate.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def get(self, scope: MemoryScope) -> asyncio.Lock:
        lock = self._locks.get(scope.key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[scope.key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, scope: MemoryScope) -> AsyncIterator[None]:
        key = scope.key
        lock = self.get(scope)
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)


@asynccontextmanager
async def scoped(scope: MemoryScope) -> AsyncIterator[None]:
    """Tag log lines emitted inside the block with the scope."""
    token = current_scope.set(scope.key)
    try:
        yield
    finally:
        current_scope.reset(token)
