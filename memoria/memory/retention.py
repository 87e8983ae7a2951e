"""
Retention policy: how many memories a scope may keep, and which go first.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Optional

from .base import VectorStore
from .models import MemoryImportance, MemoryRecord, MemoryScope, MemoryType

logger = logging.getLogger("memoria.memory.retention")


def eviction_key(record: MemoryRecord) -> tuple:
    """Ascending order of eviction: least important, then oldest, then id."""
    return (int(record.importance), record.updated_at, record.created_at, record.id)


@dataclass
class RetentionPolicy:
    """
    Bounds storage per exact (user, session) scope.

    Attributes:
        max_memories: Cap per scope; the lowest-ranked memories are evicted above it
        min_importance: Memories below this are never written
        type_min_importance: Per-type overrides of min_importance
    """
    max_memories: int = 1000
    min_importance: MemoryImportance = MemoryImportance.LOW
    type_min_importance: dict[MemoryType, MemoryImportance] = field(default_factory=dict)

    def __post_init__(self):
        if self.max_memories <= 0:
            raise ValueError("max_memories must be greater than 0")

    def floor_for(self, memory_type: MemoryType) -> MemoryImportance:
        return self.type_min_importance.get(memory_type, self.min_importance)

    def with_type_floors(self, floors: dict[MemoryType, MemoryImportance]) -> "RetentionPolicy":
        """A copy where each listed type keeps the stricter of the two floors."""
        merged = dict(self.type_min_importance)
        for memory_type, level in floors.items():
            merged[memory_type] = max(level, self.floor_for(memory_type))
        return replace(self, type_min_importance=merged)

    def admits(self, record: MemoryRecord) -> bool:
        """Does this record clear the write-time importance floor?"""
        return record.importance >= self.floor_for(record.type)

    def select_evictions(self, records: list[MemoryRecord]) -> list[MemoryRecord]:
        """The records to drop so that at most max_memories remain."""
        excess = len(records) - self.max_memories
        if excess <= 0:
            return []
        return sorted(records, key=eviction_key)[:excess]

    async def enforce(self, store: VectorStore, scope: MemoryScope) -> list[str]:
        """
        Evict from one exact scope until it is within the cap.

        Callers hold the scope lock so the count cannot change underneath.
        """
        records = await store.list_memories(scope, exact=True)
        doomed = self.select_evictions(records)
        if not doomed:
            return []

        doomed_ids = [r.id for r in doomed]
        await store.delete(doomed_ids)
        logger.info(
            f"Evicted {len(doomed_ids)} memories from {scope} "
            f"(cap {self.max_memories}, lowest importance {doomed[0].importance.name})"
        )
        return doomed_ids


def policy_from_config(
    max_memories: int = 1000,
    min_importance: str = "LOW",
    type_min_importance: Optional[dict[str, str]] = None,
) -> RetentionPolicy:
    """Build a policy from plain config values (names, not enums)."""
    floor = MemoryImportance.parse(min_importance)
    if floor is None:
        raise ValueError(f"Unknown importance level: {min_importance}")

    overrides = {}
    for type_name, level_name in (type_min_importance or {}).items():
        memory_type = MemoryType.parse(type_name)
        level = MemoryImportance.parse(level_name)
        if memory_type is None or level is None:
            raise ValueError(f"Invalid type_min_importance entry: {type_name}={level_name}")
        overrides[memory_type] = level

    return RetentionPolicy(
        max_memories=max_memories,
        min_importance=floor,
        type_min_importance=overrides,
    )
