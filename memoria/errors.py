"""
Exception hierarchy for the memory engine.

Three families matter to callers:
- ValidationError: the request itself is wrong (bad scope, empty content).
- ProviderError: a model or embedding call failed after retries.
- StorageError: the backend is unavailable or its index is unusable.

IndexIntegrityError is the one failure that is never degraded away -
a wrong-dimension vector or a corrupt index would silently produce
wrong search results.
"""


class MemoriaError(Exception):
    """Base class for all memory engine errors."""


class ValidationError(MemoriaError, ValueError):
    """Invalid input: missing scope, empty content, unknown memory id."""


class ProviderError(MemoriaError):
    """A model or embedding provider call failed, timed out or was rate-limited."""

    def __init__(self, operation: str, message: str, attempts: int = 1):
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"{operation} failed after {attempts} attempt(s): {message}")


class StorageError(MemoriaError):
    """The storage backend failed or is not initialized."""


class IndexIntegrityError(StorageError):
    """The vector index is in a state that would corrupt search results."""


class DimensionMismatchError(IndexIntegrityError):
    """A vector does not match the dimension fixed for the store."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: store expects {expected}, got {actual}"
        )
