"""
Engram Errors
=============

Exception hierarchy shared by the vector algebra, the similarity index and
the memory store.

    EngramError
    ├── InvalidVector           dimension mismatch (fatal to the call)
    ├── DuplicateID             id already present
    ├── NotFound                id not present
    ├── CapacityExceeded        layer over its bound, eviction pending
    ├── StoreFull               eviction could not make room
    ├── ConsolidationInProgress a sweep is already running
    ├── ConfigurationError      bad configuration or mismatched D/L on load
    └── ProviderError           external collaborator failed (recoverable)
        ├── EmbeddingError
        └── PersistenceError
"""

from __future__ import annotations


class EngramError(Exception):
    """Base exception for engram errors."""
    pass


class InvalidVector(EngramError, ValueError):
    """Vector dimensionality does not match the configured dimension."""

    def __init__(self, expected: int, got, message: str = ""):
        self.expected = expected
        self.got = got
        super().__init__(message or f"expected vector of dimension {expected}, got {got}")


class DuplicateID(EngramError):
    """An entry with this id already exists."""

    def __init__(self, memory_id: str):
        self.memory_id = memory_id
        super().__init__(f"duplicate id: {memory_id!r}")


class NotFound(EngramError, KeyError):
    """No entry with this id exists."""

    def __init__(self, memory_id: str):
        self.memory_id = memory_id
        super().__init__(memory_id)

    def __str__(self) -> str:
        return f"not found: {self.memory_id!r}"


class CapacityExceeded(EngramError):
    """A layer holds more memories than its capacity bound."""

    def __init__(self, layer: int, size: int, capacity: int):
        self.layer = layer
        self.size = size
        self.capacity = capacity
        super().__init__(f"layer {layer} holds {size} memories, capacity {capacity}")


class StoreFull(EngramError):
    """Eviction could not bring a layer back under its capacity."""

    def __init__(self, layer: int, capacity: int):
        self.layer = layer
        self.capacity = capacity
        super().__init__(f"layer {layer} is full (capacity {capacity}) and nothing can be evicted")


class ConsolidationInProgress(EngramError):
    """Another consolidation sweep is already running on this store."""
    pass


class ConfigurationError(EngramError):
    """Invalid configuration, or persisted data incompatible with it."""
    pass


class ProviderError(EngramError):
    """An external collaborator (embedding, persistence) failed."""
    pass


class EmbeddingError(ProviderError):
    """The embedding provider failed to produce a vector."""
    pass


class PersistenceError(ProviderError):
    """The persistence provider failed to save, load or delete."""
    pass


__all__ = [
    "EngramError",
    "InvalidVector",
    "DuplicateID",
    "NotFound",
    "CapacityExceeded",
    "StoreFull",
    "ConsolidationInProgress",
    "ConfigurationError",
    "ProviderError",
    "EmbeddingError",
    "PersistenceError",
]
