"""
Engram Memory
=============

Layered hyperdimensional memory: records, encoding, similarity index,
consolidation and persistence.

Components:
- bias: thought patterns and the encoding parameters they select
- record: Memory dataclass and recall/consolidation results
- encoder: structured payloads -> hypervectors
- index: HNSW approximate nearest-neighbour graph
- store: MemoryStore (store, recall, consolidate, evict, load)
- providers: embedding and persistence interfaces plus backends
"""

from .bias import (
    ThoughtPattern,
    CognitiveBias,
    BiasProvider,
    NEUTRAL_BIAS,
    DEFAULT_BIAS_TABLE,
    bias_for,
)

from .record import (
    MemoryType,
    SpatialContext,
    TemporalContext,
    Memory,
    RecallResult,
    ConsolidationReport,
    new_memory_id,
)

from .encoder import PatternEncoder

from .index import HNSWIndex

from .locks import RWLock

from .providers import (
    EmbeddingProvider,
    PersistenceProvider,
    MemoryDocument,
    InMemoryPersistence,
    DirectoryPersistence,
)

from .store import MemoryStore


__all__ = [
    # Bias
    'ThoughtPattern',
    'CognitiveBias',
    'BiasProvider',
    'NEUTRAL_BIAS',
    'DEFAULT_BIAS_TABLE',
    'bias_for',
    # Records
    'MemoryType',
    'SpatialContext',
    'TemporalContext',
    'Memory',
    'RecallResult',
    'ConsolidationReport',
    'new_memory_id',
    # Encoding and index
    'PatternEncoder',
    'HNSWIndex',
    'RWLock',
    # Providers
    'EmbeddingProvider',
    'PersistenceProvider',
    'MemoryDocument',
    'InMemoryPersistence',
    'DirectoryPersistence',
    # Store
    'MemoryStore',
]
