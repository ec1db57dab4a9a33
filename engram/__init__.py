"""
Engram: layered hyperdimensional memory

Memories are encoded as 10,000-dimensional bipolar hypervectors, indexed in
an HNSW graph for approximate recall, and periodically consolidated: highly
similar memories merge into one and move up a layer.

Example usage:

    from engram import MemoryStore, load_config

    store = MemoryStore(load_config("engram.yaml"))
    store.remember({"what": "coffee", "where": "kitchen"}, "episodic",
                   thought="concrete")
    for hit in store.recall_input({"what": "coffee"}, "episodic"):
        print(hit.id, hit.similarity)

CLI Commands:
    engram stats          # Layer sizes and index statistics
    engram remember       # Store a JSON payload
    engram recall         # Query by JSON payload
    engram consolidate    # Run one consolidation sweep
    engram config         # Write a default config file
"""

__version__ = "0.1.0"

from .errors import (
    EngramError,
    InvalidVector,
    DuplicateID,
    NotFound,
    CapacityExceeded,
    StoreFull,
    ConsolidationInProgress,
    ConfigurationError,
    ProviderError,
    EmbeddingError,
    PersistenceError,
)

from .configs import EngramConfig, load_config, save_config

from .memory import (
    ThoughtPattern,
    CognitiveBias,
    BiasProvider,
    MemoryType,
    Memory,
    RecallResult,
    ConsolidationReport,
    SpatialContext,
    TemporalContext,
    PatternEncoder,
    HNSWIndex,
    InMemoryPersistence,
    DirectoryPersistence,
    MemoryStore,
)


__all__ = [
    '__version__',
    # Errors
    'EngramError',
    'InvalidVector',
    'DuplicateID',
    'NotFound',
    'CapacityExceeded',
    'StoreFull',
    'ConsolidationInProgress',
    'ConfigurationError',
    'ProviderError',
    'EmbeddingError',
    'PersistenceError',
    # Config
    'EngramConfig',
    'load_config',
    'save_config',
    # Memory
    'ThoughtPattern',
    'CognitiveBias',
    'BiasProvider',
    'MemoryType',
    'Memory',
    'RecallResult',
    'ConsolidationReport',
    'SpatialContext',
    'TemporalContext',
    'PatternEncoder',
    'HNSWIndex',
    'InMemoryPersistence',
    'DirectoryPersistence',
    'MemoryStore',
]
