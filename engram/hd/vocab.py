"""
Engram HD Vocabulary - Symbol to Hypervector Mapping
====================================================

Atomic hypervectors for the symbols the pattern encoder needs.

Seeds are deterministic from symbol names, so identical inputs yield
identical atoms across runs and processes.

Vocabulary categories:
- Roles: dictionary keys and structural slots (TYPE, ...), cached
- Types: memory types (EPISODIC, SEMANTIC, PROCEDURAL, PATTERN, QUANTUM), cached
- Values: scalar payloads and text fragments, held in a bounded LRU
  shared by all vocabularies (VALUE_CACHE_SIZE atoms)

Usage:
    from engram.hd import HDVocab

    vocab = HDVocab(dim=10_000)
    h_type = bind(vocab.role("TYPE"), vocab.memory_type("EPISODIC"))
"""

from __future__ import annotations

import functools
import threading
from typing import Dict, Tuple

import numpy as np

from .ops import DIM, random_hv_from_string

# Value atoms are regenerated on a miss; at D=10,000 this bounds them to ~80 MB
VALUE_CACHE_SIZE = 2048


@functools.lru_cache(maxsize=VALUE_CACHE_SIZE)
def _value_atom(seed: str, dim: int) -> np.ndarray:
    hv = random_hv_from_string(seed, dim)
    hv.setflags(write=False)
    return hv


class HDVocab:
    """
    HD vocabulary manager.

    Generated deterministically from symbol names for reproducibility.
    The role/type table is guarded so concurrent encoders see one HV per
    symbol. Value atoms come from a bounded cache instead, since payload
    scalars and text fragments are open-ended.
    """

    CANONICAL_ROLES = ["TYPE", "CONTENT", "EMPTY"]

    CANONICAL_TYPES = ["EPISODIC", "SEMANTIC", "PROCEDURAL", "PATTERN", "QUANTUM"]

    def __init__(self, dim: int = DIM, seed_prefix: str = "engram_vocab_v1"):
        """
        Initialize the vocabulary.

        Args:
            dim: HV dimension (default: 10,000)
            seed_prefix: Prefix for deterministic seeding
        """
        self.dim = dim
        self.seed_prefix = seed_prefix
        self._table: Dict[Tuple[str, str], np.ndarray] = {}
        self._lock = threading.Lock()

    def _make_seed(self, category: str, name: str) -> str:
        """Create deterministic seed string."""
        return f"{self.seed_prefix}:{category}:{name}"

    def _get_or_create(self, category: str, name: str) -> np.ndarray:
        key = (category, name)
        hv = self._table.get(key)
        if hv is None:
            hv = random_hv_from_string(self._make_seed(category, name), self.dim)
            hv.setflags(write=False)
            with self._lock:
                hv = self._table.setdefault(key, hv)
        return hv

    # =========================================================================
    # Public Accessors
    # =========================================================================

    def role(self, name: str) -> np.ndarray:
        """Get role HV (dictionary key or structural slot)."""
        return self._get_or_create("role", name.upper())

    def value(self, name: str) -> np.ndarray:
        """Get value HV (case-sensitive: values are content)."""
        return _value_atom(self._make_seed("value", name), self.dim)

    def memory_type(self, name: str) -> np.ndarray:
        """Get memory type HV."""
        return self._get_or_create("type", name.upper())

    def preload_canonical(self) -> None:
        """Preload all canonical symbols."""
        for name in self.CANONICAL_ROLES:
            self.role(name)
        for name in self.CANONICAL_TYPES:
            self.memory_type(name)

    # =========================================================================
    # Inspection
    # =========================================================================

    def stats(self) -> Dict[str, int]:
        """Get vocabulary statistics (value_cache is process-wide)."""
        counts: Dict[str, int] = {}
        for category, _ in list(self._table):
            counts[category] = counts.get(category, 0) + 1
        counts["total"] = len(self._table)
        counts["value_cache"] = _value_atom.cache_info().currsize
        return counts

    def __len__(self) -> int:
        """Number of cached role and type atoms."""
        return len(self._table)


# =============================================================================
# Shared instances
# =============================================================================

_vocabs: Dict[int, HDVocab] = {}
_vocabs_lock = threading.Lock()


def get_vocab(dim: int = DIM) -> HDVocab:
    """
    Get the shared HD vocabulary for a dimension.

    Creates and preloads canonical symbols on first access.
    """
    with _vocabs_lock:
        vocab = _vocabs.get(dim)
        if vocab is None:
            vocab = HDVocab(dim=dim)
            vocab.preload_canonical()
            _vocabs[dim] = vocab
        return vocab


__all__ = [
    'HDVocab',
    'get_vocab',
    'VALUE_CACHE_SIZE',
]
