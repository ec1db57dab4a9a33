"""
Engram Memory Records
=====================

The Memory dataclass owned by the MemoryStore, plus the small value types
that travel with it (spatial/temporal context, recall results).

A Memory owns its vector. The similarity index only ever holds the id and
a normalized copy of the vector for distance computation.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Set

import numpy as np

from .bias import ThoughtPattern


class MemoryType(str, Enum):
    """Kind of memory."""
    EPISODIC = "episodic"
    SEMANTIC = "semantic"
    PROCEDURAL = "procedural"
    PATTERN = "pattern"          # May generalize across origin types
    QUANTUM = "quantum"


def new_memory_id() -> str:
    return f"mem-{uuid.uuid4().hex[:12]}"


@dataclass
class SpatialContext:
    """Where a memory happened. Opaque to the core; rendered elsewhere."""
    latitude: float
    longitude: float
    title: str = ""
    description: str = ""

    def to_render_tuple(self, memory_id: str) -> Dict[str, Any]:
        """Marker consumed by a spatial renderer."""
        return {
            "id": memory_id,
            "coordinates": (self.latitude, self.longitude),
            "title": self.title,
            "description": self.description,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "title": self.title,
            "description": self.description,
        }


@dataclass
class TemporalContext:
    """When a memory happened, as reported by the caller."""
    occurred_at: Optional[datetime] = None
    period: Optional[str] = None          # e.g. "morning", "2024-Q3"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
            "period": self.period,
        }


@dataclass
class Memory:
    """
    A persistent memory record.

    Lifecycle:
    - created by MemoryStore.store
    - mutated by consolidation (vector, confidence, associations, layer)
      and by recall (last_accessed_at)
    - destroyed only when absorbed by consolidation or evicted
    """
    vector: np.ndarray = field(repr=False)
    memory_type: MemoryType = MemoryType.EPISODIC
    id: str = field(default_factory=new_memory_id)
    layer: int = 0
    created_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None
    confidence: Optional[float] = None
    associations: Set[str] = field(default_factory=set)
    spatial: Optional[SpatialContext] = None
    temporal: Optional[TemporalContext] = None

    # Encoding provenance, used by the bias filter on recall
    thought_pattern: Optional[ThoughtPattern] = None

    # Number of original memories folded into this one
    merge_count: int = 1

    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.vector = np.asarray(self.vector, dtype=np.float32)
        self.memory_type = MemoryType(self.memory_type)
        if self.thought_pattern is not None:
            self.thought_pattern = ThoughtPattern(self.thought_pattern)
        self.associations = set(self.associations)

    @property
    def dim(self) -> int:
        return int(self.vector.shape[0]) if self.vector.ndim == 1 else -1

    def to_dict(self) -> Dict[str, Any]:
        """Serialize metadata to dict (without the vector)."""
        return {
            "id": self.id,
            "memory_type": self.memory_type.value,
            "layer": self.layer,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_accessed_at": self.last_accessed_at.isoformat() if self.last_accessed_at else None,
            "confidence": self.confidence,
            "associations": sorted(self.associations),
            "spatial": self.spatial.to_dict() if self.spatial else None,
            "temporal": self.temporal.to_dict() if self.temporal else None,
            "thought_pattern": self.thought_pattern.value if self.thought_pattern else None,
            "merge_count": self.merge_count,
            "metadata": self.metadata,
        }


@dataclass
class RecallResult:
    """A recalled memory with its similarity to the query."""
    memory: Memory
    similarity: float

    @property
    def id(self) -> str:
        return self.memory.id


@dataclass
class ConsolidationReport:
    """Outcome of one consolidation sweep."""
    candidates: int = 0
    merges: int = 0
    skipped: int = 0
    absorbed: list = field(default_factory=list)
    promoted: list = field(default_factory=list)
    evicted: list = field(default_factory=list)
    cancelled: bool = False
    duration_s: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidates": self.candidates,
            "merges": self.merges,
            "skipped": self.skipped,
            "absorbed": list(self.absorbed),
            "promoted": list(self.promoted),
            "evicted": list(self.evicted),
            "cancelled": self.cancelled,
            "duration_s": round(self.duration_s, 4),
        }


__all__ = [
    "MemoryType",
    "SpatialContext",
    "TemporalContext",
    "Memory",
    "RecallResult",
    "ConsolidationReport",
    "new_memory_id",
]
