"""
Engram Providers
================

Narrow interfaces to the collaborators that live outside the core:

- EmbeddingProvider: text -> vector of dimension D (e.g. a language model)
- PersistenceProvider: durable storage of Memory records

Two persistence backends ship with the core:

- InMemoryPersistence: dict-backed, for tests and ephemeral stores
- DirectoryPersistence: one <id>.json document plus one <id>.npy vector per
  memory. Documents are validated through a pydantic model on load.

The similarity index is never persisted; the store rebuilds it from the
records on load.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import numpy as np
from pydantic import BaseModel, Field, ValidationError

from ..errors import PersistenceError
from .bias import ThoughtPattern
from .record import Memory, MemoryType, SpatialContext, TemporalContext

logger = logging.getLogger(__name__)


# =============================================================================
# Interfaces
# =============================================================================

@runtime_checkable
class EmbeddingProvider(Protocol):
    """Produces a vector of the store dimension for a piece of text."""

    def embed(self, text: str) -> np.ndarray:
        ...


@runtime_checkable
class PersistenceProvider(Protocol):
    """Durability layer beneath the MemoryStore."""

    def save(self, memory: Memory) -> None:
        ...

    def load_all(self) -> List[Memory]:
        ...

    def delete(self, memory_id: str) -> None:
        ...


# =============================================================================
# Document schema
# =============================================================================

class SpatialDocument(BaseModel):
    latitude: float
    longitude: float
    title: str = ""
    description: str = ""


class TemporalDocument(BaseModel):
    occurred_at: Optional[datetime] = None
    period: Optional[str] = None


class MemoryDocument(BaseModel):
    """On-disk form of a Memory (vector stored separately)."""

    id: str
    memory_type: MemoryType
    layer: int = Field(ge=0)
    dim: int = Field(gt=0)
    created_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    associations: List[str] = Field(default_factory=list)
    spatial: Optional[SpatialDocument] = None
    temporal: Optional[TemporalDocument] = None
    thought_pattern: Optional[ThoughtPattern] = None
    merge_count: int = Field(default=1, ge=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_memory(cls, memory: Memory) -> "MemoryDocument":
        return cls(
            id=memory.id,
            memory_type=memory.memory_type,
            layer=memory.layer,
            dim=memory.dim,
            created_at=memory.created_at,
            last_accessed_at=memory.last_accessed_at,
            confidence=1.0 if memory.confidence is None else memory.confidence,
            associations=sorted(memory.associations),
            spatial=SpatialDocument(**memory.spatial.to_dict()) if memory.spatial else None,
            temporal=TemporalDocument(
                occurred_at=memory.temporal.occurred_at,
                period=memory.temporal.period,
            ) if memory.temporal else None,
            thought_pattern=memory.thought_pattern,
            merge_count=memory.merge_count,
            metadata=dict(memory.metadata),
        )

    def to_memory(self, vector: np.ndarray) -> Memory:
        return Memory(
            vector=vector,
            memory_type=self.memory_type,
            id=self.id,
            layer=self.layer,
            created_at=self.created_at,
            last_accessed_at=self.last_accessed_at,
            confidence=self.confidence,
            associations=set(self.associations),
            spatial=SpatialContext(**self.spatial.model_dump()) if self.spatial else None,
            temporal=TemporalContext(
                occurred_at=self.temporal.occurred_at,
                period=self.temporal.period,
            ) if self.temporal else None,
            thought_pattern=self.thought_pattern,
            merge_count=self.merge_count,
            metadata=dict(self.metadata),
        )


# =============================================================================
# In-memory backend
# =============================================================================

class InMemoryPersistence:
    """Dict-backed persistence. Keeps copies so callers cannot alias state."""

    def __init__(self):
        self._docs: Dict[str, MemoryDocument] = {}
        self._vectors: Dict[str, np.ndarray] = {}
        self._lock = threading.Lock()

    def save(self, memory: Memory) -> None:
        doc = MemoryDocument.from_memory(memory)
        with self._lock:
            self._docs[memory.id] = doc
            self._vectors[memory.id] = memory.vector.copy()

    def load_all(self) -> List[Memory]:
        with self._lock:
            return [
                doc.to_memory(self._vectors[mid].copy())
                for mid, doc in self._docs.items()
            ]

    def delete(self, memory_id: str) -> None:
        with self._lock:
            self._docs.pop(memory_id, None)
            self._vectors.pop(memory_id, None)

    def __len__(self) -> int:
        return len(self._docs)

    def __contains__(self, memory_id: object) -> bool:
        return memory_id in self._docs


# =============================================================================
# Directory backend
# =============================================================================

_SAFE_ID = re.compile(r"[A-Za-z0-9_-][A-Za-z0-9._-]*")


def _check_id(memory_id: str) -> str:
    """Ids become file names under root: no separators, no leading dot."""
    if not isinstance(memory_id, str) or not _SAFE_ID.fullmatch(memory_id):
        raise PersistenceError(f"memory id {memory_id!r} is not a safe file name")
    return memory_id


class DirectoryPersistence:
    """
    One JSON document and one .npy vector per memory under root.

    Writes go to a temporary file first and are renamed into place, so a
    crash leaves either the old or the new document, never half of one.
    """

    def __init__(self, root: os.PathLike):
        self.root = Path(root).expanduser()
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _doc_path(self, memory_id: str) -> Path:
        return self.root / f"{_check_id(memory_id)}.json"

    def _vec_path(self, memory_id: str) -> Path:
        return self.root / f"{_check_id(memory_id)}.npy"

    def save(self, memory: Memory) -> None:
        doc = MemoryDocument.from_memory(memory)
        doc_path = self._doc_path(memory.id)
        vec_path = self._vec_path(memory.id)
        try:
            with self._lock:
                tmp_vec = vec_path.with_name(vec_path.name + ".tmp")
                with open(tmp_vec, "wb") as f:
                    np.save(f, memory.vector.astype(np.float32))
                os.replace(tmp_vec, vec_path)

                tmp_doc = doc_path.with_name(doc_path.name + ".tmp")
                tmp_doc.write_text(doc.model_dump_json(indent=2), encoding="utf-8")
                os.replace(tmp_doc, doc_path)
        except OSError as e:
            raise PersistenceError(f"failed to save {memory.id!r}: {e}") from e

    def load_all(self) -> List[Memory]:
        memories = []
        with self._lock:
            for doc_path in sorted(self.root.glob("*.json")):
                try:
                    doc = MemoryDocument.model_validate(
                        json.loads(doc_path.read_text(encoding="utf-8"))
                    )
                    vector = np.load(self._vec_path(doc.id))
                except (OSError, ValueError, ValidationError) as e:
                    raise PersistenceError(f"failed to load {doc_path.name}: {e}") from e
                memories.append(doc.to_memory(vector))
        logger.debug(f"Loaded {len(memories)} memories from {self.root}")
        return memories

    def delete(self, memory_id: str) -> None:
        try:
            with self._lock:
                self._doc_path(memory_id).unlink(missing_ok=True)
                self._vec_path(memory_id).unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"failed to delete {memory_id!r}: {e}") from e


__all__ = [
    "EmbeddingProvider",
    "PersistenceProvider",
    "MemoryDocument",
    "InMemoryPersistence",
    "DirectoryPersistence",
]
