"""
Engram Similarity Index
=======================

Hierarchical navigable small-world (HNSW) graph for approximate top-k
cosine search over hypervectors.

Structure:
- Level 0 holds every entry; each higher level holds a geometrically
  shrinking random subset (level ~ floor(-ln(U) / ln(M)))
- Each entry links to its approximate nearest neighbours that were present
  when it was inserted; degree is capped at 2M on level 0 and M above
- Search descends greedily from the entry point through coarse levels and
  finishes with a best-first search of width ef on level 0

The index never owns memory records. It keeps ids and unit-normalized
vectors only; the MemoryStore resolves ids back to records.

Recall is approximate and governed by ef: a missed neighbour is a property
of the algorithm, not an error.

Concurrency: queries run concurrently with each other; insert, delete and
update take the write side of a readers-writer lock.
"""

from __future__ import annotations

import heapq
import logging
import math
from typing import Dict, Iterable, List, Optional, Set, Tuple

import numpy as np

from ..errors import DuplicateID, NotFound
from ..hd.ops import DIM, check_dim
from .locks import RWLock

logger = logging.getLogger(__name__)


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_M = 16
DEFAULT_EF_CONSTRUCTION = 200
DEFAULT_EF_SEARCH = 64


class _Node:
    """Index entry: id back-reference, vector, adjacency per level."""

    __slots__ = ("id", "vector", "level", "neighbors", "inbound")

    def __init__(self, node_id: str, vector: np.ndarray, level: int):
        self.id = node_id
        self.vector = vector
        self.level = level
        # Outgoing links per level, and the reverse map so delete can
        # find every link pointing at this node without a full scan.
        self.neighbors: List[Set[str]] = [set() for _ in range(level + 1)]
        self.inbound: List[Set[str]] = [set() for _ in range(level + 1)]


class HNSWIndex:
    """
    Approximate nearest-neighbour index.

    Args:
        dim: Vector dimension
        m: Target degree per level (level 0 allows 2 * m)
        ef_construction: Search width while inserting
        ef_search: Default search width for queries
        seed: Seed for level assignment
    """

    def __init__(
        self,
        dim: int = DIM,
        m: int = DEFAULT_M,
        ef_construction: int = DEFAULT_EF_CONSTRUCTION,
        ef_search: int = DEFAULT_EF_SEARCH,
        seed: Optional[int] = None,
    ):
        if m < 2:
            raise ValueError(f"m must be >= 2, got {m}")
        if ef_construction < 1 or ef_search < 1:
            raise ValueError("ef_construction and ef_search must be >= 1")

        self.dim = dim
        self.m = m
        self.m0 = 2 * m
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self._ml = 1.0 / math.log(m)
        self._rng = np.random.default_rng(seed)

        self._nodes: Dict[str, _Node] = {}
        self._entry: Optional[str] = None
        self._top_level = -1
        self._lock = RWLock()

    # =========================================================================
    # Public API
    # =========================================================================

    def insert(self, node_id: str, vector: np.ndarray) -> None:
        """
        Insert a vector under node_id.

        Raises:
            InvalidVector: dimension mismatch
            DuplicateID: node_id already indexed
        """
        prepared = self._prepare(vector)
        with self._lock.write():
            self._insert(node_id, prepared)

    def delete(self, node_id: str) -> None:
        """
        Remove node_id and every link that references it.

        Raises:
            NotFound: node_id is not indexed
        """
        with self._lock.write():
            self._delete(node_id)

    def update(self, node_id: str, vector: np.ndarray) -> None:
        """
        Replace the vector stored under node_id.

        Delete and re-insert as one exclusive step; links depend on
        similarity so vectors are never mutated in place. If the insert
        fails the previous vector is restored.

        Raises:
            InvalidVector: dimension mismatch (index unchanged)
            NotFound: node_id is not indexed
        """
        prepared = self._prepare(vector)
        with self._lock.write():
            old = self._nodes.get(node_id)
            if old is None:
                raise NotFound(node_id)
            self._delete(node_id)
            try:
                self._insert(node_id, prepared)
            except Exception:
                logger.warning(f"Index update of {node_id!r} failed, restoring previous vector")
                self._insert(node_id, old.vector)
                raise

    def query(
        self,
        vector: np.ndarray,
        k: int = 10,
        ef: Optional[int] = None,
    ) -> List[Tuple[str, float]]:
        """
        Find approximately the k most similar entries.

        Args:
            vector: Query vector
            k: Number of results
            ef: Search width (default: ef_search; raised to k if smaller)

        Returns:
            List of (node_id, cosine similarity), most similar first.
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        prepared = self._prepare(vector)
        with self._lock.read():
            return self._knn(prepared, k, ef)

    def neighbors_of(
        self,
        node_id: str,
        k: int = 10,
        ef: Optional[int] = None,
    ) -> List[Tuple[str, float]]:
        """
        k most similar entries to an indexed entry, excluding itself.

        Raises:
            NotFound: node_id is not indexed
        """
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        with self._lock.read():
            node = self._nodes.get(node_id)
            if node is None:
                raise NotFound(node_id)
            hits = self._knn(node.vector, k + 1, ef)
        return [(nid, sim) for nid, sim in hits if nid != node_id][:k]

    def get_vector(self, node_id: str) -> np.ndarray:
        """Copy of the normalized vector stored for node_id."""
        with self._lock.read():
            node = self._nodes.get(node_id)
            if node is None:
                raise NotFound(node_id)
            return node.vector.copy()

    def ids(self) -> List[str]:
        with self._lock.read():
            return list(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def entry_point(self) -> Optional[str]:
        return self._entry

    @property
    def top_level(self) -> int:
        return self._top_level

    def stats(self) -> Dict[str, object]:
        """Graph statistics."""
        with self._lock.read():
            levels: Dict[int, int] = {}
            degree = 0
            for node in self._nodes.values():
                levels[node.level] = levels.get(node.level, 0) + 1
                degree += len(node.neighbors[0])
            size = len(self._nodes)
            return {
                "size": size,
                "dim": self.dim,
                "m": self.m,
                "top_level": self._top_level,
                "entry_point": self._entry,
                "levels": dict(sorted(levels.items())),
                "mean_degree": (degree / size) if size else 0.0,
            }

    def check_integrity(self) -> List[str]:
        """
        List dangling or asymmetric links (empty when the graph is sound).

        Used by tests and diagnostics.
        """
        problems = []
        with self._lock.read():
            for node in self._nodes.values():
                for level in range(node.level + 1):
                    for nb in node.neighbors[level]:
                        other = self._nodes.get(nb)
                        if other is None:
                            problems.append(f"{node.id}->{nb} dangling at level {level}")
                        elif node.id not in other.inbound[level]:
                            problems.append(f"{node.id}->{nb} missing inbound at level {level}")
                    for nb in node.inbound[level]:
                        if nb not in self._nodes:
                            problems.append(f"{nb}->{node.id} dangling inbound at level {level}")
            if self._nodes and self._entry not in self._nodes:
                problems.append(f"entry point {self._entry!r} missing")
        return problems

    # =========================================================================
    # Internals (callers hold the lock)
    # =========================================================================

    def _prepare(self, vector: np.ndarray) -> np.ndarray:
        check_dim(vector, self.dim)
        v = np.asarray(vector, dtype=np.float32)
        norm = float(np.linalg.norm(v))
        if norm > 0:
            v = v / norm
        return v.astype(np.float32)

    def _random_level(self) -> int:
        u = 1.0 - self._rng.random()  # (0, 1]
        return int(-math.log(u) * self._ml)

    def _sim(self, q: np.ndarray, node_id: str) -> float:
        return float(np.dot(q, self._nodes[node_id].vector))

    def _cap(self, level: int) -> int:
        return self.m0 if level == 0 else self.m

    def _link(self, src: str, dst: str, level: int) -> None:
        self._nodes[src].neighbors[level].add(dst)
        self._nodes[dst].inbound[level].add(src)

    def _unlink(self, src: str, dst: str, level: int) -> None:
        self._nodes[src].neighbors[level].discard(dst)
        self._nodes[dst].inbound[level].discard(src)

    def _prune(self, node_id: str, level: int) -> None:
        """Drop the least similar links until node_id is within its cap."""
        node = self._nodes[node_id]
        links = node.neighbors[level]
        cap = self._cap(level)
        if len(links) <= cap:
            return
        ranked = sorted(links, key=lambda nb: self._sim(node.vector, nb), reverse=True)
        for nb in ranked[cap:]:
            self._unlink(node_id, nb, level)

    def _greedy(self, q: np.ndarray, start: str, level: int) -> str:
        """Hill-climb on one level until no neighbour is closer."""
        current = start
        current_sim = self._sim(q, current)
        improved = True
        while improved:
            improved = False
            for nb in self._nodes[current].neighbors[level]:
                s = self._sim(q, nb)
                if s > current_sim:
                    current, current_sim = nb, s
                    improved = True
        return current

    def _search_level(
        self,
        q: np.ndarray,
        entries: Iterable[str],
        ef: int,
        level: int,
    ) -> List[Tuple[float, str]]:
        """Best-first search of width ef; returns (sim, id) most similar first."""
        visited: Set[str] = set()
        candidates: List[Tuple[float, str]] = []   # max-heap via negated sim
        results: List[Tuple[float, str]] = []      # min-heap of the best ef

        for entry in entries:
            if entry in visited:
                continue
            visited.add(entry)
            s = self._sim(q, entry)
            heapq.heappush(candidates, (-s, entry))
            heapq.heappush(results, (s, entry))
            if len(results) > ef:
                heapq.heappop(results)

        while candidates:
            neg_sim, current = heapq.heappop(candidates)
            if len(results) >= ef and -neg_sim < results[0][0]:
                break
            for nb in self._nodes[current].neighbors[level]:
                if nb in visited:
                    continue
                visited.add(nb)
                s = self._sim(q, nb)
                if len(results) < ef or s > results[0][0]:
                    heapq.heappush(candidates, (-s, nb))
                    heapq.heappush(results, (s, nb))
                    if len(results) > ef:
                        heapq.heappop(results)

        return sorted(results, reverse=True)

    def _knn(self, q: np.ndarray, k: int, ef: Optional[int]) -> List[Tuple[str, float]]:
        if self._entry is None:
            return []
        width = max(ef or self.ef_search, k)
        current = self._entry
        for level in range(self._top_level, 0, -1):
            current = self._greedy(q, current, level)
        found = self._search_level(q, [current], width, 0)
        return [(node_id, sim) for sim, node_id in found[:k]]

    def _insert(self, node_id: str, vector: np.ndarray) -> None:
        if node_id in self._nodes:
            raise DuplicateID(node_id)

        level = self._random_level()
        node = _Node(node_id, vector, level)

        if self._entry is None:
            self._nodes[node_id] = node
            self._entry = node_id
            self._top_level = level
            logger.debug(f"Index entry point set to {node_id!r} (level {level})")
            return

        current = self._entry
        for lc in range(self._top_level, level, -1):
            current = self._greedy(vector, current, lc)

        self._nodes[node_id] = node
        entries = [current]
        for lc in range(min(level, self._top_level), -1, -1):
            found = [(s, nid) for s, nid in self._search_level(vector, entries, self.ef_construction, lc)
                     if nid != node_id]
            for _, nb in found[:self.m]:
                self._link(node_id, nb, lc)
                self._link(nb, node_id, lc)
                self._prune(nb, lc)
            entries = [nid for _, nid in found] or entries

        if level > self._top_level:
            self._top_level = level
            self._entry = node_id

    def _delete(self, node_id: str) -> None:
        node = self._nodes.get(node_id)
        if node is None:
            raise NotFound(node_id)

        for level in range(node.level + 1):
            outgoing = set(node.neighbors[level])
            incoming = set(node.inbound[level])
            for nb in outgoing:
                self._unlink(node_id, nb, level)
            for nb in incoming:
                self._unlink(nb, node_id, level)

            # Reconnect nodes that lost a link through the removed one
            pool = (outgoing | incoming) - {node_id}
            for nb in incoming:
                if nb == node_id:
                    continue
                self._repair(nb, pool, level)

        del self._nodes[node_id]

        if self._entry == node_id:
            self._choose_entry_point()

    def _repair(self, node_id: str, pool: Set[str], level: int) -> None:
        node = self._nodes[node_id]
        cap = self._cap(level)
        candidates = [c for c in pool if c != node_id and c not in node.neighbors[level]]
        if not candidates or len(node.neighbors[level]) >= cap:
            return
        candidates.sort(key=lambda c: self._sim(node.vector, c), reverse=True)
        for c in candidates:
            if len(node.neighbors[level]) >= cap:
                break
            self._link(node_id, c, level)

    def _choose_entry_point(self) -> None:
        # Caller has already removed the old entry point from _nodes
        if not self._nodes:
            self._entry = None
            self._top_level = -1
            return
        best = max(self._nodes.values(), key=lambda n: n.level)
        self._entry = best.id
        self._top_level = best.level
        logger.debug(f"Index entry point moved to {best.id!r} (level {best.level})")


__all__ = [
    "HNSWIndex",
    "DEFAULT_M",
    "DEFAULT_EF_CONSTRUCTION",
    "DEFAULT_EF_SEARCH",
]
