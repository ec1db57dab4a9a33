"""
Engram Memory Store
===================

Layered memory over the similarity index.

The store owns every Memory record. The HNSW index holds ids and vectors
only, so every structural change (store, evict, merge) is applied to the
index, the record table and the persistence provider as one unit: if any
step fails the earlier steps are rolled back before the error propagates.

Layers:
- layer 0: intake, most recent and volatile
- higher layers: consolidated, more stable
A memory's layer never decreases.

Retrieval:
1. Encode the query (or take a vector)
2. Over-fetch top_k * overfetch_factor candidates from the index
3. Resolve ids to records, apply type / thought-pattern filters
4. Return the top_k by similarity and touch last_accessed_at

Consolidation merges pairs above the merge threshold, most similar first,
promoting the survivor one layer and deleting the absorbed memory.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Collection, Dict, Iterable, List, Optional, Set, Tuple, Union

import numpy as np
from tqdm import tqdm

from ..configs import EngramConfig
from ..errors import (
    CapacityExceeded,
    ConfigurationError,
    ConsolidationInProgress,
    DuplicateID,
    EmbeddingError,
    EngramError,
    NotFound,
    PersistenceError,
    StoreFull,
)
from ..hd.ops import bundle, check_dim, similarity
from .bias import BiasProvider, ThoughtPattern
from .encoder import PatternEncoder
from .index import HNSWIndex
from .providers import EmbeddingProvider, PersistenceProvider
from .record import (
    ConsolidationReport,
    Memory,
    MemoryType,
    RecallResult,
    SpatialContext,
    TemporalContext,
    new_memory_id,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp(moment: Optional[datetime]) -> float:
    return moment.timestamp() if moment else 0.0


def _as_set(value, kind) -> Optional[Set]:
    """Normalize a single filter value or a collection of them."""
    if value is None:
        return None
    if isinstance(value, (str, kind)):
        return {kind(value)}
    return {kind(v) for v in value}


class MemoryStore:
    """
    Layered hyperdimensional memory.

    Usage:
        store = MemoryStore(config)
        store.remember({"what": "coffee", "where": "kitchen"}, "episodic",
                       thought="concrete", associations={"morning"})
        hits = store.recall_input({"what": "coffee"}, "episodic", top_k=3)
        report = store.consolidate()
    """

    def __init__(
        self,
        config: Optional[EngramConfig] = None,
        encoder: Optional[PatternEncoder] = None,
        index: Optional[HNSWIndex] = None,
        persistence: Optional[PersistenceProvider] = None,
        embedder: Optional[EmbeddingProvider] = None,
        bias_provider: Optional[BiasProvider] = None,
    ):
        self.config = (config or EngramConfig()).validate()
        self.dim = self.config.vector.dim
        self.num_layers = self.config.store.num_layers

        self.encoder = encoder or PatternEncoder(self.dim, seed=self.config.vector.seed)
        self.index = index or HNSWIndex(
            dim=self.dim,
            m=self.config.index.m,
            ef_construction=self.config.index.ef_construction,
            ef_search=self.config.index.ef_search,
            seed=self.config.index.seed,
        )
        if self.encoder.dim != self.dim or self.index.dim != self.dim:
            raise ConfigurationError(
                f"encoder ({self.encoder.dim}) and index ({self.index.dim}) "
                f"must match vector.dim ({self.dim})"
            )
        if len(self.index):
            raise ConfigurationError("MemoryStore needs an empty index; it is rebuilt from records")

        self.persistence = persistence
        self.embedder = embedder
        self.bias_provider = bias_provider or BiasProvider(self.config.bias_overrides)

        self._records: Dict[str, Memory] = {}
        self._layers: List[Set[str]] = [set() for _ in range(self.num_layers)]

        # Structural changes (index + records + persistence) are serialized
        self._structure_lock = threading.RLock()
        # Metadata-only updates (last_accessed_at) and record table access
        self._record_lock = threading.Lock()
        # One consolidation sweep at a time
        self._sweep_lock = threading.Lock()

        self._schedule_thread: Optional[threading.Thread] = None
        self._schedule_stop: Optional[threading.Event] = None

    @classmethod
    def open(
        cls,
        config: Optional[EngramConfig] = None,
        persistence: Optional[PersistenceProvider] = None,
        **kwargs,
    ) -> "MemoryStore":
        """Create a store and load every persisted record."""
        store = cls(config, persistence=persistence, **kwargs)
        store.load()
        return store

    # =========================================================================
    # Store
    # =========================================================================

    def store(self, record: Memory) -> Memory:
        """
        Store a memory record.

        The store keeps its own copy of the record. created_at and
        last_accessed_at default to now, confidence defaults to 1.0.

        Raises:
            InvalidVector: vector dimension != store dimension (no mutation)
            DuplicateID: a memory with this id exists
            StoreFull: layer over capacity and nothing can be evicted
            PersistenceError: the persistence provider failed (rolled back)
        """
        check_dim(record.vector, self.dim)
        if not 0 <= record.layer < self.num_layers:
            raise ValueError(f"layer must be in [0, {self.num_layers - 1}], got {record.layer}")
        if record.confidence is not None and not 0.0 <= record.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {record.confidence}")

        now = _utcnow()
        owned = dataclasses.replace(
            record,
            vector=np.array(record.vector, dtype=np.float32, copy=True),
            associations=set(record.associations),
            metadata=dict(record.metadata),
            created_at=record.created_at or now,
            last_accessed_at=record.last_accessed_at or record.created_at or now,
            confidence=1.0 if record.confidence is None else float(record.confidence),
        )

        with self._structure_lock:
            if owned.id in self._records:
                raise DuplicateID(owned.id)
            self._insert_unit(owned)
            try:
                self._check_capacity(owned.layer)
            except CapacityExceeded as e:
                logger.debug(f"{e}; evicting")
                try:
                    self.evict(owned.layer, protect={owned.id})
                except StoreFull:
                    self._remove_unit(owned.id)
                    raise

        logger.debug(f"Stored {owned.id} ({owned.memory_type.value}, layer {owned.layer})")

        if self.config.store.auto_consolidate:
            self.maybe_consolidate()

        return owned

    def remember(
        self,
        payload: Any,
        memory_type: Union[MemoryType, str] = MemoryType.EPISODIC,
        thought: Union[ThoughtPattern, str, None] = None,
        associations: Iterable[str] = (),
        memory_id: Optional[str] = None,
        confidence: Optional[float] = None,
        spatial: Optional[SpatialContext] = None,
        temporal: Optional[TemporalContext] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Memory:
        """Encode a payload under a thought pattern's bias and store it."""
        bias = self.bias_provider.bias_for(thought)
        vector = self.encoder.encode(payload, memory_type, bias)
        record = Memory(
            vector=vector,
            memory_type=memory_type,
            id=memory_id or new_memory_id(),
            confidence=confidence,
            associations=set(associations),
            spatial=spatial,
            temporal=temporal,
            thought_pattern=ThoughtPattern.parse(thought),
            metadata=dict(metadata or {}),
        )
        return self.store(record)

    def remember_text(
        self,
        text: str,
        memory_type: Union[MemoryType, str] = MemoryType.SEMANTIC,
        **kwargs,
    ) -> Memory:
        """
        Store text embedded by the configured EmbeddingProvider.

        Raises:
            EmbeddingError: the provider failed (recoverable)
        """
        vector = self._embed(text)
        metadata = dict(kwargs.pop("metadata", None) or {})
        metadata.setdefault("text", text)
        record = Memory(
            vector=vector,
            memory_type=memory_type,
            id=kwargs.pop("memory_id", None) or new_memory_id(),
            confidence=kwargs.pop("confidence", None),
            associations=set(kwargs.pop("associations", ())),
            spatial=kwargs.pop("spatial", None),
            temporal=kwargs.pop("temporal", None),
            metadata=metadata,
        )
        if kwargs:
            raise TypeError(f"unexpected arguments: {sorted(kwargs)}")
        return self.store(record)

    # =========================================================================
    # Recall
    # =========================================================================

    def recall(
        self,
        query_vector: np.ndarray,
        type_filter: Union[MemoryType, str, Collection, None] = None,
        bias_filter: Union[ThoughtPattern, str, Collection, None] = None,
        top_k: int = 5,
    ) -> List[RecallResult]:
        """
        Recall memories similar to a query vector.

        Args:
            query_vector: Vector of the store dimension
            type_filter: Memory type(s) to keep
            bias_filter: Thought pattern(s) the memory was encoded under
            top_k: Max memories to return

        Returns:
            List of RecallResult, most similar first. Empty (never an
            error) when nothing is stored or nothing passes the filters.
        """
        if top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {top_k}")
        check_dim(query_vector, self.dim)
        types = _as_set(type_filter, MemoryType)
        thoughts = _as_set(bias_filter, ThoughtPattern)

        size = len(self.index)
        if size == 0:
            return []

        fetch = top_k * self.config.store.overfetch_factor
        while True:
            k = min(fetch, size)
            hits = self.index.query(query_vector, k=k, ef=max(self.config.index.ef_search, k))
            results = []
            for memory_id, sim in hits:
                record = self._records.get(memory_id)
                if record is None:
                    continue
                if types is not None and record.memory_type not in types:
                    continue
                if thoughts is not None and record.thought_pattern not in thoughts:
                    continue
                results.append(RecallResult(memory=record, similarity=sim))
                if len(results) == top_k:
                    break
            # Filters ate too many candidates: widen the fetch
            if len(results) >= top_k or k >= size:
                break
            fetch *= 2

        now = _utcnow()
        with self._record_lock:
            for result in results:
                result.memory.last_accessed_at = now
        if self.persistence is not None and results:
            self._persist_access([r.memory for r in results])

        return results

    def recall_input(
        self,
        payload: Any,
        memory_type: Union[MemoryType, str] = MemoryType.EPISODIC,
        thought: Union[ThoughtPattern, str, None] = None,
        type_filter: Union[MemoryType, str, Collection, None] = None,
        bias_filter: Union[ThoughtPattern, str, Collection, None] = None,
        top_k: int = 5,
    ) -> List[RecallResult]:
        """Encode a payload as a query and recall."""
        bias = self.bias_provider.bias_for(thought)
        query = self.encoder.encode(payload, memory_type, bias)
        return self.recall(query, type_filter=type_filter, bias_filter=bias_filter, top_k=top_k)

    def recall_text(self, text: str, **kwargs) -> List[RecallResult]:
        """Embed text with the EmbeddingProvider and recall."""
        return self.recall(self._embed(text), **kwargs)

    # =========================================================================
    # Eviction
    # =========================================================================

    def evict(self, layer: int, protect: Collection[str] = ()) -> List[str]:
        """
        Bring a layer back under its capacity.

        Removes the lowest-confidence, least-recently-accessed memories
        from the index, the record table and persistence.

        Returns:
            Ids of the evicted memories (empty if the layer is within bounds)

        Raises:
            StoreFull: not enough unprotected memories to evict
        """
        self._check_layer(layer)
        with self._structure_lock:
            capacity = self.config.capacity(layer)
            members = list(self._layers[layer])
            excess = len(members) - capacity
            if excess <= 0:
                return []

            candidates = [self._records[mid] for mid in members if mid not in protect]
            if len(candidates) < excess:
                raise StoreFull(layer, capacity)

            candidates.sort(key=lambda m: (m.confidence, _timestamp(m.last_accessed_at or m.created_at), m.id))
            evicted = []
            for victim in candidates[:excess]:
                self._remove_unit(victim.id)
                evicted.append(victim.id)

        logger.info(f"Evicted {len(evicted)} memories from layer {layer}")
        return evicted

    # =========================================================================
    # Consolidation
    # =========================================================================

    def consolidate(
        self,
        cancel_event: Optional[threading.Event] = None,
        layers: Optional[Collection[int]] = None,
    ) -> ConsolidationReport:
        """
        Merge highly similar memories.

        Pairs above merge_threshold are merged most-similar first. After
        each merge the survivor's similarities are recomputed, so a merged
        vector that drifted below the threshold stops absorbing. A failing
        merge is rolled back, logged and skipped.

        Args:
            cancel_event: Checked between merges; the sweep stops cleanly
                once it is set
            layers: Layers in scope (default: all)

        Raises:
            ConsolidationInProgress: another sweep is running
        """
        if not self._sweep_lock.acquire(blocking=False):
            raise ConsolidationInProgress("a consolidation sweep is already running")
        try:
            return self._sweep(cancel_event, layers)
        finally:
            self._sweep_lock.release()

    def maybe_consolidate(self) -> Optional[ConsolidationReport]:
        """Run a sweep if layer 0 has grown past the configured trigger."""
        if len(self._layers[0]) <= self.config.store.consolidation_trigger:
            return None
        try:
            return self.consolidate()
        except ConsolidationInProgress:
            logger.debug("Consolidation already running, trigger ignored")
            return None

    def start_consolidation_schedule(self, interval_s: Optional[float] = None) -> None:
        """Run consolidate() every interval_s seconds on a daemon thread."""
        interval = interval_s or self.config.store.consolidation_interval_s
        if not interval or interval <= 0:
            raise ValueError("a positive consolidation interval is required")
        if self._schedule_thread is not None and self._schedule_thread.is_alive():
            return

        stop = threading.Event()

        def _loop():
            while not stop.wait(interval):
                try:
                    report = self.consolidate(cancel_event=stop)
                    logger.debug(f"Scheduled consolidation: {report.to_dict()}")
                except ConsolidationInProgress:
                    logger.debug("Scheduled consolidation skipped, sweep in progress")
                except EngramError:
                    logger.exception("Scheduled consolidation failed")

        self._schedule_stop = stop
        self._schedule_thread = threading.Thread(
            target=_loop, name="engram-consolidation", daemon=True
        )
        self._schedule_thread.start()
        logger.info(f"Consolidation scheduled every {interval}s")

    def stop_consolidation_schedule(self, timeout: Optional[float] = None) -> None:
        """Stop the background schedule, cancelling a sweep between merges."""
        if self._schedule_stop is not None:
            self._schedule_stop.set()
        if self._schedule_thread is not None:
            self._schedule_thread.join(timeout)
        self._schedule_thread = None
        self._schedule_stop = None

    def close(self) -> None:
        self.stop_consolidation_schedule()

    def __enter__(self) -> "MemoryStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # =========================================================================
    # Loading
    # =========================================================================

    def load(self) -> int:
        """
        Rebuild records and index from the persistence provider.

        Raises:
            ConfigurationError: a record's dimension or layer does not fit
                this store's configuration (fatal, nothing is loaded)
        """
        if self.persistence is None:
            return 0

        with self._structure_lock:
            if self._records:
                raise ConfigurationError("load() requires an empty store")

            memories = self.persistence.load_all()
            for memory in memories:
                if memory.dim != self.dim:
                    raise ConfigurationError(
                        f"persisted memory {memory.id!r} has dimension {memory.dim}, "
                        f"store is configured for {self.dim}"
                    )
                if not 0 <= memory.layer < self.num_layers:
                    raise ConfigurationError(
                        f"persisted memory {memory.id!r} is in layer {memory.layer}, "
                        f"store has {self.num_layers} layers"
                    )

            for memory in tqdm(
                memories,
                desc="Rebuilding index",
                unit="mem",
                disable=not self.config.store.show_progress,
            ):
                self.index.insert(memory.id, memory.vector)
                with self._record_lock:
                    self._records[memory.id] = memory
                    self._layers[memory.layer].add(memory.id)

        logger.info(f"MemoryStore: loaded {len(memories)} memories")
        return len(memories)

    # =========================================================================
    # Inspection
    # =========================================================================

    def get(self, memory_id: str) -> Memory:
        record = self._records.get(memory_id)
        if record is None:
            raise NotFound(memory_id)
        return record

    def memories(self, layer: Optional[int] = None) -> List[Memory]:
        with self._record_lock:
            if layer is None:
                return list(self._records.values())
            self._check_layer(layer)
            return [self._records[mid] for mid in self._layers[layer]]

    def layer_sizes(self) -> List[int]:
        return [len(ids) for ids in self._layers]

    def spatial_markers(self) -> List[Dict[str, Any]]:
        """Render tuples for every memory that carries spatial context."""
        with self._record_lock:
            return [
                m.spatial.to_render_tuple(m.id)
                for m in self._records.values()
                if m.spatial is not None
            ]

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, memory_id: object) -> bool:
        return memory_id in self._records

    def stats(self) -> Dict[str, Any]:
        """Get memory store statistics."""
        by_type: Dict[str, int] = {}
        with self._record_lock:
            for record in self._records.values():
                key = record.memory_type.value
                by_type[key] = by_type.get(key, 0) + 1
        return {
            "total_memories": len(self._records),
            "dim": self.dim,
            "layers": self.layer_sizes(),
            "capacities": list(self.config.store.layer_capacities),
            "by_type": by_type,
            "index": self.index.stats(),
        }

    # =========================================================================
    # Units of work (callers hold _structure_lock)
    # =========================================================================

    def _check_layer(self, layer: int) -> None:
        if not 0 <= layer < self.num_layers:
            raise ValueError(f"layer must be in [0, {self.num_layers - 1}], got {layer}")

    def _check_capacity(self, layer: int) -> None:
        size = len(self._layers[layer])
        capacity = self.config.capacity(layer)
        if size > capacity:
            raise CapacityExceeded(layer, size, capacity)

    def _embed(self, text: str) -> np.ndarray:
        if self.embedder is None:
            raise ConfigurationError("no embedding provider configured")
        try:
            vector = self.embedder.embed(text)
        except EngramError:
            raise
        except Exception as e:
            raise EmbeddingError(f"embedding provider failed: {e}") from e
        vector = np.asarray(vector, dtype=np.float32)
        return check_dim(vector, self.dim)

    def _persist(self, record: Memory) -> None:
        if self.persistence is None:
            return
        try:
            self.persistence.save(record)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"failed to save {record.id!r}: {e}") from e

    def _unpersist(self, memory_id: str) -> None:
        if self.persistence is None:
            return
        try:
            self.persistence.delete(memory_id)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"failed to delete {memory_id!r}: {e}") from e

    def _persist_access(self, records: List[Memory]) -> None:
        """Write back touched access times; the recall itself already succeeded."""
        with self._structure_lock:
            for record in records:
                # Absorbed or evicted since the query ran
                if self._records.get(record.id) is not record:
                    continue
                try:
                    self._persist(record)
                except PersistenceError as e:
                    logger.warning(f"Could not persist access time of {record.id}: {e}")

    def _insert_unit(self, record: Memory) -> None:
        """Index insert + record + persistence, or none of them."""
        self.index.insert(record.id, record.vector)
        try:
            with self._record_lock:
                self._records[record.id] = record
                self._layers[record.layer].add(record.id)
            self._persist(record)
        except Exception:
            with self._record_lock:
                self._records.pop(record.id, None)
                self._layers[record.layer].discard(record.id)
            self.index.delete(record.id)
            raise

    def _remove_unit(self, memory_id: str) -> Memory:
        """Persistence delete + index delete + record removal, or none of them."""
        record = self._records[memory_id]
        self._unpersist(memory_id)
        try:
            self.index.delete(memory_id)
        except Exception:
            self._persist(record)
            raise
        with self._record_lock:
            del self._records[memory_id]
            self._layers[record.layer].discard(memory_id)
        logger.debug(f"Removed {memory_id} from layer {record.layer}")
        return record

    # =========================================================================
    # Consolidation internals
    # =========================================================================

    @staticmethod
    def _compatible(a: Memory, b: Memory) -> bool:
        # PATTERN memories merge with each other whatever they came from
        return a.memory_type == b.memory_type

    @staticmethod
    def _pair_key(a: str, b: str) -> Tuple[str, str]:
        return (a, b) if a < b else (b, a)

    def _pairs_for(
        self,
        record: Memory,
        eligible: Set[str],
        threshold: float,
        extra: Iterable[str] = (),
    ) -> Dict[Tuple[str, str], float]:
        """Exact similarities from record to its index neighbours (and extra ids)."""
        k = min(self.config.store.consolidation_neighbors, max(len(self.index) - 1, 1))
        partners = {nid for nid, _ in self.index.neighbors_of(record.id, k=k)}
        partners.update(extra)
        partners.discard(record.id)

        pairs = {}
        for pid in partners:
            other = self._records.get(pid)
            if other is None or pid not in eligible or not self._compatible(record, other):
                continue
            sim = similarity(record.vector, other.vector)
            if sim > threshold:
                pairs[self._pair_key(record.id, pid)] = sim
        return pairs

    def _choose_survivor(self, a: Memory, b: Memory) -> Tuple[Memory, Memory]:
        def rank(m: Memory):
            return (-m.layer, -m.confidence, _timestamp(m.created_at), m.id)

        return (a, b) if rank(a) <= rank(b) else (b, a)

    def _merged_layer(self, survivor: Memory, absorbed: Memory, promote: bool) -> Optional[int]:
        """
        Layer the survivor ends in, or None when the merge must be skipped.

        Consolidated layers (>= 1) keep at least one resident; layer 0 may
        drain. A survivor whose promotion would leave its own layer empty
        stays where it is.
        """
        remaining = {layer: len(self._layers[layer]) for layer in (survivor.layer, absorbed.layer)}
        remaining[absorbed.layer] -= 1
        if absorbed.layer > 0 and remaining[absorbed.layer] == 0:
            return None

        new_layer = max(survivor.layer, absorbed.layer)
        if promote:
            new_layer = min(self.num_layers - 1, new_layer + 1)
        if new_layer != survivor.layer and survivor.layer > 0 and remaining[survivor.layer] <= 1:
            return survivor.layer
        return new_layer

    def _sweep(
        self,
        cancel_event: Optional[threading.Event],
        layers: Optional[Collection[int]],
    ) -> ConsolidationReport:
        started = time.monotonic()
        report = ConsolidationReport()
        threshold = self.config.store.merge_threshold
        scope = set(range(self.num_layers)) if layers is None else set(layers)
        for layer in scope:
            self._check_layer(layer)

        with self._structure_lock:
            eligible = {mid for layer in scope for mid in self._layers[layer]}
            pairs: Dict[Tuple[str, str], float] = {}
            for mid in sorted(eligible):
                pairs.update(self._pairs_for(self._records[mid], eligible, threshold))
        report.candidates = len(pairs)

        promoted: Set[str] = set()
        while pairs:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                logger.info("Consolidation cancelled")
                break

            key = max(pairs, key=lambda p: (pairs[p], p))
            del pairs[key]

            with self._structure_lock:
                a = self._records.get(key[0])
                b = self._records.get(key[1])
                if a is None or b is None:
                    continue
                if similarity(a.vector, b.vector) <= threshold:
                    continue

                survivor, absorbed = self._choose_survivor(a, b)
                new_layer = self._merged_layer(survivor, absorbed, promote=survivor.id not in promoted)
                if new_layer is None:
                    logger.debug(f"Not absorbing {absorbed.id}: last memory in layer {absorbed.layer}")
                    report.skipped += 1
                    continue

                # A held-back promotion can still happen later in the sweep
                promoting = survivor.id not in promoted and (
                    new_layer > survivor.layer or new_layer == self.num_layers - 1
                )
                try:
                    self._merge(survivor, absorbed, new_layer)
                except EngramError as e:
                    logger.warning(f"Skipping merge {absorbed.id} -> {survivor.id}: {e}")
                    report.skipped += 1
                    continue

                if promoting:
                    promoted.add(survivor.id)
                    report.promoted.append(survivor.id)
                report.merges += 1
                report.absorbed.append(absorbed.id)

                # Re-evaluate everything the survivor or the absorbed touched
                eligible.discard(absorbed.id)
                eligible.add(survivor.id)
                previous = set()
                for p in [p for p in pairs if survivor.id in p or absorbed.id in p]:
                    previous.update(p)
                    del pairs[p]
                previous -= {survivor.id, absorbed.id}
                pairs.update(self._pairs_for(survivor, eligible, threshold, extra=previous))

        with self._structure_lock:
            for layer in range(self.num_layers):
                if len(self._layers[layer]) > self.config.capacity(layer):
                    report.evicted.extend(self.evict(layer))

        report.duration_s = time.monotonic() - started
        logger.info(
            f"Consolidation: {report.merges} merges, {report.skipped} skipped, "
            f"{len(report.evicted)} evicted in {report.duration_s:.3f}s"
        )
        return report

    def _merge(self, survivor: Memory, absorbed: Memory, new_layer: int) -> None:
        """
        Fold absorbed into survivor across index, records and persistence.

        On any failure every structure is restored to its pre-merge state
        and the error is re-raised.
        """
        before = (
            survivor.vector,
            survivor.confidence,
            set(survivor.associations),
            survivor.layer,
            survivor.merge_count,
        )

        cs, ca = survivor.confidence, absorbed.confidence
        weights = [cs * survivor.merge_count, ca * absorbed.merge_count]
        if sum(weights) <= 0:
            weights = [float(survivor.merge_count), float(absorbed.merge_count)]
        merged_vector = bundle([survivor.vector, absorbed.vector], weights=weights, normalize="l2")
        # Weighted by their own confidence: leans toward the stronger memory
        merged_conf = (cs * cs + ca * ca) / (cs + ca) if (cs + ca) > 0 else 0.0

        index_updated = absorbed_unindexed = records_changed = False
        try:
            self.index.update(survivor.id, merged_vector)
            index_updated = True
            self.index.delete(absorbed.id)
            absorbed_unindexed = True

            with self._record_lock:
                self._layers[survivor.layer].discard(survivor.id)
                survivor.vector = merged_vector
                survivor.confidence = merged_conf
                survivor.associations |= absorbed.associations
                survivor.merge_count += absorbed.merge_count
                survivor.layer = new_layer
                self._layers[new_layer].add(survivor.id)
                del self._records[absorbed.id]
                self._layers[absorbed.layer].discard(absorbed.id)
                records_changed = True

            self._persist(survivor)
            self._unpersist(absorbed.id)
        except Exception:
            self._rollback_merge(
                survivor, absorbed, before,
                index_updated, absorbed_unindexed, records_changed,
            )
            raise

        logger.debug(
            f"Merged {absorbed.id} into {survivor.id} "
            f"(layer {before[3]} -> {new_layer}, confidence {merged_conf:.3f})"
        )

    def _rollback_merge(
        self,
        survivor: Memory,
        absorbed: Memory,
        before: tuple,
        index_updated: bool,
        absorbed_unindexed: bool,
        records_changed: bool,
    ) -> None:
        old_vector, old_conf, old_assoc, old_layer, old_count = before

        if records_changed:
            with self._record_lock:
                self._layers[survivor.layer].discard(survivor.id)
                survivor.vector = old_vector
                survivor.confidence = old_conf
                survivor.associations = old_assoc
                survivor.layer = old_layer
                survivor.merge_count = old_count
                self._layers[old_layer].add(survivor.id)
                self._records[absorbed.id] = absorbed
                self._layers[absorbed.layer].add(absorbed.id)

        if absorbed_unindexed:
            self.index.insert(absorbed.id, absorbed.vector)
        if index_updated:
            self.index.update(survivor.id, old_vector)

        if records_changed and self.persistence is not None:
            for record in (survivor, absorbed):
                try:
                    self._persist(record)
                except PersistenceError:
                    logger.exception(f"Could not restore persisted state of {record.id} after failed merge")

        logger.warning(f"Rolled back merge of {absorbed.id} into {survivor.id}")


__all__ = [
    "MemoryStore",
]
