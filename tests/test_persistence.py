"""
Persistence Tests
=================

Directory-backed records and index rebuild on load:
- every field of a Memory survives a save/load cycle
- a reopened store answers queries like the original
- records that do not fit the configuration are fatal on load
"""

from datetime import datetime, timezone

import numpy as np
import pytest

from engram.configs import EngramConfig, IndexConfig, StoreConfig, VectorConfig
from engram.errors import ConfigurationError, PersistenceError
from engram.hd.ops import inject_noise, random_hv
from engram.memory import (
    DirectoryPersistence,
    InMemoryPersistence,
    Memory,
    MemoryDocument,
    MemoryStore,
    MemoryType,
    PersistenceProvider,
    SpatialContext,
    TemporalContext,
    ThoughtPattern,
)


DIM = 512


def make_config(dim=DIM, num_layers=3, **store_kwargs):
    return EngramConfig(
        vector=VectorConfig(dim=dim),
        index=IndexConfig(m=8, ef_construction=64, ef_search=32, seed=0),
        store=StoreConfig(num_layers=num_layers, layer_capacities=[100] * num_layers, **store_kwargs),
    )


def full_memory(memory_id="m1", dim=DIM):
    when = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    return Memory(
        vector=random_hv(dim=dim, seed=1),
        memory_type=MemoryType.PROCEDURAL,
        id=memory_id,
        layer=1,
        created_at=when,
        last_accessed_at=when,
        confidence=0.75,
        associations={"kitchen", "morning"},
        spatial=SpatialContext(48.85, 2.35, "Paris", "cafe"),
        temporal=TemporalContext(occurred_at=when, period="morning"),
        thought_pattern=ThoughtPattern.SYSTEMS,
        merge_count=3,
        metadata={"source": "test", "n": 2},
    )


# =============================================================================
# Tests: Backends
# =============================================================================

class TestBackends:

    @pytest.mark.parametrize("backend", ["memory", "directory"])
    def test_round_trip_preserves_fields(self, backend, tmp_path):
        persistence = InMemoryPersistence() if backend == "memory" else DirectoryPersistence(tmp_path)
        original = full_memory()
        persistence.save(original)

        [loaded] = persistence.load_all()

        assert np.array_equal(loaded.vector, original.vector)
        assert loaded.vector.dtype == np.float32
        assert loaded.to_dict() == original.to_dict()

    def test_backends_satisfy_protocol(self, tmp_path):
        assert isinstance(InMemoryPersistence(), PersistenceProvider)
        assert isinstance(DirectoryPersistence(tmp_path), PersistenceProvider)

    def test_directory_layout(self, tmp_path):
        persistence = DirectoryPersistence(tmp_path)
        persistence.save(full_memory("m1"))
        assert sorted(p.name for p in tmp_path.iterdir()) == ["m1.json", "m1.npy"]

    def test_save_overwrites(self, tmp_path):
        persistence = DirectoryPersistence(tmp_path)
        memory = full_memory()
        persistence.save(memory)
        memory.confidence = 0.1
        persistence.save(memory)
        [loaded] = persistence.load_all()
        assert loaded.confidence == pytest.approx(0.1)

    def test_delete(self, tmp_path):
        persistence = DirectoryPersistence(tmp_path)
        persistence.save(full_memory("m1"))
        persistence.delete("m1")
        persistence.delete("never-existed")
        assert persistence.load_all() == []
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.parametrize("memory_id", ["../escape", "a/b", ".hidden", "", "..", "x\\y"])
    def test_unsafe_ids_never_touch_the_filesystem(self, memory_id, tmp_path):
        root = tmp_path / "memories"
        persistence = DirectoryPersistence(root)
        with pytest.raises(PersistenceError):
            persistence.save(full_memory(memory_id))
        with pytest.raises(PersistenceError):
            persistence.delete(memory_id)
        assert list(root.iterdir()) == []
        assert sorted(p.name for p in tmp_path.iterdir()) == ["memories"]

    def test_unsafe_id_store_is_rolled_back(self, tmp_path):
        store = MemoryStore(make_config(), persistence=DirectoryPersistence(tmp_path / "memories"))
        with pytest.raises(PersistenceError):
            store.store(Memory(vector=random_hv(dim=DIM, seed=2), id="../escape"))
        assert len(store) == 0
        assert len(store.index) == 0
        assert not (tmp_path / "escape.json").exists()

    def test_corrupt_document_raises(self, tmp_path):
        persistence = DirectoryPersistence(tmp_path)
        persistence.save(full_memory("m1"))
        (tmp_path / "m1.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(PersistenceError):
            persistence.load_all()

    def test_invalid_document_raises(self, tmp_path):
        persistence = DirectoryPersistence(tmp_path)
        persistence.save(full_memory("m1"))
        (tmp_path / "m1.json").write_text('{"id": "m1", "memory_type": "dream", "layer": 0, "dim": 4}')
        with pytest.raises(PersistenceError):
            persistence.load_all()

    def test_missing_vector_raises(self, tmp_path):
        persistence = DirectoryPersistence(tmp_path)
        persistence.save(full_memory("m1"))
        (tmp_path / "m1.npy").unlink()
        with pytest.raises(PersistenceError):
            persistence.load_all()

    def test_document_schema_bounds(self):
        doc = MemoryDocument.from_memory(full_memory())
        assert doc.dim == DIM
        assert doc.associations == ["kitchen", "morning"]
        with pytest.raises(ValueError):
            MemoryDocument(id="x", memory_type="episodic", layer=-1, dim=DIM)


# =============================================================================
# Tests: Store load
# =============================================================================

class TestLoad:

    def test_reopened_store_matches(self, tmp_path):
        store = MemoryStore(make_config(), persistence=DirectoryPersistence(tmp_path))
        for i in range(12):
            store.store(Memory(vector=random_hv(dim=DIM, seed=i), id=f"m{i}", layer=i % 3))

        reopened = MemoryStore.open(make_config(), persistence=DirectoryPersistence(tmp_path))

        assert len(reopened) == 12
        assert len(reopened.index) == 12
        assert reopened.layer_sizes() == store.layer_sizes()
        assert reopened.recall(random_hv(dim=DIM, seed=5), top_k=1)[0].id == "m5"

    def test_consolidation_and_eviction_reach_disk(self, tmp_path):
        config = make_config()
        store = MemoryStore(config, persistence=DirectoryPersistence(tmp_path))
        base = random_hv(dim=DIM, seed=42)
        for i, memory_id in enumerate(["a", "b", "c"]):
            store.store(Memory(vector=inject_noise(base, 0.02, seed=i), id=memory_id))
        store.consolidate()

        reopened = MemoryStore.open(make_config(), persistence=DirectoryPersistence(tmp_path))
        assert len(reopened) == 1
        assert reopened.memories()[0].merge_count == 3
        assert reopened.layer_sizes() == [0, 1, 0]
        assert len(list(tmp_path.glob("*.json"))) == 1

    def test_mismatched_dimension_is_fatal(self, tmp_path):
        store = MemoryStore(make_config(dim=DIM), persistence=DirectoryPersistence(tmp_path))
        store.store(Memory(vector=random_hv(dim=DIM, seed=1), id="m1"))

        with pytest.raises(ConfigurationError):
            MemoryStore.open(make_config(dim=DIM * 2), persistence=DirectoryPersistence(tmp_path))

    def test_layer_out_of_range_is_fatal(self, tmp_path):
        persistence = DirectoryPersistence(tmp_path)
        persistence.save(full_memory("m1"))  # layer 1
        store = MemoryStore(make_config(num_layers=1), persistence=persistence)
        with pytest.raises(ConfigurationError):
            store.load()
        assert len(store) == 0
        assert len(store.index) == 0

    def test_load_requires_empty_store(self):
        persistence = InMemoryPersistence()
        store = MemoryStore(make_config(), persistence=persistence)
        store.store(Memory(vector=random_hv(dim=DIM, seed=1)))
        with pytest.raises(ConfigurationError):
            store.load()

    def test_load_without_persistence(self):
        assert MemoryStore(make_config()).load() == 0

    def test_load_with_progress_bar(self, tmp_path):
        persistence = DirectoryPersistence(tmp_path)
        persistence.save(full_memory("m1"))
        store = MemoryStore(make_config(show_progress=True), persistence=persistence)
        assert store.load() == 1
        assert store.get("m1").spatial.title == "Paris"
