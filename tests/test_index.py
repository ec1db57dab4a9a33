"""
Similarity Index Tests
======================

HNSW graph behaviour:
- exact duplicates of stored vectors come back first
- a wide search agrees with brute force
- deletes leave no dangling links and never resurface the deleted id
- the entry point moves when its node is deleted
- queries run safely alongside writers
"""

import threading

import numpy as np
import pytest

from engram.errors import DuplicateID, InvalidVector, NotFound
from engram.hd.ops import random_hv, similarity
from engram.memory.index import HNSWIndex


# =============================================================================
# Test Thresholds
# =============================================================================

DIM = 256
N_VECTORS = 200
SELF_RECALL_MIN = 0.95            # Exact duplicates found at rank 1
WIDE_RECALL_MIN = 0.95            # Top-10 overlap with brute force at ef >= N
POST_DELETE_RECALL_MIN = 0.90     # Survivors found at rank 1 after heavy deletes


# =============================================================================
# Helpers
# =============================================================================

def build_index(n: int = N_VECTORS, seed: int = 0, **kwargs):
    params = dict(dim=DIM, m=8, ef_construction=100, ef_search=64, seed=seed)
    params.update(kwargs)
    index = HNSWIndex(**params)
    rng = np.random.default_rng(seed)
    vectors = {}
    for i in range(n):
        node_id = f"n{i:04d}"
        vectors[node_id] = random_hv(dim=DIM, rng=rng)
        index.insert(node_id, vectors[node_id])
    return index, vectors


def brute_force(vectors, query, k):
    ranked = sorted(vectors, key=lambda nid: similarity(query, vectors[nid]), reverse=True)
    return ranked[:k]


@pytest.fixture(scope="module")
def populated():
    return build_index()


# =============================================================================
# Tests: Query
# =============================================================================

class TestQuery:

    def test_empty_index_returns_nothing(self):
        index = HNSWIndex(dim=DIM)
        assert index.query(random_hv(dim=DIM, seed=1), k=5) == []
        assert index.entry_point is None

    def test_exact_duplicate_ranks_first(self, populated):
        index, vectors = populated
        ids = sorted(vectors)[:100]
        hits = sum(1 for nid in ids if index.query(vectors[nid], k=1)[0][0] == nid)
        assert hits / len(ids) >= SELF_RECALL_MIN

    def test_results_sorted_and_bounded(self, populated):
        index, vectors = populated
        results = index.query(random_hv(dim=DIM, seed=99), k=10)
        assert len(results) == 10
        sims = [s for _, s in results]
        assert sims == sorted(sims, reverse=True)
        assert len({nid for nid, _ in results}) == 10

    def test_k_larger_than_size(self):
        index, _ = build_index(n=5)
        assert len(index.query(random_hv(dim=DIM, seed=3), k=50)) == 5

    def test_wide_search_matches_brute_force(self, populated):
        index, vectors = populated
        rng = np.random.default_rng(7)
        overlaps = []
        for _ in range(20):
            q = random_hv(dim=DIM, rng=rng)
            found = {nid for nid, _ in index.query(q, k=10, ef=N_VECTORS)}
            overlaps.append(len(found & set(brute_force(vectors, q, 10))) / 10)
        assert np.mean(overlaps) >= WIDE_RECALL_MIN

    def test_reported_similarity_is_cosine(self, populated):
        index, vectors = populated
        q = random_hv(dim=DIM, seed=5)
        for nid, sim in index.query(q, k=5):
            assert sim == pytest.approx(similarity(q, vectors[nid]), abs=1e-4)

    def test_invalid_k_raises(self, populated):
        index, _ = populated
        with pytest.raises(ValueError):
            index.query(random_hv(dim=DIM, seed=1), k=0)

    def test_wrong_dimension_raises(self, populated):
        index, _ = populated
        with pytest.raises(InvalidVector):
            index.query(random_hv(dim=DIM * 2, seed=1), k=1)

    def test_neighbors_of_excludes_self(self, populated):
        index, vectors = populated
        nid = sorted(vectors)[0]
        neighbors = index.neighbors_of(nid, k=5)
        assert len(neighbors) == 5
        assert nid not in {n for n, _ in neighbors}


# =============================================================================
# Tests: Insert / Delete / Update
# =============================================================================

class TestMutation:

    def test_duplicate_insert_raises(self):
        index, vectors = build_index(n=10)
        with pytest.raises(DuplicateID):
            index.insert("n0000", vectors["n0000"])
        assert len(index) == 10

    def test_invalid_insert_leaves_index_unchanged(self):
        index, _ = build_index(n=10)
        with pytest.raises(InvalidVector):
            index.insert("bad", np.ones(DIM + 1, dtype=np.float32))
        assert len(index) == 10
        assert "bad" not in index

    def test_delete_unknown_raises(self):
        index, _ = build_index(n=3)
        with pytest.raises(NotFound):
            index.delete("missing")

    def test_deleted_ids_never_returned(self):
        index, vectors = build_index(n=120, seed=1)
        deleted = sorted(vectors)[::3]
        for nid in deleted:
            index.delete(nid)

        assert len(index) == 120 - len(deleted)
        assert index.check_integrity() == []
        for nid in deleted:
            found = {n for n, _ in index.query(vectors[nid], k=20, ef=120)}
            assert nid not in found

    def test_survivors_still_found_after_deletes(self):
        index, vectors = build_index(n=120, seed=2)
        for nid in sorted(vectors)[::2]:
            index.delete(nid)
        survivors = sorted(vectors)[1::2]
        hits = sum(1 for nid in survivors if index.query(vectors[nid], k=1)[0][0] == nid)
        assert hits / len(survivors) >= POST_DELETE_RECALL_MIN

    def test_entry_point_replaced_on_delete(self):
        index, vectors = build_index(n=60, seed=3)
        for _ in range(20):
            old_entry = index.entry_point
            index.delete(old_entry)
            assert index.entry_point != old_entry
            assert index.entry_point in index
            assert index.check_integrity() == []
        # Entry point always sits on the highest level left
        levels = index.stats()["levels"]
        assert index.top_level == max(levels)

    def test_delete_everything(self):
        index, vectors = build_index(n=15, seed=4)
        for nid in list(vectors):
            index.delete(nid)
        assert len(index) == 0
        assert index.entry_point is None
        assert index.query(vectors["n0000"], k=3) == []
        # Reusable after draining
        index.insert("again", vectors["n0000"])
        assert index.query(vectors["n0000"], k=1)[0][0] == "again"

    def test_update_moves_vector(self):
        index, vectors = build_index(n=50, seed=5)
        target = random_hv(dim=DIM, seed=1234)
        index.update("n0007", target)
        assert index.query(target, k=1)[0][0] == "n0007"
        assert len(index) == 50
        assert index.check_integrity() == []

    def test_update_unknown_raises(self):
        index, _ = build_index(n=5)
        with pytest.raises(NotFound):
            index.update("missing", random_hv(dim=DIM, seed=1))

    def test_update_wrong_dimension_keeps_old_vector(self):
        index, vectors = build_index(n=5)
        with pytest.raises(InvalidVector):
            index.update("n0001", random_hv(dim=DIM - 1, seed=1))
        assert index.query(vectors["n0001"], k=1)[0][0] == "n0001"

    def test_degree_caps(self):
        index, _ = build_index(n=150, seed=6)
        for node in index._nodes.values():
            assert len(node.neighbors[0]) <= index.m0
            for level in range(1, node.level + 1):
                assert len(node.neighbors[level]) <= index.m

    def test_get_vector_is_normalized_copy(self):
        index, vectors = build_index(n=3)
        v = index.get_vector("n0000")
        assert np.linalg.norm(v) == pytest.approx(1.0, abs=1e-5)
        v[:] = 0
        assert np.linalg.norm(index.get_vector("n0000")) == pytest.approx(1.0, abs=1e-5)

    def test_stats(self):
        index, _ = build_index(n=30)
        stats = index.stats()
        assert stats["size"] == 30
        assert sum(stats["levels"].values()) == 30
        assert stats["mean_degree"] > 0


# =============================================================================
# Tests: Concurrency
# =============================================================================

class TestConcurrency:

    def test_queries_alongside_writers(self):
        index, vectors = build_index(n=80, seed=8)
        errors = []
        rng = np.random.default_rng(9)
        extra = {f"x{i:03d}": random_hv(dim=DIM, rng=rng) for i in range(60)}

        def writer():
            try:
                for nid, vec in extra.items():
                    index.insert(nid, vec)
                for nid in sorted(vectors)[:30]:
                    index.delete(nid)
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

        def reader(seed):
            local = np.random.default_rng(seed)
            try:
                for _ in range(40):
                    for nid, _ in index.query(random_hv(dim=DIM, rng=local), k=5):
                        assert isinstance(nid, str)
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

        threads = [threading.Thread(target=writer)]
        threads += [threading.Thread(target=reader, args=(s,)) for s in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert errors == []
        assert len(index) == 80 + 60 - 30
        assert index.check_integrity() == []
