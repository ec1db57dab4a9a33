"""
Pattern Encoder Tests
=====================

Structured payloads -> hypervectors:
- deterministic under a noiseless bias
- partial matches stay closer than unrelated content
- thought pattern bias changes structure sensitivity and noise
"""

import numpy as np
import pytest

from engram.errors import InvalidVector
from engram.hd.ops import random_hv, similarity
from engram.memory.bias import NEUTRAL_BIAS, CognitiveBias, bias_for
from engram.memory.encoder import PatternEncoder
from engram.memory.record import MemoryType


DIM = 2048


@pytest.fixture
def encoder():
    return PatternEncoder(dim=DIM, seed=0)


# =============================================================================
# Tests: Determinism and shape
# =============================================================================

class TestDeterminism:

    @pytest.mark.parametrize("payload", [
        "the quick brown fox",
        {"what": "coffee", "where": "kitchen"},
        [1, 2, 3],
        42,
        3.5,
        True,
        None,
    ])
    def test_same_payload_same_vector(self, encoder, payload):
        a = encoder.encode(payload, MemoryType.EPISODIC)
        b = encoder.encode(payload, MemoryType.EPISODIC)
        assert a.shape == (DIM,)
        assert a.dtype == np.float32
        assert np.array_equal(a, b)

    def test_independent_encoders_agree(self):
        payload = {"what": "coffee"}
        a = PatternEncoder(dim=DIM, seed=1).encode(payload)
        b = PatternEncoder(dim=DIM, seed=2).encode(payload)
        assert np.array_equal(a, b)

    def test_output_is_unit_norm(self, encoder):
        hv = encoder.encode({"a": [1, 2], "b": "text"})
        assert np.linalg.norm(hv) == pytest.approx(1.0, abs=1e-5)

    def test_dict_key_order_does_not_matter(self, encoder):
        a = encoder.encode({"a": 1, "b": 2})
        b = encoder.encode({"b": 2, "a": 1})
        assert np.array_equal(a, b)

    @pytest.mark.parametrize("payload", ["", "   ", {}, [], "hi"])
    def test_degenerate_payloads_encode(self, encoder, payload):
        hv = encoder.encode(payload)
        assert np.linalg.norm(hv) == pytest.approx(1.0, abs=1e-5)


# =============================================================================
# Tests: Similarity structure
# =============================================================================

class TestSimilarityStructure:

    def test_partial_text_match(self, encoder):
        base = encoder.encode("the quick brown fox")
        near = encoder.encode("the quick brown fax")
        far = encoder.encode("lorem ipsum dolor sit")
        assert similarity(base, near) > similarity(base, far) + 0.2

    def test_memory_type_is_mixed_in(self, encoder):
        episodic = encoder.encode({"what": "coffee"}, MemoryType.EPISODIC)
        semantic = encoder.encode({"what": "coffee"}, MemoryType.SEMANTIC)
        sim = similarity(episodic, semantic)
        # Content dominates, the type pair still separates them
        assert 0.8 < sim < 0.99

    def test_shared_fields_raise_similarity(self, encoder):
        a = encoder.encode({"what": "coffee", "where": "kitchen"})
        b = encoder.encode({"what": "coffee", "where": "office"})
        c = encoder.encode({"what": "tea", "where": "garden"})
        assert similarity(a, b) > similarity(a, c)

    def test_sequence_order_matters(self, encoder):
        forward = encoder.encode([1, 2, 3])
        backward = encoder.encode([3, 2, 1])
        assert similarity(forward, backward) < 0.7

    def test_string_type_names_accepted(self, encoder):
        assert np.array_equal(
            encoder.encode("x y z", "semantic"),
            encoder.encode("x y z", MemoryType.SEMANTIC),
        )

    def test_encode_text_ignores_type(self, encoder):
        assert similarity(encoder.encode_text("hello world"), encoder.encode_text("hello world")) == pytest.approx(1.0)


# =============================================================================
# Tests: Bias
# =============================================================================

class TestBias:

    def test_binding_depth_controls_nested_structure(self, encoder):
        a = {"ctx": {"x": 1}}
        b = {"ctx": {"x": 1, "y": 2}}
        shallow = similarity(encoder.encode(a, bias=NEUTRAL_BIAS), encoder.encode(b, bias=NEUTRAL_BIAS))
        deep = similarity(encoder.encode(a, bias=bias_for("concrete")), encoder.encode(b, bias=bias_for("concrete")))
        # Depth 1 collapses nested dicts to opaque atoms; depth 3 sees the shared field
        assert deep > shallow + 0.3

    def test_permutation_shift_changes_sequences(self, encoder):
        seq = ["a", "b", "c"]
        plain = encoder.encode(seq, bias=CognitiveBias(0.0, 2, 0))
        shifted = encoder.encode(seq, bias=CognitiveBias(0.0, 2, 2))
        assert not np.array_equal(plain, shifted)

    def test_noisy_bias_varies_but_stays_close(self, encoder):
        divergent = bias_for("divergent")
        a = encoder.encode({"what": "coffee"}, bias=divergent)
        b = encoder.encode({"what": "coffee"}, bias=divergent)
        assert not np.array_equal(a, b)
        assert similarity(a, b) > 0.6

    def test_noiseless_patterns_are_deterministic(self, encoder):
        critical = bias_for("critical")
        assert np.array_equal(
            encoder.encode([1, {"a": 2}], bias=critical),
            encoder.encode([1, {"a": 2}], bias=critical),
        )


# =============================================================================
# Tests: Pre-embedded vectors
# =============================================================================

class TestVectorPayload:

    def test_vector_payload_is_content(self, encoder):
        content = random_hv(dim=DIM, seed=3)
        hv = encoder.encode(content)
        assert similarity(hv, content) > 0.9

    def test_wrong_dimension_raises(self, encoder):
        with pytest.raises(InvalidVector):
            encoder.encode(random_hv(dim=DIM + 1, seed=3))

    def test_vocab_dimension_must_match(self):
        from engram.hd.vocab import HDVocab
        with pytest.raises(ValueError):
            PatternEncoder(dim=DIM, vocab=HDVocab(dim=64))

    def test_numeric_readings_do_not_grow_vocab(self):
        from engram.hd.vocab import HDVocab
        encoder = PatternEncoder(dim=DIM, vocab=HDVocab(dim=DIM))
        encoder.encode({"reading": 0.5})
        baseline = len(encoder.vocab)
        for i in range(500):
            encoder.encode({"reading": i + 0.5})
        assert len(encoder.vocab) == baseline
