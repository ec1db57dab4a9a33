"""
Engram HD Operations - Core VSA Primitives
==========================================

Numpy-accelerated hyperdimensional computing operations.

Canonical parameters:
- D = 10,000 dimensions (configurable per store)
- Bipolar {-1,+1} float32 representation for fresh vectors
- Multiplicative binding (associative, commutative, self-inverse)
- Weighted bundling (sign, unit-norm or raw sum)

Every function here is pure: inputs are never modified and no module
state is touched, so all of them are safe to call from many threads.
"""

from __future__ import annotations

import hashlib
from typing import List, Optional, Sequence

import numpy as np

from ..errors import InvalidVector

# =============================================================================
# Canonical Dimension
# =============================================================================

DIM = 10_000

BUNDLE_MODES = ("sign", "l2", "none")


# =============================================================================
# Validation
# =============================================================================

def check_dim(hv: np.ndarray, dim: int) -> np.ndarray:
    """
    Ensure hv is a one-dimensional vector with exactly dim components.

    Returns hv unchanged so callers can chain it.

    Raises:
        InvalidVector: on any shape mismatch
    """
    shape = getattr(hv, "shape", None)
    if shape is None or len(shape) != 1 or shape[0] != dim:
        raise InvalidVector(dim, shape)
    return hv


def _check_same(a: np.ndarray, b: np.ndarray) -> None:
    if a.shape != b.shape or a.ndim != 1:
        raise InvalidVector(a.shape[0] if a.ndim == 1 else a.shape, b.shape)


# =============================================================================
# Random HV Generation
# =============================================================================

def random_hv(
    dim: int = DIM,
    seed: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Generate a random bipolar hypervector.

    Args:
        dim: Dimension (default: 10,000)
        seed: Optional seed (creates a new generator if provided)
        rng: Numpy random generator (for reproducibility)

    Returns:
        Bipolar {-1,+1} float32 HV of shape (dim,)
    """
    if seed is not None:
        rng = np.random.default_rng(seed)
    elif rng is None:
        rng = np.random.default_rng()

    return rng.choice(np.array([-1.0, 1.0], dtype=np.float32), size=dim)


def seed_from_string(seed_str: str) -> int:
    """Stable 64-bit seed derived from a string."""
    digest = hashlib.sha256(seed_str.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def random_hv_from_string(seed_str: str, dim: int = DIM) -> np.ndarray:
    """
    Generate a deterministic HV from a string seed.

    Same string always produces the same HV, across runs and processes.
    """
    return random_hv(dim=dim, seed=seed_from_string(seed_str))


# =============================================================================
# Binding
# =============================================================================

def bind(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Bind two hypervectors via component-wise multiplication.

    Properties:
    - Associative and commutative
    - Self-inverse for bipolar keys: bind(bind(a, b), b) == a
    - Dissimilar to inputs: similarity(bind(a, b), a) ≈ 0

    Used for role-filler binding:
        H_attr = bind(H_ROLE, H_VALUE)
    """
    _check_same(a, b)
    return (a * b).astype(np.float32)


def unbind(bound: np.ndarray, key: np.ndarray) -> np.ndarray:
    """
    Recover the partner of key from a bound pair.

    For bipolar keys multiplication is its own inverse, so this is bind.
    Non-bipolar keys are inverted component-wise where non-zero.
    """
    _check_same(bound, key)
    if np.all(np.abs(key) == 1):
        return (bound * key).astype(np.float32)
    inv = np.zeros_like(key, dtype=np.float32)
    nz = key != 0
    inv[nz] = 1.0 / key[nz]
    return (bound * inv).astype(np.float32)


# =============================================================================
# Bundling
# =============================================================================

def bundle(
    hvs: Sequence[np.ndarray],
    weights: Optional[Sequence[float]] = None,
    normalize: str = "sign",
) -> np.ndarray:
    """
    Bundle hypervectors via weighted superposition.

    Properties:
    - Similar to all inputs: similarity(bundle([a, b]), a) > similarity(c, a)
    - Superposition: stores multiple items in one vector

    Args:
        hvs: Non-empty sequence of HVs of identical dimension
        weights: Optional per-HV weights (default: equal weights)
        normalize: "sign" thresholds to bipolar, ties resolved toward the
            first HV; "l2" sums unit-normalized inputs and returns a unit
            vector; "none" returns the raw weighted sum

    Returns:
        float32 HV
    """
    if len(hvs) == 0:
        raise ValueError("Cannot bundle empty list")
    if normalize not in BUNDLE_MODES:
        raise ValueError(f"normalize must be one of {BUNDLE_MODES}, got {normalize!r}")
    if weights is None:
        weights = [1.0] * len(hvs)
    if len(weights) != len(hvs):
        raise ValueError(f"got {len(weights)} weights for {len(hvs)} vectors")

    first = hvs[0]
    acc = np.zeros(first.shape[0], dtype=np.float64)

    for hv, w in zip(hvs, weights):
        _check_same(first, hv)
        if normalize == "l2":
            norm = np.linalg.norm(hv)
            if norm == 0:
                continue
            acc += w * (hv.astype(np.float64) / norm)
        else:
            acc += w * hv.astype(np.float64)

    if normalize == "sign":
        result = np.sign(acc)
        ties = result == 0
        if np.any(ties):
            tie_break = np.sign(first[ties])
            tie_break[tie_break == 0] = 1.0
            result[ties] = tie_break
        return result.astype(np.float32)

    if normalize == "l2":
        norm = np.linalg.norm(acc)
        if norm > 0:
            acc /= norm

    return acc.astype(np.float32)


def weighted_bundle(hvs: List[np.ndarray], weights: List[float]) -> np.ndarray:
    """Convenience wrapper for weighted unit-norm bundling."""
    return bundle(hvs, weights=weights, normalize="l2")


# =============================================================================
# Permutation (Sequence Encoding)
# =============================================================================

def permute(hv: np.ndarray, shift: int = 1) -> np.ndarray:
    """
    Circular shift permutation for sequence encoding.

    Bijective: permute(permute(hv, k), -k) == hv.

    Used to encode order:
        H_seq = bundle([permute(H_t0, 0), permute(H_t1, 1), permute(H_t2, 2)])
    """
    return np.roll(hv, int(shift))


def inverse_permute(hv: np.ndarray, shift: int = 1) -> np.ndarray:
    """Inverse permutation (shift in opposite direction)."""
    return np.roll(hv, -int(shift))


# =============================================================================
# Similarity Measures
# =============================================================================

def similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Cosine similarity between two HVs.

    Returns:
        Similarity in [-1, +1] where:
        - +1 = identical direction
        - 0 = orthogonal (random, independent)
        - -1 = opposite
        0.0 when either vector is all zeros.
    """
    _check_same(a, b)
    a64 = a.astype(np.float64)
    b64 = b.astype(np.float64)
    denom = np.linalg.norm(a64) * np.linalg.norm(b64)
    if denom == 0:
        return 0.0
    sim = float(np.dot(a64, b64) / denom)
    return max(-1.0, min(1.0, sim))


cosine = similarity


def hamming_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Fraction of components with matching sign.

    Returns:
        Similarity in [0, 1]; 0.5 is expected for independent HVs.
    """
    _check_same(a, b)
    return float(np.mean(np.sign(a) == np.sign(b)))


# =============================================================================
# Noise Injection
# =============================================================================

def inject_noise(
    hv: np.ndarray,
    level: float,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
) -> np.ndarray:
    """
    Flip the sign of each component with probability level / 2.

    At level 0 the result is an exact copy of hv. At level 1 the result is
    uncorrelated with hv. Dimensionality never changes.

    Args:
        hv: Input HV
        level: Noise level in [0, 1]
        rng: Numpy random generator
        seed: Optional seed (creates a new generator if provided)
    """
    if not 0.0 <= level <= 1.0:
        raise ValueError(f"noise level must be in [0, 1], got {level}")
    if level == 0.0:
        return hv.copy()

    if seed is not None:
        rng = np.random.default_rng(seed)
    elif rng is None:
        rng = np.random.default_rng()

    flips = rng.random(hv.shape[0]) < (level / 2.0)
    noisy = hv.copy()
    noisy[flips] = -noisy[flips]
    return noisy


# =============================================================================
# Utility Functions
# =============================================================================

def normalize(hv: np.ndarray) -> np.ndarray:
    """Unit-normalize an HV (zero vectors are returned as-is)."""
    norm = np.linalg.norm(hv)
    if norm == 0:
        return hv.astype(np.float32)
    return (hv / norm).astype(np.float32)


def is_bipolar(hv: np.ndarray) -> bool:
    """Check that every component is -1 or +1."""
    return bool(np.all(np.abs(hv) == 1))


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    'DIM',
    'check_dim',
    'random_hv',
    'seed_from_string',
    'random_hv_from_string',
    'bind',
    'unbind',
    'bundle',
    'weighted_bundle',
    'permute',
    'inverse_permute',
    'similarity',
    'cosine',
    'hamming_similarity',
    'inject_noise',
    'normalize',
    'is_bipolar',
]
