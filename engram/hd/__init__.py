"""
Engram HD (Hyperdimensional) Computing Module
=============================================

Core VSA/HD operations and the symbol vocabulary.

Canonical parameters:
- Dimension: D = 10,000
- Representation: bipolar {-1, +1} float32 (bundles may be real-valued)
- Binding: component-wise multiplication (self-inverse, associative)
- Bundling: weighted sum with sign / unit-norm normalization
- Similarity: cosine in [-1, +1]

References:
- Kanerva (2009): Hyperdimensional Computing
- Gayler (2003): Vector Symbolic Architectures

Usage:
    from engram.hd import HDVocab, bind, bundle, similarity

    vocab = HDVocab()
    h_attr = bind(vocab.role("COLOR"), vocab.value("red"))
    h_item = bundle([h_attr, bind(vocab.role("SHAPE"), vocab.value("round"))])
"""

from .ops import (
    DIM,
    check_dim,
    random_hv,
    random_hv_from_string,
    bind,
    unbind,
    bundle,
    permute,
    inverse_permute,
    similarity,
    cosine,
    hamming_similarity,
    inject_noise,
    normalize,
)

from .vocab import HDVocab, get_vocab

__all__ = [
    # Constants
    'DIM',
    # Operations
    'check_dim',
    'random_hv',
    'random_hv_from_string',
    'bind',
    'unbind',
    'bundle',
    'permute',
    'inverse_permute',
    'similarity',
    'cosine',
    'hamming_similarity',
    'inject_noise',
    'normalize',
    # Vocabulary
    'HDVocab',
    'get_vocab',
]
