"""
Engram Pattern Encoder
======================

Convert typed payloads to hypervectors.

Payload mapping:
- str: bundle of character trigram atoms (captures partial matches)
- int / float / bool: value atom of the canonical repr
- dict: bundle of bind(role(key), encode(value))
- list / tuple: bundle of permute(encode(item), position * step)
- ndarray of length D: taken as a pre-embedded content vector

Structure nested deeper than the bias binding depth collapses to the value
atom of its repr. The memory type is bound to the TYPE role and mixed into
the content, then the bias noise is applied.

Atoms are seeded from their content, so identical payloads give identical
vectors whenever the bias carries no noise.
"""

from __future__ import annotations

from typing import Any, List, Optional, Union

import numpy as np

from ..hd.ops import (
    DIM,
    bind,
    bundle,
    check_dim,
    inject_noise,
    permute,
)
from ..hd.vocab import HDVocab, get_vocab
from .bias import NEUTRAL_BIAS, CognitiveBias
from .record import MemoryType

# Weight of the bound TYPE pair relative to the unit content vector
TYPE_WEIGHT = 0.35

NGRAM = 3


def _text_to_ngrams(text: str, n: int = NGRAM) -> List[str]:
    """Extract character n-grams from text."""
    text = text.lower().strip()
    return [text[i:i + n] for i in range(len(text) - n + 1)]


def _canonical(payload: Any) -> str:
    """Stable repr for nested payloads (dict key order independent)."""
    if isinstance(payload, dict):
        items = sorted((str(k), _canonical(v)) for k, v in payload.items())
        return "{" + ",".join(f"{k}:{v}" for k, v in items) + "}"
    if isinstance(payload, (list, tuple)):
        return "[" + ",".join(_canonical(v) for v in payload) + "]"
    return f"{type(payload).__name__}:{payload!r}"


class PatternEncoder:
    """
    Encode payloads for HV-based storage and recall.

    Stateless apart from the (thread-safe) atom cache and the generator
    used for bias noise, so one encoder can serve many threads.
    """

    def __init__(
        self,
        dim: int = DIM,
        vocab: Optional[HDVocab] = None,
        seed: Optional[int] = None,
    ):
        self.dim = dim
        self.vocab = vocab or get_vocab(dim)
        if self.vocab.dim != dim:
            raise ValueError(f"vocabulary dimension {self.vocab.dim} != encoder dimension {dim}")
        self._rng = np.random.default_rng(seed)

    # =========================================================================
    # Public API
    # =========================================================================

    def encode(
        self,
        payload: Any,
        memory_type: Union[MemoryType, str] = MemoryType.EPISODIC,
        bias: Optional[CognitiveBias] = None,
    ) -> np.ndarray:
        """
        Encode a payload as a unit-norm HV.

        Args:
            payload: Arbitrary structured input
            memory_type: Memory type bound into the result
            bias: Cognitive bias (default: neutral)

        Returns:
            float32 HV of shape (dim,)
        """
        bias = bias or NEUTRAL_BIAS
        memory_type = MemoryType(memory_type)

        content = self._encode_value(payload, bias, depth=0)
        type_pair = bind(self.vocab.role("TYPE"), self.vocab.memory_type(memory_type.value))
        hv = bundle([content, type_pair], weights=[1.0, TYPE_WEIGHT], normalize="l2")

        if bias.noise_level > 0:
            hv = inject_noise(hv, bias.noise_level, rng=self._rng)
        return hv

    def encode_text(self, text: str) -> np.ndarray:
        """Content HV for text, without type binding or noise."""
        return self._encode_text(text)

    # =========================================================================
    # Payload mapping
    # =========================================================================

    def _encode_value(self, payload: Any, bias: CognitiveBias, depth: int) -> np.ndarray:
        if isinstance(payload, np.ndarray):
            return check_dim(payload, self.dim).astype(np.float32)

        if isinstance(payload, str):
            return self._encode_text(payload)

        if isinstance(payload, (dict, list, tuple)):
            if not payload:
                return self.vocab.role("EMPTY")
            if depth >= bias.binding_depth:
                return self.vocab.value(_canonical(payload))
            if isinstance(payload, dict):
                return self._encode_mapping(payload, bias, depth)
            return self._encode_sequence(payload, bias, depth)

        return self.vocab.value(_canonical(payload))

    def _encode_text(self, text: str) -> np.ndarray:
        if not text.strip():
            return self.vocab.role("EMPTY")

        ngrams = _text_to_ngrams(text)
        if not ngrams:
            return self.vocab.value(f"text:{text.lower().strip()}")

        return bundle([self.vocab.value(f"ngram:{ng}") for ng in ngrams])

    def _encode_mapping(self, payload: dict, bias: CognitiveBias, depth: int) -> np.ndarray:
        pairs = [
            bind(self.vocab.role(str(key)), self._encode_value(value, bias, depth + 1))
            for key, value in sorted(payload.items(), key=lambda kv: str(kv[0]))
        ]
        return bundle(pairs, normalize="l2")

    def _encode_sequence(self, payload, bias: CognitiveBias, depth: int) -> np.ndarray:
        step = max(1, bias.permutation_shift)
        items = [
            permute(self._encode_value(item, bias, depth + 1), position * step)
            for position, item in enumerate(payload)
        ]
        return bundle(items, normalize="l2")


__all__ = [
    "PatternEncoder",
    "TYPE_WEIGHT",
]
