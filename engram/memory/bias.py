"""
Engram Cognitive Bias
=====================

Maps a thought pattern to the algebra parameters used by the encoder:

- noise_level: fraction of exploratory perturbation (see inject_noise)
- binding_depth: how many levels of nested structure get role/value binding
- permutation_shift: positional step for sequence encoding

The seven thought patterns share one interface and differ only in values,
so they live in a lookup table rather than a class hierarchy. Unknown
patterns fall back to the neutral bias: bias is a hint, never a failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class ThoughtPattern(str, Enum):
    """Thought pattern selection."""
    CONVERGENT = "convergent"
    DIVERGENT = "divergent"
    CRITICAL = "critical"
    ABSTRACT = "abstract"
    CONCRETE = "concrete"
    SYSTEMS = "systems"
    METACOGNITIVE = "metacognitive"

    @classmethod
    def parse(cls, value: Union["ThoughtPattern", str, None]) -> Optional["ThoughtPattern"]:
        """Parse a pattern name; None for anything unrecognised."""
        if value is None or isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class CognitiveBias:
    """Encoding parameters for one thought pattern."""
    noise_level: float = 0.0
    binding_depth: int = 1
    permutation_shift: int = 0

    def __post_init__(self):
        if not 0.0 <= self.noise_level <= 1.0:
            raise ConfigurationError(f"noise_level must be in [0, 1], got {self.noise_level}")
        if self.binding_depth < 1:
            raise ConfigurationError(f"binding_depth must be >= 1, got {self.binding_depth}")
        if self.permutation_shift < 0:
            raise ConfigurationError(f"permutation_shift must be >= 0, got {self.permutation_shift}")

    @property
    def is_deterministic(self) -> bool:
        return self.noise_level == 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CognitiveBias":
        return cls(
            noise_level=float(data.get("noise_level", 0.0)),
            binding_depth=int(data.get("binding_depth", 1)),
            permutation_shift=int(data.get("permutation_shift", 0)),
        )


NEUTRAL_BIAS = CognitiveBias(noise_level=0.0, binding_depth=1, permutation_shift=0)


DEFAULT_BIAS_TABLE: Dict[ThoughtPattern, CognitiveBias] = {
    # Focused recall: no noise, moderate structure
    ThoughtPattern.CONVERGENT: CognitiveBias(0.00, 2, 0),
    # Exploratory: noisy, flat, order-insensitive
    ThoughtPattern.DIVERGENT: CognitiveBias(0.15, 1, 0),
    ThoughtPattern.CRITICAL: CognitiveBias(0.00, 3, 1),
    ThoughtPattern.ABSTRACT: CognitiveBias(0.05, 1, 0),
    ThoughtPattern.CONCRETE: CognitiveBias(0.00, 3, 0),
    # Order and structure matter most
    ThoughtPattern.SYSTEMS: CognitiveBias(0.02, 3, 2),
    ThoughtPattern.METACOGNITIVE: CognitiveBias(0.05, 2, 1),
}


class BiasProvider:
    """
    Thought pattern lookup table, fixed at construction.

    Args:
        overrides: Optional {pattern: CognitiveBias or dict} replacing
            entries of the default table
    """

    def __init__(self, overrides: Optional[Mapping[Any, Any]] = None):
        table = dict(DEFAULT_BIAS_TABLE)
        for key, value in (overrides or {}).items():
            pattern = ThoughtPattern.parse(key)
            if pattern is None:
                raise ConfigurationError(f"unknown thought pattern in bias overrides: {key!r}")
            if not isinstance(value, CognitiveBias):
                value = CognitiveBias.from_dict(value)
            table[pattern] = value
        self._table = table

    def bias_for(self, thought: Union[ThoughtPattern, str, None]) -> CognitiveBias:
        """Bias for a pattern; neutral for None or unknown patterns."""
        pattern = ThoughtPattern.parse(thought)
        if pattern is None:
            if thought is not None:
                logger.debug(f"Unknown thought pattern {thought!r}, using neutral bias")
            return NEUTRAL_BIAS
        return self._table[pattern]

    def table(self) -> Dict[str, Dict[str, Any]]:
        return {p.value: b.to_dict() for p, b in self._table.items()}


_default_provider = BiasProvider()


def bias_for(thought: Union[ThoughtPattern, str, None]) -> CognitiveBias:
    """Bias from the default table."""
    return _default_provider.bias_for(thought)


__all__ = [
    "ThoughtPattern",
    "CognitiveBias",
    "NEUTRAL_BIAS",
    "DEFAULT_BIAS_TABLE",
    "BiasProvider",
    "bias_for",
]
