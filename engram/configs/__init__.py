"""Engram Configuration - Settings for the memory engine.

Handles loading and accessing configuration for:
- Vector dimension
- Similarity index parameters
- Layer capacities, recall overfetch and consolidation policy
- Thought pattern bias overrides

Usage:
    from engram.configs import load_config

    config = load_config("engram.yaml")
    store = MemoryStore(config)

Example engram.yaml:

    vector:
      dim: 10000
    index:
      m: 16
      ef_search: 64
    store:
      num_layers: 3
      layer_capacities: [10000, 50000, 250000]
      merge_threshold: 0.92
    bias_overrides:
      divergent: {noise_level: 0.2, binding_depth: 1, permutation_shift: 0}
"""

from __future__ import annotations

import os
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class VectorConfig:
    """Hypervector settings. Fixed for the lifetime of a store."""

    dim: int = 10_000
    seed: Optional[int] = None


@dataclass
class IndexConfig:
    """HNSW index parameters."""

    m: int = 16
    ef_construction: int = 200
    ef_search: int = 64
    seed: Optional[int] = None


@dataclass
class StoreConfig:
    """Layered store and consolidation policy."""

    num_layers: int = 3
    layer_capacities: List[int] = field(default_factory=lambda: [10_000, 50_000, 250_000])
    overfetch_factor: int = 4
    merge_threshold: float = 0.92
    consolidation_trigger: int = 512      # layer-0 population that triggers a sweep
    consolidation_neighbors: int = 8
    auto_consolidate: bool = False
    consolidation_interval_s: Optional[float] = None
    show_progress: bool = False


@dataclass
class EngramConfig:
    """Complete engine configuration."""

    vector: VectorConfig = field(default_factory=VectorConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    bias_overrides: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    data_dir: Optional[str] = None

    def get_data_path(self) -> Optional[Path]:
        """Get expanded data directory path."""
        if self.data_dir is None:
            return None
        return Path(os.path.expanduser(self.data_dir))

    def capacity(self, layer: int) -> int:
        return self.store.layer_capacities[layer]

    def validate(self) -> "EngramConfig":
        """Raise ConfigurationError on inconsistent settings."""
        if self.vector.dim < 1:
            raise ConfigurationError(f"vector.dim must be positive, got {self.vector.dim}")
        if self.index.m < 2:
            raise ConfigurationError(f"index.m must be >= 2, got {self.index.m}")
        if self.index.ef_construction < 1 or self.index.ef_search < 1:
            raise ConfigurationError("index.ef_construction and index.ef_search must be >= 1")
        if self.store.num_layers < 1:
            raise ConfigurationError(f"store.num_layers must be >= 1, got {self.store.num_layers}")
        if len(self.store.layer_capacities) != self.store.num_layers:
            raise ConfigurationError(
                f"store.layer_capacities has {len(self.store.layer_capacities)} entries "
                f"for {self.store.num_layers} layers"
            )
        if any(c < 0 for c in self.store.layer_capacities):
            raise ConfigurationError("store.layer_capacities must be non-negative")
        if self.store.overfetch_factor < 1:
            raise ConfigurationError("store.overfetch_factor must be >= 1")
        if not -1.0 <= self.store.merge_threshold <= 1.0:
            raise ConfigurationError("store.merge_threshold must be in [-1, 1]")
        if self.store.consolidation_neighbors < 1:
            raise ConfigurationError("store.consolidation_neighbors must be >= 1")
        if self.store.consolidation_interval_s is not None and self.store.consolidation_interval_s <= 0:
            raise ConfigurationError("store.consolidation_interval_s must be positive")
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "vector": {
                "dim": self.vector.dim,
                "seed": self.vector.seed,
            },
            "index": {
                "m": self.index.m,
                "ef_construction": self.index.ef_construction,
                "ef_search": self.index.ef_search,
                "seed": self.index.seed,
            },
            "store": {
                "num_layers": self.store.num_layers,
                "layer_capacities": list(self.store.layer_capacities),
                "overfetch_factor": self.store.overfetch_factor,
                "merge_threshold": self.store.merge_threshold,
                "consolidation_trigger": self.store.consolidation_trigger,
                "consolidation_neighbors": self.store.consolidation_neighbors,
                "auto_consolidate": self.store.auto_consolidate,
                "consolidation_interval_s": self.store.consolidation_interval_s,
                "show_progress": self.store.show_progress,
            },
            "bias_overrides": {k: dict(v) for k, v in self.bias_overrides.items()},
            "data_dir": self.data_dir,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngramConfig":
        """Create from dictionary."""
        config = cls()

        if "vector" in data:
            vec_data = data["vector"] or {}
            config.vector = VectorConfig(
                dim=int(vec_data.get("dim", config.vector.dim)),
                seed=vec_data.get("seed"),
            )

        if "index" in data:
            idx_data = data["index"] or {}
            config.index = IndexConfig(
                m=int(idx_data.get("m", config.index.m)),
                ef_construction=int(idx_data.get("ef_construction", config.index.ef_construction)),
                ef_search=int(idx_data.get("ef_search", config.index.ef_search)),
                seed=idx_data.get("seed"),
            )

        if "store" in data:
            st_data = data["store"] or {}
            defaults = StoreConfig()
            num_layers = int(st_data.get("num_layers", defaults.num_layers))
            capacities = st_data.get("layer_capacities")
            if capacities is None:
                capacities = _default_capacities(num_layers)
            config.store = StoreConfig(
                num_layers=num_layers,
                layer_capacities=[int(c) for c in capacities],
                overfetch_factor=int(st_data.get("overfetch_factor", defaults.overfetch_factor)),
                merge_threshold=float(st_data.get("merge_threshold", defaults.merge_threshold)),
                consolidation_trigger=int(st_data.get("consolidation_trigger", defaults.consolidation_trigger)),
                consolidation_neighbors=int(st_data.get("consolidation_neighbors", defaults.consolidation_neighbors)),
                auto_consolidate=bool(st_data.get("auto_consolidate", defaults.auto_consolidate)),
                consolidation_interval_s=st_data.get("consolidation_interval_s"),
                show_progress=bool(st_data.get("show_progress", defaults.show_progress)),
            )

        config.bias_overrides = dict(data.get("bias_overrides") or {})
        config.data_dir = data.get("data_dir", config.data_dir)

        return config.validate()


def _default_capacities(num_layers: int) -> List[int]:
    """10k intake, growing 5x per consolidated layer."""
    return [10_000 * (5 ** layer) for layer in range(num_layers)]


def load_config(path: Optional[os.PathLike] = None) -> EngramConfig:
    """
    Load configuration from a YAML file.

    A missing path (or None) yields the defaults.
    """
    if path is None:
        return EngramConfig().validate()

    path = Path(os.path.expanduser(str(path)))
    if not path.exists():
        logger.info(f"No config at {path}, using defaults")
        return EngramConfig().validate()

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")

    return EngramConfig.from_dict(data)


def save_config(config: EngramConfig, path: os.PathLike) -> None:
    """Write configuration to a YAML file."""
    path = Path(os.path.expanduser(str(path)))
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)


__all__ = [
    "VectorConfig",
    "IndexConfig",
    "StoreConfig",
    "EngramConfig",
    "load_config",
    "save_config",
]
