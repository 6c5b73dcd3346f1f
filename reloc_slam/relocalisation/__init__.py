"""
Relocalisation package for reloc_slam.

- forest.py: forest / leaf-table storage
- forest_kernel.py: per-pixel descent and mode merge (JAX and NumPy back-ends)
- features.py: RGB-D patch features
- forest_relocaliser.py: the forest relocaliser
- factory.py: make_relocaliser()
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "Forest",
    "LeafPredictions",
    "ForestPredictions",
    "evaluate_forest",
    "PatchFeatureCalculator",
    "Relocaliser",
    "RelocalisationQuality",
    "RelocalisationResult",
    "ForestRelocaliser",
    "make_relocaliser",
]

# The kernel pulls in JAX; keep it off the package import path.
_LAZY_ATTRS: dict[str, tuple[str, str]] = {
    "Forest": ("reloc_slam.relocalisation.forest", "Forest"),
    "LeafPredictions": ("reloc_slam.relocalisation.forest", "LeafPredictions"),
    "ForestPredictions": ("reloc_slam.relocalisation.forest_kernel", "ForestPredictions"),
    "evaluate_forest": ("reloc_slam.relocalisation.forest_kernel", "evaluate_forest"),
    "PatchFeatureCalculator": ("reloc_slam.relocalisation.features", "PatchFeatureCalculator"),
    "Relocaliser": ("reloc_slam.relocalisation.relocaliser", "Relocaliser"),
    "RelocalisationQuality": ("reloc_slam.relocalisation.relocaliser", "RelocalisationQuality"),
    "RelocalisationResult": ("reloc_slam.relocalisation.relocaliser", "RelocalisationResult"),
    "ForestRelocaliser": ("reloc_slam.relocalisation.forest_relocaliser", "ForestRelocaliser"),
    "make_relocaliser": ("reloc_slam.relocalisation.factory", "make_relocaliser"),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_ATTRS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
