"""
Pipeline package for reloc_slam.

- interfaces.py: views, calibration and the external collaborators
- slam_state.py / slam_context.py: per-scene state and the scene registry
- slam_component.py: the per-frame tracking/relocalisation state machine
- image_sources.py: in-memory image source
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "ArrayImageSource",
    "InputStatus",
    "MappingMode",
    "RGBDCalib",
    "SLAMComponent",
    "SLAMContext",
    "SLAMState",
    "TrackingMode",
    "View",
]

_LAZY_ATTRS: dict[str, tuple[str, str]] = {
    "ArrayImageSource": ("reloc_slam.pipeline.image_sources", "ArrayImageSource"),
    "InputStatus": ("reloc_slam.pipeline.slam_state", "InputStatus"),
    "MappingMode": ("reloc_slam.pipeline.interfaces", "MappingMode"),
    "RGBDCalib": ("reloc_slam.pipeline.interfaces", "RGBDCalib"),
    "SLAMComponent": ("reloc_slam.pipeline.slam_component", "SLAMComponent"),
    "SLAMContext": ("reloc_slam.pipeline.slam_context", "SLAMContext"),
    "SLAMState": ("reloc_slam.pipeline.slam_state", "SLAMState"),
    "TrackingMode": ("reloc_slam.pipeline.interfaces", "TrackingMode"),
    "View": ("reloc_slam.pipeline.interfaces", "View"),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_ATTRS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
