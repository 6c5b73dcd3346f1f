"""
Trackers package for reloc_slam.

- base.py: Tracker / FallibleTracker interfaces, TrackingState, TrackingQuality
- composite.py: sequential-fallback and refining composites
- simple.py: built-in primitive trackers (static, force_fail, disk, remote)
- factory.py: TrackerFactory building tracker trees from XML/YAML documents
"""

from __future__ import annotations

from reloc_slam.trackers.base import FallibleTracker, Tracker, TrackingQuality, TrackingState
from reloc_slam.trackers.composite import CompositePolicy, CompositeTracker
from reloc_slam.trackers.factory import (
    TrackerBuildContext,
    TrackerConfigError,
    TrackerFactory,
    TrackerTree,
)

__all__ = [
    "Tracker",
    "FallibleTracker",
    "TrackingQuality",
    "TrackingState",
    "CompositePolicy",
    "CompositeTracker",
    "TrackerBuildContext",
    "TrackerConfigError",
    "TrackerFactory",
    "TrackerTree",
]
