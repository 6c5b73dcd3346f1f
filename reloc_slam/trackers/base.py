"""
Tracker interface and tracking state.

A tracker advances a TrackingState (pose + quality) given the current view,
seeded from the pose it holds on entry. Poses are world-to-camera 6-vectors.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np

from reloc_slam.common.geometry import se3_identity


class TrackingQuality(Enum):
    GOOD = "good"
    POOR = "poor"
    FAILED = "failed"


@dataclass
class TrackingState:
    pose: np.ndarray = field(default_factory=se3_identity)
    result: TrackingQuality = TrackingQuality.GOOD

    def reset(self) -> None:
        self.pose = se3_identity()
        self.result = TrackingQuality.GOOD

    def copy(self) -> "TrackingState":
        return TrackingState(pose=np.array(self.pose, dtype=float), result=self.result)

    def set_pose(self, pose: np.ndarray) -> None:
        self.pose = np.asarray(pose, dtype=float).reshape(6).copy()


class Tracker(ABC):
    @abstractmethod
    def track(self, tracking_state: TrackingState, view: Any) -> None:
        """Update tracking_state in place for the given view."""

    def requires_point_cloud_rendering(self) -> bool:
        return False

    def can_keep_tracking(self) -> bool:
        return True

    def update_initial_pose(self, tracking_state: TrackingState) -> None:
        pass


class FallibleTracker(Tracker):
    """A tracker that can tell when it has lost the scene."""

    @abstractmethod
    def lost_tracking(self) -> bool:
        ...
