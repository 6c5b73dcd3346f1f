"""
Built-in primitive trackers.

- StaticTracker: keeps the incoming pose, always GOOD
- ForceFailTracker: always FAILED (exercises the failure paths)
- DiskTracker: replays per-frame camera-to-world 4x4 pose files
- RemoteTracker: takes the pose a remote mapping server holds for the scene
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

import numpy as np

from reloc_slam.common.geometry import matrix_to_pose, se3_inverse
from reloc_slam.trackers.base import FallibleTracker, Tracker, TrackingQuality, TrackingState

_logger = logging.getLogger(__name__)


class StaticTracker(Tracker):
    def track(self, tracking_state: TrackingState, view: Any) -> None:
        tracking_state.result = TrackingQuality.GOOD


class ForceFailTracker(Tracker):
    def track(self, tracking_state: TrackingState, view: Any) -> None:
        tracking_state.result = TrackingQuality.FAILED


class DiskTracker(Tracker):
    """
    Reads pose_mask % frame_number for each tracked frame.

    Each file holds a 4x4 camera-to-world matrix (whitespace separated). A
    missing file makes the frame FAILED; the frame counter advances either way.
    """

    def __init__(self, pose_mask: str, initial_frame_number: int = 0):
        if not pose_mask:
            raise ValueError("disk tracker needs a pose file mask")
        self.pose_mask = pose_mask
        self.frame_number = int(initial_frame_number)

    def pose_path(self, frame_number: int) -> str:
        return self.pose_mask % frame_number

    def track(self, tracking_state: TrackingState, view: Any) -> None:
        path = self.pose_path(self.frame_number)
        self.frame_number += 1
        if not os.path.exists(path):
            _logger.debug("Pose file %s missing", path)
            tracking_state.result = TrackingQuality.FAILED
            return
        camera_to_world = np.loadtxt(path, dtype=float)
        tracking_state.set_pose(se3_inverse(matrix_to_pose(camera_to_world)))
        tracking_state.result = TrackingQuality.GOOD

    def can_keep_tracking(self) -> bool:
        return os.path.exists(self.pose_path(self.frame_number))


class RemoteTracker(FallibleTracker):
    """Pose comes from a mapping server (get_pose(scene_id) -> pose or None)."""

    def __init__(self, mapping_server: Any, scene_id: str):
        if mapping_server is None:
            raise ValueError("remote tracker needs a mapping server")
        self.mapping_server = mapping_server
        self.scene_id = scene_id
        self._lost = False

    def track(self, tracking_state: TrackingState, view: Any) -> None:
        pose: Optional[np.ndarray] = self.mapping_server.get_pose(self.scene_id)
        self._lost = pose is None
        if self._lost:
            tracking_state.result = TrackingQuality.FAILED
            return
        tracking_state.set_pose(pose)
        tracking_state.result = TrackingQuality.GOOD

    def lost_tracking(self) -> bool:
        return self._lost
