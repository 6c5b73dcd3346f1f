"""Per-scene SLAM state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np

from reloc_slam.pipeline.interfaces import ImageSize, View
from reloc_slam.trackers.base import TrackingState


class InputStatus(Enum):
    ACTIVE = "active"  # a frame was available on the last call
    IDLE = "idle"  # no frame yet, more expected
    TERMINATED = "terminated"  # source exhausted


@dataclass
class SLAMState:
    rgb_image_size: ImageSize
    depth_image_size: ImageSize
    input_rgb_image: Optional[np.ndarray] = None
    input_raw_depth_image: Optional[np.ndarray] = None
    # uint8/bool (H, W); nonzero keeps a depth pixel. Applied for tracking only.
    input_mask: Optional[np.ndarray] = None
    input_status: InputStatus = InputStatus.ACTIVE
    tracking_state: TrackingState = field(default_factory=TrackingState)
    view: Optional[View] = None
    fiducials: Dict[str, Any] = field(default_factory=dict)
    frame_index: int = 0

    @property
    def pose(self) -> np.ndarray:
        """Copy of the current world-to-camera pose (other scenes may read, never write)."""
        return np.array(self.tracking_state.pose, dtype=float)

    def clear_input_images(self) -> None:
        w, h = self.rgb_image_size
        dw, dh = self.depth_image_size
        self.input_rgb_image = np.zeros((h, w, 3), dtype=np.uint8)
        self.input_raw_depth_image = np.zeros((dh, dw), dtype=np.uint16)

    def update_fiducials(self, detected: Dict[str, Any]) -> None:
        self.fiducials.update(detected)
