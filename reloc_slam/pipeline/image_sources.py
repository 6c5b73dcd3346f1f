"""In-memory image source."""

from __future__ import annotations

from collections import deque
from typing import Iterable, Optional, Tuple

import numpy as np

from reloc_slam.pipeline.interfaces import ImageSize, RGBDCalib


class ArrayImageSource:
    """
    Frames held in memory, served in order.

    The source stays open (more frames expected) until close() is called, so
    a producer can push() frames while the pipeline is idle.
    """

    def __init__(
        self,
        calib: RGBDCalib,
        frames: Optional[Iterable[Tuple[np.ndarray, np.ndarray]]] = None,
        closed: bool = True,
    ):
        self.calib = calib
        self._frames = deque()
        self._closed = False
        for rgb, raw_depth in frames or ():
            self.push(rgb, raw_depth)
        self._closed = closed

    def push(self, rgb: np.ndarray, raw_depth: np.ndarray) -> None:
        if self._closed:
            raise RuntimeError("cannot push frames into a closed image source")
        w, h = self.calib.rgb_size
        dw, dh = self.calib.depth_size
        if np.shape(rgb) != (h, w, 3):
            raise ValueError(f"rgb image must be ({h}, {w}, 3), got {np.shape(rgb)}")
        if np.shape(raw_depth) != (dh, dw):
            raise ValueError(f"depth image must be ({dh}, {dw}), got {np.shape(raw_depth)}")
        self._frames.append((np.asarray(rgb, dtype=np.uint8), np.asarray(raw_depth, dtype=np.uint16)))

    def close(self) -> None:
        self._closed = True

    def has_frame_now(self) -> bool:
        return len(self._frames) > 0

    def has_more_frames(self) -> bool:
        return len(self._frames) > 0 or not self._closed

    def get_frame(self) -> Tuple[np.ndarray, np.ndarray]:
        if not self._frames:
            raise RuntimeError("no frame available")
        return self._frames.popleft()

    def get_image_sizes(self) -> Tuple[ImageSize, ImageSize]:
        return self.calib.rgb_size, self.calib.depth_size

    def get_calib(self) -> RGBDCalib:
        return self.calib
