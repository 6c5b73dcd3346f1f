"""
External collaborators of the SLAM pipeline.

The reconstruction engine (view building, fusion, rendering), the image
source, the mapping client/server and the fiducial detector live outside this
package; they are described here only by the calls the pipeline makes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from reloc_slam.common import constants
from reloc_slam.trackers.base import TrackingState

ImageSize = Tuple[int, int]  # (width, height)
Intrinsics = Tuple[float, float, float, float]  # (fx, fy, cx, cy)


class MappingMode(Enum):
    VOXELS_ONLY = "voxels_only"
    VOXELS_AND_SURFELS = "voxels_and_surfels"


class TrackingMode(Enum):
    VOXELS = "voxels"
    SURFELS = "surfels"


@dataclass(frozen=True)
class RGBDCalib:
    rgb_intrinsics: Intrinsics
    depth_intrinsics: Intrinsics
    rgb_size: ImageSize = (640, 480)
    depth_size: ImageSize = (640, 480)
    depth_scale: float = constants.DEPTH_SCALE_DEFAULT


@dataclass
class View:
    rgb: np.ndarray  # (H, W, 3) uint8
    depth: np.ndarray  # (H, W) float, metres, <= 0 where invalid
    calib: RGBDCalib
    frame_index: int = -1


def make_view(
    rgb: np.ndarray, raw_depth: np.ndarray, calib: RGBDCalib, frame_index: int = -1
) -> View:
    """Build a view from raw sensor images (raw depth scaled to metres)."""
    depth = np.asarray(raw_depth, dtype=np.float32) * np.float32(calib.depth_scale)
    return View(rgb=np.asarray(rgb, dtype=np.uint8).copy(), depth=depth, calib=calib, frame_index=frame_index)


def write_rgbd_calib(path: Union[str, Path], calib: RGBDCalib) -> None:
    """
    Plain-text calibration file:

        <rgb width> <rgb height>
        <fx> <fy>
        <cx> <cy>
        (blank)
        <depth width> <depth height>
        <fx> <fy>
        <cx> <cy>
        (blank)
        3x4 depth-to-rgb extrinsics (identity)
        (blank)
        affine <depth_scale> 0
    """
    def block(size: ImageSize, k: Intrinsics) -> str:
        return f"{size[0]} {size[1]}\n{k[0]:g} {k[1]:g}\n{k[2]:g} {k[3]:g}\n"

    with open(path, "w", encoding="utf-8") as f:
        f.write(block(calib.rgb_size, calib.rgb_intrinsics))
        f.write("\n")
        f.write(block(calib.depth_size, calib.depth_intrinsics))
        f.write("\n")
        f.write("1 0 0 0\n0 1 0 0\n0 0 1 0\n")
        f.write("\n")
        f.write(f"affine {calib.depth_scale:g} 0\n")


def read_rgbd_calib(path: Union[str, Path]) -> RGBDCalib:
    with open(path, "r", encoding="utf-8") as f:
        tokens = f.read().split()
    try:
        values = [float(t) for t in tokens[:12]]
        rgb_size = (int(values[0]), int(values[1]))
        rgb_k = (values[2], values[3], values[4], values[5])
        depth_size = (int(values[6]), int(values[7]))
        depth_k = (values[8], values[9], values[10], values[11])
        if tokens[24] != "affine":
            raise ValueError(f"expected 'affine', got '{tokens[24]}'")
        depth_scale = float(tokens[25])
    except (IndexError, ValueError) as exc:
        raise ValueError(f"malformed calibration file {path}: {exc}") from exc
    return RGBDCalib(rgb_k, depth_k, rgb_size, depth_size, depth_scale)


class ImageSource(Protocol):
    def has_frame_now(self) -> bool:
        ...

    def has_more_frames(self) -> bool:
        ...

    def get_frame(self) -> Tuple[np.ndarray, np.ndarray]:
        """(rgb (H, W, 3) uint8, raw depth (H, W) uint16)."""
        ...

    def get_image_sizes(self) -> Tuple[ImageSize, ImageSize]:
        ...

    def get_calib(self) -> RGBDCalib:
        ...


class ReconstructionEngine(Protocol):
    """View builder, dense mappers and renderer for one scene."""

    def update_view(
        self, view: Optional[View], rgb: np.ndarray, raw_depth: np.ndarray, calib: RGBDCalib, use_bilateral_filter: bool
    ) -> View:
        ...

    def process_frame(
        self, view: View, tracking_state: TrackingState, reset_visible_list: bool, fuse_surfels: bool
    ) -> None:
        ...

    def update_visible_list(self, view: View, tracking_state: TrackingState, reset_visible_list: bool) -> None:
        ...

    def prepare(self, tracking_state: TrackingState, view: View, tracking_mode: TrackingMode) -> None:
        ...

    def find_surface_super(self, tracking_state: TrackingState, view: View) -> None:
        ...

    def reset_scene(self, include_surfels: bool) -> None:
        ...

    def save_to_directory(self, output_dir: str) -> None:
        ...

    def load_from_directory(self, input_dir: str) -> None:
        ...


class MappingClient(Protocol):
    def send_calibration_message(self, calib: RGBDCalib) -> None:
        ...

    def push_frame(self, frame_index: int, pose: np.ndarray, rgb: np.ndarray, raw_depth: np.ndarray) -> None:
        ...


class MappingServer(Protocol):
    def get_pose(self, scene_id: str) -> Optional[np.ndarray]:
        ...


class FiducialDetector(Protocol):
    def detect_fiducials(self, view: View, pose: np.ndarray) -> Dict[str, Any]:
        ...


def depth_intrinsics_of(view: View) -> Sequence[float]:
    return tuple(float(v) for v in view.calib.depth_intrinsics)
