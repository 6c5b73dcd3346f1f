import os
import sys
from typing import Any, Dict, List, Optional

import numpy as np
import pytest

# Ensure local package import works for pytest collection.
_TEST_DIR = os.path.dirname(__file__)
_PKG_ROOT = os.path.abspath(os.path.join(_TEST_DIR, ".."))
if _PKG_ROOT not in sys.path:
    sys.path.insert(0, _PKG_ROOT)

from reloc_slam.common.geometry import make_pose, se3_identity  # noqa: E402
from reloc_slam.pipeline.interfaces import RGBDCalib, TrackingMode, View, make_view  # noqa: E402
from reloc_slam.relocalisation.forest import Forest, LeafPredictions  # noqa: E402
from reloc_slam.relocalisation.relocaliser import Relocaliser  # noqa: E402
from reloc_slam.trackers.base import Tracker, TrackingQuality, TrackingState  # noqa: E402

CONFIG_DIR = os.path.join(_PKG_ROOT, "config")

IMAGE_W = 8
IMAGE_H = 6


# =============================================================================
# Fakes for the external collaborators
# =============================================================================


class ScriptedTracker(Tracker):
    """
    Tracker whose quality follows a comma-separated script ("good,failed,...").

    Every call nudges the pose by +step in x before reporting, so a rollback is
    observable. The last entry repeats once the script runs out.
    """

    def __init__(self, script: str, step: float = 0.01):
        entries = [s.strip() for s in script.split(",") if s.strip()] or ["good"]
        self.script = [TrackingQuality(s) for s in entries]
        self.step = step
        self.calls = 0
        self.depths_seen: List[np.ndarray] = []

    def track(self, tracking_state: TrackingState, view: Any) -> None:
        quality = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if view is not None:
            self.depths_seen.append(np.array(view.depth))
        pose = tracking_state.pose.copy()
        pose[0] += self.step
        tracking_state.set_pose(pose)
        tracking_state.result = quality


class FakeEngine:
    """Records every call the state machine makes into the reconstruction engine."""

    def __init__(self):
        self.calls: List[str] = []
        self.fused_poses: List[np.ndarray] = []
        self.fuse_surfels: List[bool] = []
        self.reset_visible_lists: List[bool] = []
        self.saved_to: List[str] = []
        self.loaded_from: List[str] = []

    def count(self, name: str) -> int:
        return self.calls.count(name)

    def update_view(self, view, rgb, raw_depth, calib, use_bilateral_filter) -> View:
        self.calls.append("update_view")
        return make_view(rgb, raw_depth, calib)

    def process_frame(self, view, tracking_state, reset_visible_list, fuse_surfels) -> None:
        self.calls.append("process_frame")
        self.fused_poses.append(tracking_state.pose.copy())
        self.fuse_surfels.append(fuse_surfels)
        self.reset_visible_lists.append(reset_visible_list)

    def update_visible_list(self, view, tracking_state, reset_visible_list) -> None:
        self.calls.append("update_visible_list")

    def prepare(self, tracking_state, view, tracking_mode: TrackingMode) -> None:
        self.calls.append("prepare")

    def find_surface_super(self, tracking_state, view) -> None:
        self.calls.append("find_surface_super")

    def reset_scene(self, include_surfels: bool) -> None:
        self.calls.append("reset_scene")

    def save_to_directory(self, output_dir: str) -> None:
        self.saved_to.append(output_dir)
        with open(os.path.join(output_dir, "map.txt"), "w") as f:
            f.write("map\n")

    def load_from_directory(self, input_dir: str) -> None:
        self.loaded_from.append(input_dir)


class FakeRelocaliser(Relocaliser):
    def __init__(self, results: Optional[list] = None):
        self.results = list(results or [])
        self.relocalise_calls = 0
        self.train_poses: List[np.ndarray] = []
        self.update_calls = 0
        self.finish_calls = 0
        self.reset_calls = 0
        self.saved_to: List[str] = []
        self.loaded_from: List[str] = []

    def relocalise(self, colour, depth, intrinsics):
        self.relocalise_calls += 1
        return list(self.results)

    def train(self, colour, depth, intrinsics, pose):
        self.train_poses.append(np.array(pose, dtype=float))

    def update(self):
        self.update_calls += 1

    def finish_training(self):
        self.finish_calls += 1

    def reset(self):
        self.reset_calls += 1

    def save_to_disk(self, output_dir):
        self.saved_to.append(str(output_dir))

    def load_from_disk(self, input_dir):
        self.loaded_from.append(str(input_dir))


class FakeMappingServer:
    def __init__(self, poses: Optional[Dict[str, np.ndarray]] = None):
        self.poses = dict(poses or {})

    def get_pose(self, scene_id: str):
        return self.poses.get(scene_id)


class FakeMappingClient:
    def __init__(self):
        self.calibrations: List[RGBDCalib] = []
        self.frame_indices: List[int] = []

    def send_calibration_message(self, calib: RGBDCalib) -> None:
        self.calibrations.append(calib)

    def push_frame(self, frame_index, pose, rgb, raw_depth) -> None:
        self.frame_indices.append(frame_index)


class FakeFiducialDetector:
    def __init__(self):
        self.calls = 0

    def detect_fiducials(self, view, pose):
        self.calls += 1
        return {f"marker{self.calls}": np.array(pose)}


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def identity_pose():
    """Return identity SE(3) pose as 6D vector [x, y, z, rx, ry, rz]."""
    return se3_identity()


@pytest.fixture
def random_pose():
    """A moderate random SE(3) pose."""
    r = np.random.default_rng(7)
    return make_pose(r.normal(size=3) * 0.5, r.normal(size=3) * 0.4)


@pytest.fixture
def calib() -> RGBDCalib:
    return RGBDCalib(
        rgb_intrinsics=(10.0, 10.0, 4.0, 3.0),
        depth_intrinsics=(10.0, 10.0, 4.0, 3.0),
        rgb_size=(IMAGE_W, IMAGE_H),
        depth_size=(IMAGE_W, IMAGE_H),
        depth_scale=0.001,
    )


def make_frame(value: int = 100, depth_mm: int = 1500):
    rgb = np.full((IMAGE_H, IMAGE_W, 3), value, dtype=np.uint8)
    depth = np.full((IMAGE_H, IMAGE_W), depth_mm, dtype=np.uint16)
    return rgb, depth


@pytest.fixture
def two_tree_forest():
    """
    Two depth-1 trees over a 2-D descriptor.

    tree 0: feature 0 > 0.5 ? leaf 1 : leaf 0
    tree 1: feature 1 > 0.0 ? leaf 3 : leaf 2
    """
    forest = Forest.from_trees([
        [("split", 0, 0.5, 1), ("leaf", 0), ("leaf", 1)],
        [("split", 1, 0.0, 1), ("leaf", 2), ("leaf", 3)],
    ])
    leaves = LeafPredictions.from_modes(
        [
            [((1.0, 0.0, 0.0), 5), ((1.0, 1.0, 0.0), 3)],
            [((2.0, 0.0, 0.0), 4)],
            [((3.0, 0.0, 0.0), 5), ((3.0, 1.0, 0.0), 1)],
            [],
        ],
        capacity=3,
    )
    return forest, leaves


def make_random_forest(rng, n_trees: int = 4, depth: int = 3, n_features: int = 6, capacity: int = 4):
    """Complete binary trees (children of k at 2k+1, 2k+2) with random splits and leaves."""
    n_internal = 2 ** depth - 1
    n_leaves_per_tree = 2 ** depth
    trees = []
    for j in range(n_trees):
        nodes = []
        for k in range(n_internal):
            nodes.append(("split", int(rng.integers(n_features)), float(rng.normal()), 2 * k + 1))
        for k in range(n_leaves_per_tree):
            nodes.append(("leaf", j * n_leaves_per_tree + k))
        trees.append(nodes)
    leaves = []
    for _ in range(n_trees * n_leaves_per_tree):
        n = int(rng.integers(0, capacity + 1))
        counts = sorted(rng.integers(0, 20, size=n).tolist(), reverse=True)
        leaves.append([(tuple(rng.normal(size=3)), c) for c in counts])
    return Forest.from_trees(trees), LeafPredictions.from_modes(leaves, capacity)
