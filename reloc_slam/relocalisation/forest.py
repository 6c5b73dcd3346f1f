"""
Regression-forest data structures.

Forest nodes are stored struct-of-arrays with shape (n_nodes, n_trees), so node
k of tree j lives at [k, j]. Node 0 is each tree's root. For an internal node
the children are left_child and left_child + 1; for a leaf, leaf_idx >= 0 is an
index into the shared LeafPredictions table.

LeafPredictions hold, per leaf, up to M 3-D location modes (world coordinates)
sorted descending by training inlier count. Both structures are read-only at
inference time.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Union

import numpy as np


@dataclass(frozen=True)
class Forest:
    feature_idx: np.ndarray  # (N, T) int32
    threshold: np.ndarray  # (N, T) float64
    left_child: np.ndarray  # (N, T) int32
    leaf_idx: np.ndarray  # (N, T) int32, -1 for internal nodes

    def __post_init__(self):
        shape = np.shape(self.feature_idx)
        if len(shape) != 2 or shape[0] < 1 or shape[1] < 1:
            raise ValueError(f"forest arrays must be (n_nodes, n_trees), got {shape}")
        for name in ("threshold", "left_child", "leaf_idx"):
            if np.shape(getattr(self, name)) != shape:
                raise ValueError(
                    f"forest array '{name}' has shape {np.shape(getattr(self, name))}, expected {shape}"
                )
        internal = self.leaf_idx < 0
        children = self.left_child[internal]
        if np.any(children < 1) or np.any(children + 1 >= shape[0]):
            raise ValueError("forest has an internal node whose children lie outside the node table")
        # Descent only moves forward through the table.
        node_ids = np.broadcast_to(np.arange(shape[0])[:, None], shape)[internal]
        if np.any(children <= node_ids):
            raise ValueError("forest has an internal node whose children do not follow it")
        if np.any(self.feature_idx[internal] < 0):
            raise ValueError("forest has an internal node with a negative feature index")

    @property
    def n_trees(self) -> int:
        return int(self.feature_idx.shape[1])

    @property
    def n_nodes(self) -> int:
        return int(self.feature_idx.shape[0])

    @property
    def max_feature_index(self) -> int:
        internal = self.leaf_idx < 0
        if not np.any(internal):
            return -1
        return int(self.feature_idx[internal].max())

    @property
    def max_leaf_index(self) -> int:
        return int(self.leaf_idx.max())

    @classmethod
    def from_trees(cls, trees: Sequence[Sequence[Tuple]]) -> "Forest":
        """
        Build a forest from per-tree node lists.

        Each node is either ("split", feature_idx, threshold, left_child) or
        ("leaf", leaf_idx). Shorter trees are padded with unreachable leaves.
        """
        if len(trees) == 0:
            raise ValueError("a forest needs at least one tree")
        n_nodes = max(len(t) for t in trees)
        n_trees = len(trees)
        feature_idx = np.zeros((n_nodes, n_trees), dtype=np.int32)
        threshold = np.zeros((n_nodes, n_trees), dtype=np.float64)
        left_child = np.zeros((n_nodes, n_trees), dtype=np.int32)
        leaf_idx = np.zeros((n_nodes, n_trees), dtype=np.int32)
        for j, tree in enumerate(trees):
            for k, node in enumerate(tree):
                kind = node[0]
                if kind == "split":
                    _, f, thr, left = node
                    feature_idx[k, j] = f
                    threshold[k, j] = thr
                    left_child[k, j] = left
                    leaf_idx[k, j] = -1
                elif kind == "leaf":
                    leaf_idx[k, j] = node[1]
                else:
                    raise ValueError(f"unknown forest node kind: '{kind}'")
        return cls(feature_idx, threshold, left_child, leaf_idx)


@dataclass(frozen=True)
class LeafPredictions:
    positions: np.ndarray  # (L, M, 3) float64
    inliers: np.ndarray  # (L, M) int32
    n_modes: np.ndarray  # (L,) int32

    def __post_init__(self):
        L, M = np.shape(self.inliers)
        if np.shape(self.positions) != (L, M, 3):
            raise ValueError(f"leaf positions must be ({L}, {M}, 3), got {np.shape(self.positions)}")
        if np.shape(self.n_modes) != (L,):
            raise ValueError(f"leaf n_modes must be ({L},), got {np.shape(self.n_modes)}")
        if np.any(self.n_modes < 0) or np.any(self.n_modes > M):
            raise ValueError(f"leaf n_modes must lie in [0, {M}]")
        # Modes must arrive pre-sorted; they are never re-sorted at query time.
        valid = np.arange(M)[None, :] < self.n_modes[:, None]
        masked = np.where(valid, self.inliers, np.iinfo(np.int32).min)
        if M > 1 and np.any(np.diff(masked, axis=1)[valid[:, 1:]] > 0):
            raise ValueError("leaf modes must be sorted descending by inlier count")

    @property
    def n_leaves(self) -> int:
        return int(self.n_modes.shape[0])

    @property
    def capacity(self) -> int:
        return int(self.inliers.shape[1])

    @classmethod
    def from_modes(cls, leaves: Sequence[Sequence[Tuple[Sequence[float], int]]], capacity: int) -> "LeafPredictions":
        """Build a table from per-leaf lists of (position, inliers), already sorted."""
        L = len(leaves)
        positions = np.zeros((L, capacity, 3), dtype=np.float64)
        inliers = np.zeros((L, capacity), dtype=np.int32)
        n_modes = np.zeros(L, dtype=np.int32)
        for i, modes in enumerate(leaves):
            if len(modes) > capacity:
                raise ValueError(f"leaf {i} has {len(modes)} modes, capacity is {capacity}")
            for k, (pos, count) in enumerate(modes):
                positions[i, k] = pos
                inliers[i, k] = count
            n_modes[i] = len(modes)
        return cls(positions, inliers, n_modes)


def check_compatible(forest: Forest, leaves: LeafPredictions, descriptor_length: int) -> None:
    """Raise ValueError unless every leaf and feature index the forest uses is in range."""
    if forest.max_leaf_index >= leaves.n_leaves:
        raise ValueError(
            f"forest references leaf {forest.max_leaf_index} but the table holds {leaves.n_leaves} leaves"
        )
    if forest.max_feature_index >= descriptor_length:
        raise ValueError(
            f"forest uses feature {forest.max_feature_index} but descriptors have length {descriptor_length}"
        )


def save_forest(path: Union[str, Path], forest: Forest, leaves: LeafPredictions, **extra: np.ndarray) -> None:
    np.savez(
        path,
        feature_idx=forest.feature_idx,
        threshold=forest.threshold,
        left_child=forest.left_child,
        leaf_idx=forest.leaf_idx,
        leaf_positions=leaves.positions,
        leaf_inliers=leaves.inliers,
        leaf_n_modes=leaves.n_modes,
        **extra,
    )


def load_forest(path: Union[str, Path]) -> Tuple[Forest, LeafPredictions, Dict[str, np.ndarray]]:
    """Load a forest and its leaf table; remaining arrays are returned as extras."""
    known = {
        "feature_idx", "threshold", "left_child", "leaf_idx",
        "leaf_positions", "leaf_inliers", "leaf_n_modes",
    }
    with np.load(path) as data:
        missing: List[str] = sorted(known - set(data.files))
        if missing:
            raise ValueError(f"forest file {path} is missing arrays: {missing}")
        forest = Forest(
            feature_idx=data["feature_idx"].astype(np.int32),
            threshold=data["threshold"].astype(np.float64),
            left_child=data["left_child"].astype(np.int32),
            leaf_idx=data["leaf_idx"].astype(np.int32),
        )
        leaves = LeafPredictions(
            positions=data["leaf_positions"].astype(np.float64),
            inliers=data["leaf_inliers"].astype(np.int32),
            n_modes=data["leaf_n_modes"].astype(np.int32),
        )
        extras = {k: data[k] for k in data.files if k not in known}
    return forest, leaves, extras
