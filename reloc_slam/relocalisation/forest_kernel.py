"""
Per-pixel regression-forest evaluation.

Two stages, both pure functions of (descriptors, forest, leaf table):

1. Descent: for every (pixel, tree), walk from node 0 comparing one feature
   against the node threshold (right child iff value > threshold) until a leaf
   is reached. O(depth) per tree, no backtracking.
2. Merge: bounded K-way merge of the T selected leaves' pre-sorted mode lists.
   Repeatedly take the tree whose next unemitted mode has the most inliers
   (strictly greater wins, so ties go to the lowest tree index), emit it and
   advance that tree's cursor. Stop at max_modes or when no candidate with a
   positive inlier count remains. O(max_modes × T) per pixel.

Back-ends:
- "jax": jit-compiled, vmapped over pixels and trees (data-parallel)
- "numpy": sequential per-pixel loop (reference implementation)
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial

import numpy as np

from reloc_slam.common import constants
from reloc_slam.common.jax_init import jax, jnp
from reloc_slam.relocalisation.forest import Forest, LeafPredictions


@dataclass(frozen=True)
class ForestPredictions:
    """Merged modes per pixel; slots at or past n_modes[p] are zero."""
    positions: np.ndarray  # (P, max_modes, 3)
    inliers: np.ndarray  # (P, max_modes)
    n_modes: np.ndarray  # (P,)

    @property
    def n_pixels(self) -> int:
        return int(self.n_modes.shape[0])

    def modes_for(self, pixel: int) -> np.ndarray:
        """Positions of the valid modes of one pixel, (n_modes[pixel], 3)."""
        return self.positions[pixel, : int(self.n_modes[pixel])]


# =============================================================================
# JAX back-end
# =============================================================================


def _descend_tree(descriptor, feature_idx, threshold, left_child, leaf_idx):
    """Leaf reached by one descriptor in one tree (arrays are that tree's columns)."""

    def not_leaf(node):
        return leaf_idx[node] < 0

    def step(node):
        go_right = descriptor[feature_idx[node]] > threshold[node]
        return left_child[node] + go_right.astype(jnp.int32)

    node = jax.lax.while_loop(not_leaf, step, jnp.int32(0))
    return leaf_idx[node]


# (descriptor, per-tree columns) -> (T,)
_descend_trees = jax.vmap(_descend_tree, in_axes=(None, 1, 1, 1, 1))


@jax.jit
def _descend_core(descriptors, feature_idx, threshold, left_child, leaf_idx):
    """(P, D) descriptors -> (P, T) leaf indices."""
    return jax.vmap(_descend_trees, in_axes=(0, None, None, None, None))(
        descriptors, feature_idx, threshold, left_child, leaf_idx
    )


def _merge_pixel(leaves, positions, inliers, n_modes, max_modes):
    n_trees = leaves.shape[0]
    capacity = inliers.shape[1]
    tree_ids = jnp.arange(n_trees)
    leaf_n = n_modes[leaves]  # (T,)
    leaf_inliers = jnp.maximum(inliers[leaves], 0)  # (T, M)
    leaf_positions = positions[leaves]  # (T, M, 3)

    def body(_, carry):
        cursors, out_pos, out_inl, count = carry
        safe = jnp.minimum(cursors, capacity - 1)
        candidates = jnp.where(cursors < leaf_n, leaf_inliers[tree_ids, safe], 0)
        best = jnp.argmax(candidates)  # first maximum -> lowest tree index
        best_inliers = candidates[best]
        emit = best_inliers > 0
        slot = jnp.minimum(count, max_modes - 1)
        out_pos = jnp.where(emit, out_pos.at[slot].set(leaf_positions[best, safe[best]]), out_pos)
        out_inl = jnp.where(emit, out_inl.at[slot].set(best_inliers), out_inl)
        cursors = jnp.where(emit, cursors.at[best].add(1), cursors)
        return cursors, out_pos, out_inl, count + emit.astype(jnp.int32)

    init = (
        jnp.zeros(n_trees, dtype=jnp.int32),
        jnp.zeros((max_modes, 3), dtype=positions.dtype),
        jnp.zeros(max_modes, dtype=inliers.dtype),
        jnp.int32(0),
    )
    _, out_pos, out_inl, count = jax.lax.fori_loop(0, max_modes, body, init)
    return out_pos, out_inl, count


@partial(jax.jit, static_argnames=("max_modes",))
def _merge_core(leaf_indices, positions, inliers, n_modes, max_modes):
    return jax.vmap(_merge_pixel, in_axes=(0, None, None, None, None))(
        leaf_indices, positions, inliers, n_modes, max_modes
    )


# =============================================================================
# NumPy reference back-end
# =============================================================================


def _descend_numpy(descriptors: np.ndarray, forest: Forest) -> np.ndarray:
    P = descriptors.shape[0]
    out = np.empty((P, forest.n_trees), dtype=np.int32)
    for p in range(P):
        descriptor = descriptors[p]
        for j in range(forest.n_trees):
            node = 0
            while forest.leaf_idx[node, j] < 0:
                go_right = descriptor[forest.feature_idx[node, j]] > forest.threshold[node, j]
                node = int(forest.left_child[node, j]) + int(go_right)
            out[p, j] = forest.leaf_idx[node, j]
    return out


def _merge_numpy(leaf_indices: np.ndarray, leaves: LeafPredictions, max_modes: int) -> ForestPredictions:
    P, T = leaf_indices.shape
    positions = np.zeros((P, max_modes, 3), dtype=np.float64)
    inliers = np.zeros((P, max_modes), dtype=np.int32)
    n_modes = np.zeros(P, dtype=np.int32)
    for p in range(P):
        selected = leaf_indices[p]
        cursors = [0] * T
        count = 0
        while count < max_modes:
            best_tree = 0
            best_inliers = 0
            for j in range(T):
                leaf = selected[j]
                if cursors[j] < leaves.n_modes[leaf] and leaves.inliers[leaf, cursors[j]] > best_inliers:
                    best_tree = j
                    best_inliers = int(leaves.inliers[leaf, cursors[j]])
            if best_inliers == 0:
                break
            leaf = selected[best_tree]
            positions[p, count] = leaves.positions[leaf, cursors[best_tree]]
            inliers[p, count] = best_inliers
            cursors[best_tree] += 1
            count += 1
        n_modes[p] = count
    return ForestPredictions(positions, inliers, n_modes)


# =============================================================================
# Public API
# =============================================================================


def find_leaves(descriptors: np.ndarray, forest: Forest, backend: str = constants.FOREST_BACKEND_DEFAULT) -> np.ndarray:
    """
    Descend every tree for every descriptor.

    Args:
        descriptors: (P, D) per-pixel descriptors
        forest: Forest whose feature indices are < D
        backend: "jax" or "numpy"

    Returns:
        (P, T) int32 leaf indices
    """
    descriptors = np.asarray(descriptors, dtype=np.float64)
    if descriptors.ndim != 2:
        raise ValueError(f"descriptors must be (P, D), got shape {descriptors.shape}")
    if forest.max_feature_index >= descriptors.shape[1]:
        raise ValueError(
            f"forest uses feature {forest.max_feature_index} but descriptors have length {descriptors.shape[1]}"
        )
    if descriptors.shape[0] == 0:
        return np.zeros((0, forest.n_trees), dtype=np.int32)
    if backend == "numpy":
        return _descend_numpy(descriptors, forest)
    if backend != "jax":
        raise ValueError(f"unknown forest backend: '{backend}'")
    out = _descend_core(
        jnp.asarray(descriptors),
        jnp.asarray(forest.feature_idx, dtype=jnp.int32),
        jnp.asarray(forest.threshold),
        jnp.asarray(forest.left_child, dtype=jnp.int32),
        jnp.asarray(forest.leaf_idx, dtype=jnp.int32),
    )
    return np.asarray(out, dtype=np.int32)


def merge_leaf_predictions(
    leaf_indices: np.ndarray,
    leaves: LeafPredictions,
    max_modes: int = constants.FOREST_MAX_MODES,
    backend: str = constants.FOREST_BACKEND_DEFAULT,
) -> ForestPredictions:
    """Merge the selected leaves' mode lists into at most max_modes modes per pixel."""
    leaf_indices = np.asarray(leaf_indices, dtype=np.int32)
    if leaf_indices.ndim != 2:
        raise ValueError(f"leaf indices must be (P, T), got shape {leaf_indices.shape}")
    if max_modes < 1:
        raise ValueError(f"max_modes must be >= 1, got {max_modes}")
    P = leaf_indices.shape[0]
    if P == 0:
        return ForestPredictions(
            np.zeros((0, max_modes, 3)), np.zeros((0, max_modes), dtype=np.int32), np.zeros(0, dtype=np.int32)
        )
    if backend == "numpy":
        return _merge_numpy(leaf_indices, leaves, max_modes)
    if backend != "jax":
        raise ValueError(f"unknown forest backend: '{backend}'")
    out_pos, out_inl, count = _merge_core(
        jnp.asarray(leaf_indices),
        jnp.asarray(leaves.positions),
        jnp.asarray(leaves.inliers, dtype=jnp.int32),
        jnp.asarray(leaves.n_modes, dtype=jnp.int32),
        max_modes=int(max_modes),
    )
    return ForestPredictions(
        positions=np.asarray(out_pos, dtype=np.float64),
        inliers=np.asarray(out_inl, dtype=np.int32),
        n_modes=np.asarray(count, dtype=np.int32),
    )


def evaluate_forest(
    descriptors: np.ndarray,
    forest: Forest,
    leaves: LeafPredictions,
    max_modes: int = constants.FOREST_MAX_MODES,
    backend: str = constants.FOREST_BACKEND_DEFAULT,
) -> ForestPredictions:
    """Descent followed by merge."""
    leaf_indices = find_leaves(descriptors, forest, backend=backend)
    return merge_leaf_predictions(leaf_indices, leaves, max_modes=max_modes, backend=backend)
