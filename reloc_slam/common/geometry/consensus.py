"""
Closed-form geometric consensus on poses and point sets.

Needs only poses (6-vectors, see se3.py) and 3-D points; no state, no I/O.

- blend_poses: uniform dual-quaternion blend of N poses
- estimate_rigid_transform: least-squares rigid alignment via SVD (Arun et al. 1987)
- poses_are_similar / find_best_hypothesis: consensus voting over pose hypotheses
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Hashable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from reloc_slam.common.geometry.dual_quat import (
    angle_between_rotations,
    dual_quat_from_rotation,
    dual_quat_to_pose,
    linear_blend,
    pose_to_dual_quat,
)
from reloc_slam.common.geometry.se3 import pose_params


# =============================================================================
# Pose blending
# =============================================================================


def blend_poses(poses: Sequence[np.ndarray]) -> np.ndarray:
    """
    Uniformly-weighted linear blend of poses (weight 1/N each).

    Blending a single pose, or N copies of one pose, returns that pose.
    """
    count = len(poses)
    if count == 0:
        raise ValueError("blend_poses requires at least one pose")
    weight = 1.0 / count
    dqs = [pose_to_dual_quat(p) for p in poses]
    return dual_quat_to_pose(linear_blend(dqs, [weight] * count))


# =============================================================================
# Rigid-transform estimation
# =============================================================================


def estimate_rigid_transform(P: np.ndarray, Q: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Estimate R, t minimising sum ||R p_i + t - q_i||² for matched point sets.

    Args:
        P: Source points as columns (3, N), N >= 3
        Q: Target points as columns (3, N)

    Returns:
        (R, t): rotation (3, 3) with det(R) = +1 and translation (3,)
    """
    P = np.asarray(P, dtype=float)
    Q = np.asarray(Q, dtype=float)
    if P.shape != Q.shape or P.ndim != 2 or P.shape[0] != 3 or P.shape[1] < 3:
        raise ValueError(f"expected matched (3, N>=3) point sets, got {P.shape} and {Q.shape}")

    # Step 1: centroids.
    centroid_p = P.mean(axis=1)
    centroid_q = Q.mean(axis=1)

    # Step 2: centre both sets.
    centred_p = P - centroid_p[:, None]
    centred_q = Q - centroid_q[:, None]

    # Step 3: cross-covariance A = centred(P) centred(Q)^T.
    A = centred_p @ centred_q.T

    # Step 4: A = V S W^T.
    V, _, Wt = np.linalg.svd(A)
    W = Wt.T

    # Step 5: correct a reflection into a proper rotation.
    I = np.eye(3, dtype=float)
    if np.linalg.det(V @ W.T) < 0.0:
        I[2, 2] = -1.0

    # Step 6: recover R and t.
    R = W @ I @ V.T
    t = centroid_q - R @ centroid_p
    return R, t


def estimate_rigid_transform_matrix(P: np.ndarray, Q: np.ndarray) -> np.ndarray:
    """As estimate_rigid_transform, packed into a 4x4 homogeneous matrix."""
    R, t = estimate_rigid_transform(P, Q)
    M = np.eye(4, dtype=float)
    M[:3, :3] = R
    M[:3, 3] = t
    return M


# =============================================================================
# Hypothesis voting
# =============================================================================


@dataclass
class HypothesisVote:
    """Winner of a consensus vote and the hypotheses that agree with it."""
    best_id: Hashable
    best_pose: np.ndarray
    inlier_ids: List[Hashable] = field(default_factory=list)
    inlier_poses: List[np.ndarray] = field(default_factory=list)

    @property
    def inlier_count(self) -> int:
        return len(self.inlier_ids)


def poses_are_similar(
    pose1: np.ndarray,
    pose2: np.ndarray,
    rotation_threshold: float,
    translation_threshold: float,
) -> bool:
    """True iff rotation angle difference <= rotation_threshold AND translation distance <= translation_threshold."""
    t1, r1 = pose_params(pose1)
    t2, r2 = pose_params(pose2)
    rot = angle_between_rotations(dual_quat_from_rotation(r1), dual_quat_from_rotation(r2))
    trans = float(np.linalg.norm(t1 - t2))
    return rot <= rotation_threshold and trans <= translation_threshold


def find_best_hypothesis(
    hypotheses: Mapping[Hashable, np.ndarray],
    rotation_threshold: float,
    translation_threshold: float,
) -> Optional[HypothesisVote]:
    """
    Pick the hypothesis that the most hypotheses (itself included) are similar to.

    Hypotheses are scanned in insertion order and a later one only replaces the
    current best with a strictly larger inlier count, so ties go to the earliest.
    Returns None when there are no hypotheses.
    """
    best: Optional[HypothesisVote] = None
    for hyp_id, pose in hypotheses.items():
        inlier_ids = [
            other_id
            for other_id, other in hypotheses.items()
            if poses_are_similar(pose, other, rotation_threshold, translation_threshold)
        ]
        if best is None or len(inlier_ids) > best.inlier_count:
            best = HypothesisVote(
                best_id=hyp_id,
                best_pose=np.asarray(pose, dtype=float),
                inlier_ids=inlier_ids,
                inlier_poses=[np.asarray(hypotheses[i], dtype=float) for i in inlier_ids],
            )
    return best


def find_best_pose(
    poses: Sequence[np.ndarray],
    rotation_threshold: float,
    translation_threshold: float,
) -> Optional[HypothesisVote]:
    """find_best_hypothesis over a plain sequence; ids are the list indices."""
    return find_best_hypothesis(dict(enumerate(poses)), rotation_threshold, translation_threshold)
