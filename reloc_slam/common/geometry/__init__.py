"""
Geometry package for reloc_slam.

SE(3) poses, dual quaternions and geometric consensus, NumPy only.

Usage:
    from reloc_slam.common.geometry import (
        blend_poses,
        estimate_rigid_transform,
        find_best_hypothesis,
    )
"""

from __future__ import annotations

from reloc_slam.common.geometry.se3 import (
    skew,
    rotvec_to_rotmat,
    rotmat_to_rotvec,
    rotvec_to_quat,
    quat_to_rotvec,
    se3_identity,
    make_pose,
    pose_params,
    pose_to_matrix,
    matrix_to_pose,
    se3_compose,
    se3_inverse,
    se3_apply,
    rotation_angle_between,
)
from reloc_slam.common.geometry.dual_quat import (
    pose_to_dual_quat,
    dual_quat_to_pose,
    linear_blend,
    angle_between_rotations,
)
from reloc_slam.common.geometry.consensus import (
    HypothesisVote,
    blend_poses,
    estimate_rigid_transform,
    estimate_rigid_transform_matrix,
    poses_are_similar,
    find_best_hypothesis,
    find_best_pose,
)

__all__ = [
    # SO(3) / quaternions
    "skew",
    "rotvec_to_rotmat",
    "rotmat_to_rotvec",
    "rotvec_to_quat",
    "quat_to_rotvec",
    # SE(3)
    "se3_identity",
    "make_pose",
    "pose_params",
    "pose_to_matrix",
    "matrix_to_pose",
    "se3_compose",
    "se3_inverse",
    "se3_apply",
    "rotation_angle_between",
    # Dual quaternions
    "pose_to_dual_quat",
    "dual_quat_to_pose",
    "linear_blend",
    "angle_between_rotations",
    # Consensus
    "HypothesisVote",
    "blend_poses",
    "estimate_rigid_transform",
    "estimate_rigid_transform_matrix",
    "poses_are_similar",
    "find_best_hypothesis",
    "find_best_pose",
]
