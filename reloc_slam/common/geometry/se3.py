"""
SE(3) poses as 6-vectors.

State representation: (x, y, z, rx, ry, rz) where:
- (x, y, z): translation in R^3
- (rx, ry, rz): rotation vector (axis-angle) in so(3)

A pose is the world-to-camera transform M (p_cam = R p_world + t), the same
convention the trackers and the relocaliser use.

Numerical Policy:
    - ROTATION_EPSILON = 1e-10: small-angle branch for stable trig
    - SINGULARITY_EPSILON = 1e-6: threshold for pi-singularity handling
"""

import math
from typing import Tuple

import numpy as np


ROTATION_EPSILON: float = 1e-10

SINGULARITY_EPSILON: float = 1e-6


# =============================================================================
# so(3) <-> SO(3)
# =============================================================================


def skew(v: np.ndarray) -> np.ndarray:
    """Skew-symmetric matrix from 3-vector (hat operator)."""
    v = np.asarray(v, dtype=float).reshape(-1)
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0]
    ], dtype=float)


def rotvec_to_rotmat(rotvec: np.ndarray) -> np.ndarray:
    """
    Rotation vector to rotation matrix (Rodrigues).

    R = I + sin(θ)[ω]_× + (1-cos(θ))[ω]_×²
    """
    rotvec = np.asarray(rotvec, dtype=float).reshape(-1)
    theta = np.linalg.norm(rotvec)
    if theta < ROTATION_EPSILON:
        return np.eye(3, dtype=float) + skew(rotvec)

    K = skew(rotvec / theta)
    return np.eye(3, dtype=float) + math.sin(theta) * K + (1.0 - math.cos(theta)) * (K @ K)


def rotmat_to_rotvec(R: np.ndarray) -> np.ndarray:
    """
    Rotation matrix to rotation vector (log map).

    Handles θ ≈ 0 (skew part), θ ≈ π (diagonal axis extraction) and the general case.
    """
    R = np.asarray(R, dtype=float)
    cos_theta = np.clip((np.trace(R) - 1.0) / 2.0, -1.0, 1.0)
    theta = math.acos(cos_theta)

    if theta < ROTATION_EPSILON:
        return np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]], dtype=float) / 2.0

    if abs(theta - math.pi) < SINGULARITY_EPSILON:
        axis = np.sqrt(np.maximum((np.diag(R) + 1.0) * 0.5, 0.0))
        # Sign ambiguity: fix the largest component positive, derive the rest from off-diagonals.
        k = int(np.argmax(axis))
        for j in range(3):
            if j != k:
                axis[j] = math.copysign(axis[j], R[k, j] + R[j, k])
        axis_norm = np.linalg.norm(axis)
        if axis_norm < 1e-12:
            return np.zeros(3, dtype=float)
        return axis / axis_norm * theta

    axis = np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]], dtype=float)
    return axis / (2.0 * math.sin(theta)) * theta


# =============================================================================
# Quaternions (x, y, z, w)
# =============================================================================


def rotvec_to_quat(rotvec: np.ndarray) -> np.ndarray:
    """Rotation vector to unit quaternion (x, y, z, w)."""
    rotvec = np.asarray(rotvec, dtype=float).reshape(-1)
    theta = np.linalg.norm(rotvec)
    if theta < ROTATION_EPSILON:
        q = np.array([0.5 * rotvec[0], 0.5 * rotvec[1], 0.5 * rotvec[2], 1.0], dtype=float)
        return q / np.linalg.norm(q)
    half = 0.5 * theta
    xyz = rotvec / theta * math.sin(half)
    return np.array([xyz[0], xyz[1], xyz[2], math.cos(half)], dtype=float)


def quat_to_rotvec(q: np.ndarray) -> np.ndarray:
    """Unit quaternion (x, y, z, w) to rotation vector (shortest rotation)."""
    q = np.asarray(q, dtype=float).reshape(-1)
    n = np.linalg.norm(q)
    if n < 1e-12:
        return np.zeros(3, dtype=float)
    q = q / n
    if q[3] < 0.0:
        q = -q
    v_norm = np.linalg.norm(q[:3])
    if v_norm < 1e-12:
        return 2.0 * q[:3]
    angle = 2.0 * math.atan2(v_norm, q[3])
    return q[:3] / v_norm * angle


# =============================================================================
# SE(3) poses
# =============================================================================


def se3_identity() -> np.ndarray:
    return np.zeros(6, dtype=float)


def make_pose(t: np.ndarray, rotvec: np.ndarray) -> np.ndarray:
    t = np.asarray(t, dtype=float).reshape(3)
    rotvec = np.asarray(rotvec, dtype=float).reshape(3)
    return np.concatenate([t, rotvec])


def pose_params(pose: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Split a pose into (translation, rotation vector)."""
    pose = np.asarray(pose, dtype=float).reshape(6)
    return pose[:3].copy(), pose[3:6].copy()


def pose_to_matrix(pose: np.ndarray) -> np.ndarray:
    """6D pose -> 4x4 homogeneous matrix."""
    t, rotvec = pose_params(pose)
    M = np.eye(4, dtype=float)
    M[:3, :3] = rotvec_to_rotmat(rotvec)
    M[:3, 3] = t
    return M


def matrix_to_pose(M: np.ndarray) -> np.ndarray:
    """4x4 homogeneous (or 3x4) matrix -> 6D pose."""
    M = np.asarray(M, dtype=float)
    if M.shape not in ((4, 4), (3, 4)):
        raise ValueError(f"expected a 4x4 or 3x4 matrix, got shape {M.shape}")
    return make_pose(M[:3, 3], rotmat_to_rotvec(M[:3, :3]))


def se3_compose(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Compose two SE(3) transforms: T_a ∘ T_b."""
    t_a, r_a = pose_params(a)
    t_b, r_b = pose_params(b)
    R_a = rotvec_to_rotmat(r_a)
    R_b = rotvec_to_rotmat(r_b)
    return make_pose(t_a + R_a @ t_b, rotmat_to_rotvec(R_a @ R_b))


def se3_inverse(a: np.ndarray) -> np.ndarray:
    """For T = (R, t), T^{-1} = (R^T, -R^T t)."""
    t, rotvec = pose_params(a)
    R_inv = rotvec_to_rotmat(rotvec).T
    return make_pose(-R_inv @ t, rotmat_to_rotvec(R_inv))


def se3_apply(T: np.ndarray, points: np.ndarray) -> np.ndarray:
    """
    Apply SE(3) transform to point(s).

    points: (N, 3) or (3,); returns the same shape.
    """
    t, rotvec = pose_params(T)
    points = np.asarray(points, dtype=float)
    single = points.ndim == 1
    pts = points.reshape(-1, 3)
    result = pts @ rotvec_to_rotmat(rotvec).T + t
    return result.reshape(-1) if single else result


def rotation_angle_between(a: np.ndarray, b: np.ndarray) -> float:
    """Geodesic angle (radians) between the rotations of two poses."""
    Ra = rotvec_to_rotmat(pose_params(a)[1])
    Rb = rotvec_to_rotmat(pose_params(b)[1])
    cos_theta = np.clip((np.trace(Ra.T @ Rb) - 1.0) / 2.0, -1.0, 1.0)
    return float(math.acos(cos_theta))
