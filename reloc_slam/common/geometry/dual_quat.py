"""
Unit dual quaternions for rigid transforms.

A dual quaternion is stored as an (8,) array [q_r, q_d] with both halves in
(x, y, z, w) order. For a transform p -> R p + t:

    q_r = quat(R),    q_d = 0.5 * (t, 0) ⊗ q_r

Linear blending (DLB): weighted sum of hemisphere-aligned dual quaternions,
followed by renormalisation (Kavan et al. 2008).
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from reloc_slam.common.geometry.se3 import (
    make_pose,
    pose_params,
    quat_to_rotvec,
    rotvec_to_quat,
)


def quat_multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Hamilton product a ⊗ b, (x, y, z, w) order."""
    ax, ay, az, aw = a
    bx, by, bz, bw = b
    return np.array([
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
        aw * bw - ax * bx - ay * by - az * bz,
    ], dtype=float)


def quat_conjugate(q: np.ndarray) -> np.ndarray:
    return np.array([-q[0], -q[1], -q[2], q[3]], dtype=float)


def dual_quat_from_rotation(rotvec: np.ndarray) -> np.ndarray:
    """Pure rotation as a dual quaternion."""
    return np.concatenate([rotvec_to_quat(rotvec), np.zeros(4, dtype=float)])


def pose_to_dual_quat(pose: np.ndarray) -> np.ndarray:
    t, rotvec = pose_params(pose)
    q_r = rotvec_to_quat(rotvec)
    q_d = 0.5 * quat_multiply(np.array([t[0], t[1], t[2], 0.0]), q_r)
    return np.concatenate([q_r, q_d])


def normalise_dual_quat(dq: np.ndarray) -> np.ndarray:
    """Project onto the unit dual quaternions (|q_r| = 1, q_r · q_d = 0)."""
    dq = np.asarray(dq, dtype=float).reshape(8)
    n = np.linalg.norm(dq[:4])
    if n < 1e-12:
        raise ValueError("cannot normalise a dual quaternion with a zero real part")
    q_r = dq[:4] / n
    q_d = dq[4:] / n
    q_d = q_d - np.dot(q_r, q_d) * q_r
    return np.concatenate([q_r, q_d])


def dual_quat_to_pose(dq: np.ndarray) -> np.ndarray:
    dq = normalise_dual_quat(dq)
    q_r, q_d = dq[:4], dq[4:]
    t = 2.0 * quat_multiply(q_d, quat_conjugate(q_r))
    return make_pose(t[:3], quat_to_rotvec(q_r))


def linear_blend(dqs: Sequence[np.ndarray], weights: Sequence[float]) -> np.ndarray:
    """
    Dual-quaternion linear blend.

    Each input is flipped into the hemisphere of the first one before summing,
    so q and -q (the same rotation) reinforce rather than cancel.
    """
    if len(dqs) == 0:
        raise ValueError("linear_blend requires at least one dual quaternion")
    if len(dqs) != len(weights):
        raise ValueError(f"got {len(dqs)} dual quaternions but {len(weights)} weights")

    pivot = np.asarray(dqs[0], dtype=float)[:4]
    acc = np.zeros(8, dtype=float)
    for dq, w in zip(dqs, weights):
        dq = np.asarray(dq, dtype=float).reshape(8)
        if np.dot(dq[:4], pivot) < 0.0:
            dq = -dq
        acc += float(w) * dq
    return normalise_dual_quat(acc)


def angle_between_rotations(a: np.ndarray, b: np.ndarray) -> float:
    """Angle (radians, in [0, π]) of the relative rotation between two dual quaternions."""
    qa = np.asarray(a, dtype=float)[:4]
    qb = np.asarray(b, dtype=float)[:4]
    qa = qa / np.linalg.norm(qa)
    qb = qb / np.linalg.norm(qb)
    d = min(abs(float(np.dot(qa, qb))), 1.0)
    return 2.0 * math.acos(d)
