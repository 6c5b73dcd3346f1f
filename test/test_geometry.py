"""
Tests for SE(3) helpers, dual quaternions and geometric consensus.
"""

import math

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from reloc_slam.common.geometry import (
    blend_poses,
    dual_quat_to_pose,
    estimate_rigid_transform,
    estimate_rigid_transform_matrix,
    find_best_hypothesis,
    find_best_pose,
    make_pose,
    matrix_to_pose,
    pose_to_dual_quat,
    pose_to_matrix,
    poses_are_similar,
    rotation_angle_between,
    rotmat_to_rotvec,
    rotvec_to_rotmat,
    se3_apply,
    se3_compose,
    se3_identity,
    se3_inverse,
)


class TestSE3:
    def test_rotvec_matches_scipy(self):
        rotvec = np.array([0.3, -0.2, 0.9])
        R = rotvec_to_rotmat(rotvec)
        assert np.allclose(R, Rotation.from_rotvec(rotvec).as_matrix(), atol=1e-12)

    def test_rotmat_to_rotvec_near_pi(self):
        rotvec = np.array([0.0, 1.0, 1.0]) / math.sqrt(2.0) * (math.pi - 1e-8)
        R = rotvec_to_rotmat(rotvec)
        recovered = rotmat_to_rotvec(R)
        assert np.allclose(rotvec_to_rotmat(recovered), R, atol=1e-6)

    def test_inverse_composes_to_identity(self, random_pose):
        ident = se3_compose(random_pose, se3_inverse(random_pose))
        assert np.allclose(ident, se3_identity(), atol=1e-10)

    def test_matrix_conversion(self, random_pose):
        M = pose_to_matrix(random_pose)
        assert np.allclose(matrix_to_pose(M), random_pose, atol=1e-10)
        assert np.allclose(matrix_to_pose(M[:3]), random_pose, atol=1e-10)
        with pytest.raises(ValueError):
            matrix_to_pose(np.eye(3))

    def test_apply_matches_matrix(self, random_pose, rng):
        pts = rng.normal(size=(5, 3))
        M = pose_to_matrix(random_pose)
        expected = pts @ M[:3, :3].T + M[:3, 3]
        assert np.allclose(se3_apply(random_pose, pts), expected)
        assert np.allclose(se3_apply(random_pose, pts[0]), expected[0])


class TestDualQuaternion:
    def test_pose_survives_dual_quat(self, random_pose):
        assert np.allclose(dual_quat_to_pose(pose_to_dual_quat(random_pose)), random_pose, atol=1e-10)

    def test_blend_of_identical_poses_is_that_pose(self, random_pose):
        for n in range(1, 6):
            blended = blend_poses([random_pose] * n)
            assert np.allclose(blended, random_pose, atol=1e-10), f"N={n}"

    def test_blend_averages_translation(self):
        rot = np.array([0.1, 0.2, -0.1])
        a = make_pose([0.0, 0.0, 0.0], rot)
        b = make_pose([1.0, 2.0, -2.0], rot)
        blended = blend_poses([a, b])
        assert np.allclose(blended[:3], [0.5, 1.0, -1.0], atol=1e-10)
        assert np.allclose(blended[3:], rot, atol=1e-10)

    def test_blend_is_sign_invariant(self):
        # Rotations of +/-(pi - eps) about the same axis are close; the blend must not cancel.
        a = make_pose([0, 0, 0], [0.0, 0.0, math.pi - 0.01])
        b = make_pose([0, 0, 0], [0.0, 0.0, -(math.pi - 0.01)])
        blended = blend_poses([a, b])
        assert rotation_angle_between(blended, a) < 0.02

    def test_blend_rejects_empty(self):
        with pytest.raises(ValueError):
            blend_poses([])


class TestRigidTransform:
    def test_recovers_known_transform(self, rng):
        R0 = Rotation.from_rotvec([0.4, -0.7, 0.2]).as_matrix()
        t0 = np.array([0.3, -1.2, 2.0])
        P = rng.normal(size=(3, 10))
        Q = R0 @ P + t0[:, None]
        R, t = estimate_rigid_transform(P, Q)
        assert np.allclose(R, R0, atol=1e-10)
        assert np.allclose(t, t0, atol=1e-10)

    def test_three_points_always_proper_rotation(self, rng):
        for _ in range(25):
            R0 = Rotation.from_rotvec(rng.normal(size=3)).as_matrix()
            t0 = rng.normal(size=3)
            P = rng.normal(size=(3, 3))
            Q = R0 @ P + t0[:, None]
            R, t = estimate_rigid_transform(P, Q)
            assert np.isclose(np.linalg.det(R), 1.0)
            assert np.allclose(R, R0, atol=1e-8)
            assert np.allclose(t, t0, atol=1e-8)

    def test_reflection_is_corrected(self, rng):
        # Mirrored targets: the best orthogonal fit is a reflection, which must be rejected.
        P = rng.normal(size=(3, 6))
        Q = np.diag([1.0, 1.0, -1.0]) @ P
        R, _ = estimate_rigid_transform(P, Q)
        assert np.isclose(np.linalg.det(R), 1.0)
        assert np.allclose(R @ R.T, np.eye(3), atol=1e-10)

    def test_matrix_form(self, rng):
        P = rng.normal(size=(3, 4))
        M = estimate_rigid_transform_matrix(P, P + np.array([[1.0], [2.0], [3.0]]))
        assert np.allclose(M[:3, :3], np.eye(3), atol=1e-10)
        assert np.allclose(M[:3, 3], [1.0, 2.0, 3.0], atol=1e-10)
        assert np.allclose(M[3], [0, 0, 0, 1])

    def test_rejects_bad_shapes(self):
        with pytest.raises(ValueError):
            estimate_rigid_transform(np.zeros((3, 2)), np.zeros((3, 2)))
        with pytest.raises(ValueError):
            estimate_rigid_transform(np.zeros((3, 4)), np.zeros((3, 5)))


class TestHypothesisVoting:
    ROT = 0.2
    TRANS = 0.05

    def test_similarity_thresholds_are_inclusive_and_joint(self):
        a = se3_identity()
        assert poses_are_similar(a, make_pose([0.05, 0, 0], [0, 0, 0]), self.ROT, self.TRANS)
        assert not poses_are_similar(a, make_pose([0.06, 0, 0], [0, 0, 0]), self.ROT, self.TRANS)
        assert not poses_are_similar(a, make_pose([0, 0, 0], [0, 0.3, 0]), self.ROT, self.TRANS)

    def test_two_similar_one_isolated(self):
        hypotheses = {
            "a": make_pose([0.0, 0.0, 0.0], [0.0, 0.0, 0.0]),
            "b": make_pose([0.01, 0.0, 0.0], [0.0, 0.05, 0.0]),
            "c": make_pose([2.0, 0.0, 0.0], [0.0, 0.0, 1.0]),
        }
        vote = find_best_hypothesis(hypotheses, self.ROT, self.TRANS)
        assert vote.best_id == "a"
        assert vote.inlier_count == 2
        assert vote.inlier_ids == ["a", "b"]
        assert len(vote.inlier_poses) == 2

    def test_isolated_first_does_not_win(self):
        hypotheses = {
            "c": make_pose([2.0, 0.0, 0.0], [0.0, 0.0, 1.0]),
            "a": make_pose([0.0, 0.0, 0.0], [0.0, 0.0, 0.0]),
            "b": make_pose([0.01, 0.0, 0.0], [0.0, 0.0, 0.0]),
        }
        vote = find_best_hypothesis(hypotheses, self.ROT, self.TRANS)
        assert vote.best_id == "a"
        assert vote.inlier_count == 2

    def test_tie_goes_to_earliest(self):
        poses = [make_pose([float(i), 0.0, 0.0], [0.0, 0.0, 0.0]) for i in range(3)]
        vote = find_best_pose(poses, self.ROT, self.TRANS)
        assert vote.best_id == 0
        assert vote.inlier_count == 1

    def test_no_hypotheses_no_winner(self):
        assert find_best_hypothesis({}, self.ROT, self.TRANS) is None
