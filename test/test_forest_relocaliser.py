"""
Tests for patch features, the forest relocaliser and the relocaliser factory.
"""

import numpy as np
import pytest

from reloc_slam.common import constants
from reloc_slam.common.geometry import make_pose, rotation_angle_between, se3_apply, se3_inverse
from reloc_slam.common.param_models import ForestRelocaliserParams, PatchFeatureParams
from reloc_slam.relocalisation.factory import make_relocaliser
from reloc_slam.relocalisation.features import PatchFeatureCalculator
from reloc_slam.relocalisation.forest import Forest, LeafPredictions
from reloc_slam.relocalisation.forest_kernel import ForestPredictions
from reloc_slam.relocalisation.forest_relocaliser import ForestRelocaliser
from reloc_slam.relocalisation.relocaliser import RelocalisationQuality

INTRINSICS = (10.0, 10.0, 4.0, 3.0)


def _small_params(**overrides) -> ForestRelocaliserParams:
    values = dict(
        backend="numpy",
        n_hypotheses=16,
        features=PatchFeatureParams(n_depth_features=4, n_rgb_features=4, stride=1),
    )
    values.update(overrides)
    return ForestRelocaliserParams(**values)


def _single_leaf_forest(position=(0.0, 0.0, 0.0)):
    forest = Forest.from_trees([[("leaf", 0)]])
    leaves = LeafPredictions.from_modes([[(position, 3)]], capacity=1)
    return forest, leaves


def _exact_predictions(pose, rng, n_pixels=40):
    """Camera-space keypoints and a single perfect world-space mode per pixel."""
    keypoints = np.column_stack([
        rng.uniform(-1.0, 1.0, n_pixels),
        rng.uniform(-1.0, 1.0, n_pixels),
        rng.uniform(1.0, 3.0, n_pixels),
    ])
    world = se3_apply(se3_inverse(pose), keypoints)
    positions = np.zeros((n_pixels, 2, 3))
    positions[:, 0] = world
    inliers = np.zeros((n_pixels, 2), dtype=np.int32)
    inliers[:, 0] = 1
    return keypoints, ForestPredictions(positions, inliers, np.ones(n_pixels, dtype=np.int32))


class TestPatchFeatures:
    def test_keypoints_and_shapes(self):
        calc = PatchFeatureCalculator(PatchFeatureParams(n_depth_features=3, n_rgb_features=2, stride=2))
        depth = np.full((6, 8), 2.0)
        depth[0, 0] = 0.0  # invalid, skipped
        colour = np.zeros((6, 8, 3), dtype=np.uint8)
        feats = calc.compute(colour, depth, INTRINSICS)
        assert feats.n_keypoints == 3 * 4 - 1
        assert feats.descriptors.shape == (11, 5)
        x, y = feats.pixels[0]
        assert (x, y) == (2, 0)
        assert np.allclose(feats.keypoints[0], [(2 - 4.0) * 2.0 / 10.0, (0 - 3.0) * 2.0 / 10.0, 2.0])

    def test_flat_scene_gives_zero_features(self):
        calc = PatchFeatureCalculator(PatchFeatureParams(n_depth_features=8, n_rgb_features=8, stride=1))
        depth = np.full((6, 8), 1.5)
        colour = np.full((6, 8, 3), 77, dtype=np.uint8)
        feats = calc.compute(colour, depth, INTRINSICS)
        assert np.all(feats.descriptors == 0.0)

    def test_depth_step_is_seen(self):
        params = PatchFeatureParams(n_depth_features=16, n_rgb_features=0, offset_radius=20.0, stride=1)
        calc = PatchFeatureCalculator(params)
        depth = np.full((6, 8), 1.0)
        depth[:, 4:] = 3.0
        feats = calc.compute(np.zeros((6, 8, 3)), depth, INTRINSICS)
        # Somewhere a near pixel samples the far half (+2 m) or vice versa (-2 m).
        assert np.any(np.isclose(np.abs(feats.descriptors), 2.0))
        assert set(np.unique(np.abs(feats.descriptors))) <= {0.0, 2.0}

    def test_offsets_are_seeded(self):
        a = PatchFeatureCalculator(PatchFeatureParams(seed=3))
        b = PatchFeatureCalculator(PatchFeatureParams(seed=3))
        assert np.array_equal(a.depth_offsets, b.depth_offsets)
        assert np.array_equal(a.rgb_channels, b.rgb_channels)

    def test_shape_mismatch(self):
        calc = PatchFeatureCalculator()
        with pytest.raises(ValueError):
            calc.compute(np.zeros((4, 4, 3)), np.zeros((6, 8)), INTRINSICS)


class TestForestRelocaliser:
    def test_recovers_pose_from_exact_modes(self, rng):
        pose = make_pose([0.2, -0.1, 0.5], [0.1, -0.3, 0.2])
        keypoints, predictions = _exact_predictions(pose, rng)
        reloc = ForestRelocaliser(_small_params())
        results = reloc.estimate_poses(keypoints, predictions)
        assert len(results) == 1
        best = results[0]
        assert best.quality is RelocalisationQuality.GOOD
        assert best.score == pytest.approx(1.0)
        assert np.allclose(best.pose[:3], pose[:3], atol=1e-6)
        assert rotation_angle_between(best.pose, pose) < 1e-6

    def test_outlier_cluster_ranked_second(self, rng):
        pose = make_pose([0.2, -0.1, 0.5], [0.1, -0.3, 0.2])
        keypoints, predictions = _exact_predictions(pose, rng, n_pixels=60)
        # Shift a third of the modes rigidly: a second, smaller consistent cluster.
        shifted = predictions.positions.copy()
        shifted[40:, 0] += np.array([1.0, 0.0, 0.0])
        predictions = ForestPredictions(shifted, predictions.inliers, predictions.n_modes)
        reloc = ForestRelocaliser(_small_params(n_hypotheses=48))
        results = reloc.estimate_poses(keypoints, predictions)
        assert len(results) >= 1
        assert np.allclose(results[0].pose[:3], pose[:3], atol=1e-6)
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert len(results) <= reloc.params.max_candidates

    def test_too_few_pixels_with_modes(self, rng):
        keypoints, predictions = _exact_predictions(make_pose([0, 0, 1], [0, 0, 0]), rng, n_pixels=5)
        n_modes = predictions.n_modes.copy()
        n_modes[2:] = 0
        predictions = ForestPredictions(predictions.positions, predictions.inliers, n_modes)
        assert ForestRelocaliser(_small_params()).estimate_poses(keypoints, predictions) == []

    def test_without_forest_returns_nothing(self):
        reloc = ForestRelocaliser(_small_params())
        assert not reloc.has_forest
        assert reloc.relocalise(np.zeros((6, 8, 3)), np.ones((6, 8)), INTRINSICS) == []

    def test_degenerate_predictions_give_no_candidates(self):
        forest, leaves = _single_leaf_forest()
        reloc = ForestRelocaliser(_small_params(), forest, leaves)
        # Every pixel predicts the same world point, so every triple is rejected.
        assert reloc.relocalise(np.zeros((6, 8, 3)), np.ones((6, 8)), INTRINSICS) == []

    def test_no_valid_depth(self):
        forest, leaves = _single_leaf_forest()
        reloc = ForestRelocaliser(_small_params(), forest, leaves)
        assert reloc.relocalise(np.zeros((6, 8, 3)), np.zeros((6, 8)), INTRINSICS) == []

    def test_forest_must_fit_descriptor(self):
        forest = Forest.from_trees([[("split", 50, 0.0, 1), ("leaf", 0), ("leaf", 0)]])
        leaves = LeafPredictions.from_modes([[]], capacity=1)
        with pytest.raises(ValueError):
            ForestRelocaliser(_small_params(), forest, leaves)

    def test_training_protocol(self):
        reloc = ForestRelocaliser(_small_params())
        reloc.train(None, None, INTRINSICS, np.zeros(6))
        reloc.update()
        assert reloc.frames_trained == 1
        assert reloc.update_count == 1
        reloc.finish_training()
        reloc.finish_training()
        assert reloc.training_finished
        with pytest.raises(RuntimeError):
            reloc.train(None, None, INTRINSICS, np.zeros(6))
        with pytest.raises(RuntimeError):
            reloc.update()
        reloc.reset()
        assert reloc.frames_trained == 0
        assert not reloc.training_finished

    def test_save_and_load(self, tmp_path):
        forest, leaves = _single_leaf_forest((1.0, 2.0, 3.0))
        reloc = ForestRelocaliser(_small_params(), forest, leaves)
        reloc.train(None, None, INTRINSICS, np.zeros(6))
        reloc.save_to_disk(tmp_path / "model")
        assert (tmp_path / "model" / constants.RELOCALISER_FILENAME).exists()

        loaded = ForestRelocaliser(_small_params())
        loaded.load_from_disk(tmp_path / "model")
        assert loaded.has_forest
        assert loaded.frames_trained == 1

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ForestRelocaliser(_small_params()).load_from_disk(tmp_path)


class TestRelocaliserFactory:
    def test_none(self):
        assert make_relocaliser("none") is None

    def test_forest(self):
        reloc = make_relocaliser("forest", _small_params())
        assert isinstance(reloc, ForestRelocaliser)
        assert not reloc.has_forest

    def test_forest_with_path(self, tmp_path):
        forest, leaves = _single_leaf_forest()
        ForestRelocaliser(_small_params(), forest, leaves).save_to_disk(tmp_path)
        path = str(tmp_path / constants.RELOCALISER_FILENAME)
        reloc = make_relocaliser("forest", _small_params(forest_path=path))
        assert reloc.has_forest

    def test_unknown(self):
        with pytest.raises(ValueError, match="bogus"):
            make_relocaliser("bogus")
