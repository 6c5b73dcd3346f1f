"""
Regression-forest relocaliser.

Pipeline per frame:
1. Patch features at valid-depth grid pixels (camera-space keypoints + descriptors)
2. Forest kernel: each pixel -> ranked world-space location modes
3. Pose hypotheses: 3 pixels, one mode each, closed-form rigid alignment
   camera -> world, inverted into a world-to-camera pose
4. Consensus: vote, blend the winner's inliers, remove them, repeat

The forest and its leaf table are pre-trained and loaded from disk; train()
only counts frames.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
from scipy.spatial.distance import pdist

from reloc_slam.common import constants
from reloc_slam.common.geometry import (
    blend_poses,
    estimate_rigid_transform,
    find_best_hypothesis,
    make_pose,
    rotmat_to_rotvec,
    se3_inverse,
)
from reloc_slam.common.param_models import ForestRelocaliserParams
from reloc_slam.relocalisation.features import PatchFeatureCalculator
from reloc_slam.relocalisation.forest import (
    Forest,
    LeafPredictions,
    check_compatible,
    load_forest,
    save_forest,
)
from reloc_slam.relocalisation.forest_kernel import ForestPredictions, evaluate_forest
from reloc_slam.relocalisation.relocaliser import (
    RelocalisationQuality,
    RelocalisationResult,
    Relocaliser,
)

_logger = logging.getLogger(__name__)


class ForestRelocaliser(Relocaliser):
    def __init__(
        self,
        params: Optional[ForestRelocaliserParams] = None,
        forest: Optional[Forest] = None,
        leaves: Optional[LeafPredictions] = None,
    ):
        self.params = params if params is not None else ForestRelocaliserParams()
        self.features = PatchFeatureCalculator(self.params.features)
        self._forest: Optional[Forest] = None
        self._leaves: Optional[LeafPredictions] = None
        if forest is not None or leaves is not None:
            self.set_forest(forest, leaves)
        self._rng = np.random.default_rng(self.params.seed)
        self._frames_trained = 0
        self._updates = 0
        self._training_finished = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def has_forest(self) -> bool:
        return self._forest is not None

    @property
    def frames_trained(self) -> int:
        return self._frames_trained

    @property
    def update_count(self) -> int:
        return self._updates

    @property
    def training_finished(self) -> bool:
        return self._training_finished

    def set_forest(self, forest: Forest, leaves: LeafPredictions) -> None:
        if forest is None or leaves is None:
            raise ValueError("a forest and its leaf table must be given together")
        check_compatible(forest, leaves, self.features.descriptor_length)
        self._forest = forest
        self._leaves = leaves

    def load_forest(self, path: Union[str, Path]) -> None:
        forest, leaves, _ = load_forest(path)
        self.set_forest(forest, leaves)
        _logger.info(
            "Loaded forest from %s (%d trees, %d nodes, %d leaves)",
            path, forest.n_trees, forest.n_nodes, leaves.n_leaves,
        )

    # -------------------------------------------------------------------------
    # Relocaliser interface
    # -------------------------------------------------------------------------

    def relocalise(
        self, colour: np.ndarray, depth: np.ndarray, intrinsics: Sequence[float]
    ) -> List[RelocalisationResult]:
        if self._forest is None:
            _logger.warning("Relocalisation requested but no forest is loaded")
            return []
        features = self.features.compute(colour, depth, intrinsics)
        if features.n_keypoints < 3:
            _logger.debug("Only %d valid keypoints, cannot relocalise", features.n_keypoints)
            return []
        predictions = evaluate_forest(
            features.descriptors,
            self._forest,
            self._leaves,
            max_modes=self.params.max_modes,
            backend=self.params.backend,
        )
        return self.estimate_poses(features.keypoints, predictions)

    def estimate_poses(self, keypoints: np.ndarray, predictions: ForestPredictions) -> List[RelocalisationResult]:
        """
        Ranked pose candidates from per-pixel camera points and world-space modes.

        Args:
            keypoints: (P, 3) camera-space points, row p matching predictions pixel p
            predictions: merged forest modes for the same P pixels

        Returns:
            Up to max_candidates results, best (largest inlier cluster) first
        """
        keypoints = np.asarray(keypoints, dtype=float)
        if keypoints.shape != (predictions.n_pixels, 3):
            raise ValueError(
                f"keypoints must be ({predictions.n_pixels}, 3), got shape {keypoints.shape}"
            )
        hypotheses = self._generate_hypotheses(keypoints, predictions)
        total = len(hypotheses)
        results: List[RelocalisationResult] = []
        while hypotheses and len(results) < self.params.max_candidates:
            vote = find_best_hypothesis(
                hypotheses, self.params.rotation_threshold, self.params.translation_threshold
            )
            score = vote.inlier_count / total
            quality = (
                RelocalisationQuality.GOOD
                if score >= self.params.good_inlier_fraction
                else RelocalisationQuality.POOR
            )
            results.append(RelocalisationResult(blend_poses(vote.inlier_poses), quality, score))
            for hyp_id in vote.inlier_ids:
                del hypotheses[hyp_id]
        _logger.debug("Relocalisation: %d hypotheses -> %d candidates", total, len(results))
        return results

    def train(self, colour: np.ndarray, depth: np.ndarray, intrinsics: Sequence[float], pose: np.ndarray) -> None:
        self._check_training()
        self._frames_trained += 1

    def update(self) -> None:
        self._check_training()
        self._updates += 1

    def finish_training(self) -> None:
        if not self._training_finished:
            _logger.info("Relocaliser training finished after %d frames", self._frames_trained)
        self._training_finished = True

    def reset(self) -> None:
        self._frames_trained = 0
        self._updates = 0
        self._training_finished = False
        self._rng = np.random.default_rng(self.params.seed)

    def save_to_disk(self, output_dir: Union[str, Path]) -> None:
        if self._forest is None:
            _logger.warning("No forest loaded, nothing to save to %s", output_dir)
            return
        os.makedirs(output_dir, exist_ok=True)
        path = os.path.join(output_dir, constants.RELOCALISER_FILENAME)
        save_forest(
            path,
            self._forest,
            self._leaves,
            frames_trained=np.array(self._frames_trained),
        )
        _logger.info("Saved relocaliser to %s", path)

    def load_from_disk(self, input_dir: Union[str, Path]) -> None:
        path = os.path.join(input_dir, constants.RELOCALISER_FILENAME)
        if not os.path.exists(path):
            raise FileNotFoundError(f"relocaliser file not found: {path}")
        forest, leaves, extras = load_forest(path)
        self.set_forest(forest, leaves)
        self._frames_trained = int(extras["frames_trained"]) if "frames_trained" in extras else 0
        _logger.info("Loaded relocaliser from %s", path)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _check_training(self) -> None:
        if self._training_finished:
            raise RuntimeError("relocaliser training has already been finished")

    def _generate_hypotheses(self, keypoints: np.ndarray, predictions: ForestPredictions) -> Dict[int, np.ndarray]:
        p = self.params
        eligible = np.flatnonzero(predictions.n_modes > 0)
        hypotheses: Dict[int, np.ndarray] = {}
        if eligible.size < 3:
            return hypotheses

        max_attempts = p.n_hypotheses * constants.RELOC_MAX_HYPOTHESIS_ATTEMPTS_FACTOR
        attempts = 0
        while len(hypotheses) < p.n_hypotheses and attempts < max_attempts:
            attempts += 1
            pixels = self._rng.choice(eligible, size=3, replace=False)
            camera_points = keypoints[pixels]
            world_points = np.stack([
                predictions.positions[px, self._rng.integers(predictions.n_modes[px])] for px in pixels
            ])

            camera_dists = pdist(camera_points)
            world_dists = pdist(world_points)
            if camera_dists.min() < p.min_point_separation or world_dists.min() < p.min_point_separation:
                continue
            # A rigid transform preserves distances.
            if np.max(np.abs(camera_dists - world_dists)) > p.distance_tolerance:
                continue

            R, t = estimate_rigid_transform(camera_points.T, world_points.T)
            camera_to_world = make_pose(t, rotmat_to_rotvec(R))
            hypotheses[len(hypotheses)] = se3_inverse(camera_to_world)

        if not hypotheses:
            _logger.warning("Hypothesis generation exhausted %d attempts without a valid triple", attempts)
        return hypotheses
