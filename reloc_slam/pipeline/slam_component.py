"""
Per-scene tracking/relocalisation state machine.

One call of process_frame() per video frame:

1. Pull the next frame (IDLE / TERMINATED when none is available)
2. Rebuild the view; apply the input mask to depth for tracking only
3. Track (or mirror another scene's pose), seeded from the previous pose
4. Apply the failure policy (relocalise / stop integration / ignore)
5. Fuse, refresh visibility, or roll the pose back
6. Prepare rendering for the next frame's tracking; detect fiducials

Fusion gate:
    fuse iff fusion enabled
         AND quality != FAILED
         AND (quality == GOOD OR fused_frames < initial_frames_to_fuse)
         AND the fallible tracker (if any) has not lost tracking
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Union

import numpy as np
import yaml

from reloc_slam.common import constants
from reloc_slam.common.frame_report import FrameReport
from reloc_slam.common.param_models import FailureMode
from reloc_slam.pipeline.interfaces import (
    FiducialDetector,
    ImageSource,
    MappingClient,
    MappingMode,
    ReconstructionEngine,
    TrackingMode,
    depth_intrinsics_of,
    write_rgbd_calib,
)
from reloc_slam.pipeline.slam_context import SLAMContext
from reloc_slam.pipeline.slam_state import InputStatus, SLAMState
from reloc_slam.relocalisation.factory import make_relocaliser
from reloc_slam.relocalisation.relocaliser import RelocalisationQuality, Relocaliser
from reloc_slam.trackers.base import TrackingQuality
from reloc_slam.trackers.factory import TrackerBuildContext, TrackerTree

_logger = logging.getLogger(__name__)


class SLAMComponent:
    def __init__(
        self,
        context: SLAMContext,
        scene_id: str,
        image_source: ImageSource,
        engine: ReconstructionEngine,
        tracker_config: Union[str, Path],
        mapping_mode: MappingMode = MappingMode.VOXELS_ONLY,
        tracking_mode: TrackingMode = TrackingMode.VOXELS,
        relocaliser: Optional[Relocaliser] = None,
        fiducial_detector: Optional[FiducialDetector] = None,
    ):
        """
        Set up one scene and register it with the context.

        Args:
            tracker_config: tracker document (XML/YAML text) or a path to one
            relocaliser: relocaliser to use; None builds one from the settings
                (relocaliser_type "none" leaves the scene without one)
        """
        self.context = context
        self.scene_id = scene_id
        self.mapping_mode = mapping_mode
        self.tracking_mode = tracking_mode
        self._image_source = image_source
        self._engine = engine
        self._mirror_scene_id: Optional[str] = None
        self._detect_fiducials = False
        self._fused_frames_count = 0
        self._fusion_enabled = True
        self._relocaliser_training_count = 0
        self.last_frame_report: Optional[FrameReport] = None

        settings = context.settings

        rgb_size, depth_size = image_source.get_image_sizes()
        if depth_size[0] == -1 or depth_size[1] == -1:
            depth_size = rgb_size
        state = SLAMState(rgb_image_size=tuple(rgb_size), depth_image_size=tuple(depth_size))
        state.clear_input_images()
        context.set_slam_state(scene_id, state)

        self._tracker_tree = self._setup_tracker(tracker_config, rgb_size, depth_size)
        self._tracker = self._tracker_tree.root
        self._fallible_tracker = self._tracker_tree.fallible_tracker

        if relocaliser is None:
            relocaliser = make_relocaliser(settings.relocaliser_type, settings.relocaliser)
        context.set_relocaliser(scene_id, relocaliser)

        self.reset_scene()
        self._tracker.update_initial_pose(state.tracking_state)
        context.add_scene_id(scene_id)
        context.set_fiducial_detector(scene_id, fiducial_detector)

        _logger.info(
            "SLAM component for scene '%s' ready (policy=%s, relocaliser=%s, mapping=%s, tracking=%s)",
            scene_id,
            settings.behaviour_on_failure.value,
            settings.relocaliser_type if relocaliser is not None else "none",
            mapping_mode.value,
            tracking_mode.value,
        )

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def slam_state(self) -> SLAMState:
        return self.context.get_slam_state(self.scene_id)

    @property
    def fusion_enabled(self) -> bool:
        return self._fusion_enabled

    @property
    def fused_frames_count(self) -> int:
        return self._fused_frames_count

    @property
    def tracker_tree(self) -> TrackerTree:
        return self._tracker_tree

    def set_fusion_enabled(self, fusion_enabled: bool) -> None:
        self._fusion_enabled = bool(fusion_enabled)

    def set_detect_fiducials(self, detect_fiducials: bool) -> None:
        self._detect_fiducials = bool(detect_fiducials)

    def mirror_pose_of(self, mirror_scene_id: Optional[str]) -> None:
        """Copy another scene's pose every frame instead of tracking (None/"" stops mirroring)."""
        self._mirror_scene_id = mirror_scene_id or None

    def set_mapping_client(self, mapping_client: Optional[MappingClient]) -> None:
        self.context.set_mapping_client(self.scene_id, mapping_client)
        if mapping_client is not None:
            _logger.info("Sending calibration message for scene '%s'", self.scene_id)
            mapping_client.send_calibration_message(self._image_source.get_calib())

    # -------------------------------------------------------------------------
    # Per-frame processing
    # -------------------------------------------------------------------------

    def process_frame(self) -> bool:
        """Process the next frame; False when no frame was available."""
        state = self.slam_state
        settings = self.context.settings

        if not self._image_source.has_frame_now():
            status = InputStatus.IDLE if self._image_source.has_more_frames() else InputStatus.TERMINATED
            report = FrameReport(scene_id=self.scene_id, status=status.value)
            if (
                settings.finish_training_enabled
                and status is InputStatus.TERMINATED
                and state.input_status is not InputStatus.TERMINATED
            ):
                relocaliser = self.context.get_relocaliser(self.scene_id)
                if relocaliser is not None:
                    relocaliser.finish_training()
                    report.finished_training = True
            state.input_status = status
            self._emit(report)
            return False

        state.input_status = InputStatus.ACTIVE
        report = FrameReport(scene_id=self.scene_id, status=state.input_status.value, frame_index=state.frame_index)

        rgb, raw_depth = self._image_source.get_frame()
        state.input_rgb_image = rgb
        state.input_raw_depth_image = raw_depth
        view = self._engine.update_view(
            state.view,
            rgb,
            raw_depth,
            self._image_source.get_calib(),
            self.tracking_mode is TrackingMode.SURFELS,
        )
        view.frame_index = state.frame_index
        state.view = view

        original_depth = None
        mask = state.input_mask
        if mask is not None and np.shape(mask) == np.shape(view.depth):
            original_depth = view.depth
            view.depth = np.where(np.asarray(mask) != 0, original_depth, constants.DEPTH_MASKED_VALUE).astype(
                original_depth.dtype
            )
        elif mask is not None:
            report.notes.append(
                f"input mask shape {np.shape(mask)} does not match depth {np.shape(view.depth)}; ignored"
            )

        tracking_state = state.tracking_state
        old_pose = np.array(tracking_state.pose, dtype=float)

        if self._mirror_scene_id is not None:
            tracking_state.set_pose(self.context.get_slam_state(self._mirror_scene_id).pose)
            tracking_state.result = TrackingQuality.GOOD
            report.pose_source = f"mirror:{self._mirror_scene_id}"
        else:
            self._tracker.track(tracking_state, view)
            report.pose_source = "tracker"

        if original_depth is not None:
            view.depth = original_depth

        report.raw_quality = tracking_state.result.value

        policy = settings.behaviour_on_failure
        if policy is FailureMode.RELOCALISE:
            self._process_relocalisation(report)
        elif policy is FailureMode.STOP_INTEGRATION:
            # Keep going rather than failing completely.
            if tracking_state.result is TrackingQuality.FAILED:
                tracking_state.result = TrackingQuality.POOR
        else:
            tracking_state.result = TrackingQuality.GOOD

        quality = tracking_state.result
        lost = self._fallible_tracker is not None and self._fallible_tracker.lost_tracking()
        report.lost_tracking = lost

        run_fusion = self._fusion_enabled
        if (
            quality is TrackingQuality.FAILED
            or (quality is TrackingQuality.POOR and self._fused_frames_count >= settings.initial_frames_to_fuse)
            or lost
        ):
            run_fusion = False

        # Space carving needs the visible list reset unless point clouds are rendered for tracking.
        reset_visible_list = not self._tracker.requires_point_cloud_rendering()

        if run_fusion:
            self._engine.process_frame(
                view, tracking_state, reset_visible_list, self.mapping_mode is MappingMode.VOXELS_AND_SURFELS
            )
            mapping_client = self.context.get_mapping_client(self.scene_id)
            if mapping_client is not None:
                mapping_client.push_frame(self._fused_frames_count, state.pose, rgb, raw_depth)
            self._fused_frames_count += 1
            report.fused = True
        elif quality is not TrackingQuality.FAILED:
            self._engine.update_visible_list(view, tracking_state, reset_visible_list)
        else:
            tracking_state.set_pose(old_pose)
            report.pose_restored = True

        self._engine.prepare(tracking_state, view, self.tracking_mode)
        if self.mapping_mode is MappingMode.VOXELS_AND_SURFELS:
            self._engine.find_surface_super(tracking_state, view)

        detector = self.context.get_fiducial_detector(self.scene_id)
        if detector is not None and self._detect_fiducials and tracking_state.result is TrackingQuality.GOOD:
            state.update_fiducials(detector.detect_fiducials(view, state.pose))

        state.frame_index += 1
        report.final_quality = tracking_state.result.value
        report.pose = state.pose
        self._emit(report)
        return True

    def _process_relocalisation(self, report: FrameReport) -> None:
        relocaliser = self.context.get_relocaliser(self.scene_id)
        if relocaliser is None:
            return

        settings = self.context.settings
        state = self.slam_state
        tracking_state = state.tracking_state
        view = state.view
        intrinsics = depth_intrinsics_of(view)

        # The observation was captured under the pose held at frame start.
        old_pose = np.array(tracking_state.pose, dtype=float)

        every_frame = settings.relocalise_every_frame
        skip = settings.relocaliser_training_skip
        if every_frame:
            perform_training = True
        elif tracking_state.result is TrackingQuality.GOOD:
            if skip == 0:
                perform_training = True
            else:
                perform_training = self._relocaliser_training_count % skip == 0
                self._relocaliser_training_count += 1
        else:
            perform_training = False

        # Training and bookkeeping never both run in one frame.
        if not perform_training:
            relocaliser.update()
            report.updated = True

        if every_frame or tracking_state.result is TrackingQuality.FAILED:
            results = relocaliser.relocalise(view.rgb, view.depth, intrinsics)
            report.relocalised = True
            report.relocalisation_candidates = len(results)
            if not results:
                report.notes.append("relocalisation produced no candidates")
            else:
                best = results[0]
                tracking_state.set_pose(best.pose)
                tracking_state.result = (
                    TrackingQuality.GOOD if best.quality is RelocalisationQuality.GOOD else TrackingQuality.POOR
                )

        if perform_training:
            relocaliser.train(view.rgb, view.depth, intrinsics, old_pose)
            report.trained = True

        # Evaluation mode: only whether relocalisation would have succeeded matters.
        if every_frame:
            tracking_state.set_pose(old_pose)
            tracking_state.result = TrackingQuality.GOOD

    def _emit(self, report: FrameReport) -> None:
        self.last_frame_report = report
        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("Frame report: %s", report.to_json())

    # -------------------------------------------------------------------------
    # Scene lifecycle
    # -------------------------------------------------------------------------

    def reset_scene(self) -> None:
        self._engine.reset_scene(self.mapping_mode is MappingMode.VOXELS_AND_SURFELS)
        self.slam_state.tracking_state.reset()
        relocaliser = self.context.get_relocaliser(self.scene_id)
        if relocaliser is not None:
            relocaliser.reset()
        self._relocaliser_training_count = 0
        self._fused_frames_count = 0
        self._fusion_enabled = True

    def load_models(self, input_dir: Union[str, Path]) -> None:
        """Load map and relocaliser; tracking starts FAILED with fusion disabled."""
        input_dir = str(input_dir)
        self.reset_scene()
        self._engine.load_from_directory(input_dir)
        relocaliser = self.context.get_relocaliser(self.scene_id)
        if relocaliser is not None:
            relocaliser.load_from_disk(input_dir)

        # Give the scene a view so it can be rendered before any frame arrives.
        state = self.slam_state
        state.clear_input_images()
        state.view = self._engine.update_view(
            state.view, state.input_rgb_image, state.input_raw_depth_image, self._image_source.get_calib(), False
        )

        # The camera position is unknown after loading.
        state.tracking_state.result = TrackingQuality.FAILED
        self.set_fusion_enabled(False)
        _logger.info("Loaded models for scene '%s' from %s", self.scene_id, input_dir)

    def save_models(self, output_dir: Union[str, Path]) -> None:
        state = self.slam_state
        if state.view is None:
            return

        output_dir = str(output_dir)
        os.makedirs(output_dir, exist_ok=True)
        write_rgbd_calib(os.path.join(output_dir, constants.CALIB_FILENAME), state.view.calib)

        settings = self.context.settings
        with open(os.path.join(output_dir, constants.SETTINGS_FILENAME), "w", encoding="utf-8") as f:
            yaml.safe_dump(
                {
                    "relocaliser_type": settings.relocaliser_type,
                    "scene_params": settings.scene_params.model_dump(),
                },
                f,
                sort_keys=False,
            )

        self._engine.save_to_directory(output_dir)
        relocaliser = self.context.get_relocaliser(self.scene_id)
        if relocaliser is not None:
            relocaliser.save_to_disk(output_dir)
        _logger.info("Saved models for scene '%s' to %s", self.scene_id, output_dir)

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def _setup_tracker(self, tracker_config, rgb_size, depth_size) -> TrackerTree:
        build_context = TrackerBuildContext(
            scene_id=self.scene_id,
            track_surfels=self.tracking_mode is TrackingMode.SURFELS,
            rgb_image_size=tuple(rgb_size),
            depth_image_size=tuple(depth_size),
            settings=self.context.settings,
            mapping_server=self.context.mapping_server,
        )
        factory = self.context.tracker_factory
        if _is_config_path(tracker_config):
            return factory.make_tracker_from_file(tracker_config, build_context)
        return factory.make_tracker_from_string(str(tracker_config), build_context)


def _is_config_path(tracker_config: Union[str, Path]) -> bool:
    if isinstance(tracker_config, Path):
        return True
    text = tracker_config.strip()
    return "\n" not in text and not text.startswith("<") and os.path.isfile(text)
