"""
Tests for parameter models, settings loading and frame reports.
"""

import json
import os

import numpy as np
import pytest
from pydantic import ValidationError

from conftest import CONFIG_DIR
from reloc_slam.common import constants
from reloc_slam.common.frame_report import FrameReport
from reloc_slam.common.param_models import (
    FailureMode,
    ForestRelocaliserParams,
    SceneParams,
    SLAMParams,
    load_slam_params,
)


class TestSLAMParams:
    def test_defaults(self):
        params = SLAMParams()
        assert params.behaviour_on_failure is FailureMode.RELOCALISE
        assert params.finish_training_enabled
        assert params.initial_frames_to_fuse == constants.INITIAL_FRAMES_TO_FUSE
        assert params.relocaliser.max_modes == constants.FOREST_MAX_MODES
        assert params.relocaliser.features.descriptor_length == constants.FEATURE_N_DEPTH + constants.FEATURE_N_RGB

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            SLAMParams(relocalise_evry_frame=True)

    def test_assignment_is_validated(self):
        params = SLAMParams()
        with pytest.raises(ValidationError):
            params.relocaliser_training_skip = -1

    def test_failure_mode_from_string(self):
        assert SLAMParams(behaviour_on_failure="stop_integration").behaviour_on_failure is FailureMode.STOP_INTEGRATION

    def test_backend_restricted(self):
        with pytest.raises(ValidationError):
            ForestRelocaliserParams(backend="cuda")

    def test_frustum_order(self):
        with pytest.raises(ValidationError):
            SceneParams(view_frustum_min=2.0, view_frustum_max=1.0)


class TestLoadSettings:
    def test_base_config_matches_defaults(self):
        params = load_slam_params(os.path.join(CONFIG_DIR, "reloc_slam_base.yaml"))
        assert params == SLAMParams()

    def test_flat_mapping(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("behaviour_on_failure: ignore\nscene_params:\n  voxel_size: 0.01\n")
        params = load_slam_params(path)
        assert params.behaviour_on_failure is FailureMode.IGNORE
        assert params.scene_params.voxel_size == 0.01

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_slam_params(path) == SLAMParams()

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError):
            load_slam_params(path)


class TestFrameReport:
    def test_json(self):
        report = FrameReport(
            scene_id="World",
            status="active",
            frame_index=3,
            raw_quality="failed",
            final_quality="good",
            relocalised=True,
            pose=np.arange(6, dtype=float),
        )
        data = json.loads(report.to_json())
        assert data["scene_id"] == "World"
        assert data["pose"] == [0.0, 1.0, 2.0, 3.0, 4.0, 5.0]
        assert data["relocalised"] is True
        assert data["fused"] is False


class TestCommonExports:
    def test_package_reexports(self):
        import reloc_slam.common as common

        assert common.SLAMParams is SLAMParams
        assert common.FrameReport is FrameReport
        assert common.load_slam_params is load_slam_params
        assert common.constants.FOREST_MAX_MODES == constants.FOREST_MAX_MODES
