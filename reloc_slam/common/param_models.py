"""Pydantic parameter models for reloc_slam components."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from reloc_slam.common import constants


class FailureMode(str, Enum):
    """What the state machine does with poor or failed tracking."""

    RELOCALISE = "relocalise"
    STOP_INTEGRATION = "stop_integration"
    IGNORE = "ignore"


class _Params(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class SceneParams(_Params):
    """Volumetric parameters persisted alongside saved models."""

    mu: float = Field(constants.SCENE_MU_DEFAULT, gt=0.0)
    view_frustum_min: float = Field(constants.SCENE_VIEW_FRUSTUM_MIN_DEFAULT, gt=0.0)
    view_frustum_max: float = Field(constants.SCENE_VIEW_FRUSTUM_MAX_DEFAULT, gt=0.0)
    voxel_size: float = Field(constants.SCENE_VOXEL_SIZE_DEFAULT, gt=0.0)

    @model_validator(mode="after")
    def _check_frustum(self) -> "SceneParams":
        if self.view_frustum_max <= self.view_frustum_min:
            raise ValueError(
                f"view_frustum_max ({self.view_frustum_max}) must exceed "
                f"view_frustum_min ({self.view_frustum_min})"
            )
        return self


class PatchFeatureParams(_Params):
    n_depth_features: int = Field(constants.FEATURE_N_DEPTH, ge=0)
    n_rgb_features: int = Field(constants.FEATURE_N_RGB, ge=0)
    offset_radius: float = Field(constants.FEATURE_OFFSET_RADIUS, gt=0.0)
    stride: int = Field(constants.FEATURE_STRIDE_DEFAULT, ge=1)
    seed: int = constants.FEATURE_SEED

    @property
    def descriptor_length(self) -> int:
        return self.n_depth_features + self.n_rgb_features


class ForestRelocaliserParams(_Params):
    forest_path: Optional[str] = None
    backend: str = Field(constants.FOREST_BACKEND_DEFAULT, pattern="^(jax|numpy)$")
    max_modes: int = Field(constants.FOREST_MAX_MODES, ge=1)

    n_hypotheses: int = Field(constants.RELOC_N_HYPOTHESES, ge=1)
    max_candidates: int = Field(constants.RELOC_MAX_CANDIDATES, ge=1)
    rotation_threshold: float = Field(constants.RELOC_ROTATION_THRESHOLD_RAD, ge=0.0)
    translation_threshold: float = Field(constants.RELOC_TRANSLATION_THRESHOLD_M, ge=0.0)
    good_inlier_fraction: float = Field(constants.RELOC_GOOD_INLIER_FRACTION, gt=0.0, le=1.0)
    min_point_separation: float = Field(constants.RELOC_MIN_POINT_SEPARATION_M, ge=0.0)
    distance_tolerance: float = Field(constants.RELOC_DISTANCE_TOLERANCE_M, gt=0.0)
    seed: int = constants.RELOC_RNG_SEED

    features: PatchFeatureParams = Field(default_factory=PatchFeatureParams)


class SLAMParams(_Params):
    """Settings shared by every scene of a SLAM context."""

    behaviour_on_failure: FailureMode = FailureMode.RELOCALISE
    relocaliser_type: str = "forest"
    finish_training_enabled: bool = True
    relocalise_every_frame: bool = False
    relocaliser_training_skip: int = Field(0, ge=0)
    initial_frames_to_fuse: int = Field(constants.INITIAL_FRAMES_TO_FUSE, ge=0)
    tracker_config_dir: Optional[str] = None

    scene_params: SceneParams = Field(default_factory=SceneParams)
    relocaliser: ForestRelocaliserParams = Field(default_factory=ForestRelocaliserParams)


def load_slam_params(path: Union[str, Path]) -> SLAMParams:
    """Load SLAMParams from a YAML file (top-level mapping, optionally under 'reloc_slam')."""
    import yaml

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"settings file must hold a mapping (from {path})")
    if "reloc_slam" in data:
        data = data["reloc_slam"] or {}
    return SLAMParams.model_validate(data)
