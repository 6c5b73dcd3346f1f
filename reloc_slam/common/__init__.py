"""
Shared pieces of reloc_slam: constants, settings models, frame reports and
(in geometry/) poses, dual quaternions and consensus voting.

JAX is only reached through jax_init, which is never imported from here.
"""

from reloc_slam.common import constants
from reloc_slam.common.frame_report import FrameReport
from reloc_slam.common.param_models import FailureMode, SLAMParams, load_slam_params

__all__ = [
    "FailureMode",
    "FrameReport",
    "SLAMParams",
    "constants",
    "load_slam_params",
]
