"""Relocaliser construction by type name."""

from __future__ import annotations

import logging
from typing import Optional

from reloc_slam.common.param_models import ForestRelocaliserParams
from reloc_slam.relocalisation.forest_relocaliser import ForestRelocaliser
from reloc_slam.relocalisation.relocaliser import Relocaliser

_logger = logging.getLogger(__name__)

RELOCALISER_TYPES = ("forest", "none")


def make_relocaliser(
    relocaliser_type: str, params: Optional[ForestRelocaliserParams] = None
) -> Optional[Relocaliser]:
    """
    Build a relocaliser.

    "forest" gives a ForestRelocaliser (loading params.forest_path when set);
    "none" gives None, and the state machine then never relocalises.
    """
    if relocaliser_type == "none":
        return None
    if relocaliser_type == "forest":
        relocaliser = ForestRelocaliser(params)
        if relocaliser.params.forest_path:
            relocaliser.load_forest(relocaliser.params.forest_path)
        else:
            _logger.warning("Forest relocaliser created without a forest; relocalisation will find nothing")
        return relocaliser
    raise ValueError(f"unknown relocaliser type: '{relocaliser_type}' (expected one of {RELOCALISER_TYPES})")
