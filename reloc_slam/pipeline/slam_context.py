"""
Shared context for the SLAM components of one process.

Holds the settings, the tracker factory, the optional mapping server and the
per-scene registries. Components receive the context by reference and look up
their own scene's entries; absent optional collaborators are None.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from reloc_slam.common.param_models import SLAMParams
from reloc_slam.pipeline.interfaces import FiducialDetector, MappingClient, MappingServer
from reloc_slam.pipeline.slam_state import SLAMState
from reloc_slam.relocalisation.relocaliser import Relocaliser
from reloc_slam.trackers.factory import TrackerFactory


class SLAMContext:
    def __init__(
        self,
        settings: Optional[SLAMParams] = None,
        tracker_factory: Optional[TrackerFactory] = None,
        mapping_server: Optional[MappingServer] = None,
    ):
        self.settings = settings if settings is not None else SLAMParams()
        if tracker_factory is None:
            tracker_factory = TrackerFactory(self.settings.tracker_config_dir)
        self.tracker_factory = tracker_factory
        self.mapping_server = mapping_server
        self._slam_states: Dict[str, SLAMState] = {}
        self._relocalisers: Dict[str, Optional[Relocaliser]] = {}
        self._mapping_clients: Dict[str, Optional[MappingClient]] = {}
        self._fiducial_detectors: Dict[str, Optional[FiducialDetector]] = {}
        self._scene_ids: List[str] = []

    # Scenes -------------------------------------------------------------------

    @property
    def scene_ids(self) -> List[str]:
        return list(self._scene_ids)

    def add_scene_id(self, scene_id: str) -> None:
        if scene_id not in self._scene_ids:
            self._scene_ids.append(scene_id)

    # SLAM state ---------------------------------------------------------------

    def get_slam_state(self, scene_id: str) -> SLAMState:
        try:
            return self._slam_states[scene_id]
        except KeyError:
            raise KeyError(f"no SLAM state for scene '{scene_id}'") from None

    def set_slam_state(self, scene_id: str, state: SLAMState) -> None:
        self._slam_states[scene_id] = state

    # Optional per-scene collaborators -----------------------------------------

    def get_relocaliser(self, scene_id: str) -> Optional[Relocaliser]:
        return self._relocalisers.get(scene_id)

    def set_relocaliser(self, scene_id: str, relocaliser: Optional[Relocaliser]) -> None:
        self._relocalisers[scene_id] = relocaliser

    def get_mapping_client(self, scene_id: str) -> Optional[MappingClient]:
        return self._mapping_clients.get(scene_id)

    def set_mapping_client(self, scene_id: str, client: Optional[MappingClient]) -> None:
        self._mapping_clients[scene_id] = client

    def get_fiducial_detector(self, scene_id: str) -> Optional[FiducialDetector]:
        return self._fiducial_detectors.get(scene_id)

    def set_fiducial_detector(self, scene_id: str, detector: Optional[FiducialDetector]) -> None:
        self._fiducial_detectors[scene_id] = detector

    def reset(self) -> None:
        """Forget every scene."""
        self._slam_states.clear()
        self._relocalisers.clear()
        self._mapping_clients.clear()
        self._fiducial_detectors.clear()
        self._scene_ids.clear()

    def __repr__(self) -> str:
        return f"SLAMContext(scenes={self._scene_ids})"
