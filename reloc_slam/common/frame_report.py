"""
Per-frame decision report for the tracking/relocalisation state machine.

Every processed frame yields one FrameReport recording what the state machine
decided: the raw and final tracking quality, whether the relocaliser was
trained, updated or queried, whether the frame was fused, and whether the pose
was rolled back. Idle/terminated calls also produce a report (status only).
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Optional

import numpy as np


def _json_safe(obj):
    """Convert common scientific types to JSON-serializable Python types."""
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, (list, tuple)):
        return [_json_safe(x) for x in obj]
    if isinstance(obj, dict):
        return {str(k): _json_safe(v) for k, v in obj.items()}
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.generic):
        return obj.item()
    value = getattr(obj, "value", None)
    if isinstance(value, (str, int)):
        # Enums
        return value
    return repr(obj)


@dataclass
class FrameReport:
    """
    Decision record for one call of SLAMComponent.process_frame().

    Attributes:
        scene_id: Scene the frame belongs to
        status: Input status after the call ("active", "idle", "terminated")
        frame_index: Index of the processed frame (None when nothing was processed)
        pose_source: "tracker" or "mirror:<scene>"
        raw_quality: Quality reported by the tracker (before the failure policy)
        final_quality: Quality after policy and relocalisation
        trained: Relocaliser.train() was called
        updated: Relocaliser.update() was called
        relocalised: Relocaliser.relocalise() was called
        relocalisation_candidates: Number of candidates returned
        fused: The frame was integrated into the map
        pose_restored: The pose was rolled back to its value at frame start
        lost_tracking: The fallible tracker reported lost tracking
        finished_training: finish_training() was sent on this call
        pose: Pose after processing
    """
    scene_id: str
    status: str
    frame_index: Optional[int] = None
    pose_source: Optional[str] = None
    raw_quality: Optional[str] = None
    final_quality: Optional[str] = None
    trained: bool = False
    updated: bool = False
    relocalised: bool = False
    relocalisation_candidates: int = 0
    fused: bool = False
    pose_restored: bool = False
    lost_tracking: bool = False
    finished_training: bool = False
    pose: Optional[np.ndarray] = None
    notes: list[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "scene_id": self.scene_id,
            "status": self.status,
            "frame_index": self.frame_index,
            "pose_source": self.pose_source,
            "raw_quality": self.raw_quality,
            "final_quality": self.final_quality,
            "trained": self.trained,
            "updated": self.updated,
            "relocalised": self.relocalised,
            "relocalisation_candidates": self.relocalisation_candidates,
            "fused": self.fused,
            "pose_restored": self.pose_restored,
            "lost_tracking": self.lost_tracking,
            "finished_training": self.finished_training,
            "pose": _json_safe(self.pose),
            "notes": list(self.notes),
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)
