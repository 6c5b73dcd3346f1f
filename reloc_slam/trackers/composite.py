"""Composite trackers: sequential fallback and refinement chains."""

from __future__ import annotations

from enum import Enum
from typing import Any, Sequence

from reloc_slam.trackers.base import Tracker, TrackingQuality, TrackingState


class CompositePolicy(str, Enum):
    # Try children in order from the same starting pose; keep the first that does not fail.
    SEQUENTIAL = "sequential"
    # Each child starts from the previous child's output; stop at the first failure.
    REFINE = "refine"


class CompositeTracker(Tracker):
    def __init__(self, trackers: Sequence[Tracker], policy: CompositePolicy = CompositePolicy.SEQUENTIAL):
        if len(trackers) == 0:
            raise ValueError("a composite tracker needs at least one child")
        self.trackers = list(trackers)
        self.policy = CompositePolicy(policy)

    def track(self, tracking_state: TrackingState, view: Any) -> None:
        if self.policy is CompositePolicy.SEQUENTIAL:
            self._track_sequential(tracking_state, view)
        else:
            self._track_refine(tracking_state, view)

    def _track_sequential(self, tracking_state: TrackingState, view: Any) -> None:
        start = tracking_state.copy()
        for tracker in self.trackers:
            tracking_state.set_pose(start.pose)
            tracking_state.result = start.result
            tracker.track(tracking_state, view)
            if tracking_state.result is not TrackingQuality.FAILED:
                return
        tracking_state.set_pose(start.pose)
        tracking_state.result = TrackingQuality.FAILED

    def _track_refine(self, tracking_state: TrackingState, view: Any) -> None:
        for tracker in self.trackers:
            tracker.track(tracking_state, view)
            if tracking_state.result is TrackingQuality.FAILED:
                return

    def requires_point_cloud_rendering(self) -> bool:
        return any(t.requires_point_cloud_rendering() for t in self.trackers)

    def can_keep_tracking(self) -> bool:
        if self.policy is CompositePolicy.SEQUENTIAL:
            return any(t.can_keep_tracking() for t in self.trackers)
        return all(t.can_keep_tracking() for t in self.trackers)

    def update_initial_pose(self, tracking_state: TrackingState) -> None:
        for tracker in self.trackers:
            tracker.update_initial_pose(tracking_state)
