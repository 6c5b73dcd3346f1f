"""
Relocaliser interface.

A relocaliser recovers an absolute camera pose from a single RGB-D frame,
independently of the previous frame. Candidates come back ranked best first.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Sequence, Union

import numpy as np


class RelocalisationQuality(Enum):
    GOOD = "good"
    POOR = "poor"


@dataclass(frozen=True)
class RelocalisationResult:
    pose: np.ndarray  # world-to-camera 6-vector
    quality: RelocalisationQuality
    score: float = 0.0


class Relocaliser(ABC):
    @abstractmethod
    def relocalise(
        self, colour: np.ndarray, depth: np.ndarray, intrinsics: Sequence[float]
    ) -> List[RelocalisationResult]:
        """Ranked pose candidates for one frame; empty when none could be found."""

    @abstractmethod
    def train(self, colour: np.ndarray, depth: np.ndarray, intrinsics: Sequence[float], pose: np.ndarray) -> None:
        """Use a frame whose world-to-camera pose is known."""

    def update(self) -> None:
        """Lightweight per-frame hook, called on frames that are not trained on."""

    def finish_training(self) -> None:
        """No further train/update calls will be made."""

    @abstractmethod
    def reset(self) -> None:
        ...

    @abstractmethod
    def save_to_disk(self, output_dir: Union[str, Path]) -> None:
        ...

    @abstractmethod
    def load_from_disk(self, input_dir: Union[str, Path]) -> None:
        ...
