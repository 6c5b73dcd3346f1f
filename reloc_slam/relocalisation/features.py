"""
RGB-D patch features for forest evaluation.

Pixels are sampled on a regular grid (stride) and kept when their depth is
valid (> 0). For each kept pixel p with depth d(p):

- keypoint: camera-space point back-projected through the depth intrinsics
- depth features:  D(p + o_i / d(p)) - d(p)
- colour features: C(p + o_j / d(p))[c_j] - C(p)[c_j]

Offsets are divided by depth so the features are roughly invariant to the
distance of the surface. Samples falling outside the image, or on invalid
depth, contribute 0. Offsets and channels are drawn once from a seeded
generator, so a calculator produces identical descriptors for identical input.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from reloc_slam.common.param_models import PatchFeatureParams


@dataclass(frozen=True)
class PatchFeatures:
    pixels: np.ndarray  # (P, 2) int, (x, y)
    keypoints: np.ndarray  # (P, 3) camera-space points
    descriptors: np.ndarray  # (P, D)

    @property
    def n_keypoints(self) -> int:
        return int(self.pixels.shape[0])


def back_project(xs: np.ndarray, ys: np.ndarray, depth: np.ndarray, intrinsics: Sequence[float]) -> np.ndarray:
    """Pixels (x, y) with depth d -> (N, 3) camera-space points."""
    fx, fy, cx, cy = (float(v) for v in intrinsics)
    return np.stack([(xs - cx) * depth / fx, (ys - cy) * depth / fy, depth], axis=1)


class PatchFeatureCalculator:
    def __init__(self, params: Optional[PatchFeatureParams] = None):
        self.params = params if params is not None else PatchFeatureParams()
        rng = np.random.default_rng(self.params.seed)
        r = self.params.offset_radius
        self.depth_offsets = rng.uniform(-r, r, size=(self.params.n_depth_features, 2))
        self.rgb_offsets = rng.uniform(-r, r, size=(self.params.n_rgb_features, 2))
        self.rgb_channels = rng.integers(0, 3, size=self.params.n_rgb_features)

    @property
    def descriptor_length(self) -> int:
        return self.params.descriptor_length

    def compute(self, colour: np.ndarray, depth: np.ndarray, intrinsics: Sequence[float]) -> PatchFeatures:
        """
        Compute features for the valid grid pixels of one RGB-D frame.

        Args:
            colour: (H, W, 3) colour image
            depth: (H, W) depth in metres, <= 0 where invalid
            intrinsics: depth camera (fx, fy, cx, cy)
        """
        depth = np.asarray(depth, dtype=np.float64)
        colour = np.asarray(colour, dtype=np.float64)
        if depth.ndim != 2:
            raise ValueError(f"depth must be (H, W), got shape {depth.shape}")
        H, W = depth.shape
        if colour.shape != (H, W, 3):
            raise ValueError(f"colour must be ({H}, {W}, 3), got shape {colour.shape}")
        if len(intrinsics) != 4:
            raise ValueError(f"intrinsics must be (fx, fy, cx, cy), got {intrinsics}")

        stride = self.params.stride
        ys, xs = np.mgrid[0:H:stride, 0:W:stride]
        ys = ys.reshape(-1)
        xs = xs.reshape(-1)
        d = depth[ys, xs]
        keep = np.isfinite(d) & (d > 0.0)
        xs, ys, d = xs[keep], ys[keep], d[keep]

        sampled_depth, inside = self._sample(depth, xs, ys, d, self.depth_offsets)
        valid_depth = inside & np.isfinite(sampled_depth) & (sampled_depth > 0.0)
        depth_features = np.where(valid_depth, sampled_depth - d[:, None], 0.0)

        channels = self.rgb_channels[None, :]
        sampled_colour, inside = self._sample(colour, xs, ys, d, self.rgb_offsets, channels)
        centre_colour = colour[ys[:, None], xs[:, None], channels]
        rgb_features = np.where(inside, sampled_colour - centre_colour, 0.0)

        descriptors = np.concatenate([depth_features, rgb_features], axis=1)
        return PatchFeatures(
            pixels=np.stack([xs, ys], axis=1).astype(np.int64),
            keypoints=back_project(xs.astype(np.float64), ys.astype(np.float64), d, intrinsics),
            descriptors=descriptors,
        )

    @staticmethod
    def _sample(image, xs, ys, d, offsets, channels=None):
        """Read image at p + offset / d(p); returns (values, inside) of shape (P, F)."""
        H, W = image.shape[:2]
        sx = np.rint(xs[:, None] + offsets[None, :, 0] / d[:, None]).astype(np.int64)
        sy = np.rint(ys[:, None] + offsets[None, :, 1] / d[:, None]).astype(np.int64)
        inside = (sx >= 0) & (sx < W) & (sy >= 0) & (sy < H)
        sx = np.clip(sx, 0, W - 1)
        sy = np.clip(sy, 0, H - 1)
        if channels is None:
            return image[sy, sx], inside
        return image[sy, sx, channels], inside
