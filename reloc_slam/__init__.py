"""
reloc_slam: tracking and relocalisation core for dense RGB-D reconstruction.

Subpackages:
- common/: constants, parameter models, frame reports, SE(3) and consensus geometry
- relocalisation/: regression-forest kernel, patch features, forest relocaliser
- trackers/: tracker runtime (primitive, composite, fallible) and the tracker factory
- pipeline/: per-scene SLAM state, scene registry and the per-frame state machine
"""

__version__ = "0.1.0"
