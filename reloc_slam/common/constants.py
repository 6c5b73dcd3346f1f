"""
reloc_slam constants.

=============================================================================
CONVENTION QUICK REFERENCE
=============================================================================

POSES:
  Internal 6D: [trans(3), rotvec(3)] = [x, y, z, rx, ry, rz]
  A pose is the world-to-camera transform M: p_cam = R @ p_world + t

POINT SETS:
  Rigid-transform estimation takes (3, N) matrices whose COLUMNS are points.

QUATERNIONS:
  (x, y, z, w) ordering everywhere (scalar last).

DEPTH:
  Raw depth is uint16 in sensor units; views carry float depth in metres.
  Invalid depth is <= 0 (masked pixels are set to DEPTH_MASKED_VALUE).
=============================================================================
"""

# =============================================================================
# FOREST RELOCALISATION
# =============================================================================

# Maximum number of merged modes returned per pixel by the forest kernel.
FOREST_MAX_MODES = 10

# Kernel execution back-end: "jax" (vmap over pixels/trees) or "numpy" (sequential).
FOREST_BACKEND_DEFAULT = "jax"

# Pose hypotheses generated per relocalisation call (voting is O(n^2)).
RELOC_N_HYPOTHESES = 64
RELOC_MAX_HYPOTHESIS_ATTEMPTS_FACTOR = 20
RELOC_MAX_CANDIDATES = 3

# Similarity thresholds for consensus voting.
RELOC_ROTATION_THRESHOLD_RAD = 0.349  # ~20 degrees
RELOC_TRANSLATION_THRESHOLD_M = 0.05

# Candidate quality: GOOD iff inlier fraction >= this.
RELOC_GOOD_INLIER_FRACTION = 0.5

# Triples closer than this (metres) are degenerate for rigid estimation.
RELOC_MIN_POINT_SEPARATION_M = 0.05
# Max disagreement of pairwise camera/world distances within a triple (metres).
RELOC_DISTANCE_TOLERANCE_M = 0.05

RELOC_RNG_SEED = 42

# Relocaliser state file written beneath the model directory.
RELOCALISER_FILENAME = "forest_relocaliser.npz"

# =============================================================================
# PATCH FEATURES
# =============================================================================

FEATURE_N_DEPTH = 128
FEATURE_N_RGB = 128
# Offsets are in pixel-metres: divided by the centre depth before sampling.
FEATURE_OFFSET_RADIUS = 130.0
FEATURE_STRIDE_DEFAULT = 4
FEATURE_SEED = 42

# =============================================================================
# STATE MACHINE
# =============================================================================

# POOR frames are still fused until this many frames have been fused.
INITIAL_FRAMES_TO_FUSE = 50

# Depth value written into masked-out pixels (invalid depth).
DEPTH_MASKED_VALUE = -1.0

# Raw depth units to metres.
DEPTH_SCALE_DEFAULT = 0.001

# =============================================================================
# SCENE (volumetric) PARAMETERS
# =============================================================================

SCENE_MU_DEFAULT = 0.02  # truncation band (m)
SCENE_VIEW_FRUSTUM_MIN_DEFAULT = 0.2  # m
SCENE_VIEW_FRUSTUM_MAX_DEFAULT = 3.0  # m
SCENE_VOXEL_SIZE_DEFAULT = 0.005  # m

# =============================================================================
# PERSISTED LAYOUT
# =============================================================================

CALIB_FILENAME = "calib.txt"
SETTINGS_FILENAME = "settings.yaml"

# =============================================================================
# TRACKER CONFIGURATION
# =============================================================================

TRACKER_CONFIG_EXTENSIONS = (".xml", ".yaml", ".yml")
