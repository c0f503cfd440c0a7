"""
SkewAlign - Numeric Constants

Simple numeric constants with ZERO internal imports to avoid circular dependencies.
Configuration dataclasses use these as their defaults.
"""

from typing import Final

# ============================================================================
# Rendering
# ============================================================================

DEFAULT_RENDER_SCALE: Final[float] = 2.0  # relative to PDF points (72 dpi)
DEFAULT_LANGUAGES: Final[tuple[str, ...]] = ("latin",)
PDF_POINTS_PER_INCH: Final[float] = 72.0

# ============================================================================
# Binarization
# ============================================================================

HISTOGRAM_BINS: Final[int] = 256
DEFAULT_THRESHOLD: Final[int] = 128
INK_VALUE: Final[int] = 255
BACKGROUND_VALUE: Final[int] = 0
MIDPOINT_THRESHOLD: Final[int] = 128  # re-binarization after resampling

# ============================================================================
# Projection Angle Search (degrees)
# ============================================================================

DEFAULT_ANGLE_RANGE: Final[float] = 8.0
DEFAULT_COARSE_STEP: Final[float] = 0.5
DEFAULT_FINE_STEP: Final[float] = 0.1
DEFAULT_FINE_SPAN: Final[float] = 1.0
DEFAULT_PADDING_FRACTION: Final[float] = 0.10
DEFAULT_BAND_PADDING_FRACTION: Final[float] = 0.10

# ============================================================================
# Band Sampling
# ============================================================================

DEFAULT_BAND_COUNT: Final[int] = 8
DEFAULT_MIN_INK_SAMPLES: Final[int] = 200
DEFAULT_BAND_SAMPLE_STRIDE: Final[int] = 4
DEFAULT_OUTLIER_MAX_DEVIATION: Final[float] = 2.0
DEFAULT_MIN_NON_EMPTY_BANDS: Final[int] = 3
DEFAULT_NEAR_ZERO: Final[float] = 0.15
DEFAULT_BAND_MIN_SIGNIFICANCE: Final[float] = 0.3

# ============================================================================
# Skew Estimation Clamps
# ============================================================================

DEFAULT_MIN_DESKEW: Final[float] = 0.1
DEFAULT_MAX_DESKEW: Final[float] = 10.0
DEFAULT_MIN_INK_PIXELS: Final[int] = 500
DEFAULT_MAX_WORKING_SIDE: Final[int] = 1600
MAX_LINE_ANGLE_DEGREES: Final[float] = 45.0

# ============================================================================
# Geometry-derived Fallback
# ============================================================================

DEFAULT_GEOMETRY_MIN_SAMPLES: Final[int] = 3
DEFAULT_GEOMETRY_MIN_STD: Final[float] = 0.01

# ============================================================================
# Per-line Angle Measurement
# ============================================================================

DEFAULT_PAIR_MIN_DX: Final[float] = 0.01  # normalized width
DEFAULT_PAIR_MAX_WEIGHT: Final[float] = 0.25  # normalized width
DEFAULT_AXIS_ALIGNED_TOLERANCE: Final[float] = 0.05  # degrees
MIN_ROBUST_POINTS: Final[int] = 3

# ============================================================================
# Geometry Reconciliation
# ============================================================================

DEFAULT_UNMATCHED_COST: Final[float] = 0.72
MATCH_WEIGHT_IOU: Final[float] = 0.45
MATCH_WEIGHT_OVERLAP: Final[float] = 0.35
MATCH_WEIGHT_CENTER: Final[float] = 0.20
DEFAULT_MIN_MATCH_IOU: Final[float] = 0.01
DEFAULT_MIN_VERTICAL_OVERLAP: Final[float] = 0.20
DEFAULT_MAX_CENTER_DISTANCE: Final[float] = 0.18
REJECTED_MATCH_COST: Final[float] = 1.0
LOCAL_SMOOTHING_KERNEL: Final[tuple[float, float, float]] = (0.25, 0.5, 0.25)

# ============================================================================
# Quad Transformation
# ============================================================================

DEFAULT_MIN_ROTATION_DELTA: Final[float] = 0.2  # degrees

# ============================================================================
# Recognition Retry
# ============================================================================

DEFAULT_RECOGNITION_RETRIES: Final[int] = 2
DEFAULT_RECOGNITION_RETRY_SCALE: Final[float] = 0.7

# ============================================================================
# PDF Font Sizing
# ============================================================================

FONT_SIZE_SCALE_FACTOR: Final[float] = 0.85
MIN_FONT_SIZE: Final[float] = 4.0
MAX_FONT_SIZE: Final[float] = 72.0
HELVETICA_DESCENT: Final[float] = 0.207

# ============================================================================
# Subprocess Timeouts (seconds)
# ============================================================================

PDFTOPPM_TIMEOUT: Final[int] = 120
