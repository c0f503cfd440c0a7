"""
Deskew Configuration.

This module contains the configuration dataclass shared by every stage of
skew estimation and geometry reconciliation. It is data only: every
function takes the config explicitly, nothing reads a global.
"""

import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any

from skewalign.constants import (
    DEFAULT_ANGLE_RANGE,
    DEFAULT_AXIS_ALIGNED_TOLERANCE,
    DEFAULT_BAND_COUNT,
    DEFAULT_BAND_MIN_SIGNIFICANCE,
    DEFAULT_BAND_PADDING_FRACTION,
    DEFAULT_BAND_SAMPLE_STRIDE,
    DEFAULT_COARSE_STEP,
    DEFAULT_FINE_SPAN,
    DEFAULT_FINE_STEP,
    DEFAULT_GEOMETRY_MIN_SAMPLES,
    DEFAULT_GEOMETRY_MIN_STD,
    DEFAULT_LANGUAGES,
    DEFAULT_MAX_CENTER_DISTANCE,
    DEFAULT_MAX_DESKEW,
    DEFAULT_MAX_WORKING_SIDE,
    DEFAULT_MIN_DESKEW,
    DEFAULT_MIN_INK_PIXELS,
    DEFAULT_MIN_INK_SAMPLES,
    DEFAULT_MIN_MATCH_IOU,
    DEFAULT_MIN_NON_EMPTY_BANDS,
    DEFAULT_MIN_ROTATION_DELTA,
    DEFAULT_MIN_VERTICAL_OVERLAP,
    DEFAULT_NEAR_ZERO,
    DEFAULT_OUTLIER_MAX_DEVIATION,
    DEFAULT_PADDING_FRACTION,
    DEFAULT_PAIR_MAX_WEIGHT,
    DEFAULT_PAIR_MIN_DX,
    DEFAULT_RECOGNITION_RETRIES,
    DEFAULT_RECOGNITION_RETRY_SCALE,
    DEFAULT_RENDER_SCALE,
    DEFAULT_THRESHOLD,
    DEFAULT_UNMATCHED_COST,
)
from skewalign.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class DeskewConfig:
    """Configuration for skew estimation and overlay placement.

    Angles are in degrees. Normalized distances are fractions of the page.

    Attributes:
        languages: Recognition languages passed to the text recognizer
        render_scale: Render scale relative to PDF points (72 dpi)
        band_count: Number of horizontal bands for local estimation
        angle_range_degrees: Coarse search covers [-range, +range]
        coarse_step_degrees: Step of the coarse projection pass
        fine_step_degrees: Step of the refinement pass
        fine_span_degrees: Refinement covers coarse optimum ± span
        padding_fraction: Background padding per side before rotating
        band_padding_fraction: Same, for band sub-masks
        min_deskew_degrees: Smaller estimates are treated as 0
        max_deskew_degrees: Larger estimates are rejected as implausible
        ink_threshold: Fixed binarization threshold (0 = auto Otsu)
        default_threshold: Threshold used when Otsu is degenerate
        min_ink_pixels: Pages with less ink yield no estimate
        min_ink_samples: Bands with less (estimated) ink are empty
        band_sample_stride: Stride of the band ink-density sampling
        outlier_max_deviation_degrees: Band-median outlier rejection limit
        min_non_empty_bands: Bands needed before and after rejection
        enable_band_median: Allow the band-median fallback
        near_zero_degrees: Projection results at or below this consult bands
        band_min_significance_degrees: Band median must reach this to win
        geometry_min_samples: Line angles needed for the geometry fallback
        geometry_min_std_degrees: Line angles flatter than this are noise
        unmatched_cost: Penalty for leaving a recognized line unmatched
        min_match_iou: IoU gate for a candidate/block pair
        min_vertical_overlap: Vertical overlap gate for a pair
        max_center_distance: Center distance gate for a pair
        min_rotation_delta_degrees: Quads are rotated only above this delta
        max_working_side: Downscale images for estimation (0 = never)
        recognition_retries: Extra recognition attempts on failure
        recognition_retry_scale: Downscale factor per retry
        pair_min_dx: Minimum horizontal separation for slope pairs
        pair_max_weight: Weight cap of a slope pair
        axis_aligned_tolerance_degrees: Quads straighter than this are axis-aligned
        skip_pages_with_text: Leave pages that already carry text untouched
        workers: Parallel page workers (0 = auto)
        page_timeout_seconds: Per-page deadline for the angle search (0 = none)
    """

    # === Recognition / Rendering ===
    languages: list[str] = field(default_factory=lambda: list(DEFAULT_LANGUAGES))
    render_scale: float = DEFAULT_RENDER_SCALE

    # === Projection Search ===
    band_count: int = DEFAULT_BAND_COUNT
    angle_range_degrees: float = DEFAULT_ANGLE_RANGE
    coarse_step_degrees: float = DEFAULT_COARSE_STEP
    fine_step_degrees: float = DEFAULT_FINE_STEP
    fine_span_degrees: float = DEFAULT_FINE_SPAN
    padding_fraction: float = DEFAULT_PADDING_FRACTION
    band_padding_fraction: float = DEFAULT_BAND_PADDING_FRACTION

    # === Deskew Clamps ===
    min_deskew_degrees: float = DEFAULT_MIN_DESKEW
    max_deskew_degrees: float = DEFAULT_MAX_DESKEW

    # === Binarization ===
    ink_threshold: int = 0
    default_threshold: int = DEFAULT_THRESHOLD
    min_ink_pixels: int = DEFAULT_MIN_INK_PIXELS

    # === Band Fallback ===
    min_ink_samples: int = DEFAULT_MIN_INK_SAMPLES
    band_sample_stride: int = DEFAULT_BAND_SAMPLE_STRIDE
    outlier_max_deviation_degrees: float = DEFAULT_OUTLIER_MAX_DEVIATION
    min_non_empty_bands: int = DEFAULT_MIN_NON_EMPTY_BANDS
    enable_band_median: bool = True
    near_zero_degrees: float = DEFAULT_NEAR_ZERO
    band_min_significance_degrees: float = DEFAULT_BAND_MIN_SIGNIFICANCE

    # === Geometry Fallback ===
    geometry_min_samples: int = DEFAULT_GEOMETRY_MIN_SAMPLES
    geometry_min_std_degrees: float = DEFAULT_GEOMETRY_MIN_STD

    # === Reconciliation ===
    unmatched_cost: float = DEFAULT_UNMATCHED_COST
    min_match_iou: float = DEFAULT_MIN_MATCH_IOU
    min_vertical_overlap: float = DEFAULT_MIN_VERTICAL_OVERLAP
    max_center_distance: float = DEFAULT_MAX_CENTER_DISTANCE
    min_rotation_delta_degrees: float = DEFAULT_MIN_ROTATION_DELTA

    # === Line Angle Measurement ===
    pair_min_dx: float = DEFAULT_PAIR_MIN_DX
    pair_max_weight: float = DEFAULT_PAIR_MAX_WEIGHT
    axis_aligned_tolerance_degrees: float = DEFAULT_AXIS_ALIGNED_TOLERANCE

    # === Execution ===
    max_working_side: int = DEFAULT_MAX_WORKING_SIDE
    recognition_retries: int = DEFAULT_RECOGNITION_RETRIES
    recognition_retry_scale: float = DEFAULT_RECOGNITION_RETRY_SCALE
    skip_pages_with_text: bool = True
    workers: int = 0
    page_timeout_seconds: float = 0.0

    def validate(self) -> "DeskewConfig":
        """Check value ranges, raising ConfigurationError on the first problem."""
        if self.band_count < 1:
            raise ConfigurationError("band_count", "must be at least 1")
        if self.render_scale <= 0:
            raise ConfigurationError("render_scale", "must be positive")
        for name in ("coarse_step_degrees", "fine_step_degrees"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(name, "must be positive")
        if self.angle_range_degrees < 0 or self.fine_span_degrees < 0:
            raise ConfigurationError("angle_range_degrees", "ranges must not be negative")
        if not 0 <= self.padding_fraction < 1 or not 0 <= self.band_padding_fraction < 1:
            raise ConfigurationError("padding_fraction", "must be in [0, 1)")
        if self.min_deskew_degrees > self.max_deskew_degrees:
            raise ConfigurationError(
                "min_deskew_degrees", "must not exceed max_deskew_degrees"
            )
        if not 0 <= self.ink_threshold <= 255:
            raise ConfigurationError("ink_threshold", "must be in [0, 255]")
        if self.band_sample_stride < 1:
            raise ConfigurationError("band_sample_stride", "must be at least 1")
        if not 0 < self.unmatched_cost <= 1:
            raise ConfigurationError("unmatched_cost", "must be in (0, 1]")
        if self.recognition_retries < 0:
            raise ConfigurationError("recognition_retries", "must not be negative")
        if not 0 < self.recognition_retry_scale < 1:
            raise ConfigurationError("recognition_retry_scale", "must be in (0, 1)")
        if self.workers < 0 or self.page_timeout_seconds < 0:
            raise ConfigurationError("workers", "execution limits must not be negative")
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeskewConfig":
        """Build a config from a plain mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known}).validate()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
