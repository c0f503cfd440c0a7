"""
Band-wise skew sampling and the band-median fallback.

The ink mask is cut into ``band_count`` horizontal slices. Each slice
with enough ink gets its own projection estimate; empty slices carry the
previous angle forward so the per-page array never has gaps. The median
of the non-empty bands, after outlier rejection, is a fallback for pages
whose global projection is insensitive to skew (symmetric layouts).
"""

import logging
from collections.abc import Sequence

import numpy as np

from skewalign.services.deskew.config import DeskewConfig
from skewalign.services.deskew.projection import estimate_projection_angle
from skewalign.services.deskew.types import AngleEstimate, Band, Deadline

logger = logging.getLogger(__name__)


def band_ranges(height: int, band_count: int) -> list[tuple[int, int]]:
    """Split ``height`` rows into ``band_count`` equal slices.

    The last slice absorbs the remainder. Always returns exactly
    ``band_count`` ranges, some possibly empty on very short images.
    """
    band_count = max(1, band_count)
    size = height // band_count
    ranges = [(i * size, (i + 1) * size) for i in range(band_count - 1)]
    ranges.append(((band_count - 1) * size, height))
    return ranges


def estimate_band_ink(mask: np.ndarray, y0: int, y1: int, stride: int) -> float:
    """Estimate the ink pixel count of rows ``[y0, y1)`` by strided sampling."""
    stride = max(1, int(stride))
    sampled = mask[y0:y1:stride, ::stride]
    return float(np.count_nonzero(sampled)) * stride * stride


def carry_forward_band_angles(measured: Sequence[float | None]) -> list[float]:
    """Fill empty (None) bands with the previous non-empty band's angle.

    Bands before the first measured one get 0.0.
    """
    result: list[float] = []
    last = 0.0
    for angle in measured:
        if angle is not None:
            last = float(angle)
        result.append(last)
    return result


def sample_band_angles(
    mask: np.ndarray,
    config: DeskewConfig,
    deadline: Deadline | None = None,
) -> list[Band]:
    """Measure one projection angle per horizontal band, top to bottom.

    Args:
        mask: Binary ink mask of the whole page
        config: Band count, ink gate and projection parameters
        deadline: Optional page deadline; remaining bands stay empty on expiry

    Returns:
        Exactly ``config.band_count`` bands with carried-forward angles
    """
    bands: list[Band] = []
    measured: list[float | None] = []

    for index, (y0, y1) in enumerate(band_ranges(mask.shape[0], config.band_count)):
        band = Band(index=index, y0=y0, y1=y1)
        band.ink_estimate = estimate_band_ink(mask, y0, y1, config.band_sample_stride)

        angle = None
        timed_out = deadline is not None and deadline.expired()
        if not timed_out and y1 > y0 and band.ink_estimate >= config.min_ink_samples:
            result = estimate_projection_angle(
                mask[y0:y1], config, padding=config.band_padding_fraction, deadline=deadline
            )
            if not result.aborted and result.score > 0:
                angle = result.angle
                band.empty = False

        measured.append(angle)
        bands.append(band)

    for band, angle in zip(bands, carry_forward_band_angles(measured), strict=True):
        band.angle_deg = angle

    logger.debug(
        "Band angles: "
        + ", ".join(f"{b.angle_deg:+.2f}{'' if not b.empty else '*'}" for b in bands)
    )
    return bands


def band_median_angle(
    angles: Sequence[float],
    outlier_max_deviation: float,
    min_non_empty_bands: int,
) -> AngleEstimate:
    """Robust median of non-empty band angles.

    Entries further than ``outlier_max_deviation`` degrees from the
    median are dropped. At least ``min_non_empty_bands`` entries are
    required both before and after filtering.

    Args:
        angles: Angles (degrees) of the non-empty bands
        outlier_max_deviation: Allowed deviation from the median
        min_non_empty_bands: Minimum usable bands

    Returns:
        AngleEstimate from source ``band_median``, or indeterminate
    """
    values = np.asarray(list(angles), dtype=np.float64)
    if len(values) < min_non_empty_bands or len(values) == 0:
        return AngleEstimate.indeterminate(
            f"only {len(values)} non-empty bands", source="band_median"
        )

    median = float(np.median(values))
    kept = values[np.abs(values - median) <= outlier_max_deviation]
    if len(kept) < min_non_empty_bands or len(kept) == 0:
        return AngleEstimate.indeterminate(
            f"only {len(kept)} bands left after outlier rejection", source="band_median"
        )

    result = float(np.median(kept))
    logger.debug(
        f"Band median: {result:+.2f}° from {len(kept)}/{len(values)} bands "
        f"(raw median {median:+.2f}°)"
    )
    return AngleEstimate.estimated(result, "band_median")
