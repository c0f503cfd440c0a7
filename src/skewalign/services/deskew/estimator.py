"""
Global skew estimation for one page.

Precedence:

1. Projection search over the whole (downscaled) ink mask.
2. When the projection is near zero, the band median may override it:
   symmetric layouts can hide skew from the global profile while the
   individual bands still reveal it.
3. When the projection finds no row structure at all, the median of
   externally measured line angles is used instead.
4. The result is clamped: tiny angles are not corrected, implausibly
   large ones are rejected.

Nothing here raises on indeterminate input; every stage degrades to an
``AngleEstimate`` in the INDETERMINATE state (correction 0).
"""

import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

import cv2
import numpy as np

from skewalign.services.deskew.bands import band_median_angle, sample_band_angles
from skewalign.services.deskew.binarize import binarize, ink_pixel_count, to_grayscale
from skewalign.services.deskew.config import DeskewConfig
from skewalign.services.deskew.projection import estimate_projection_angle
from skewalign.services.deskew.types import AngleEstimate, Deadline, PageImage

if TYPE_CHECKING:
    from skewalign.services.debug_export import DebugImageSink

logger = logging.getLogger(__name__)

LogSink = Callable[[str], None]


def downscale_for_estimation(gray: np.ndarray, max_side: int) -> np.ndarray:
    """Shrink an image so its longest side is at most ``max_side`` pixels.

    Skew is invariant under uniform scaling, so this only trades
    resolution for speed. ``max_side <= 0`` disables it.
    """
    h, w = gray.shape[:2]
    longest = max(h, w)
    if max_side <= 0 or longest <= max_side:
        return gray
    scale = max_side / float(longest)
    size = (max(1, int(round(w * scale))), max(1, int(round(h * scale))))
    return cv2.resize(gray, size, interpolation=cv2.INTER_AREA)


def geometry_fallback_angle(
    angles_deg: Sequence[float] | None,
    min_samples: int,
    min_std: float,
) -> AngleEstimate:
    """Median of per-line baseline angles, used when projection fails.

    Requires ``min_samples`` angles with a standard deviation of at
    least ``min_std`` degrees; a perfectly flat set usually comes from
    axis-aligned boxes that carry no orientation information.
    """
    if not angles_deg:
        return AngleEstimate.indeterminate("no line angles", source="geometry")
    values = np.asarray(list(angles_deg), dtype=np.float64)
    values = values[np.isfinite(values)]
    if len(values) < max(1, min_samples):
        return AngleEstimate.indeterminate(
            f"only {len(values)} line angles", source="geometry"
        )
    spread = float(np.std(values))
    if spread < min_std:
        return AngleEstimate.indeterminate(
            f"line angles are flat (std={spread:.3f}°)", source="geometry"
        )
    return AngleEstimate.estimated(float(np.median(values)), "geometry")


def clamp_deskew(estimate: AngleEstimate, min_deg: float, max_deg: float) -> AngleEstimate:
    """Apply the min/max deskew limits to an estimate's correction."""
    if not estimate.is_estimated:
        return estimate.with_correction(0.0)
    magnitude = abs(estimate.angle)
    if magnitude < min_deg:
        return estimate.with_correction(0.0, f"below {min_deg:g}° minimum")
    if magnitude > max_deg:
        return estimate.with_correction(0.0, f"above {max_deg:g}° maximum, rejected")
    return estimate.with_correction(estimate.angle)


class SkewEstimator:
    """Estimates the global skew angle of a page image.

    Stateless apart from its configuration; one instance may be shared
    by several page workers.
    """

    def __init__(
        self,
        config: DeskewConfig | None = None,
        log: LogSink | None = None,
        debug_sink: "DebugImageSink | None" = None,
    ) -> None:
        self.config = config or DeskewConfig()
        self._log = log
        self._debug_sink = debug_sink

    def _note(self, message: str) -> None:
        logger.info(message)
        if self._log is not None:
            self._log(message)

    def estimate(
        self,
        image: PageImage | np.ndarray,
        geometry_angles: Sequence[float] | None = None,
        deadline: Deadline | None = None,
        page_index: int = 0,
    ) -> AngleEstimate:
        """Estimate the skew of one page.

        Args:
            image: Page image (PageImage or raw gray/BGR array)
            geometry_angles: Per-line baseline angles in degrees for the
                geometry fallback
            deadline: Optional page deadline
            page_index: 0-based page index for diagnostics

        Returns:
            Tagged estimate; ``correction`` is the angle to apply
        """
        cfg = self.config
        page = page_index + 1
        pixels = image.pixels if isinstance(image, PageImage) else image
        gray = downscale_for_estimation(to_grayscale(pixels), cfg.max_working_side)

        mask, threshold = binarize(gray, cfg.ink_threshold, cfg.default_threshold)
        ink = ink_pixel_count(mask)
        self._note(
            f"Page {page}: threshold={threshold} "
            f"({'auto' if cfg.ink_threshold <= 0 else 'fixed'}) ink={ink}px "
            f"working={gray.shape[1]}x{gray.shape[0]}"
        )
        if self._debug_sink is not None:
            self._debug_sink.save_mask(page_index, mask)

        if ink < cfg.min_ink_pixels:
            self._note(f"Page {page}: not enough ink, treating as unrotated")
            return AngleEstimate.indeterminate("not enough ink")

        projection = estimate_projection_angle(mask, cfg, deadline=deadline)
        if projection.aborted:
            return self._timed_out(page)

        if projection.score <= 0:
            estimate = geometry_fallback_angle(
                geometry_angles, cfg.geometry_min_samples, cfg.geometry_min_std_degrees
            )
            self._note(
                f"Page {page}: projection found no line structure, geometry fallback "
                + (f"{estimate.angle:+.2f}°" if estimate.is_estimated else f"({estimate.reason})")
            )
            return self._finish(estimate, page)

        estimate = AngleEstimate.estimated(projection.angle, "projection", projection.score)
        self._note(
            f"Page {page}: projection angle {projection.angle:+.2f}° "
            f"(score={projection.score:.2f}, trials={projection.trials})"
        )

        if cfg.enable_band_median and abs(projection.angle) <= cfg.near_zero_degrees:
            bands = sample_band_angles(mask, cfg, deadline=deadline)
            if deadline is not None and deadline.expired():
                return self._timed_out(page)
            if self._debug_sink is not None:
                self._debug_sink.save_bands(page_index, mask, bands)
            band_estimate = band_median_angle(
                [b.angle_deg for b in bands if not b.empty],
                cfg.outlier_max_deviation_degrees,
                cfg.min_non_empty_bands,
            )
            if (
                band_estimate.is_estimated
                and abs(band_estimate.angle) >= cfg.band_min_significance_degrees
            ):
                self._note(
                    f"Page {page}: band median {band_estimate.angle:+.2f}° "
                    f"overrides near-zero projection"
                )
                estimate = band_estimate
            else:
                logger.debug(
                    f"Page {page}: band median not used "
                    f"({band_estimate.reason or f'{band_estimate.angle:+.2f}° not significant'})"
                )

        return self._finish(estimate, page)

    def _finish(self, estimate: AngleEstimate, page: int) -> AngleEstimate:
        cfg = self.config
        result = clamp_deskew(estimate, cfg.min_deskew_degrees, cfg.max_deskew_degrees)
        if result.is_estimated:
            self._note(
                f"Page {page}: skew {result.angle:+.2f}° via {result.source}, "
                f"correction {result.correction:+.2f}°"
                + (f" ({result.reason})" if result.reason else "")
            )
        return result

    def _timed_out(self, page: int) -> AngleEstimate:
        self._note(f"Page {page}: angle search timed out, using 0°")
        return AngleEstimate.indeterminate("timeout", source="timeout")
