"""
Local angle model: a smoothed per-band angle profile down the page.

Faxes and warped scans are rarely skewed uniformly. The model keeps one
angle per horizontal band, built from the angles measured on individual
text lines, and interpolates between band centers so that every vertical
position has a defined angle.
"""

import logging
from collections.abc import Sequence

import numpy as np
from scipy.ndimage import convolve1d

from skewalign.constants import LOCAL_SMOOTHING_KERNEL
from skewalign.services.deskew.types import AngleSample

logger = logging.getLogger(__name__)


class LocalAngleModel:
    """Per-band angles (radians) with piecewise-linear lookup."""

    def __init__(self, angles: np.ndarray, empty: bool = False) -> None:
        self._angles = np.asarray(angles, dtype=np.float64)
        self._empty = empty
        count = len(self._angles)
        self._centers = (np.arange(count, dtype=np.float64) + 0.5) / max(count, 1)

    @classmethod
    def build(
        cls,
        samples: Sequence[AngleSample],
        band_count: int,
        default: float = 0.0,
    ) -> "LocalAngleModel":
        """Build the model from per-line angle samples.

        Samples are bucketed by vertical position, each bucket takes the
        median of its samples, empty buckets are filled by linear
        interpolation between filled neighbors (edges take the nearest
        filled value), and one 0.25/0.5/0.25 smoothing pass is applied.

        Args:
            samples: Angle samples (y normalized 0..1, angle in radians)
            band_count: Number of buckets
            default: Angle of every band when there are no samples

        Returns:
            A model whose ``angles`` array has exactly ``band_count`` entries
        """
        band_count = max(1, int(band_count))
        if not samples:
            return cls(np.full(band_count, float(default)), empty=True)

        buckets: list[list[float]] = [[] for _ in range(band_count)]
        for sample in samples:
            index = min(int(sample.y * band_count), band_count - 1)
            buckets[index].append(sample.angle)

        filled = np.array([i for i, b in enumerate(buckets) if b])
        medians = np.array([float(np.median(buckets[i])) for i in filled])
        # np.interp holds the end values beyond the outermost filled buckets.
        angles = np.interp(np.arange(band_count), filled, medians)
        smoothed = convolve1d(angles, np.asarray(LOCAL_SMOOTHING_KERNEL), mode="nearest")

        logger.debug(
            f"Local angle model from {len(samples)} samples in {len(filled)}/{band_count} "
            f"buckets: " + ", ".join(f"{np.degrees(a):+.2f}" for a in smoothed)
        )
        return cls(smoothed)

    @property
    def angles(self) -> np.ndarray:
        return self._angles.copy()

    @property
    def band_count(self) -> int:
        return len(self._angles)

    @property
    def is_empty(self) -> bool:
        """True when the model was built without any samples."""
        return self._empty

    def angle_at(self, y: float) -> float:
        """Angle at normalized vertical position ``y``, clamped at the ends."""
        if len(self._angles) == 1:
            return float(self._angles[0])
        return float(np.interp(float(y), self._centers, self._angles))
