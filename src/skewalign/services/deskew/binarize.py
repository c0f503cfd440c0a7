"""
Binarization: grayscale page image to binary ink mask.

Documents are assumed to be dark ink on a light background, so pixels
darker than the threshold become ink (255) and everything else
background (0).
"""

import logging

import cv2
import numpy as np

from skewalign.constants import DEFAULT_THRESHOLD, HISTOGRAM_BINS, INK_VALUE

logger = logging.getLogger(__name__)


def to_grayscale(pixels: np.ndarray) -> np.ndarray:
    """Return an 8-bit single-channel copy of a gray, BGR or BGRA image."""
    if pixels.ndim == 2:
        return pixels.copy()
    if pixels.shape[2] == 4:
        return cv2.cvtColor(pixels, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(pixels, cv2.COLOR_BGR2GRAY)


def otsu_threshold(gray: np.ndarray, default: int = DEFAULT_THRESHOLD) -> int:
    """Compute the Otsu threshold of an 8-bit image.

    The threshold ``t`` splits the histogram into ``[0, t)`` and
    ``[t, 256)``; it maximizes the between-class variance, taking the
    first maximum on ties. When no split leaves both classes non-empty
    (flat or empty image) ``default`` is returned.

    Args:
        gray: 8-bit grayscale image
        default: Threshold returned for degenerate histograms

    Returns:
        Threshold in 1..255, or ``default``
    """
    hist = np.bincount(gray.ravel(), minlength=HISTOGRAM_BINS)[:HISTOGRAM_BINS].astype(np.float64)
    total = hist.sum()
    if total <= 0:
        return default

    levels = np.arange(HISTOGRAM_BINS, dtype=np.float64)
    # Class 0 for threshold t holds levels 0..t-1, i.e. cumulative index t-1.
    w0 = np.cumsum(hist)[:-1]
    sum0 = np.cumsum(hist * levels)[:-1]
    w1 = total - w0
    valid = (w0 > 0) & (w1 > 0)
    if not np.any(valid):
        return default

    sum_all = float(np.dot(hist, levels))
    with np.errstate(divide="ignore", invalid="ignore"):
        mu0 = np.where(valid, sum0 / w0, 0.0)
        mu1 = np.where(valid, (sum_all - sum0) / w1, 0.0)
    between = np.where(valid, w0 * w1 * (mu0 - mu1) ** 2, -1.0)

    return int(np.argmax(between)) + 1


def binarize(
    gray: np.ndarray,
    threshold: int = 0,
    default_threshold: int = DEFAULT_THRESHOLD,
) -> tuple[np.ndarray, int]:
    """Convert a grayscale image into an ink mask.

    Args:
        gray: 8-bit grayscale image
        threshold: Fixed threshold, or 0 for automatic Otsu
        default_threshold: Fallback when Otsu is degenerate

    Returns:
        (mask, threshold) where mask is uint8 with ink=255, background=0
    """
    if threshold <= 0:
        threshold = otsu_threshold(gray, default_threshold)
    # THRESH_BINARY_INV keeps src <= thresh, so thresh - 1 gives src < threshold.
    _, mask = cv2.threshold(gray, threshold - 1, INK_VALUE, cv2.THRESH_BINARY_INV)
    return mask, threshold


def ink_pixel_count(mask: np.ndarray) -> int:
    return int(cv2.countNonZero(mask))
