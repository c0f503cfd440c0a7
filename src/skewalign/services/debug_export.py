"""
Optional debug image export.

The estimator and page pipeline call a sink at a few points; the default
is no sink at all. PngDebugSink writes what they report as PNG files.
"""

import logging
from pathlib import Path

import cv2
import numpy as np

from skewalign.services.deskew.quad import normalized_to_pixel
from skewalign.services.deskew.types import Band, PageImage, Placement

logger = logging.getLogger(__name__)

# BGR tints cycled over bands
_BAND_COLORS = [
    (66, 135, 245),
    (245, 173, 66),
    (80, 200, 120),
    (200, 80, 200),
]
_EMPTY_BAND_COLOR = (160, 160, 160)
_PLACEMENT_COLORS = {
    "geometry": (0, 160, 0),
    "local": (0, 140, 255),
    "global": (0, 0, 220),
    "recognized": (200, 0, 0),
}


class DebugImageSink:
    """Receives intermediate images. The base class ignores everything."""

    def save_mask(self, page_index: int, mask: np.ndarray) -> None:
        pass

    def save_bands(self, page_index: int, mask: np.ndarray, bands: list[Band]) -> None:
        pass

    def save_placements(
        self, page_index: int, image: PageImage, placements: list[Placement]
    ) -> None:
        pass


class PngDebugSink(DebugImageSink):
    """Writes ink masks, band tints and placement overlays as PNG files."""

    def __init__(self, output_dir: str | Path) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _write(self, name: str, image: np.ndarray) -> Path:
        path = self.output_dir / name
        if not cv2.imwrite(str(path), image):
            logger.warning(f"Could not write debug image {path}")
        else:
            logger.debug(f"Wrote debug image {path}")
        return path

    def save_mask(self, page_index: int, mask: np.ndarray) -> None:
        self._write(f"page_{page_index + 1:04d}_mask.png", mask)

    def save_bands(self, page_index: int, mask: np.ndarray, bands: list[Band]) -> None:
        canvas = np.full((*mask.shape[:2], 3), 255, dtype=np.uint8)
        for band in bands:
            if band.empty:
                color = _EMPTY_BAND_COLOR
            else:
                color = _BAND_COLORS[band.index % len(_BAND_COLORS)]
            ink = mask[band.y0 : band.y1] > 0
            canvas[band.y0 : band.y1][ink] = color
            cv2.putText(
                canvas,
                f"{band.index}: {band.angle_deg:+.2f}",
                (4, band.y0 + 14),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.45,
                (0, 0, 0),
                1,
                cv2.LINE_AA,
            )
            cv2.line(canvas, (0, band.y0), (canvas.shape[1] - 1, band.y0), (0, 0, 0), 1)
        self._write(f"page_{page_index + 1:04d}_bands.png", canvas)

    def save_placements(
        self, page_index: int, image: PageImage, placements: list[Placement]
    ) -> None:
        pixels = image.pixels
        if pixels.ndim == 2:
            canvas = cv2.cvtColor(pixels, cv2.COLOR_GRAY2BGR)
        else:
            canvas = pixels[..., :3].copy()
        for placement in placements:
            pts = np.array(
                [normalized_to_pixel(p, image.width, image.height) for p in placement.quad],
                dtype=np.int32,
            )
            color = _PLACEMENT_COLORS.get(placement.source, (0, 0, 0))
            cv2.polylines(canvas, [pts], isClosed=True, color=color, thickness=1)
        self._write(f"page_{page_index + 1:04d}_placements.png", canvas)
