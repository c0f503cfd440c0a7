"""
Geometry-only text row detection.

Finds character-sized connected components in the ink mask and chains
them into rows, independently of any text recognition. The rows carry
an angle measured from the character centers, which is what the
reconciler hands to the recognized lines they match.
"""

import logging
import math
from abc import ABC, abstractmethod

import cv2
import numpy as np

from skewalign.services.deskew.binarize import binarize
from skewalign.services.deskew.config import DeskewConfig
from skewalign.services.deskew.line_angle import robust_slope_angle
from skewalign.services.deskew.types import GeometryBlock, PageImage

logger = logging.getLogger(__name__)

# ── Component Filters ─────────────────────────────────────────────
_MIN_COMPONENT_AREA = 6  # pixels²
_MIN_COMPONENT_HEIGHT = 4  # pixels
_MAX_COMPONENT_HEIGHT_RATIO = 0.08  # of page height
_MAX_COMPONENT_WIDTH_RATIO = 0.15  # of page width

# ── Row Chaining ──────────────────────────────────────────────────
_MAX_GAP_FACTOR = 3.0  # horizontal gap in median character heights
_MAX_DRIFT_FACTOR = 0.5  # vertical drift in median character heights
_MIN_ROW_COMPONENTS = 3
_FULL_CONFIDENCE_COMPONENTS = 20


class TextGeometryDetector(ABC):
    """Detects text rows from image geometry alone."""

    @abstractmethod
    def detect(self, image: PageImage, page_index: int = 0) -> list[GeometryBlock]:
        """Return the text rows of a page, normalized, bottom-left origin."""


def _component_boxes(mask: np.ndarray) -> np.ndarray:
    """Character-sized component boxes as rows of (x, y, w, h), y down."""
    h, w = mask.shape[:2]
    count, _, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)
    if count <= 1:
        return np.empty((0, 4), dtype=np.int64)
    stats = stats[1:]  # label 0 is the background
    bw = stats[:, cv2.CC_STAT_WIDTH]
    bh = stats[:, cv2.CC_STAT_HEIGHT]
    keep = (
        (stats[:, cv2.CC_STAT_AREA] >= _MIN_COMPONENT_AREA)
        & (bh >= _MIN_COMPONENT_HEIGHT)
        & (bh <= max(_MIN_COMPONENT_HEIGHT, h * _MAX_COMPONENT_HEIGHT_RATIO))
        & (bw <= max(1, w * _MAX_COMPONENT_WIDTH_RATIO))
    )
    return stats[keep][:, :4]


def chain_rows(boxes: np.ndarray) -> list[list[int]]:
    """Chain component boxes into rows, left to right.

    Each box joins the row whose last box ends within a few character
    heights to its left and whose center is closest vertically.
    Following the last box lets a row drift with the skew.
    """
    if len(boxes) == 0:
        return []
    char_h = float(np.median(boxes[:, 3]))
    max_gap = _MAX_GAP_FACTOR * char_h
    max_drift = _MAX_DRIFT_FACTOR * char_h

    rows: list[list[int]] = []
    for i in np.argsort(boxes[:, 0], kind="stable"):
        x, y, bw, bh = boxes[i]
        cy = y + bh / 2.0
        best, best_drift = None, max_drift
        for r, row in enumerate(rows):
            lx, ly, lw, lh = boxes[row[-1]]
            gap = x - (lx + lw)
            if gap > max_gap:
                continue
            drift = abs(cy - (ly + lh / 2.0))
            if drift <= best_drift:
                best, best_drift = r, drift
        if best is None:
            rows.append([int(i)])
        else:
            rows[best].append(int(i))
    return rows


def _rotate(points: np.ndarray, center: np.ndarray, angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    return (points - center) @ np.array([[c, s], [-s, c]]) + center


def row_quad(boxes: np.ndarray, angle: float, width: int, height: int):
    """Oriented quad enclosing a row of boxes, normalized, bottom-left origin."""
    corners = []
    for x, y, bw, bh in boxes:
        for px, py in ((x, y), (x + bw, y), (x, y + bh), (x + bw, y + bh)):
            corners.append((float(px), float(height - py)))
    pts = np.asarray(corners)
    center = pts.mean(axis=0)
    upright = _rotate(pts, center, -angle)
    (x0, y0), (x1, y1) = upright.min(axis=0), upright.max(axis=0)
    rect = np.array([(x0, y0), (x1, y0), (x1, y1), (x0, y1)])
    quad = _rotate(rect, center, angle) / np.array([float(width), float(height)])
    quad = np.clip(quad, 0.0, 1.0)
    return tuple((float(px), float(py)) for px, py in quad)


class ConnectedComponentDetector(TextGeometryDetector):
    """Row detector based on connected components of the ink mask."""

    def __init__(self, config: DeskewConfig | None = None) -> None:
        self.config = config or DeskewConfig()

    def detect(self, image: PageImage, page_index: int = 0) -> list[GeometryBlock]:
        cfg = self.config
        mask, _ = binarize(image.gray(), cfg.ink_threshold, cfg.default_threshold)
        boxes = _component_boxes(mask)
        w, h = image.width, image.height

        blocks: list[GeometryBlock] = []
        for row in chain_rows(boxes):
            if len(row) < _MIN_ROW_COMPONENTS:
                continue
            row_boxes = boxes[row]
            centers = [
                (x + bw / 2.0, h - (y + bh / 2.0)) for x, y, bw, bh in row_boxes.astype(float)
            ]
            angle = robust_slope_angle(
                centers,
                min_dx=cfg.pair_min_dx * w,
                max_pair_weight=cfg.pair_max_weight * w,
            )
            if angle is None:
                continue
            blocks.append(
                GeometryBlock.from_quad(
                    index=len(blocks),
                    quad=row_quad(row_boxes, angle, w, h),
                    angle=angle,
                    confidence=min(1.0, len(row) / _FULL_CONFIDENCE_COMPONENTS),
                )
            )

        logger.debug(
            f"Page {page_index + 1}: {len(boxes)} components chained into {len(blocks)} rows"
        )
        return blocks
