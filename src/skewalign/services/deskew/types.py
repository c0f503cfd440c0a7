"""
Geometry and result types for skew estimation and overlay placement.

Quads are normalized to the page (0..1) with the origin at the bottom-left,
corner order bottom-left, bottom-right, top-right, top-left. Angles on
geometry types are radians, counter-clockwise positive in that y-up frame.
"""

import math
import time
from dataclasses import dataclass, field, replace
from enum import Enum

import numpy as np

from skewalign.constants import MAX_LINE_ANGLE_DEGREES
from skewalign.utils.exceptions import ValidationError

Point = tuple[float, float]
Quad = tuple[Point, Point, Point, Point]

MAX_LINE_ANGLE = math.radians(MAX_LINE_ANGLE_DEGREES)


def bounded_angle(angle: float) -> float:
    """Clamp a line angle (radians) to ±45°."""
    return max(-MAX_LINE_ANGLE, min(MAX_LINE_ANGLE, float(angle)))


def as_quad(points) -> Quad:
    """Coerce a 4×2 sequence or array into a Quad tuple."""
    arr = np.asarray(points, dtype=float)
    if arr.shape != (4, 2) or not np.all(np.isfinite(arr)):
        raise ValidationError("quad", str(points), "expected 4 finite (x, y) points")
    return tuple((float(x), float(y)) for x, y in arr)  # type: ignore[return-value]


@dataclass
class PageImage:
    """A rasterized page.

    Attributes:
        width: Width in pixels
        height: Height in pixels
        pixels: uint8 array, (h, w) grayscale or (h, w, 3) BGR
    """

    width: int
    height: int
    pixels: np.ndarray

    @classmethod
    def from_array(cls, pixels: np.ndarray) -> "PageImage":
        if not isinstance(pixels, np.ndarray) or pixels.dtype != np.uint8:
            raise ValidationError("pixels", reason="expected a uint8 numpy array")
        if pixels.ndim not in (2, 3) or (pixels.ndim == 3 and pixels.shape[2] not in (3, 4)):
            raise ValidationError("pixels", str(pixels.shape), "expected (h, w) or (h, w, 3|4)")
        h, w = pixels.shape[:2]
        if h == 0 or w == 0:
            raise ValidationError("pixels", str(pixels.shape), "image is empty")
        return cls(width=w, height=h, pixels=pixels)

    def gray(self) -> np.ndarray:
        from skewalign.services.deskew.binarize import to_grayscale

        return to_grayscale(self.pixels)


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in normalized coordinates."""

    x0: float
    y0: float
    x1: float
    y1: float

    @classmethod
    def from_quad(cls, quad: Quad) -> "Rect":
        xs = [p[0] for p in quad]
        ys = [p[1] for p in quad]
        return cls(min(xs), min(ys), max(xs), max(ys))

    @property
    def width(self) -> float:
        return max(0.0, self.x1 - self.x0)

    @property
    def height(self) -> float:
        return max(0.0, self.y1 - self.y0)

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Point:
        return ((self.x0 + self.x1) / 2.0, (self.y0 + self.y1) / 2.0)

    def intersection(self, other: "Rect") -> "Rect":
        return Rect(
            max(self.x0, other.x0),
            max(self.y0, other.y0),
            min(self.x1, other.x1),
            min(self.y1, other.y1),
        )

    def iou(self, other: "Rect") -> float:
        inter = self.intersection(other).area
        union = self.area + other.area - inter
        if union <= 0:
            return 0.0
        return inter / union

    def vertical_overlap_ratio(self, other: "Rect") -> float:
        """Overlap of the y ranges relative to the smaller height."""
        smaller = min(self.height, other.height)
        if smaller <= 0:
            return 0.0
        overlap = min(self.y1, other.y1) - max(self.y0, other.y0)
        return max(0.0, overlap) / smaller

    def center_distance(self, other: "Rect") -> float:
        (ax, ay), (bx, by) = self.center, other.center
        return math.hypot(ax - bx, ay - by)


@dataclass(frozen=True)
class AngleSample:
    """A measured angle at a normalized vertical position."""

    y: float
    angle: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "y", min(1.0, max(0.0, float(self.y))))
        object.__setattr__(self, "angle", bounded_angle(self.angle))


@dataclass
class Band:
    """One horizontal slice of an ink mask and its angle sample.

    Attributes:
        index: Band index, 0 at the top of the image
        y0: First pixel row (inclusive)
        y1: Last pixel row (exclusive)
        ink_estimate: Estimated ink pixels from strided sampling
        angle_deg: Measured or carried-forward angle in degrees
        empty: True when the band had too little ink to measure
    """

    index: int
    y0: int
    y1: int
    ink_estimate: float = 0.0
    angle_deg: float = 0.0
    empty: bool = True


@dataclass
class RecognizedLine:
    """A line returned by a text recognizer.

    Attributes:
        text: Recognized string
        quad: Normalized quad reported by the recognizer
        confidence: Recognition confidence (0-1)
        char_quads: Optional normalized boxes of characters or sub-ranges
    """

    text: str
    quad: Quad
    confidence: float = 1.0
    char_quads: list[Quad] = field(default_factory=list)


@dataclass
class TextCandidate:
    """A recognized line prepared for reconciliation."""

    index: int
    text: str
    quad: Quad
    bounds: Rect
    center_y: float
    measured_angle: float | None = None
    axis_aligned: bool = False
    confidence: float = 1.0


@dataclass
class GeometryBlock:
    """A text row found by a geometry-only detector."""

    index: int
    quad: Quad
    bounds: Rect
    center_y: float
    angle: float
    confidence: float = 1.0

    @classmethod
    def from_quad(
        cls, index: int, quad: Quad, angle: float, confidence: float = 1.0
    ) -> "GeometryBlock":
        bounds = Rect.from_quad(quad)
        return cls(
            index=index,
            quad=quad,
            bounds=bounds,
            center_y=bounds.center[1],
            angle=bounded_angle(angle),
            confidence=confidence,
        )


@dataclass
class Placement:
    """Final text and quad (normalized, original image space) for the overlay."""

    text: str
    quad: Quad
    angle: float = 0.0
    source: str = "recognized"


class EstimateStatus(Enum):
    ESTIMATED = "estimated"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class AngleEstimate:
    """Tagged result of an angle estimation stage.

    ``angle`` is the raw estimate in degrees (0.0 when indeterminate).
    ``correction`` is what callers should apply after the min/max
    deskew clamp; stages that do not clamp leave it equal to ``angle``.
    """

    status: EstimateStatus
    angle: float = 0.0
    source: str = "none"
    reason: str = ""
    score: float = 0.0
    correction: float = 0.0

    @classmethod
    def estimated(cls, angle: float, source: str, score: float = 0.0) -> "AngleEstimate":
        return cls(
            EstimateStatus.ESTIMATED,
            angle=float(angle),
            source=source,
            score=float(score),
            correction=float(angle),
        )

    @classmethod
    def indeterminate(cls, reason: str, source: str = "none") -> "AngleEstimate":
        return cls(EstimateStatus.INDETERMINATE, source=source, reason=reason)

    @property
    def is_estimated(self) -> bool:
        return self.status is EstimateStatus.ESTIMATED

    def with_correction(self, correction: float, reason: str = "") -> "AngleEstimate":
        return replace(self, correction=float(correction), reason=reason or self.reason)


class PageStage(Enum):
    RASTERIZED = "rasterized"
    BINARIZED = "binarized"
    SKEW_ESTIMATED = "skew_estimated"
    GEOMETRY_RECONCILED = "geometry_reconciled"
    PLACED = "placed"


@dataclass
class PageResult:
    """Outcome of processing one page."""

    page_index: int
    width: int
    height: int
    skew: AngleEstimate = field(
        default_factory=lambda: AngleEstimate.indeterminate("not estimated")
    )
    placements: list[Placement] = field(default_factory=list)
    matched: int = 0
    unmatched: int = 0
    timed_out: bool = False
    skipped: bool = False


class Deadline:
    """Monotonic-clock deadline shared by the stages of one page."""

    def __init__(self, seconds: float | None) -> None:
        self._expires = None if not seconds else time.monotonic() + seconds

    @classmethod
    def never(cls) -> "Deadline":
        return cls(None)

    def expired(self) -> bool:
        return self._expires is not None and time.monotonic() >= self._expires

    def remaining(self) -> float | None:
        if self._expires is None:
            return None
        return max(0.0, self._expires - time.monotonic())
