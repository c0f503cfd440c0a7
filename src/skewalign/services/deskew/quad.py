"""
Coordinate conversions and quad rotation.

Three coordinate spaces are involved:

- normalized: 0..1 on both axes, origin bottom-left (y up);
- pixel: rendered image pixels, origin top-left (y down);
- page: PDF user space in points, origin at the page box corner (y up),
  before the page's /Rotate is applied.

Rotations happen in isotropic pixel units so that non-square pages do
not shear the quads.
"""

import math

import numpy as np

from skewalign.constants import PDF_POINTS_PER_INCH
from skewalign.services.deskew.types import Point, Quad
from skewalign.utils.exceptions import ValidationError


def normalized_to_pixel(point: Point, width: int, height: int) -> Point:
    """Normalized bottom-left point → top-left pixel point."""
    return point[0] * width, (1.0 - point[1]) * height


def pixel_to_normalized(point: Point, width: int, height: int) -> Point:
    """Top-left pixel point → normalized bottom-left point."""
    return point[0] / width, 1.0 - point[1] / height


class PageTransform:
    """2×3 affine mapping page space (points) to displayed page space (points).

    The displayed page is what a renderer produces: the page box moved to
    the origin and turned by the page's /Rotate. Both spaces are y-up.
    """

    def __init__(self, matrix) -> None:
        self.matrix = np.asarray(matrix, dtype=np.float64).reshape(2, 3)

    @classmethod
    def identity(cls) -> "PageTransform":
        return cls([[1, 0, 0], [0, 1, 0]])

    @classmethod
    def from_box(
        cls, box: tuple[float, float, float, float], rotation: int = 0
    ) -> "PageTransform":
        """Transform for a page box ``(x0, y0, x1, y1)`` and a /Rotate value.

        /Rotate turns the page clockwise when displayed.
        """
        x0, y0, x1, y1 = (float(v) for v in box)
        rotation = int(rotation) % 360
        if rotation == 0:
            matrix = [[1, 0, -x0], [0, 1, -y0]]
        elif rotation == 90:
            matrix = [[0, 1, -y0], [-1, 0, x1]]
        elif rotation == 180:
            matrix = [[-1, 0, x1], [0, -1, y1]]
        elif rotation == 270:
            matrix = [[0, -1, y1], [1, 0, -x0]]
        else:
            raise ValidationError("rotation", str(rotation), "must be a multiple of 90")
        return cls(matrix)

    def apply(self, point: Point) -> Point:
        x, y = point
        m = self.matrix
        return (
            float(m[0, 0] * x + m[0, 1] * y + m[0, 2]),
            float(m[1, 0] * x + m[1, 1] * y + m[1, 2]),
        )

    def inverse(self) -> "PageTransform":
        full = np.vstack([self.matrix, [0.0, 0.0, 1.0]])
        return PageTransform(np.linalg.inv(full)[:2])


def _display_size(width_px: int, height_px: int, render_scale: float) -> tuple[float, float]:
    return width_px / render_scale, height_px / render_scale


def normalized_to_page(
    point: Point,
    width_px: int,
    height_px: int,
    render_scale: float = 1.0,
    transform: PageTransform | None = None,
) -> Point:
    """Map a normalized point on a rendered image to page space in points.

    Args:
        point: Normalized (x, y), origin bottom-left
        width_px: Rendered image width in pixels
        height_px: Rendered image height in pixels
        render_scale: Pixels per point used when rendering
        transform: Page → displayed-page transform (default: identity)
    """
    dw, dh = _display_size(width_px, height_px, render_scale)
    displayed = (point[0] * dw, point[1] * dh)
    if transform is None:
        return displayed
    return transform.inverse().apply(displayed)


def page_to_normalized(
    point: Point,
    width_px: int,
    height_px: int,
    render_scale: float = 1.0,
    transform: PageTransform | None = None,
) -> Point:
    """Inverse of normalized_to_page."""
    displayed = point if transform is None else transform.apply(point)
    dw, dh = _display_size(width_px, height_px, render_scale)
    return displayed[0] / dw, displayed[1] / dh


def quad_to_page(
    quad: Quad,
    width_px: int,
    height_px: int,
    render_scale: float = 1.0,
    transform: PageTransform | None = None,
) -> Quad:
    return tuple(  # type: ignore[return-value]
        normalized_to_page(p, width_px, height_px, render_scale, transform) for p in quad
    )


def dpi_for_scale(render_scale: float) -> float:
    return PDF_POINTS_PER_INCH * render_scale


def clamp_quad(quad: Quad) -> Quad:
    """Clamp every corner of a normalized quad into the unit square."""
    return tuple(  # type: ignore[return-value]
        (min(1.0, max(0.0, x)), min(1.0, max(0.0, y))) for x, y in quad
    )


def _rotate_about(points: np.ndarray, center: np.ndarray, angle: float) -> np.ndarray:
    c, s = math.cos(angle), math.sin(angle)
    rotation = np.array([[c, -s], [s, c]])
    return (points - center) @ rotation.T + center


def rotate_quad(
    quad: Quad,
    target_angle: float,
    current_angle: float,
    width: int,
    height: int,
    min_delta_deg: float = 0.2,
) -> Quad:
    """Rotate a normalized quad about its centroid to a target angle.

    The quad is turned by ``target_angle - current_angle`` (radians,
    counter-clockwise positive). Deltas below ``min_delta_deg`` degrees
    leave the corners untouched. The result is clamped to the page.

    Args:
        quad: Normalized quad (bottom-left origin)
        target_angle: Desired baseline angle in radians
        current_angle: Current baseline angle in radians
        width: Page width in pixels
        height: Page height in pixels
        min_delta_deg: Smallest rotation worth applying

    Returns:
        Rotated, clamped normalized quad
    """
    delta = float(target_angle) - float(current_angle)
    if abs(math.degrees(delta)) < min_delta_deg:
        return clamp_quad(quad)

    scale = np.array([float(width), float(height)])
    points = np.asarray(quad, dtype=np.float64) * scale
    rotated = _rotate_about(points, points.mean(axis=0), delta)
    rotated = np.clip(rotated, 0.0, scale)
    return tuple((float(x), float(y)) for x, y in rotated / scale)  # type: ignore[return-value]


def deskewed_to_original(point: Point, angle_deg: float, width: int, height: int) -> Point:
    """Map a pixel point from a globally deskewed image back to the original.

    The deskewed image is assumed to be the original rotated by
    ``-angle_deg`` about its center with unchanged dimensions, so the
    inverse turns by ``+angle_deg``. Pixel coordinates, origin top-left.
    """
    center = np.array([width / 2.0, height / 2.0])
    # Pixel y points down, so a counter-clockwise turn on screen is negative here.
    mapped = _rotate_about(np.asarray([point], dtype=np.float64), center, -math.radians(angle_deg))
    x = min(float(width), max(0.0, float(mapped[0, 0])))
    y = min(float(height), max(0.0, float(mapped[0, 1])))
    return x, y
