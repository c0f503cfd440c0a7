"""Pytest configuration for skewalign tests.

Provides a factory for synthetic scanned pages: rows of dark word-like
rectangles on white, rotated about the page center. The factory also
returns where every text line ended up, so tests can play the role of
a text recognizer.
"""

from dataclasses import dataclass, field

import cv2
import numpy as np
import pytest

from skewalign.services.deskew.types import PageImage, RecognizedLine


@dataclass
class SyntheticPage:
    """A rendered synthetic page and the pixel quads (TL, TR, BR, BL) of its lines."""

    image: PageImage
    angle: float
    line_quads_px: list[np.ndarray] = field(default_factory=list)

    def recognized_lines(self, axis_aligned: bool = True) -> list[RecognizedLine]:
        """Lines as a recognizer would report them, normalized, bottom-left origin.

        With ``axis_aligned`` the quads are the bounding boxes of the
        rotated lines, which is what many engines return for tilted text.
        """
        w, h = self.image.width, self.image.height
        lines = []
        for i, quad in enumerate(self.line_quads_px):
            if axis_aligned:
                x0, y0 = quad.min(axis=0)
                x1, y1 = quad.max(axis=0)
                tl, tr, br, bl = (x0, y0), (x1, y0), (x1, y1), (x0, y1)
            else:
                tl, tr, br, bl = quad
            norm = tuple((float(x) / w, 1.0 - float(y) / h) for x, y in (bl, br, tr, tl))
            lines.append(RecognizedLine(text=f"line {i}", quad=norm, confidence=0.9))
        return lines


def _draw_page(angle: float, width: int, height: int, rows: int, seed: int) -> SyntheticPage:
    rng = np.random.default_rng(seed)
    img = np.full((height, width), 255, dtype=np.uint8)
    line_rects = []
    y = 120
    for _ in range(rows):
        x = 200
        while x < 720:
            w = int(rng.integers(30, 70))
            cv2.rectangle(img, (x, y), (x + w - 1, y + 11), 0, -1)
            right = x + w
            x = right + int(rng.integers(14, 24))
        line_rects.append((200, y, right, y + 12))
        y += 40

    matrix = cv2.getRotationMatrix2D((width / 2.0, height / 2.0), angle, 1.0)
    rotated = cv2.warpAffine(
        img, matrix, (width, height), flags=cv2.INTER_LINEAR, borderValue=255
    )

    quads = []
    for x0, y0, x1, y1 in line_rects:
        corners = np.array([(x0, y0, 1), (x1, y0, 1), (x1, y1, 1), (x0, y1, 1)], dtype=float)
        quads.append(corners @ matrix.T)
    return SyntheticPage(PageImage.from_array(rotated), angle, quads)


@pytest.fixture
def make_text_page():
    """Factory: make_text_page(angle_deg, width=1000, height=800, rows=12, seed=7).

    ``angle_deg`` is counter-clockwise positive as seen on screen, the
    same convention as the skew estimator.
    """

    def factory(angle: float = 0.0, width: int = 1000, height: int = 800, rows: int = 12, seed: int = 7):
        return _draw_page(angle, width, height, rows, seed)

    return factory


@pytest.fixture
def blank_page():
    return PageImage.from_array(np.full((600, 800), 255, dtype=np.uint8))
