"""
Invisible text overlays.

Placements (normalized quads on the displayed page) are turned into
rotated, horizontally scaled, invisible (render mode 3) text runs. Two
writers are provided:

- ``write_searchable_pdf`` builds a new PDF from page images with
  reportlab, one image plus text layer per page;
- ``append_text_layer`` adds text operators to the pages of an existing
  PDF with pikepdf, leaving the original content untouched.
"""

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import cv2
import pikepdf
from PIL import Image
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfgen import canvas as rl_canvas

from skewalign.constants import (
    FONT_SIZE_SCALE_FACTOR,
    HELVETICA_DESCENT,
    MAX_FONT_SIZE,
    MIN_FONT_SIZE,
)
from skewalign.services.deskew.quad import PageTransform
from skewalign.services.deskew.types import PageImage, PageResult, Placement

logger = logging.getLogger(__name__)

OVERLAY_FONT = "Helvetica"
OVERLAY_FONT_RESOURCE = "/FOcr"
MIN_HORIZONTAL_SCALE = 30.0
MAX_HORIZONTAL_SCALE = 300.0

# Typographic characters outside latin-1 with a close ASCII equivalent
_REPLACEMENTS = str.maketrans(
    {
        "\u2010": "-",
        "\u2011": "-",
        "\u2012": "-",
        "\u2013": "-",
        "\u2014": "-",
        "\u2212": "-",
        "\u2018": "'",
        "\u2019": "'",
        "\u201c": '"',
        "\u201d": '"',
        "\u2022": "*",
        "\u2026": "...",
        "\ufb01": "fi",
        "\ufb02": "fl",
        "\u200b": "",
        "\ufeff": "",
    }
)


def to_latin1(text: str) -> str:
    """Map text into the WinAnsi/latin-1 range, '?' for anything left over."""
    text = text.translate(_REPLACEMENTS)
    return text.encode("latin-1", errors="replace").decode("latin-1")


def escape_pdf_text(text: str) -> str:
    """Escape text for a PDF literal string (latin-1 compatible)."""
    text = to_latin1(text)
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


@dataclass
class OverlayRun:
    """One text run in displayed-page points, origin bottom-left.

    Attributes:
        text: Text to draw
        x: Baseline origin x
        y: Baseline origin y
        width: Length of the baseline
        height: Line height
        angle: Baseline angle in radians, counter-clockwise
        font_size: Font size in points
    """

    text: str
    x: float
    y: float
    width: float
    height: float
    angle: float
    font_size: float

    def text_matrix(self) -> tuple[float, float, float, float, float, float]:
        c, s = math.cos(self.angle), math.sin(self.angle)
        return c, s, -s, c, self.x, self.y

    def horizontal_scale(self, font_name: str = OVERLAY_FONT) -> float:
        """Tz value stretching the natural text width onto the baseline."""
        natural = pdfmetrics.stringWidth(self.text, font_name, self.font_size)
        if natural <= 0 or self.width <= 0:
            return 100.0
        return max(MIN_HORIZONTAL_SCALE, min(MAX_HORIZONTAL_SCALE, self.width / natural * 100.0))


def placement_to_run(
    placement: Placement, width_pts: float, height_pts: float
) -> OverlayRun | None:
    """Lay out one placement on a displayed page of the given size."""
    text = to_latin1(placement.text.strip())
    if not text:
        return None
    (blx, bly), (brx, bry), (trx, try_), (tlx, tly) = (
        (x * width_pts, y * height_pts) for x, y in placement.quad
    )
    width = math.hypot(brx - blx, bry - bly)
    height = (math.hypot(tlx - blx, tly - bly) + math.hypot(trx - brx, try_ - bry)) / 2.0
    if width <= 0 or height <= 0:
        return None

    angle = math.atan2(bry - bly, brx - blx)
    font_size = max(MIN_FONT_SIZE, min(MAX_FONT_SIZE, height * FONT_SIZE_SCALE_FACTOR))
    # Lift the baseline by the font descent, along the line's up direction.
    descent = HELVETICA_DESCENT * font_size
    x = blx - math.sin(angle) * descent
    y = bly + math.cos(angle) * descent
    return OverlayRun(text, x, y, width, height, angle, font_size)


class TextLayerRenderer:
    """Draws placements as invisible text that stays selectable and searchable."""

    def __init__(self, font_name: str = OVERLAY_FONT) -> None:
        self.font_name = font_name

    def layout(
        self, placements: Iterable[Placement], width_pts: float, height_pts: float
    ) -> list[OverlayRun]:
        runs = []
        for placement in placements:
            run = placement_to_run(placement, width_pts, height_pts)
            if run is not None:
                runs.append(run)
        return runs

    def draw(
        self,
        canvas: rl_canvas.Canvas,
        placements: Iterable[Placement],
        width_pts: float,
        height_pts: float,
    ) -> int:
        """Draw onto a reportlab canvas page of the given size.

        Returns:
            Number of text runs drawn
        """
        runs = self.layout(placements, width_pts, height_pts)
        canvas.saveState()
        canvas.setFillColorRGB(0, 0, 0, 0)
        for run in runs:
            text_obj = canvas.beginText()
            text_obj.setTextRenderMode(3)
            text_obj.setTextTransform(*run.text_matrix())
            text_obj.setFont(self.font_name, run.font_size)
            text_obj.setHorizScale(run.horizontal_scale(self.font_name))
            text_obj.textOut(run.text)
            canvas.drawText(text_obj)
        canvas.restoreState()
        return len(runs)

    def content_commands(
        self,
        placements: Iterable[Placement],
        width_pts: float,
        height_pts: float,
        transform: PageTransform | None = None,
    ) -> list[str]:
        """Raw content stream operators for appending to an existing page.

        ``transform`` maps page space to displayed space; its inverse is
        applied with ``cm`` so runs can be laid out on the displayed page.
        """
        runs = self.layout(placements, width_pts, height_pts)
        if not runs:
            return []

        commands = ["q"]
        if transform is not None:
            m = transform.inverse().matrix
            commands.append(
                f"{m[0, 0]:.4f} {m[1, 0]:.4f} {m[0, 1]:.4f} {m[1, 1]:.4f} "
                f"{m[0, 2]:.2f} {m[1, 2]:.2f} cm"
            )
        for run in runs:
            a, b, c, d, e, f = run.text_matrix()
            commands += [
                "BT",
                "3 Tr",
                f"{OVERLAY_FONT_RESOURCE} {run.font_size:.1f} Tf",
                f"{a:.4f} {b:.4f} {c:.4f} {d:.4f} {e:.2f} {f:.2f} Tm",
                f"{run.horizontal_scale(self.font_name):.1f} Tz",
                f"({escape_pdf_text(run.text)}) Tj",
                "ET",
            ]
        commands.append("Q")
        return commands


def write_searchable_pdf(
    output_path: str | Path,
    pages: Iterable[tuple[PageImage, PageResult, tuple[float, float]]],
    renderer: TextLayerRenderer | None = None,
) -> int:
    """Write image pages with their text layers to a new PDF.

    Args:
        output_path: Destination PDF
        pages: (image, result, (width_pts, height_pts)) per page, in order
        renderer: Text layer renderer (default Helvetica)

    Returns:
        Number of pages written
    """
    renderer = renderer or TextLayerRenderer()
    c = rl_canvas.Canvas(str(output_path))
    count = 0
    for image, result, (width_pts, height_pts) in pages:
        c.setPageSize((width_pts, height_pts))
        pixels = image.pixels
        if pixels.ndim == 3:
            pixels = cv2.cvtColor(pixels, cv2.COLOR_BGR2RGB)
        c.drawImage(ImageReader(Image.fromarray(pixels)), 0, 0, width_pts, height_pts)
        drawn = renderer.draw(c, result.placements, width_pts, height_pts)
        logger.debug(f"Page {result.page_index + 1}: {drawn} text runs")
        c.showPage()
        count += 1
    c.save()
    logger.info(f"Wrote {count} pages to {output_path}")
    return count


def append_text_to_page(pdf: pikepdf.Pdf, page: pikepdf.Page, commands: list[str]) -> None:
    """Add content operators to a page, registering the overlay font.

    The overlay goes in front of the existing streams so that graphics
    state left open by the page content cannot displace it.
    """
    if not commands:
        return
    obj = page.obj
    if "/Resources" not in obj:
        obj["/Resources"] = pikepdf.Dictionary()
    if "/Font" not in obj.Resources:
        obj.Resources["/Font"] = pikepdf.Dictionary()
    if OVERLAY_FONT_RESOURCE not in obj.Resources.Font:
        obj.Resources.Font[OVERLAY_FONT_RESOURCE] = pikepdf.Dictionary(
            {
                "/Type": pikepdf.Name("/Font"),
                "/Subtype": pikepdf.Name("/Type1"),
                "/BaseFont": pikepdf.Name("/" + OVERLAY_FONT),
                "/Encoding": pikepdf.Name("/WinAnsiEncoding"),
            }
        )

    stream = pikepdf.Stream(pdf, "\n".join(commands).encode("latin-1", errors="replace"))
    contents = obj.get("/Contents")
    if contents is None:
        obj["/Contents"] = stream
    elif isinstance(contents, pikepdf.Array):
        obj["/Contents"] = pikepdf.Array([stream, *contents])
    else:
        obj["/Contents"] = pikepdf.Array([stream, contents])


def displayed_size(box: tuple[float, float, float, float], rotation: int) -> tuple[float, float]:
    """Width and height of a page box as displayed after /Rotate."""
    width, height = abs(box[2] - box[0]), abs(box[3] - box[1])
    if rotation % 180 == 90:
        return height, width
    return width, height


def append_text_layer(
    input_pdf: str | Path,
    output_pdf: str | Path,
    results: Iterable[PageResult],
    page_boxes: list[tuple[tuple[float, float, float, float], int]],
    renderer: TextLayerRenderer | None = None,
) -> int:
    """Copy a PDF, adding an invisible text layer to the processed pages.

    Args:
        input_pdf: Source PDF
        output_pdf: Destination PDF
        results: Page results; skipped pages are copied unchanged
        page_boxes: (box, rotation) per page of the source
        renderer: Text layer renderer (default Helvetica)

    Returns:
        Number of pages that received a text layer
    """
    renderer = renderer or TextLayerRenderer()
    written = 0
    with pikepdf.open(input_pdf) as pdf:
        for result in results:
            if result.skipped or not result.placements:
                continue
            box, rotation = page_boxes[result.page_index]
            width_pts, height_pts = displayed_size(box, rotation)
            commands = renderer.content_commands(
                result.placements,
                width_pts,
                height_pts,
                PageTransform.from_box(box, rotation),
            )
            append_text_to_page(pdf, pdf.pages[result.page_index], commands)
            written += 1
        pdf.save(output_pdf)
    logger.info(f"Added text layers to {written} pages in {output_pdf}")
    return written
