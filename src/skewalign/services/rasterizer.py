"""
Page rasterizers.

Two sources are supported: image files (including multi-page TIFF
faxes) read with Pillow, and PDF documents rendered with ``pdftoppm``.
PDF metadata (page boxes, /Rotate, existing text) is read with pikepdf.
"""

import logging
import re
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np
import pikepdf
from PIL import Image, ImageOps

from skewalign.constants import PDFTOPPM_TIMEOUT
from skewalign.services.deskew.quad import PageTransform, dpi_for_scale
from skewalign.services.deskew.types import PageImage
from skewalign.utils.exceptions import DependencyError, RasterizationError

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_DPI = 300.0
PAGE_BOX_NAMES = ("/MediaBox", "/CropBox", "/TrimBox", "/BleedBox", "/ArtBox")
RENDERABLE_BOXES = ("/MediaBox", "/CropBox")


class Rasterizer(ABC):
    """Renders pages of a source document to images."""

    @abstractmethod
    def page_count(self) -> int:
        """Number of pages in the source."""

    @abstractmethod
    def render(self, page_index: int) -> PageImage:
        """Render one page.

        Raises:
            RasterizationError: When the page cannot be rendered
        """

    def has_text(self, page_index: int) -> bool:
        """True when the page already carries visible text."""
        return False


# =============================================================================
# Image files
# =============================================================================


def pil_to_bgr(pil_img: Image.Image) -> np.ndarray:
    """Convert a Pillow image to an OpenCV array (gray stays gray)."""
    if pil_img.mode in ("1", "L", "I;16", "I"):
        return np.array(pil_img.convert("L"))
    if pil_img.mode != "RGB":
        pil_img = pil_img.convert("RGB")
    return cv2.cvtColor(np.array(pil_img), cv2.COLOR_RGB2BGR)


class ImageFileRasterizer(Rasterizer):
    """Pages from image files; every frame of a multi-page TIFF is a page."""

    def __init__(self, paths: list[str | Path]) -> None:
        self._frames: list[tuple[Path, int]] = []
        self._dpi: list[tuple[float, float]] = []
        for path in (Path(p) for p in paths):
            try:
                with Image.open(path) as img:
                    frames = getattr(img, "n_frames", 1)
                    dpi = img.info.get("dpi", (DEFAULT_IMAGE_DPI, DEFAULT_IMAGE_DPI))
            except (OSError, ValueError) as e:
                raise RasterizationError(len(self._frames), f"{path}: {e}") from e
            for frame in range(frames):
                self._frames.append((path, frame))
                self._dpi.append(
                    (float(dpi[0]) or DEFAULT_IMAGE_DPI, float(dpi[1]) or DEFAULT_IMAGE_DPI)
                )
        logger.info(f"{len(self._frames)} image pages from {len(paths)} files")

    def page_count(self) -> int:
        return len(self._frames)

    def page_size(self, page_index: int, image: PageImage) -> tuple[float, float]:
        """Page size in points for an image page, from its DPI."""
        dpi_x, dpi_y = self._dpi[page_index]
        return image.width * 72.0 / dpi_x, image.height * 72.0 / dpi_y

    def render(self, page_index: int) -> PageImage:
        if not 0 <= page_index < len(self._frames):
            raise RasterizationError(page_index, "page index out of range")
        path, frame = self._frames[page_index]
        try:
            with Image.open(path) as img:
                img.seek(frame)
                pixels = pil_to_bgr(ImageOps.exif_transpose(img))
        except (OSError, ValueError, EOFError) as e:
            raise RasterizationError(page_index, f"{path}: {e}") from e
        return PageImage.from_array(pixels)


# =============================================================================
# PDF documents
# =============================================================================


@dataclass
class PdfPageInfo:
    """Geometry of one PDF page.

    Attributes:
        box_name: Page box used for rendering (e.g. "/MediaBox")
        box: (x0, y0, x1, y1) in points
        rotation: /Rotate value normalized to 0, 90, 180 or 270
        has_text: Whether the page already carries visible text
    """

    box_name: str
    box: tuple[float, float, float, float]
    rotation: int = 0
    has_text: bool = False

    @property
    def transform(self) -> PageTransform:
        return PageTransform.from_box(self.box, self.rotation)


def page_has_visible_text(page: pikepdf.Page) -> bool:
    """True when a page has a BT/ET block showing text outside render mode 3.

    Pages whose only text is invisible (``3 Tr``) count as image-only:
    that text is an earlier OCR layer.
    """
    contents = page.obj.get("/Contents")
    if contents is None:
        return False
    streams = list(contents) if isinstance(contents, pikepdf.Array) else [contents]

    for stream in streams:
        try:
            text = stream.read_bytes().decode("latin-1", errors="ignore")
        except pikepdf.PdfError as e:
            logger.debug(f"Unreadable content stream: {e}")
            continue
        for m in re.finditer(r"BT\b(.*?)ET\b", text, re.DOTALL):
            block = m.group(1)
            if re.search(r"\bTj\b|\bTJ\b", block) and not re.search(r"\b3\s+Tr\b", block):
                return True
    return False


def _box_area(box: tuple[float, float, float, float]) -> float:
    return abs(box[2] - box[0]) * abs(box[3] - box[1])


def select_page_box(page: pikepdf.Page) -> tuple[str, tuple[float, float, float, float]]:
    """The largest non-empty page box, preferring earlier names on ties.

    Uses pikepdf's box properties, which resolve inherited boxes and the
    defaults of missing ones.
    """
    best_name, best_box = "/MediaBox", (0.0, 0.0, 612.0, 792.0)
    best_area = 0.0
    for name in PAGE_BOX_NAMES:
        value = getattr(page, name[1:].lower(), None)
        if value is None:
            continue
        x0, y0, x1, y1 = (float(v) for v in value)
        box = (min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1))
        area = _box_area(box)
        if area > best_area:
            best_name, best_box, best_area = name, box, area
    return best_name, best_box


def page_rotation(page: pikepdf.Page) -> int:
    """Resolve a page's direct or inherited /Rotate to 0, 90, 180 or 270."""
    rotation = 0
    if "/Rotate" in page.obj:
        rotation = int(page.obj["/Rotate"])
    else:
        node = page.obj.get("/Parent")
        while node is not None:
            if "/Rotate" in node:
                rotation = int(node["/Rotate"])
                break
            node = node.get("/Parent")
    return round(rotation / 90) * 90 % 360


def read_pdf_pages(pdf_path: str | Path) -> list[PdfPageInfo]:
    """Read box, rotation and existing-text flags for every page.

    pdftoppm can only render the media or crop box; when a different box
    is largest the media box is used.
    """
    pages: list[PdfPageInfo] = []
    with pikepdf.open(pdf_path) as pdf:
        for page in pdf.pages:
            name, box = select_page_box(page)
            if name not in RENDERABLE_BOXES:
                logger.debug(f"{name} is not renderable, using /MediaBox")
                name = "/MediaBox"
                box = tuple(float(v) for v in page.mediabox)  # type: ignore[assignment]
            pages.append(
                PdfPageInfo(name, box, page_rotation(page), page_has_visible_text(page))
            )
    return pages


class PdfRasterizer(Rasterizer):
    """Renders PDF pages with pdftoppm at ``72 * render_scale`` dpi."""

    def __init__(self, pdf_path: str | Path, render_scale: float = 2.0) -> None:
        self.pdf_path = Path(pdf_path)
        self.render_scale = render_scale
        try:
            self.pages = read_pdf_pages(self.pdf_path)
        except pikepdf.PdfError as e:
            raise RasterizationError(0, f"cannot open {self.pdf_path}: {e}") from e
        for i, info in enumerate(self.pages):
            logger.info(
                f"Page {i + 1}: using {info.box_name} "
                f"[{', '.join(f'{v:g}' for v in info.box)}] rotate={info.rotation}"
            )

    def page_count(self) -> int:
        return len(self.pages)

    def has_text(self, page_index: int) -> bool:
        return self.pages[page_index].has_text

    def render(self, page_index: int) -> PageImage:
        if not 0 <= page_index < len(self.pages):
            raise RasterizationError(page_index, "page index out of range")
        page_num = page_index + 1
        with tempfile.TemporaryDirectory(prefix="skewalign_") as tmp:
            prefix = str(Path(tmp) / f"page_{page_num}")
            cmd = [
                "pdftoppm",
                "-f",
                str(page_num),
                "-l",
                str(page_num),
                "-r",
                f"{dpi_for_scale(self.render_scale):g}",
                "-png",
                "-singlefile",
            ]
            if self.pages[page_index].box_name == "/CropBox":
                cmd.append("-cropbox")
            cmd += [str(self.pdf_path), prefix]

            try:
                subprocess.run(
                    cmd, check=True, capture_output=True, text=True, timeout=PDFTOPPM_TIMEOUT
                )
            except FileNotFoundError as e:
                raise DependencyError("pdftoppm", "install poppler-utils") from e
            except subprocess.CalledProcessError as e:
                raise RasterizationError(page_index, e.stderr.strip() or str(e)) from e
            except subprocess.TimeoutExpired as e:
                raise RasterizationError(page_index, "pdftoppm timed out") from e

            pixels = cv2.imread(f"{prefix}.png", cv2.IMREAD_COLOR)
            if pixels is None:
                raise RasterizationError(page_index, "pdftoppm produced no image")
        return PageImage.from_array(pixels)
