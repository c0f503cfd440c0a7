"""Tests for image and PDF rasterizers."""

import subprocess
from pathlib import Path
from unittest.mock import patch

import cv2
import numpy as np
import pikepdf
import pytest
from PIL import Image

from skewalign.services.rasterizer import (
    ImageFileRasterizer,
    PdfRasterizer,
    page_has_visible_text,
    page_rotation,
    pil_to_bgr,
    read_pdf_pages,
    select_page_box,
)
from skewalign.utils.exceptions import DependencyError, RasterizationError

# ── Helpers ──────────────────────────────────────────────────────────


def _make_pdf(path, content: bytes | None = None, rotate=None, cropbox=None):
    pdf = pikepdf.new()
    pdf.add_blank_page(page_size=(612, 792))
    page = pdf.pages[0]
    if content is not None:
        page.obj["/Contents"] = pikepdf.Stream(pdf, content)
    if rotate is not None:
        pdf.Root.Pages["/Rotate"] = rotate
    if cropbox is not None:
        page.obj["/CropBox"] = pikepdf.Array(cropbox)
    pdf.save(path)


def _fake_pdftoppm(cmd, **kwargs):
    """Stand-in for subprocess.run that writes the PNG pdftoppm would."""
    prefix = cmd[-1]
    cv2.imwrite(f"{prefix}.png", np.full((110, 85, 3), 255, dtype=np.uint8))
    return subprocess.CompletedProcess(cmd, 0, "", "")


class TestPilToBgr:
    """Tests for pil_to_bgr."""

    def test_rgb_channel_order(self):
        img = Image.new("RGB", (2, 2), (255, 0, 0))
        assert tuple(pil_to_bgr(img)[0, 0]) == (0, 0, 255)

    def test_bilevel_stays_gray(self):
        assert pil_to_bgr(Image.new("1", (4, 3), 1)).shape == (3, 4)


class TestImageFileRasterizer:
    """Tests for ImageFileRasterizer."""

    def test_multi_page_tiff(self, tmp_path):
        path = tmp_path / "fax.tif"
        frames = [Image.new("L", (60, 40), 255), Image.new("L", (60, 40), 0)]
        frames[0].save(path, save_all=True, append_images=frames[1:], dpi=(200, 200))

        rasterizer = ImageFileRasterizer([path])

        assert rasterizer.page_count() == 2
        second = rasterizer.render(1)
        assert (second.width, second.height) == (60, 40)
        assert second.pixels.max() == 0
        assert rasterizer.page_size(0, second) == pytest.approx((60 * 72 / 200, 40 * 72 / 200))

    def test_several_files(self, tmp_path):
        paths = []
        for i in range(2):
            path = tmp_path / f"p{i}.png"
            Image.new("RGB", (30 + i, 20), "white").save(path)
            paths.append(path)
        rasterizer = ImageFileRasterizer(paths)
        assert rasterizer.page_count() == 2
        assert rasterizer.render(1).width == 31
        assert not rasterizer.has_text(0)

    def test_out_of_range(self, tmp_path):
        path = tmp_path / "p.png"
        Image.new("L", (10, 10), 255).save(path)
        with pytest.raises(RasterizationError):
            ImageFileRasterizer([path]).render(3)

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "broken.png"
        path.write_bytes(b"not an image")
        with pytest.raises(RasterizationError):
            ImageFileRasterizer([path])


class TestPdfMetadata:
    """Tests for page box, rotation and text detection."""

    def test_visible_text(self, tmp_path):
        path = tmp_path / "text.pdf"
        _make_pdf(path, b"BT /F1 12 Tf 72 700 Td (Hello) Tj ET")
        with pikepdf.open(path) as pdf:
            assert page_has_visible_text(pdf.pages[0])

    def test_invisible_text_is_not_visible(self, tmp_path):
        path = tmp_path / "ocr.pdf"
        _make_pdf(path, b"BT 3 Tr /F1 12 Tf 72 700 Td (Hello) Tj ET")
        with pikepdf.open(path) as pdf:
            assert not page_has_visible_text(pdf.pages[0])

    def test_image_only_page(self, tmp_path):
        path = tmp_path / "image.pdf"
        _make_pdf(path, b"q 612 0 0 792 0 0 cm /Im0 Do Q")
        with pikepdf.open(path) as pdf:
            assert not page_has_visible_text(pdf.pages[0])

    def test_inherited_rotation(self, tmp_path):
        path = tmp_path / "rotated.pdf"
        _make_pdf(path, rotate=270)
        with pikepdf.open(path) as pdf:
            assert page_rotation(pdf.pages[0]) == 270

    def test_larger_cropbox_selected(self, tmp_path):
        path = tmp_path / "crop.pdf"
        _make_pdf(path, cropbox=[-10, -10, 700, 900])
        with pikepdf.open(path) as pdf:
            name, box = select_page_box(pdf.pages[0])
        assert name == "/CropBox"
        assert box == (-10.0, -10.0, 700.0, 900.0)

    def test_read_pdf_pages(self, tmp_path):
        path = tmp_path / "doc.pdf"
        _make_pdf(path, b"BT /F1 12 Tf (Hi) Tj ET", rotate=90)
        (info,) = read_pdf_pages(path)
        assert info.box_name == "/MediaBox"
        assert info.box == (0.0, 0.0, 612.0, 792.0)
        assert info.rotation == 90
        assert info.has_text


class TestPdfRasterizer:
    """Tests for PdfRasterizer with pdftoppm mocked out."""

    def test_render_invokes_pdftoppm(self, tmp_path):
        path = tmp_path / "doc.pdf"
        _make_pdf(path)
        rasterizer = PdfRasterizer(path, render_scale=2.0)
        with patch("skewalign.services.rasterizer.subprocess.run", side_effect=_fake_pdftoppm) as run:
            image = rasterizer.render(0)
        cmd = run.call_args[0][0]
        assert cmd[0] == "pdftoppm"
        assert cmd[cmd.index("-r") + 1] == "144"
        assert "-cropbox" not in cmd
        assert Path(cmd[-2]) == path
        assert (image.width, image.height) == (85, 110)

    def test_cropbox_flag(self, tmp_path):
        path = tmp_path / "crop.pdf"
        _make_pdf(path, cropbox=[-10, -10, 700, 900])
        rasterizer = PdfRasterizer(path)
        with patch("skewalign.services.rasterizer.subprocess.run", side_effect=_fake_pdftoppm) as run:
            rasterizer.render(0)
        assert "-cropbox" in run.call_args[0][0]

    def test_missing_pdftoppm(self, tmp_path):
        path = tmp_path / "doc.pdf"
        _make_pdf(path)
        rasterizer = PdfRasterizer(path)
        with patch("skewalign.services.rasterizer.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(DependencyError):
                rasterizer.render(0)

    def test_pdftoppm_failure(self, tmp_path):
        path = tmp_path / "doc.pdf"
        _make_pdf(path)
        rasterizer = PdfRasterizer(path)
        error = subprocess.CalledProcessError(1, ["pdftoppm"], stderr="Syntax Error")
        with patch("skewalign.services.rasterizer.subprocess.run", side_effect=error):
            with pytest.raises(RasterizationError, match="Syntax Error"):
                rasterizer.render(0)

    def test_not_a_pdf(self, tmp_path):
        path = tmp_path / "fake.pdf"
        path.write_bytes(b"hello")
        with pytest.raises(RasterizationError):
            PdfRasterizer(path)
