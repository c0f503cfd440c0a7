#!/usr/bin/env python3
"""
SkewAlign CLI - skew estimation and searchable overlays from the terminal.

Usage:
    python -m skewalign <command> [options]

Commands:
    skew        Print the estimated skew angle of each page
    ocr         Add an invisible, aligned text layer (image files or PDF)

Examples:
    skewalign skew scan.tif
    skewalign skew document.pdf --pages 1-3 --debug-dir /tmp/skew
    skewalign ocr fax.tif -o fax.pdf
    skewalign ocr input.pdf -o output.pdf --language en --workers 4
"""

import argparse
import json
import logging
import math
import sys
from pathlib import Path

from skewalign.services.deskew.config import DeskewConfig
from skewalign.utils.exceptions import SkewAlignError
from skewalign.utils.logger import setup_logger

PDF_SUFFIXES = {".pdf"}


# ---------------------------------------------------------------------------
# Page range parser
# ---------------------------------------------------------------------------


def parse_page_list(text: str) -> list[int]:
    """Parse "3", "1-5", "1,3,7" or "1-3,7" into sorted 1-based page numbers."""
    pages: set[int] = set()
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            if "-" in part:
                start_s, end_s = part.split("-", 1)
                pages.update(range(int(start_s), int(end_s) + 1))
            else:
                pages.add(int(part))
        except ValueError:
            raise ValueError(
                f"Invalid page specification '{part}'. "
                "Use numbers and ranges like '1-5' or '1,3,7'."
            ) from None
    return sorted(p for p in pages if p >= 1)


# ---------------------------------------------------------------------------
# Argument parser construction
# ---------------------------------------------------------------------------


def _add_common_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", type=Path, default=None, help="JSON file with config values")
    p.add_argument("--pages", type=str, default=None, help="Pages to process (e.g. '1-3,7')")
    p.add_argument("--band-count", type=int, default=None, help="Horizontal bands (default: 8)")
    p.add_argument("--angle-range", type=float, default=None, help="Search range in degrees")
    p.add_argument("--threshold", type=int, default=None, help="Ink threshold (0 = Otsu)")
    p.add_argument(
        "--no-band-median", action="store_true", help="Disable the band-median fallback"
    )
    p.add_argument(
        "--render-scale", type=float, default=None, help="PDF render scale (default: 2.0)"
    )
    p.add_argument(
        "--debug-dir", type=Path, default=None, help="Write debug PNGs to this directory"
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with subcommands."""
    p = argparse.ArgumentParser(
        prog="skewalign",
        description="Skew estimation and aligned invisible text layers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Verbose logging (DEBUG)")
    sub = p.add_subparsers(dest="command", help="Available commands")

    skew_p = sub.add_parser("skew", help="Estimate page skew angles")
    skew_p.add_argument("inputs", type=Path, nargs="+", help="Image files or one PDF")
    _add_common_options(skew_p)

    ocr_p = sub.add_parser("ocr", help="Add a searchable text layer")
    ocr_p.add_argument("inputs", type=Path, nargs="+", help="Image files or one PDF")
    ocr_p.add_argument("-o", "--output", type=Path, required=True, help="Output PDF file")
    ocr_p.add_argument("--language", type=str, default=None, help="OCR language (default: latin)")
    ocr_p.add_argument("--workers", type=int, default=None, help="Parallel workers (0 = auto)")
    ocr_p.add_argument(
        "--page-timeout", type=float, default=None, help="Seconds per page angle search"
    )
    ocr_p.add_argument(
        "--no-geometry", action="store_true", help="Skip the geometry row detector"
    )
    ocr_p.add_argument(
        "--replace-existing-text",
        action="store_true",
        help="Also process PDF pages that already have text (default: skip them)",
    )
    _add_common_options(ocr_p)
    return p


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_config(args) -> DeskewConfig:
    """Config file values, overridden by explicit command line options."""
    values = {}
    if args.config:
        with open(args.config, encoding="utf-8") as f:
            values = json.load(f)

    overrides = {
        "band_count": args.band_count,
        "angle_range_degrees": args.angle_range,
        "ink_threshold": args.threshold,
        "render_scale": args.render_scale,
        "workers": getattr(args, "workers", None),
        "page_timeout_seconds": getattr(args, "page_timeout", None),
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    if getattr(args, "language", None):
        values["languages"] = [args.language]
    if args.no_band_median:
        values["enable_band_median"] = False
    if getattr(args, "replace_existing_text", False):
        values["skip_pages_with_text"] = False
    return DeskewConfig.from_dict(values)


def _is_pdf(inputs: list[Path]) -> bool:
    if any(p.suffix.lower() in PDF_SUFFIXES for p in inputs):
        if len(inputs) != 1:
            raise ValueError("a PDF must be the only input")
        return True
    return False


def _make_rasterizer(inputs: list[Path], config: DeskewConfig):
    from skewalign.services.rasterizer import ImageFileRasterizer, PdfRasterizer

    if _is_pdf(inputs):
        return PdfRasterizer(inputs[0], config.render_scale)
    return ImageFileRasterizer(inputs)


def _page_indices(args, page_count: int) -> list[int]:
    if not args.pages:
        return list(range(page_count))
    return [p - 1 for p in parse_page_list(args.pages) if p <= page_count]


def _debug_sink(args):
    if args.debug_dir is None:
        return None
    from skewalign.services.debug_export import PngDebugSink

    return PngDebugSink(args.debug_dir)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_skew(args, logger) -> int:
    """Handle the 'skew' command."""
    from skewalign.services.deskew.estimator import SkewEstimator
    from skewalign.services.geometry_detector import ConnectedComponentDetector

    config = build_config(args)
    rasterizer = _make_rasterizer(args.inputs, config)
    estimator = SkewEstimator(config, debug_sink=_debug_sink(args))
    detector = ConnectedComponentDetector(config)

    for index in _page_indices(args, rasterizer.page_count()):
        image = rasterizer.render(index)
        blocks = detector.detect(image, index)
        estimate = estimator.estimate(
            image, [math.degrees(b.angle) for b in blocks], page_index=index
        )
        if estimate.is_estimated:
            print(
                f"page {index + 1}: {estimate.angle:+.2f}° via {estimate.source}, "
                f"correction {estimate.correction:+.2f}°"
            )
        else:
            print(f"page {index + 1}: no estimate ({estimate.reason})")
    return 0


def _cmd_ocr(args, logger) -> int:
    """Handle the 'ocr' command."""
    from skewalign.services.document import process_document
    from skewalign.services.geometry_detector import ConnectedComponentDetector
    from skewalign.services.page_pipeline import PageProcessor
    from skewalign.services.rasterizer import PdfRasterizer
    from skewalign.services.recognizer import RapidOCRRecognizer
    from skewalign.services.text_layer import append_text_layer, write_searchable_pdf

    config = build_config(args)
    rasterizer = _make_rasterizer(args.inputs, config)
    processor = PageProcessor(
        config,
        RapidOCRRecognizer(language=config.languages[0] if config.languages else "latin"),
        detector=None if args.no_geometry else ConnectedComponentDetector(config),
        debug_sink=_debug_sink(args),
    )
    indices = _page_indices(args, rasterizer.page_count())
    results = process_document(
        rasterizer,
        indices,
        processor,
        workers=config.workers,
        page_timeout=config.page_timeout_seconds or None,
    )

    if isinstance(rasterizer, PdfRasterizer):
        boxes = [(info.box, info.rotation) for info in rasterizer.pages]
        written = append_text_layer(args.inputs[0], args.output, results, boxes)
    else:

        def image_pages():
            for result in results:
                # Images were already rendered by the workers; re-read for output.
                image = rasterizer.render(result.page_index)
                yield image, result, rasterizer.page_size(result.page_index, image)

        written = write_searchable_pdf(args.output, image_pages())

    logger.info(f"{written} pages written to {args.output}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logger(logging.DEBUG if args.verbose else logging.INFO)
    logger = logging.getLogger("skewalign.cli")

    missing = [p for p in args.inputs if not p.exists()]
    if missing:
        print(f"Error: {missing[0]} not found", file=sys.stderr)
        return 1

    handlers = {
        "skew": _cmd_skew,
        "ocr": _cmd_ocr,
    }
    try:
        return handlers[args.command](args, logger)
    except (SkewAlignError, ValueError, OSError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
