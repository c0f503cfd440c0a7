"""
Text recognizer interface and the RapidOCR adapter.

Recognizers return lines with normalized, bottom-left-origin quads, so
the caller never needs to know the resolution the engine worked at.
"""

import logging
from abc import ABC, abstractmethod

import numpy as np

from skewalign.services.deskew.types import PageImage, RecognizedLine, as_quad
from skewalign.utils.exceptions import DependencyError, RecognitionError

logger = logging.getLogger(__name__)

# Language names accepted by the RapidOCR adapter, mapped to LangRec members
RAPIDOCR_LANGUAGES = {
    "latin": "LATIN",
    "en": "EN",
    "ch": "CH",
    "chinese_cht": "CHINESE_CHT",
    "japan": "JAPAN",
    "korean": "KOREAN",
    "arabic": "ARABIC",
}


class TextRecognizer(ABC):
    """Turns a page image into recognized text lines."""

    @abstractmethod
    def recognize(self, image: PageImage, page_index: int = 0) -> list[RecognizedLine]:
        """Recognize the text lines of a page image.

        Raises:
            RecognitionError: When the engine fails on this image
        """


def pixel_box_to_quad(box, width: int, height: int):
    """Convert a pixel box (TL, TR, BR, BL; y down) to a normalized quad.

    The result is ordered bottom-left, bottom-right, top-right, top-left
    with the origin at the bottom-left of the page.
    """
    pts = np.asarray(box, dtype=np.float64).reshape(4, 2)
    tl, tr, br, bl = pts
    return as_quad([(p[0] / width, 1.0 - p[1] / height) for p in (bl, br, tr, tl)])


class RapidOCRRecognizer(TextRecognizer):
    """Recognizer backed by RapidOCR (optional ``ocr`` extra).

    The engine is created lazily on first use; creating it loads the
    ONNX models, which takes a noticeable amount of time and memory.
    """

    def __init__(
        self,
        language: str = "latin",
        limit_side_len: int = 4000,
        text_score: float = 0.3,
        word_boxes: bool = True,
    ) -> None:
        self.language = language
        self.limit_side_len = limit_side_len
        self.text_score = text_score
        self.word_boxes = word_boxes
        self._engine = None

    def _get_engine(self):
        if self._engine is not None:
            return self._engine
        try:
            from rapidocr import LangRec, RapidOCR
        except ImportError as e:
            raise DependencyError(
                "rapidocr", "install the 'ocr' extra: pip install skewalign[ocr]"
            ) from e

        lang_rec = getattr(LangRec, RAPIDOCR_LANGUAGES.get(self.language, "LATIN"))
        params = {
            "Det.limit_side_len": self.limit_side_len,
            "Global.text_score": self.text_score,
            "Rec.lang_type": lang_rec,
        }
        logger.info(f"Loading RapidOCR ({self.language})")
        self._engine = RapidOCR(params=params)
        # Keep the engine's own progress output quiet
        logging.getLogger("rapidocr").setLevel(logging.WARNING)
        return self._engine

    def recognize(self, image: PageImage, page_index: int = 0) -> list[RecognizedLine]:
        engine = self._get_engine()
        try:
            if self.word_boxes:
                result = engine(image.pixels, return_word_box=True)
            else:
                result = engine(image.pixels)
        except Exception as e:
            raise RecognitionError(page_index, reason=str(e)) from e

        if getattr(result, "boxes", None) is None or not result.txts:
            logger.info(f"Page {page_index + 1}: no text recognized")
            return []

        scores = list(result.scores) if result.scores is not None else []
        words = getattr(result, "word_results", None) or ()
        lines: list[RecognizedLine] = []
        for i, (box, text) in enumerate(zip(result.boxes, result.txts, strict=False)):
            char_quads = []
            if i < len(words):
                for word in words[i]:
                    # word entries are (text, score, box)
                    if len(word) >= 3 and word[2] is not None:
                        char_quads.append(pixel_box_to_quad(word[2], image.width, image.height))
            lines.append(
                RecognizedLine(
                    text=str(text),
                    quad=pixel_box_to_quad(box, image.width, image.height),
                    confidence=float(scores[i]) if i < len(scores) else 1.0,
                    char_quads=char_quads,
                )
            )
        logger.debug(f"Page {page_index + 1}: recognized {len(lines)} lines")
        return lines
