"""Per-page text acquisition: direct extraction with an OCR fallback."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

from .errors import ExternalToolFailure, RecognitionFailure
from .ocr_cleanup import strip_nul

logger = logging.getLogger(__name__)

DIRECT = "direct"
RECOGNIZED = "recognized"

MIN_TEXT_CHARS = 30
OCR_DPI = 300


@dataclass(frozen=True)
class Page:
    """Raw text acquired for one page."""
    index: int  # 1-based
    raw_text: str
    extraction_method: str  # "direct" | "recognized"

    @property
    def used_ocr(self) -> bool:
        return self.extraction_method == RECOGNIZED


class PageSource(Protocol):
    """What the acquirer needs from an opened document."""

    @property
    def page_count(self) -> int: ...

    def extract_text(self, page_number: int) -> str: ...

    def rasterize(self, page_number: int, dpi: int = OCR_DPI) -> bytes: ...


class PdfDocument:
    """A PDF opened with pymupdf, addressed by 1-based page numbers."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"PDF file not found: {self.path}")

        import pymupdf

        try:
            self._doc = pymupdf.open(str(self.path))
        except (RuntimeError, ValueError) as e:
            raise ExternalToolFailure(f"Could not open {self.path.name}: {e}") from e

    def __enter__(self) -> PdfDocument:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._doc.close()

    @property
    def page_count(self) -> int:
        try:
            return self._doc.page_count
        except (RuntimeError, ValueError) as e:
            raise ExternalToolFailure(f"Could not read page count of {self.path.name}: {e}") from e

    def _load_page(self, page_number: int):
        if not 1 <= page_number <= self.page_count:
            raise ValueError(
                f"Page {page_number} out of range for {self.path.name} (1..{self.page_count})"
            )
        return self._doc.load_page(page_number - 1)

    def extract_text(self, page_number: int) -> str:
        """Return the page's embedded text layer, NUL bytes removed and trimmed."""
        try:
            text = self._load_page(page_number).get_text()
        except (RuntimeError, ValueError) as e:
            raise ExternalToolFailure(
                f"Text extraction failed for {self.path.name} p.{page_number}: {e}"
            ) from e
        return strip_nul(text or "").strip()

    def rasterize(self, page_number: int, dpi: int = OCR_DPI) -> bytes:
        """Render the page to PNG bytes at the given resolution."""
        try:
            pix = self._load_page(page_number).get_pixmap(dpi=dpi)
            return pix.tobytes("png")
        except (RuntimeError, ValueError) as e:
            raise ExternalToolFailure(
                f"Rasterization failed for {self.path.name} p.{page_number}: {e}"
            ) from e


class TesseractRecognizer:
    """OCR a rendered page image with Tesseract.

    Page segmentation mode 6 (a single uniform block of text) suits the
    dense, column-free layout of most manual pages.
    """

    def __init__(self, lang: str = "eng", psm: int = 6):
        self.lang = lang
        self.psm = psm

    def __call__(self, image_bytes: bytes) -> str:
        import pytesseract
        from PIL import Image, UnidentifiedImageError

        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                text = pytesseract.image_to_string(
                    image, lang=self.lang, config=f"--psm {self.psm}"
                )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError,
                UnidentifiedImageError) as e:
            raise RecognitionFailure(f"OCR failed: {e}") from e
        return (text or "").strip()


class TextAcquirer:
    """Decide per page between the text layer and OCR."""

    def __init__(
        self,
        recognizer: Callable[[bytes], str] | None = None,
        min_chars: int = MIN_TEXT_CHARS,
        dpi: int = OCR_DPI,
    ):
        self.recognizer = recognizer if recognizer is not None else TesseractRecognizer()
        self.min_chars = min_chars
        self.dpi = dpi

    @classmethod
    def from_settings(cls, settings) -> TextAcquirer:
        return cls(
            recognizer=TesseractRecognizer(lang=settings.ocr_lang, psm=settings.ocr_psm),
            min_chars=settings.min_text_chars,
            dpi=settings.ocr_dpi,
        )

    def acquire(self, document: PageSource, page_number: int) -> Page:
        """Return the best available text for one page.

        Raises:
            ExternalToolFailure: If the page could not be rasterized.
            RecognitionFailure: If OCR of the rendered page failed.
        """
        try:
            text = document.extract_text(page_number)
        except ExternalToolFailure as e:
            # An unreadable text layer is treated like an empty one.
            logger.warning("%s; falling back to OCR", e)
            text = ""

        if text and len(text) >= self.min_chars:
            return Page(index=page_number, raw_text=text, extraction_method=DIRECT)

        logger.debug("Page %d has %d chars of text; running OCR", page_number, len(text))
        image = document.rasterize(page_number, dpi=self.dpi)
        text = self.recognizer(image)
        return Page(index=page_number, raw_text=text, extraction_method=RECOGNIZED)
