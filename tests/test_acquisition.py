"""Tests for per-page text acquisition and the OCR fallback decision."""

from __future__ import annotations

import shutil
from unittest.mock import MagicMock, patch

import pytest

from manual_rag.acquisition import (
    DIRECT,
    RECOGNIZED,
    PdfDocument,
    TesseractRecognizer,
    TextAcquirer,
)
from manual_rag.errors import ExternalToolFailure, RecognitionFailure

LONG_TEXT = "Check the tire pressure when the tires are cold, at least once a month."


# ── Fallback Decision ─────────────────────────────────────────────


class TestTextAcquirer:
    """Test direct extraction vs. rasterize + recognize."""

    def test_usable_text_layer_skips_ocr(self, make_document, recognizer):
        document = make_document([LONG_TEXT])
        page = TextAcquirer(recognizer=recognizer).acquire(document, 1)
        assert page.extraction_method == DIRECT
        assert page.raw_text == LONG_TEXT
        assert page.index == 1
        recognizer.assert_not_called()
        assert document.rasterized == []

    def test_thin_text_layer_uses_ocr_once(self, make_document, recognizer):
        document = make_document(["12"])
        page = TextAcquirer(recognizer=recognizer).acquire(document, 1)
        assert page.extraction_method == RECOGNIZED
        assert page.used_ocr
        assert "DEFROST" in page.raw_text
        recognizer.assert_called_once_with(b"png-1")
        assert document.rasterized == [1]

    def test_empty_text_layer_uses_ocr(self, make_document, recognizer):
        document = make_document([""])
        page = TextAcquirer(recognizer=recognizer).acquire(document, 1)
        assert page.extraction_method == RECOGNIZED

    def test_threshold_is_inclusive(self, make_document, recognizer):
        document = make_document(["x" * 30, "x" * 29])
        acquirer = TextAcquirer(recognizer=recognizer, min_chars=30)
        assert acquirer.acquire(document, 1).extraction_method == DIRECT
        assert acquirer.acquire(document, 2).extraction_method == RECOGNIZED

    def test_rasterizes_at_configured_dpi(self, recognizer):
        document = MagicMock()
        document.extract_text.return_value = ""
        document.rasterize.return_value = b"png"
        TextAcquirer(recognizer=recognizer, dpi=300).acquire(document, 4)
        document.rasterize.assert_called_once_with(4, dpi=300)

    def test_unreadable_text_layer_falls_back_to_ocr(self, recognizer):
        document = MagicMock()
        document.extract_text.side_effect = ExternalToolFailure("broken text layer")
        document.rasterize.return_value = b"png"
        page = TextAcquirer(recognizer=recognizer).acquire(document, 1)
        assert page.extraction_method == RECOGNIZED

    def test_rasterization_failure_propagates(self, make_document, recognizer):
        document = make_document([""], broken_raster={1})
        with pytest.raises(ExternalToolFailure):
            TextAcquirer(recognizer=recognizer).acquire(document, 1)
        recognizer.assert_not_called()

    def test_recognition_failure_propagates(self, make_document):
        recognizer = MagicMock(side_effect=RecognitionFailure("engine crashed"))
        with pytest.raises(RecognitionFailure):
            TextAcquirer(recognizer=recognizer).acquire(make_document([""]), 1)

    def test_from_settings(self):
        from manual_rag.config import Settings

        acquirer = TextAcquirer.from_settings(Settings(min_text_chars=50, ocr_dpi=200, ocr_psm=4))
        assert acquirer.min_chars == 50
        assert acquirer.dpi == 200
        assert acquirer.recognizer.psm == 4
        assert acquirer.recognizer.lang == "eng"


# ── Tesseract Recognizer ──────────────────────────────────────────


def _png_bytes() -> bytes:
    import io

    from PIL import Image

    buffer = io.BytesIO()
    Image.new("RGB", (40, 20), "white").save(buffer, format="PNG")
    return buffer.getvalue()


class TestTesseractRecognizer:
    """Test OCR invocation with the engine mocked."""

    @patch("pytesseract.image_to_string")
    def test_passes_language_and_psm(self, mock_ocr):
        mock_ocr.return_value = "  DEFROST \n"
        text = TesseractRecognizer(lang="eng", psm=6)(_png_bytes())
        assert text == "DEFROST"
        _, kwargs = mock_ocr.call_args
        assert kwargs["lang"] == "eng"
        assert kwargs["config"] == "--psm 6"

    @patch("pytesseract.image_to_string")
    def test_engine_error_becomes_recognition_failure(self, mock_ocr):
        import pytesseract

        mock_ocr.side_effect = pytesseract.TesseractError(1, "bad things")
        with pytest.raises(RecognitionFailure):
            TesseractRecognizer()(_png_bytes())

    def test_undecodable_image_is_recognition_failure(self):
        with pytest.raises(RecognitionFailure):
            TesseractRecognizer()(b"not an image")


# ── PdfDocument (real pymupdf) ────────────────────────────────────


@pytest.fixture
def sample_pdf(tmp_path):
    import pymupdf

    path = tmp_path / "owners_manual.pdf"
    doc = pymupdf.open()
    page = doc.new_page()
    page.insert_text((72, 72), LONG_TEXT)
    doc.new_page()  # blank page, e.g. a scanned image with no text layer
    doc.save(str(path))
    doc.close()
    return path


class TestPdfDocument:
    """Test page access against a generated PDF."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            PdfDocument(tmp_path / "nope.pdf")

    def test_corrupt_file_is_external_tool_failure(self, tmp_path):
        path = tmp_path / "broken.pdf"
        path.write_bytes(b"this is not a pdf")
        with pytest.raises(ExternalToolFailure):
            PdfDocument(path)

    def test_page_count(self, sample_pdf):
        with PdfDocument(sample_pdf) as document:
            assert document.page_count == 2

    def test_extract_text(self, sample_pdf):
        with PdfDocument(sample_pdf) as document:
            assert "tire pressure" in document.extract_text(1)
            assert document.extract_text(2) == ""

    def test_page_out_of_range(self, sample_pdf):
        with PdfDocument(sample_pdf) as document:
            with pytest.raises(ExternalToolFailure):
                document.extract_text(3)

    def test_rasterize_returns_png(self, sample_pdf):
        with PdfDocument(sample_pdf) as document:
            png = document.rasterize(2, dpi=72)
        assert png.startswith(b"\x89PNG")

    def test_direct_page_end_to_end(self, sample_pdf, recognizer):
        with PdfDocument(sample_pdf) as document:
            acquirer = TextAcquirer(recognizer=recognizer)
            assert acquirer.acquire(document, 1).extraction_method == DIRECT
            assert acquirer.acquire(document, 2).extraction_method == RECOGNIZED
        recognizer.assert_called_once()


@pytest.mark.integration
@pytest.mark.skipif(shutil.which("tesseract") is None, reason="tesseract binary not installed")
class TestTesseractIntegration:
    def test_recognizes_rendered_text(self, tmp_path):
        import pymupdf

        path = tmp_path / "scan.pdf"
        doc = pymupdf.open()
        doc.new_page().insert_text((72, 72), "DEFROST", fontsize=36)
        doc.save(str(path))
        doc.close()

        with PdfDocument(path) as document:
            text = TesseractRecognizer()(document.rasterize(1))
        assert "DEFROST" in text.upper()
