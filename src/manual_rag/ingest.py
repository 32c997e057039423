"""Ingestion run: PDFs → page text → chunks → embeddings → vector collection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from . import list_pdfs
from .acquisition import Page, PageSource, PdfDocument, TextAcquirer
from .chunk_assembly import CHUNK_CHARS, CHUNK_OVERLAP, build_chunks, save_chunks
from .embeddings import EmbeddingBatcher
from .errors import ExternalToolFailure, RecognitionFailure
from .ocr_cleanup import normalize_text
from .vector_store import count_points, ensure_collection, upsert_chunks

logger = logging.getLogger(__name__)


@dataclass
class PageFailure:
    """A page (or, with page 0, a whole document) that could not be read."""
    filename: str
    page: int
    error: str


@dataclass
class DocumentReport:
    """Outcome of ingesting one PDF."""
    doc_id: str
    filename: str
    page_count: int = 0
    ocr_pages: int = 0
    chunks: int = 0
    upserted: int = 0
    failures: list[PageFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class IngestReport:
    """Outcome of a whole ingestion run."""
    documents: list[DocumentReport] = field(default_factory=list)
    point_count: int | None = None

    @property
    def total_chunks(self) -> int:
        return sum(d.chunks for d in self.documents)

    @property
    def total_upserted(self) -> int:
        return sum(d.upserted for d in self.documents)

    @property
    def failures(self) -> list[PageFailure]:
        return [f for d in self.documents for f in d.failures]


def document_id(filename: str) -> str:
    """Document id is the file name without its extension."""
    return Path(filename).stem


class Ingestor:
    """Sequentially ingest PDFs into one vector collection."""

    def __init__(
        self,
        acquirer: TextAcquirer,
        batcher: EmbeddingBatcher,
        client: Any,
        collection: str,
        chunk_size: int = CHUNK_CHARS,
        chunk_overlap: int = CHUNK_OVERLAP,
        stable_ids: bool = False,
        output_dir: Path | None = None,
        open_document: Callable[[Path], Any] = PdfDocument,
    ):
        self.acquirer = acquirer
        self.batcher = batcher
        self.client = client
        self.collection = collection
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.stable_ids = stable_ids
        self.output_dir = output_dir
        self.open_document = open_document

    @classmethod
    def from_settings(
        cls, settings, client: Any, batcher: EmbeddingBatcher, output_dir: Path | None = None
    ) -> Ingestor:
        return cls(
            acquirer=TextAcquirer.from_settings(settings),
            batcher=batcher,
            client=client,
            collection=settings.collection,
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            stable_ids=settings.stable_ids,
            output_dir=output_dir,
        )

    def acquire_pages(
        self, document: PageSource, report: DocumentReport
    ) -> list[Page]:
        """Acquire every page, recording failures instead of aborting."""
        pages: list[Page] = []
        for p in range(1, report.page_count + 1):
            try:
                page = self.acquirer.acquire(document, p)
            except (ExternalToolFailure, RecognitionFailure) as e:
                logger.warning("  page %d: failed (%s)", p, e)
                report.failures.append(PageFailure(report.filename, p, str(e)))
                continue
            pages.append(page)
            if page.used_ocr:
                report.ocr_pages += 1
        return pages

    def ingest_file(self, pdf_path: str | Path) -> DocumentReport:
        """Ingest one PDF. Embedding shape errors propagate; page errors do not."""
        pdf_path = Path(pdf_path)
        filename = pdf_path.name
        report = DocumentReport(doc_id=document_id(filename), filename=filename)

        try:
            with self.open_document(pdf_path) as document:
                report.page_count = document.page_count
                logger.info("Ingesting %s • pages: %d", filename, report.page_count)
                pages = self.acquire_pages(document, report)
        except (FileNotFoundError, ExternalToolFailure) as e:
            logger.error("Skipping %s: %s", filename, e)
            report.failures.append(PageFailure(filename, 0, str(e)))
            return report

        page_texts: list[tuple[int, str]] = []
        for page in pages:
            text = normalize_text(page.raw_text)
            page_texts.append((page.index, text))
            logger.info(
                "  page %d: %d chars%s", page.index, len(text), " (OCR)" if page.used_ocr else ""
            )

        chunks = build_chunks(
            page_texts,
            doc_id=report.doc_id,
            filename=filename,
            size=self.chunk_size,
            overlap=self.chunk_overlap,
            stable_ids=self.stable_ids,
        )
        report.chunks = len(chunks)
        logger.info("- total chunks: %d", len(chunks))
        if not chunks:
            logger.warning("No chunks for %s; skipping", filename)
            return report

        if self.output_dir is not None:
            output_path = Path(self.output_dir) / f"{report.doc_id}_chunks.jsonl"
            save_chunks(chunks, output_path)
            logger.info("Wrote %d chunks to %s", len(chunks), output_path)

        texts = [c.text for c in chunks]
        for start, vectors in self.batcher.iter_batches(texts):
            batch = chunks[start:start + len(vectors)]
            report.upserted += upsert_chunks(self.client, self.collection, batch, vectors)
            logger.info("  upserted %d/%d", report.upserted, len(chunks))

        return report

    def ingest_directory(self, docs_dir: str | Path) -> IngestReport:
        """Ensure the collection, then ingest every PDF in ``docs_dir`` in name order.

        Raises:
            FileNotFoundError: If ``docs_dir`` does not exist.
        """
        ensure_collection(self.client, self.collection, self.batcher.dimension)

        pdfs = list_pdfs(docs_dir)
        logger.info("Found PDFs: %d", len(pdfs))

        report = IngestReport()
        for pdf_path in pdfs:
            report.documents.append(self.ingest_file(pdf_path))

        if pdfs:
            report.point_count = count_points(self.client, self.collection)
            logger.info("Collection point count: %d", report.point_count)

        for failure in report.failures:
            where = f"p.{failure.page}" if failure.page else "document"
            logger.warning("Failed: %s %s: %s", failure.filename, where, failure.error)
        return report
