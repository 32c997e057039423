"""Chunk assembly — overlapping, sentence-aware windows over page text."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

# Chunking tuned for manuals
CHUNK_CHARS = 900
CHUNK_OVERLAP = 120


@dataclass(frozen=True)
class Chunk:
    """A bounded substring of one page's normalized text."""
    id: str
    doc_id: str
    filename: str
    page: int
    text: str
    offset: int = 0  # start of the raw window within the page text

    def payload(self) -> dict:
        """Metadata stored alongside the vector."""
        return {
            "doc_id": self.doc_id,
            "filename": self.filename,
            "page": self.page,
            "text": self.text,
        }


def chunk_spans(
    text: str, size: int = CHUNK_CHARS, overlap: int = CHUNK_OVERLAP
) -> list[tuple[int, int]]:
    """Compute the raw (start, end) windows used to cut a page into chunks.

    Each window targets ``size`` characters. When the window ends before the
    page does, its end snaps back to just after the last '.' inside the window,
    provided that period lies past the window's midpoint. The next window then
    starts ``overlap`` characters before the previous end, so consecutive
    windows share exactly ``overlap`` characters. The final window always
    runs to the end of the text.

    Raises:
        ValueError: If size is not positive or overlap is outside [0, size/2).
    """
    if size <= 0:
        raise ValueError(f"size must be positive, got {size}")
    if not 0 <= overlap < size / 2:
        raise ValueError(f"overlap must be in [0, size/2), got {overlap}")

    spans: list[tuple[int, int]] = []
    length = len(text)
    cursor = 0

    while cursor < length:
        end = min(cursor + size, length)
        if end < length:
            dot = text.rfind(".", cursor, end)
            if dot > cursor + size * 0.5:
                end = dot + 1
        spans.append((cursor, end))
        if end >= length:
            break
        # Snapping never lands below the midpoint, so this always advances.
        cursor = end - overlap

    return spans


def chunk_text(
    text: str, size: int = CHUNK_CHARS, overlap: int = CHUNK_OVERLAP
) -> list[str]:
    """Split normalized page text into trimmed, non-empty chunk strings."""
    parts = (text[start:end].strip() for start, end in chunk_spans(text, size, overlap))
    return [p for p in parts if p]


def make_chunk_id(doc_id: str, page: int, offset: int, stable: bool = False) -> str:
    """Return a point id: random by default, or derived from doc/page/offset."""
    if stable:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{doc_id}:{page}:{offset}"))
    return str(uuid.uuid4())


def build_chunks(
    pages: Iterable[tuple[int, str]],
    doc_id: str,
    filename: str,
    size: int = CHUNK_CHARS,
    overlap: int = CHUNK_OVERLAP,
    stable_ids: bool = False,
) -> list[Chunk]:
    """Chunk every page of a document, in page order.

    Args:
        pages: (1-based page number, normalized text) pairs.
        doc_id: Document id shared by all chunks.
        filename: Source file name shared by all chunks.
        size: Target chunk size in characters.
        overlap: Characters shared by consecutive chunks of a page.
        stable_ids: Derive ids from doc_id/page/offset instead of uuid4.
    """
    chunks: list[Chunk] = []
    for page, text in pages:
        for start, end in chunk_spans(text, size, overlap):
            part = text[start:end].strip()
            if not part:
                continue
            chunks.append(
                Chunk(
                    id=make_chunk_id(doc_id, page, start, stable_ids),
                    doc_id=doc_id,
                    filename=filename,
                    page=page,
                    text=part,
                    offset=start,
                )
            )
    logger.debug("Built %d chunks for %s", len(chunks), filename)
    return chunks


def save_chunks(chunks: list[Chunk], output_path: Path) -> None:
    """Write chunks to a JSONL file (one JSON object per line)."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        for chunk in chunks:
            f.write(json.dumps(asdict(chunk), ensure_ascii=False) + "\n")


def load_chunks(input_path: Path) -> list[Chunk]:
    """Read chunks from a JSONL file back into Chunk objects."""
    chunks: list[Chunk] = []
    with open(input_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            record = json.loads(line)
            chunks.append(
                Chunk(
                    id=record["id"],
                    doc_id=record["doc_id"],
                    filename=record["filename"],
                    page=record["page"],
                    text=record["text"],
                    offset=record.get("offset", 0),
                )
            )
    return chunks
