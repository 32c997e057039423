"""Searchable index and grounded question answering over scanned manual pages."""

from __future__ import annotations

from pathlib import Path


def list_pdfs(docs_dir: str | Path) -> list[Path]:
    """List the PDF files directly inside a documents directory, sorted by name.

    Args:
        docs_dir: Directory to scan. The ``.pdf`` extension match is
            case-insensitive.

    Returns:
        Paths of the PDF files.

    Raises:
        FileNotFoundError: If the directory does not exist.
    """
    docs_dir = Path(docs_dir)
    if not docs_dir.is_dir():
        raise FileNotFoundError(f"Docs dir not found: {docs_dir}")

    return sorted(
        p for p in docs_dir.iterdir()
        if p.is_file() and p.suffix.lower() == ".pdf"
    )
