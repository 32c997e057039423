"""Shared pytest fixtures for the manual_rag test suite."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest

from manual_rag.config import CONFIG_ENV_VAR, env_var_names
from manual_rag.embeddings import EmbeddingBatcher, reset_embedding_model
from manual_rag.errors import ExternalToolFailure
from manual_rag.vector_store import SearchHit

DIM = 384


# ── Fake collaborators ────────────────────────────────────────────


class FakeDocument:
    """In-memory stand-in for PdfDocument.

    ``pages`` holds the text layer per page (1-based by position).
    Pages listed in ``broken_raster`` fail to rasterize.
    """

    def __init__(self, pages: list[str], broken_raster: set[int] | None = None):
        self.pages = pages
        self.broken_raster = broken_raster or set()
        self.rasterized: list[int] = []
        self.closed = False

    def __enter__(self) -> FakeDocument:
        return self

    def __exit__(self, *exc_info) -> None:
        self.closed = True

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def extract_text(self, page_number: int) -> str:
        return self.pages[page_number - 1].strip()

    def rasterize(self, page_number: int, dpi: int = 300) -> bytes:
        if page_number in self.broken_raster:
            raise ExternalToolFailure(f"Rasterization failed for p.{page_number}")
        self.rasterized.append(page_number)
        return f"png-{page_number}".encode()


def unit_vector(seed: int, dim: int = DIM) -> np.ndarray:
    rng = np.random.default_rng(seed)
    vec = rng.normal(size=dim).astype(np.float32)
    return vec / np.linalg.norm(vec)


class FakeBackend:
    """Embedding backend returning one deterministic vector per text as an (N, dim) array."""

    def __init__(self, dim: int = DIM):
        self.dim = dim
        self.calls: list[list[str]] = []

    def __call__(self, texts: list[str]) -> np.ndarray:
        self.calls.append(list(texts))
        return np.stack([unit_vector(len(t), self.dim) for t in texts])


# ── Fixtures ──────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _fresh_model_handle():
    reset_embedding_model()
    yield
    reset_embedding_model()


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    """Keep the host environment and any stray .env file out of Settings."""
    for name in env_var_names() + [CONFIG_ENV_VAR]:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def batcher(fake_backend) -> EmbeddingBatcher:
    return EmbeddingBatcher(fake_backend, dimension=DIM, batch_size=24)


@pytest.fixture
def make_document():
    return FakeDocument


@pytest.fixture
def recognizer() -> MagicMock:
    """OCR engine stub that always 'reads' the same instruction text."""
    return MagicMock(
        return_value=(
            "Turn the heater control to DEFROST and set the blower\n"
            "to high until the windshield clears."
        )
    )


@pytest.fixture
def qdrant_client() -> MagicMock:
    client = MagicMock()
    client.collection_exists.return_value = True
    client.get_collection.return_value.config.params.vectors.size = DIM
    client.query_points.return_value.points = []
    client.count.return_value.count = 0
    return client


@pytest.fixture
def make_hit():
    def _make(
        filename: str = "lincoln_owners.pdf",
        page: int = 1,
        score: float = 0.5,
        text: str = "Some manual text.",
        doc_id: str | None = None,
        id: str | None = None,
    ) -> SearchHit:
        return SearchHit(
            id=id or f"{filename}-{page}-{score}",
            doc_id=doc_id or filename.rsplit(".", 1)[0],
            filename=filename,
            page=page,
            text=text,
            score=score,
        )

    return _make


@pytest.fixture
def scored_point():
    """Build objects shaped like qdrant ScoredPoint for query_points results."""
    def _make(hit: SearchHit) -> SimpleNamespace:
        return SimpleNamespace(
            id=hit.id,
            score=hit.score,
            payload={
                "doc_id": hit.doc_id,
                "filename": hit.filename,
                "page": hit.page,
                "text": hit.text,
            },
        )

    return _make


@pytest.fixture
def manual_page_text() -> str:
    """A realistic OCR'd owner's-manual page with typical artifacts."""
    return (
        "HEATING AND VENTILATION\r\n"
        "\r\n"
        "To clear the windshield of fog or frost, move the con-\r\n"
        "trol lever to DEFROST.   The blower — at high speed — directs\t\r\n"
        "warm air to the windshield outlets.\r\n"
        "= =\r\n"
        "“MAX” position gives the greatest air flow.\r\n"
        "Don’t block the outlets.\r\n"
    )
