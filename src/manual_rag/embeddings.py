"""Embedding generation — backend shape normalization and sequential batching."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterator, Sequence

import numpy as np

from .errors import EmbeddingShapeError

logger = logging.getLogger(__name__)

EMBED_DIM = 384
EMBED_BATCH = 24

EmbeddingBackend = Callable[[list[str]], Any]


def _as_vector(item: Any) -> np.ndarray:
    return np.asarray(item, dtype=np.float32).reshape(-1)


def to_vectors(output: Any, dim: int = EMBED_DIM) -> list[list[float]]:
    """Normalize a backend batch result into a list of ``dim``-long vectors.

    Accepted shapes:
    1. A sequence of per-text results (lists, arrays or tensors).
    2. One array with a leading batch dimension, e.g. ``(N, dim)``; it is
       sliced into N contiguous runs of ``dim`` values, in order.
    3. A single vector with no batch dimension (the N=1 case).

    Raises:
        EmbeddingShapeError: If the output cannot be split into ``dim``-long
            vectors.
    """
    if isinstance(output, (list, tuple)):
        if not output:
            return []
        if all(np.ndim(item) >= 1 for item in output):
            vectors = [_as_vector(item) for item in output]
        else:
            # A flat list of numbers is one vector.
            vectors = [_as_vector(output)]
    else:
        arr = np.asarray(output, dtype=np.float32)
        if arr.ndim == 0:
            raise EmbeddingShapeError("Embedding backend returned a scalar")
        if arr.ndim == 1:
            vectors = [arr]
        else:
            batch = arr.shape[0]
            flat = arr.reshape(-1)
            if flat.size != batch * dim:
                raise EmbeddingShapeError(
                    f"Cannot split output of shape {arr.shape} into {batch} vectors of {dim}"
                )
            vectors = [flat[i * dim:(i + 1) * dim] for i in range(batch)]

    for i, vec in enumerate(vectors):
        if vec.size != dim:
            raise EmbeddingShapeError(
                f"Vector {i} has dimension {vec.size}, expected {dim}"
            )
    return [vec.astype(float).tolist() for vec in vectors]


class EmbeddingBatcher:
    """Turn ordered texts into order-aligned, fixed-dimension vectors."""

    def __init__(
        self,
        backend: EmbeddingBackend,
        dimension: int = EMBED_DIM,
        batch_size: int = EMBED_BATCH,
    ):
        self.backend = backend
        self.dimension = dimension
        self.batch_size = batch_size

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed one batch with a single backend call.

        Raises:
            EmbeddingShapeError: If the backend output has the wrong shape or
                does not yield exactly one vector per input text.
        """
        texts = list(texts)
        if not texts:
            return []
        vectors = to_vectors(self.backend(texts), self.dimension)
        if len(vectors) != len(texts):
            raise EmbeddingShapeError(
                f"Embedder returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return vectors

    def embed_one(self, text: str) -> list[float]:
        return self.embed([text])[0]

    def iter_batches(
        self, texts: Sequence[str]
    ) -> Iterator[tuple[int, list[list[float]]]]:
        """Yield (start index, vectors) per batch, one batch at a time."""
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start:start + self.batch_size])
            yield start, self.embed(batch)

    def embed_all(self, texts: Sequence[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for _, batch_vectors in self.iter_batches(texts):
            vectors.extend(batch_vectors)
        return vectors


class SentenceTransformerBackend:
    """Mean-pooled, unit-normalized embeddings from a sentence-transformers model."""

    def __init__(self, model: Any):
        self.model = model

    def __call__(self, texts: list[str]) -> Any:
        return self.model.encode(
            texts,
            normalize_embeddings=True,
            convert_to_numpy=True,
            show_progress_bar=False,
        )


# ── Process-wide model handle ─────────────────────────────────────

_model: Any = None
_model_lock = threading.Lock()


def _load_model(model_name: str, cache_dir: str | None, offline: bool) -> Any:
    from sentence_transformers import SentenceTransformer

    return SentenceTransformer(
        model_name, cache_folder=cache_dir, local_files_only=offline
    )


def get_embedding_model(
    model_name: str, cache_dir: str | None = None, offline: bool = False
) -> Any:
    """Return the shared embedding model, loading it on first use.

    Concurrent first callers wait on a lock, so the model is loaded at most
    once per process. Later calls return the loaded model whatever name they
    pass.
    """
    global _model
    if _model is None:
        with _model_lock:
            if _model is None:
                logger.info("Loading embedder: %s", model_name)
                _model = _load_model(model_name, cache_dir, offline)
    return _model


def reset_embedding_model() -> None:
    """Drop the shared model so the next call reloads it."""
    global _model
    with _model_lock:
        _model = None


def batcher_from_settings(settings) -> EmbeddingBatcher:
    model = get_embedding_model(
        settings.embed_model, cache_dir=settings.model_dir, offline=settings.offline
    )
    return EmbeddingBatcher(
        SentenceTransformerBackend(model),
        dimension=settings.embed_dim,
        batch_size=settings.embed_batch_size,
    )
