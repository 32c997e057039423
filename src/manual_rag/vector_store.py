"""Qdrant collection setup, chunk upserts, and similarity search."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Sequence

from .chunk_assembly import Chunk
from .errors import CollectionSchemaError

logger = logging.getLogger(__name__)


@dataclass
class SearchHit:
    """A stored chunk returned by a similarity query."""
    id: str
    doc_id: str
    filename: str
    page: int
    text: str
    score: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def create_client(url: str) -> Any:
    """Open a Qdrant client for the given URL."""
    from qdrant_client import QdrantClient

    return QdrantClient(url=url)


def _existing_dimension(client: Any, collection_name: str) -> int | None:
    info = client.get_collection(collection_name)
    size = getattr(info.config.params.vectors, "size", None)
    return size if isinstance(size, int) else None


def ensure_collection(client: Any, collection_name: str, vector_size: int = 384) -> bool:
    """Create the cosine-distance collection unless it already exists.

    Returns:
        True if the collection was created, False if it already existed.

    Raises:
        CollectionSchemaError: If the existing collection has another vector size.
        UnexpectedResponse: For creation failures other than a concurrent create.
    """
    from qdrant_client.http.exceptions import UnexpectedResponse
    from qdrant_client.models import Distance, VectorParams

    if client.collection_exists(collection_name):
        existing = _existing_dimension(client, collection_name)
        if existing is not None and existing != vector_size:
            raise CollectionSchemaError(
                f"Collection {collection_name} has vector size {existing}, expected {vector_size}"
            )
        logger.info("Collection %s exists.", collection_name)
        return False

    try:
        client.create_collection(
            collection_name=collection_name,
            vectors_config=VectorParams(size=vector_size, distance=Distance.COSINE),
        )
    except UnexpectedResponse as e:
        # Another process created it between the existence check and the create.
        if e.status_code == 409:
            logger.info("Collection %s exists.", collection_name)
            return False
        raise

    logger.info("Created collection %s (size=%d, Cosine)", collection_name, vector_size)
    return True


def upsert_chunks(
    client: Any,
    collection_name: str,
    chunks: Sequence[Chunk],
    vectors: Sequence[Sequence[float]],
) -> int:
    """Upsert chunks with their vectors; the chunk id is the point id.

    Returns the number of points written.
    """
    from qdrant_client.models import PointStruct

    if len(chunks) != len(vectors):
        raise ValueError(f"Got {len(vectors)} vectors for {len(chunks)} chunks")
    if not chunks:
        return 0

    points = [
        PointStruct(id=chunk.id, vector=list(vector), payload=chunk.payload())
        for chunk, vector in zip(chunks, vectors)
    ]
    client.upsert(collection_name=collection_name, points=points)
    return len(points)


def search(
    client: Any,
    collection_name: str,
    query_vector: Sequence[float],
    limit: int = 24,
) -> list[SearchHit]:
    """Return up to ``limit`` nearest chunks, best first, with no score threshold."""
    response = client.query_points(
        collection_name=collection_name,
        query=list(query_vector),
        limit=limit,
        with_payload=True,
    )

    hits: list[SearchHit] = []
    for point in response.points:
        payload = point.payload or {}
        hits.append(
            SearchHit(
                id=str(point.id),
                doc_id=payload.get("doc_id", ""),
                filename=payload.get("filename", ""),
                page=payload.get("page", 0),
                text=payload.get("text", "") or "",
                score=float(point.score),
            )
        )
    return hits


def count_points(client: Any, collection_name: str) -> int:
    """Exact number of points stored in the collection."""
    return client.count(collection_name=collection_name, exact=True).count
