"""Query-time retrieval: broad similarity search narrowed by a filter funnel."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence

from .embeddings import EmbeddingBatcher
from .vector_store import SearchHit, search

logger = logging.getLogger(__name__)

ROUTED_NO_CONTEXT = "no_context"
ROUTED_RETRIEVAL = "retrieval"

SEARCH_LIMIT = 24
SCORE_FLOOR = 0.45
MAX_CONTEXT = 6
MAX_CITATIONS = 3
MIN_KEYWORD_LENGTH = 4

# Near-synonyms the embedding model tends to keep apart.
DEFAULT_SYNONYM_GROUPS: tuple[tuple[str, ...], ...] = (
    ("defog", "defrost", "demist"),
)

_TOKEN_RE = re.compile(r"[a-z0-9]+")

Stage = Callable[[list[SearchHit]], list[SearchHit]]


@dataclass(frozen=True)
class Citation:
    """A (source file, page) pair backing an answer."""
    filename: str
    page: int

    def to_dict(self) -> dict[str, Any]:
        return {"filename": self.filename, "page": self.page}


@dataclass
class RetrievalResponse:
    """Context and citations selected for one question."""
    question: str
    routed: str  # "no_context" | "retrieval"
    hits: list[SearchHit] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)
    candidate_count: int = 0


# ── Keyword extraction ────────────────────────────────────────────


def extract_keywords(
    question: str,
    synonym_groups: Iterable[Sequence[str]] = DEFAULT_SYNONYM_GROUPS,
    min_length: int = MIN_KEYWORD_LENGTH,
) -> list[str]:
    """Derive the lexical-gate keywords for a question.

    Tokens are lower-cased alphanumeric runs. If any token belongs to a
    synonym group, the keywords are that whole group (the union, when several
    groups match). Otherwise they are the distinct tokens of at least
    ``min_length`` characters.
    """
    tokens = list(dict.fromkeys(_TOKEN_RE.findall(question.lower())))

    synonyms: list[str] = []
    for group in synonym_groups:
        words = [w.lower() for w in group]
        if any(t in words for t in tokens):
            synonyms.extend(w for w in words if w not in synonyms)
    if synonyms:
        return synonyms

    return [t for t in tokens if len(t) >= min_length]


# ── Funnel stages ─────────────────────────────────────────────────


def filter_same_document(hits: list[SearchHit], filename: str) -> list[SearchHit]:
    """Keep hits from the given source file."""
    return [h for h in hits if h.filename == filename]


def filter_score_floor(hits: list[SearchHit], floor: float) -> list[SearchHit]:
    """Drop hits scoring below the floor."""
    return [h for h in hits if h.score >= floor]


def filter_keywords(hits: list[SearchHit], keywords: Sequence[str]) -> list[SearchHit]:
    """Keep hits whose text contains at least one keyword (case-insensitive).

    An empty keyword list lets everything through.
    """
    if not keywords:
        return list(hits)
    return [h for h in hits if any(k in h.text.lower() for k in keywords)]


def rank_and_cap(hits: list[SearchHit], limit: int) -> list[SearchHit]:
    """Sort by score descending (stable on ties) and keep the first ``limit``."""
    return sorted(hits, key=lambda h: h.score, reverse=True)[:limit]


def build_funnel(
    top: SearchHit,
    keywords: Sequence[str],
    score_floor: float = SCORE_FLOOR,
    max_context: int = MAX_CONTEXT,
) -> list[tuple[str, Stage]]:
    """The named stages, in the order they are applied."""
    return [
        ("same_document", lambda hits: filter_same_document(hits, top.filename)),
        ("score_floor", lambda hits: filter_score_floor(hits, score_floor)),
        ("keywords", lambda hits: filter_keywords(hits, keywords)),
        ("rank_and_cap", lambda hits: rank_and_cap(hits, max_context)),
    ]


def run_funnel(
    candidates: list[SearchHit], stages: Sequence[tuple[str, Stage]]
) -> list[SearchHit]:
    hits = list(candidates)
    for name, stage in stages:
        hits = stage(hits)
        logger.debug("Funnel stage %s: %d hits remain", name, len(hits))
    return hits


def select_context(
    question: str,
    candidates: list[SearchHit],
    score_floor: float = SCORE_FLOOR,
    max_context: int = MAX_CONTEXT,
    synonym_groups: Iterable[Sequence[str]] = DEFAULT_SYNONYM_GROUPS,
) -> list[SearchHit]:
    """Narrow broad-search candidates to the context set.

    Falls back to the single best candidate when the funnel removes
    everything, so any non-empty candidate list yields some context.
    """
    if not candidates:
        return []

    top = max(candidates, key=lambda h: h.score)
    keywords = extract_keywords(question, synonym_groups)
    hits = run_funnel(candidates, build_funnel(top, keywords, score_floor, max_context))
    if not hits:
        logger.debug("Funnel removed every candidate; using top hit %s p.%s", top.filename, top.page)
        return [top]
    return hits


def build_citations(hits: Iterable[SearchHit], limit: int = MAX_CITATIONS) -> list[Citation]:
    """First-seen distinct (filename, page) pairs, at most ``limit`` of them."""
    citations: list[Citation] = []
    for hit in hits:
        if len(citations) >= limit:
            break
        citation = Citation(filename=hit.filename, page=hit.page)
        if citation not in citations:
            citations.append(citation)
    return citations


# ── Retriever ─────────────────────────────────────────────────────


class QueryRetriever:
    """Embed a question, search broadly, then filter to a cited context set."""

    def __init__(
        self,
        batcher: EmbeddingBatcher,
        client: Any,
        collection: str,
        search_limit: int = SEARCH_LIMIT,
        score_floor: float = SCORE_FLOOR,
        max_context: int = MAX_CONTEXT,
        max_citations: int = MAX_CITATIONS,
        synonym_groups: Iterable[Sequence[str]] = DEFAULT_SYNONYM_GROUPS,
    ):
        self.batcher = batcher
        self.client = client
        self.collection = collection
        self.search_limit = search_limit
        self.score_floor = score_floor
        self.max_context = max_context
        self.max_citations = max_citations
        self.synonym_groups = [tuple(g) for g in synonym_groups]

    @classmethod
    def from_settings(cls, settings, batcher: EmbeddingBatcher, client: Any) -> QueryRetriever:
        return cls(
            batcher=batcher,
            client=client,
            collection=settings.collection,
            search_limit=settings.search_limit,
            score_floor=settings.score_floor,
            max_context=settings.max_context,
            max_citations=settings.max_citations,
            synonym_groups=settings.synonym_groups,
        )

    def retrieve(self, question: str) -> RetrievalResponse:
        query_vector = self.batcher.embed_one(question)
        candidates = search(self.client, self.collection, query_vector, limit=self.search_limit)
        logger.debug("Broad search returned %d candidates", len(candidates))

        if not candidates:
            return RetrievalResponse(question=question, routed=ROUTED_NO_CONTEXT)

        hits = select_context(
            question,
            candidates,
            score_floor=self.score_floor,
            max_context=self.max_context,
            synonym_groups=self.synonym_groups,
        )
        return RetrievalResponse(
            question=question,
            routed=ROUTED_RETRIEVAL,
            hits=hits,
            citations=build_citations(hits, self.max_citations),
            candidate_count=len(candidates),
        )
